from typing import Any, Dict, List

from ..llm.prompts import format_headings_for_prompt
from ..schemas.findings import MicroAuditFinding
from .base import AuditInputs, MicroAudit

TITLE_MAX = 60
TITLE_MIN = 30
DESCRIPTION_MAX = 160
DESCRIPTION_MIN = 70


class OnPageSeoAudit(MicroAudit):
    """Titles, meta descriptions, headings, social metadata and images."""

    audit_type = "on-page-seo"
    prompt_name = "on_page_seo"
    id_prefix = "onpage"
    category = "seo"

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        s = inputs.homepage
        return {
            "title": s.title or "Missing",
            "titleLength": len(s.title or ""),
            "metaDescription": s.meta_description or "Missing",
            "metaDescriptionLength": len(s.meta_description or ""),
            "headings": format_headings_for_prompt(s.headings),
            "wordCount": s.word_count,
            "internalLinks": s.internal_link_count,
            "externalLinks": s.external_link_count,
            "ogTitle": s.open_graph.title or "Not set",
            "ogDescription": s.open_graph.description or "Not set",
            "ogImage": "Present" if s.open_graph.image else "Missing",
            "schemaTypes": ", ".join(s.schema_types()) or "None found",
        }

    def deterministic_findings(self, inputs: AuditInputs) -> List[MicroAuditFinding]:
        s = inputs.homepage
        findings = []

        if not s.title:
            findings.append(self.finding(
                1, "Missing page title",
                "No <title> tag found in HTML head",
                "Title tags are a primary ranking factor and determine how your page appears in search results",
                "Add a unique, descriptive title tag (50-60 characters) that includes your target keyword",
                "critical",
            ))
        elif len(s.title) > TITLE_MAX:
            findings.append(self.finding(
                2, "Title tag is too long",
                f'Title: "{s.title}" ({len(s.title)} characters)',
                "Titles over 60 characters may be truncated in search results, losing important information",
                "Shorten the title to 50-60 characters while keeping the main keyword near the beginning",
                "medium",
            ))
        elif len(s.title) < TITLE_MIN:
            findings.append(self.finding(
                2, "Title tag may be too short",
                f'Title: "{s.title}" ({len(s.title)} characters)',
                "Short titles may not fully describe the page content or include valuable keywords",
                "Expand the title to include more relevant keywords while staying under 60 characters",
                "low",
            ))

        description = s.meta_description
        if not description:
            findings.append(self.finding(
                3, "Missing meta description",
                "No meta description found in HTML head",
                "Meta descriptions control how your page appears in search results and affect click-through rates",
                "Add a compelling meta description (150-160 characters) that summarizes the page and includes a call-to-action",
                "high",
            ))
        elif len(description) > DESCRIPTION_MAX:
            findings.append(self.finding(
                4, "Meta description is too long",
                f"Meta description is {len(description)} characters (recommended: 150-160)",
                "Long meta descriptions get truncated in search results, potentially cutting off your call-to-action",
                "Shorten the meta description to 150-160 characters",
                "low",
            ))
        elif len(description) < DESCRIPTION_MIN:
            findings.append(self.finding(
                4, "Meta description may be too short",
                f'Meta description: "{description}" ({len(description)} characters)',
                "Short meta descriptions may not fully describe the page or compel users to click",
                "Expand the meta description to include more compelling information",
                "low",
            ))

        h1s = [h for h in s.headings if h.level == 1]
        if not h1s:
            findings.append(self.finding(
                5, "Missing H1 heading",
                "No H1 heading found on the page",
                "The H1 is a primary on-page SEO signal that tells search engines what the page is about",
                "Add a single, descriptive H1 heading that includes your primary keyword",
                "high",
            ))
        elif len(h1s) > 1:
            texts = '", "'.join(h.text for h in h1s)
            findings.append(self.finding(
                5, "Multiple H1 headings detected",
                f'Found {len(h1s)} H1 headings: "{texts}"',
                "Multiple H1s can confuse search engines about the main topic of the page",
                "Use a single H1 for the main heading, convert others to H2 or lower",
                "medium",
            ))

        og = s.open_graph
        if not og.title or not og.image:
            missing = [name for name, value in (
                ("og:title", og.title), ("og:description", og.description), ("og:image", og.image)
            ) if not value]
            findings.append(self.finding(
                6, "Incomplete Open Graph metadata",
                f"Missing: {', '.join(missing)}",
                "Open Graph tags control how your page appears when shared on social media",
                "Add complete Open Graph tags including title, description, and image",
                "medium",
            ))

        if not s.schemas:
            findings.append(self.finding(
                7, "No structured data found",
                "No JSON-LD schema markup detected",
                "Structured data helps search engines understand your content and enables rich snippets",
                "Add relevant schema markup (Organization, WebSite, BreadcrumbList, FAQ, etc.)",
                "medium",
            ))

        if not s.viewport:
            findings.append(self.finding(
                8, "Missing viewport meta tag",
                "No viewport meta tag found",
                "The viewport tag is essential for mobile responsiveness and is a mobile-first indexing requirement",
                'Add <meta name="viewport" content="width=device-width, initial-scale=1">',
                "high",
                category="technical",
            ))

        missing_alt = sum(1 for image in s.images if image.missing_alt)
        if missing_alt:
            findings.append(self.finding(
                9, "Images missing alt text",
                f"{missing_alt} image(s) without alt attributes",
                "Alt text improves accessibility and helps search engines understand image content",
                "Add descriptive alt text to all images that convey content",
                "high" if missing_alt > 3 else "medium",
            ))

        return findings
