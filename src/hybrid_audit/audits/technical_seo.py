from typing import Any, Dict, List

from ..llm.prompts import format_headers_for_prompt
from ..schemas.findings import MicroAuditFinding
from .base import AuditInputs, MicroAudit


class TechnicalSeoAudit(MicroAudit):
    """Crawlability and indexability: robots, sitemap, canonical, redirects."""

    audit_type = "technical-seo"
    prompt_name = "technical_seo"
    id_prefix = "tech"
    category = "technical"

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        layer1 = inputs.layer1
        snapshot = inputs.homepage
        chain = layer1.evidence.headers.redirect_chain
        return {
            "robotsTxt": layer1.evidence.robots.content or "Not found or empty",
            "sitemapUrlCount": len(layer1.crawl_data.sitemap_urls),
            "sitemapSample": "\n".join(layer1.crawl_data.sitemap_urls[:5]) or "No URLs found",
            "headers": format_headers_for_prompt(layer1.evidence.headers.https_headers),
            "redirectChain": " → ".join(chain) if chain else "No redirects",
            "canonical": snapshot.canonical or "Not set",
            "metaRobots": snapshot.meta_robots or "Not set",
        }

    def deterministic_findings(self, inputs: AuditInputs) -> List[MicroAuditFinding]:
        layer1 = inputs.layer1
        snapshot = inputs.homepage
        robots = layer1.evidence.robots
        chain = layer1.evidence.headers.redirect_chain
        findings = []

        if not robots.content and robots.status == "404":
            findings.append(self.finding(
                1, "Missing robots.txt file",
                f"HTTP 404 response from {layer1.normalized_url.origin}/robots.txt",
                "Search engines may not have clear crawling directives, potentially wasting crawl budget",
                "Create a robots.txt file with appropriate directives",
                "medium",
            ))

        if not layer1.crawl_data.sitemap_urls:
            findings.append(self.finding(
                2, "No sitemap detected",
                "No sitemap URLs found at /sitemap.xml or referenced in robots.txt",
                "Search engines may miss important pages, reducing indexation coverage",
                "Create and submit an XML sitemap to Google Search Console",
                "high",
            ))

        if not snapshot.canonical:
            findings.append(self.finding(
                3, "Missing canonical tag",
                'No <link rel="canonical"> found in HTML head',
                "Search engines may index duplicate versions of this page, diluting ranking signals",
                "Add a self-referencing canonical tag to the page",
                "high",
            ))

        if len(chain) > 2:
            findings.append(self.finding(
                4, "Excessive redirect chain detected",
                f"{len(chain)} redirects: {' → '.join(chain)}",
                "Redirect chains slow page loading and may cause search engines to stop following",
                "Consolidate redirects to a single hop where possible",
                "medium",
            ))

        if snapshot.meta_robots and "noindex" in snapshot.meta_robots.lower():
            findings.append(self.finding(
                5, "Page has noindex directive",
                f'Meta robots: "{snapshot.meta_robots}"',
                "This page will not appear in search results",
                "Remove noindex directive if this page should be indexed",
                "critical",
            ))

        return findings
