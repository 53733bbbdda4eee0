from typing import Any, Dict, List

from ..schemas.findings import MicroAuditFinding
from .base import AuditInputs, MicroAudit


class ContentQualityAudit(MicroAudit):
    audit_type = "content-quality"
    prompt_name = "content_quality"
    id_prefix = "content"
    category = "content"
    temperature = 0.4

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        s = inputs.homepage
        return {
            "url": s.url,
            "title": s.title or "Missing",
            "wordCount": s.word_count,
            "contentPreview": inputs.content_preview[:2000] or "Content not available",
            "navStructure": " | ".join(a.text for a in s.nav_anchors[:10]) or "Navigation not extracted",
            "hasForms": "Yes" if s.has_forms else "No",
            "schemaTypes": ", ".join(s.schema_types()) or "None found",
        }

    def deterministic_findings(self, inputs: AuditInputs) -> List[MicroAuditFinding]:
        s = inputs.homepage
        findings = []

        if s.is_thin_content:
            findings.append(self.finding(
                1, "Thin content detected",
                f"Word count: {s.word_count} (recommended minimum: 300 words)",
                "Thin content is less likely to rank well and may be seen as low-quality by search engines",
                "Expand the content with valuable, relevant information that fully addresses user intent",
                "high" if s.word_count < 100 else "medium",
            ))

        if s.word_count < 100:
            findings.append(self.finding(
                2, "Extremely low content volume",
                f"Only {s.word_count} words on the page",
                "Pages with very little content rarely provide value to users or rank competitively",
                "Add substantial, unique content that comprehensively covers the topic",
                "high",
            ))

        if s.internal_link_count < 3:
            findings.append(self.finding(
                3, "Limited internal linking",
                f"Only {s.internal_link_count} internal links found",
                "Internal links help users navigate, distribute page authority, and help search engines discover content",
                "Add relevant internal links to related pages and important content",
                "medium",
            ))

        if len(s.headings) < 3:
            findings.append(self.finding(
                4, "Limited content structure",
                f"Only {len(s.headings)} headings on the page",
                "Well-structured content with headings improves readability and helps search engines understand content hierarchy",
                "Break up content with meaningful headings (H2, H3) that organize topics logically",
                "medium",
            ))

        if not s.lang:
            findings.append(self.finding(
                5, "Missing language declaration",
                "No lang attribute on <html> element",
                "The lang attribute helps search engines and screen readers understand the page language",
                'Add lang="en" (or appropriate language code) to the <html> element',
                "low",
            ))

        return findings
