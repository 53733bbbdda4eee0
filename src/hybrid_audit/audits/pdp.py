from typing import Any, Dict, List

from ..schemas.findings import MicroAuditFinding
from .base import AuditInputs, MicroAudit

THIN_PRODUCT_WORDS = 150


class PdpAudit(MicroAudit):
    """Product detail page review. Only scheduled when a PDP snapshot exists."""

    audit_type = "pdp"
    prompt_name = "pdp"
    id_prefix = "pdp"
    category = "conversion"

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        s = inputs.layer2.pdp
        return {
            "pdpUrl": s.url,
            "title": s.title or "Missing",
            "metaDescription": s.meta_description or "Missing",
            "schemaTypes": ", ".join(s.schema_types()) or "None found",
            "hasProductSchema": "Yes" if s.has_schema("Product") else "No",
            "hasReviewSchema": "Yes" if s.has_schema("Review", "AggregateRating") else "No",
            "contentPreview": inputs.pdp_content_preview[:2000] or "Content not available",
        }

    def deterministic_findings(self, inputs: AuditInputs) -> List[MicroAuditFinding]:
        s = inputs.layer2.pdp
        if s is None:
            return []
        findings = []

        if not s.has_schema("Product"):
            findings.append(self.finding(
                1, "Missing Product schema markup",
                "No Product schema found in JSON-LD",
                "Product schema enables rich snippets with price, availability, and ratings in search results",
                "Add Product schema with name, description, image, price, and availability",
                "high",
            ))

        if not s.has_schema("Review", "AggregateRating"):
            findings.append(self.finding(
                2, "Missing Review/Rating schema",
                "No Review or AggregateRating schema found",
                "Review schema enables star ratings in search results, improving click-through rates",
                "Add AggregateRating schema if you have customer reviews",
                "medium",
            ))

        if not s.has_schema("BreadcrumbList"):
            findings.append(self.finding(
                3, "Missing Breadcrumb schema",
                "No BreadcrumbList schema found",
                "Breadcrumb schema helps search engines understand site structure and can show in SERPs",
                "Add BreadcrumbList schema reflecting the category path to the product",
                "low",
                category="seo",
            ))

        if not s.meta_description:
            findings.append(self.finding(
                4, "Product page missing meta description",
                "No meta description found",
                "Product pages need compelling meta descriptions to drive clicks from search results",
                "Add a unique meta description highlighting key product benefits and a call-to-action",
                "high",
                category="seo",
            ))

        missing_alt = [i for i in s.images if i.likely_above_fold and i.missing_alt]
        if missing_alt:
            findings.append(self.finding(
                5, "Product images missing alt text",
                f"{len(missing_alt)} above-fold image(s) without alt attributes",
                "Alt text helps images rank in Google Images and improves accessibility",
                "Add descriptive alt text to product images including product name and key features",
                "medium",
                category="seo",
            ))

        if s.word_count < THIN_PRODUCT_WORDS:
            findings.append(self.finding(
                6, "Thin product description",
                f"Only {s.word_count} words on the page",
                "Product pages with minimal content are less likely to rank and convert",
                "Add detailed product description, features, specifications, and use cases",
                "high",
                category="content",
            ))

        return findings
