from typing import Any, Dict, List
from urllib.parse import urlsplit

from ..llm.prompts import format_array_for_prompt
from ..schemas.findings import MicroAuditFinding
from ..schemas.snapshot import PageSnapshot
from .base import AuditInputs, MicroAudit

TRUST_PAGES = ("about", "contact", "privacy", "terms", "faq", "support", "team")


def extract_trust_signals(snapshot: PageSnapshot) -> List[str]:
    signals = []
    if snapshot.has_schema("Organization"):
        signals.append("Organization schema present")
    if snapshot.has_schema("LocalBusiness"):
        signals.append("LocalBusiness schema present")

    nav_texts = [a.text.lower() for a in snapshot.nav_anchors]
    for page in TRUST_PAGES:
        if any(page in text for text in nav_texts):
            signals.append(f'"{page}" page linked in navigation')

    if snapshot.has_schema("Review", "AggregateRating"):
        signals.append("Review/Rating schema present")
    if snapshot.has_schema("Person", "Author"):
        signals.append("Author information schema present")
    if snapshot.has_schema("BreadcrumbList"):
        signals.append("Breadcrumb schema present")
    return signals


class AuthorityTrustAudit(MicroAudit):
    """HTTPS, security headers and entity/trust signals."""

    audit_type = "authority-trust"
    prompt_name = "authority_trust"
    id_prefix = "trust"
    category = "security"

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        s = inputs.homepage
        security = inputs.layer1.security_headers
        return {
            "domain": urlsplit(s.url).hostname or s.url,
            "isHttps": "Yes" if s.url.startswith("https://") else "No",
            "securityScore": security.score,
            "missingHeaders": ", ".join(security.missing_headers) or "None",
            "schemaTypes": ", ".join(s.schema_types()) or "None found",
            "trustSignals": format_array_for_prompt(extract_trust_signals(s)),
            "externalLinks": s.external_link_count,
        }

    def deterministic_findings(self, inputs: AuditInputs) -> List[MicroAuditFinding]:
        s = inputs.homepage
        security = inputs.layer1.security_headers
        findings = []

        if not s.url.startswith("https://"):
            findings.append(self.finding(
                1, "Site not using HTTPS",
                f"URL: {s.url}",
                'HTTPS is a ranking factor and browsers mark HTTP sites as "Not Secure"',
                "Install an SSL certificate and redirect all HTTP traffic to HTTPS",
                "critical",
            ))

        if not security.hsts.present:
            findings.append(self.finding(
                2, "Missing Strict-Transport-Security header",
                "HSTS header not found in server response",
                "HSTS ensures browsers always use HTTPS, preventing downgrade attacks",
                "Add Strict-Transport-Security header with max-age of at least 1 year",
                "medium",
            ))

        if security.score < 50:
            findings.append(self.finding(
                3, "Low security headers score",
                f"Security score: {security.score}/100. Missing: {', '.join(security.missing_headers)}",
                "Security headers protect against common attacks and signal site trustworthiness",
                f"Add missing security headers: {'; '.join(security.recommendations[:2])}",
                "medium",
            ))

        if not s.has_schema("Organization", "LocalBusiness"):
            findings.append(self.finding(
                4, "Missing Organization schema",
                "No Organization or LocalBusiness schema found",
                "Organization schema helps establish entity identity and can enable knowledge panel features",
                "Add Organization schema with name, logo, contact information, and social profiles",
                "medium",
                category="seo",
            ))

        if s.external_link_count == 0:
            findings.append(self.finding(
                5, "No external links found",
                "Page contains 0 external links",
                "Linking to authoritative external sources can enhance credibility and user experience",
                "Consider adding relevant external links to authoritative sources that support your content",
                "low",
                category="content",
            ))

        return findings
