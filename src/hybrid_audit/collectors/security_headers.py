"""Security header scoring.

Pure analysis of an already-collected header map; collect_security_headers()
is the optional network variant (a single HEAD probe through the Fetcher).
"""

import re
from typing import Dict, List, Optional

from pydantic import BaseModel

from ..retrieval.fetch import Fetcher

ONE_YEAR_SECONDS = 31536000


class HeaderPresence(BaseModel):
    present: bool = False
    value: Optional[str] = None


class HstsInfo(BaseModel):
    present: bool = False
    max_age: Optional[int] = None
    include_subdomains: bool = False
    preload: bool = False
    raw_value: Optional[str] = None


class CspInfo(BaseModel):
    present: bool = False
    raw_value: Optional[str] = None
    directives: List[str] = []


class SecurityHeadersResult(BaseModel):
    https_enforced: bool
    hsts: HstsInfo = HstsInfo()
    csp: CspInfo = CspInfo()
    x_frame_options: HeaderPresence = HeaderPresence()
    x_content_type_options: HeaderPresence = HeaderPresence()
    x_xss_protection: HeaderPresence = HeaderPresence()
    referrer_policy: HeaderPresence = HeaderPresence()
    permissions_policy: HeaderPresence = HeaderPresence()
    missing_headers: List[str] = []
    score: int = 0
    recommendations: List[str] = []
    raw_headers: Dict[str, str] = {}
    error: Optional[str] = None


def parse_hsts(value: str) -> HstsInfo:
    max_age = re.search(r'max-age=(\d+)', value, re.IGNORECASE)
    return HstsInfo(
        present=True,
        raw_value=value,
        max_age=int(max_age.group(1)) if max_age else None,
        include_subdomains=bool(re.search(r'includeSubDomains', value, re.IGNORECASE)),
        preload=bool(re.search(r'preload', value, re.IGNORECASE)),
    )


def parse_csp(value: str) -> CspInfo:
    directives = [d.strip() for d in value.split(";") if d.strip()]
    return CspInfo(present=True, raw_value=value, directives=directives)


def calculate_security_score(result: SecurityHeadersResult) -> int:
    score = 0
    if result.https_enforced:
        score += 20

    if result.hsts.present:
        score += 10
        if result.hsts.max_age and result.hsts.max_age >= ONE_YEAR_SECONDS:
            score += 5
        if result.hsts.include_subdomains:
            score += 3
        if result.hsts.preload:
            score += 2

    if result.csp.present:
        score += 15
        directives = " ".join(result.csp.directives)
        if "default-src" in directives:
            score += 2
        if "script-src" in directives:
            score += 2
        if "'unsafe-inline'" in directives:
            score -= 2

    for header in (
        result.x_frame_options,
        result.x_content_type_options,
        result.referrer_policy,
        result.permissions_policy,
    ):
        if header.present:
            score += 10

    return min(max(score, 0), 100)


def analyze_security_headers(headers: Dict[str, str], is_https: bool) -> SecurityHeadersResult:
    h = {k.lower(): v for k, v in headers.items()}
    result = SecurityHeadersResult(https_enforced=is_https, raw_headers=headers)

    def missing(name: str, recommendation: str):
        result.missing_headers.append(name)
        result.recommendations.append(recommendation)

    if h.get("strict-transport-security"):
        result.hsts = parse_hsts(h["strict-transport-security"])
    else:
        missing(
            "Strict-Transport-Security",
            "Add Strict-Transport-Security header with max-age of at least 31536000 (1 year)",
        )

    csp = h.get("content-security-policy") or h.get("content-security-policy-report-only")
    if csp:
        result.csp = parse_csp(csp)
    else:
        missing(
            "Content-Security-Policy",
            "Implement Content-Security-Policy to prevent XSS and injection attacks",
        )

    if h.get("x-frame-options"):
        result.x_frame_options = HeaderPresence(present=True, value=h["x-frame-options"])
    else:
        missing("X-Frame-Options", "Add X-Frame-Options: DENY or SAMEORIGIN to prevent clickjacking")

    if h.get("x-content-type-options"):
        result.x_content_type_options = HeaderPresence(present=True, value=h["x-content-type-options"])
    else:
        missing("X-Content-Type-Options", "Add X-Content-Type-Options: nosniff to prevent MIME-type sniffing")

    # Deprecated by browsers; reported but never counted as missing
    if h.get("x-xss-protection"):
        result.x_xss_protection = HeaderPresence(present=True, value=h["x-xss-protection"])

    if h.get("referrer-policy"):
        result.referrer_policy = HeaderPresence(present=True, value=h["referrer-policy"])
    else:
        missing("Referrer-Policy", "Add Referrer-Policy: strict-origin-when-cross-origin for privacy")

    permissions = h.get("permissions-policy") or h.get("feature-policy")
    if permissions:
        result.permissions_policy = HeaderPresence(present=True, value=permissions)

    result.score = calculate_security_score(result)
    return result


async def collect_security_headers(fetcher: Fetcher, url: str, timeout_ms: int = 5000) -> SecurityHeadersResult:
    is_https = url.lower().startswith("https://")
    outcome = await fetcher.fetch(url, timeout_ms=timeout_ms, retries=0, method="HEAD", follow_redirects=True)
    if outcome.payload is None:
        return SecurityHeadersResult(https_enforced=is_https, error=outcome.error)
    return analyze_security_headers(outcome.payload.headers, is_https)
