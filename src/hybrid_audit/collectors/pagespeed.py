"""PageSpeed Insights collector.

Mobile strategy, four Lighthouse categories. Field (CrUX) data is preferred
for Core Web Vitals; lab audits fill whatever the field data lacks.
Failures never raise, they come back as a result with `error` set and
data_source "unavailable".
"""

import json
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import urlencode

from pydantic import BaseModel, Field

from ..config import get_settings
from ..log import get_logger
from ..retrieval.fetch import Fetcher
from ..schemas.evidence import utc_now_iso

settings = get_settings()
logger = get_logger("pagespeed")

PSI_API_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
PSI_CATEGORIES = ("performance", "accessibility", "best-practices", "seo")

OPPORTUNITY_AUDITS = [
    "render-blocking-resources",
    "unused-css-rules",
    "unused-javascript",
    "modern-image-formats",
    "offscreen-images",
    "unminified-css",
    "unminified-javascript",
    "efficient-animated-content",
    "duplicated-javascript",
    "legacy-javascript",
    "uses-responsive-images",
    "uses-optimized-images",
    "uses-text-compression",
    "uses-rel-preconnect",
    "server-response-time",
    "redirects",
    "uses-http2",
    "dom-size",
    "critical-request-chains",
    "font-display",
    "total-byte-weight",
    "third-party-summary",
    "bootup-time",
    "mainthread-work-breakdown",
]

CWV_THRESHOLDS = {
    "lcp": (2500, 4000),
    "inp": (200, 500),
    "cls": (0.1, 0.25),
    "ttfb": (800, 1800),
    "fcp": (1800, 3000),
}

# Lighthouse audit id -> CoreWebVitals field, used when field data is missing
LAB_AUDITS = {
    "lcp": "largest-contentful-paint",
    "cls": "cumulative-layout-shift",
    "fcp": "first-contentful-paint",
    "speed_index": "speed-index",
    "tbt": "total-blocking-time",
    "ttfb": "server-response-time",
}

FIELD_METRICS = {
    "lcp": "LARGEST_CONTENTFUL_PAINT_MS",
    "inp": "INTERACTION_TO_NEXT_PAINT",
    "cls": "CUMULATIVE_LAYOUT_SHIFT_SCORE",
    "ttfb": "EXPERIMENTAL_TIME_TO_FIRST_BYTE",
    "fcp": "FIRST_CONTENTFUL_PAINT_MS",
}


class CoreWebVitals(BaseModel):
    lcp: Optional[float] = None
    inp: Optional[float] = None
    cls: Optional[float] = None
    ttfb: Optional[float] = None
    fcp: Optional[float] = None
    speed_index: Optional[float] = None
    tbt: Optional[float] = None


class PerformanceOpportunity(BaseModel):
    id: str
    title: str
    description: str = ""
    savings_ms: Optional[float] = None
    savings_bytes: Optional[float] = None
    score: Optional[float] = None


class PageSpeedResult(BaseModel):
    core_web_vitals: CoreWebVitals = CoreWebVitals()
    performance_score: Optional[int] = None
    accessibility_score: Optional[int] = None
    best_practices_score: Optional[int] = None
    seo_score: Optional[int] = None
    opportunities: List[PerformanceOpportunity] = []
    passed_audits: List[str] = []
    data_source: Literal["field", "lab", "unavailable"] = "unavailable"
    fetched_at: str = Field(default_factory=utc_now_iso)
    error: Optional[str] = None


def build_psi_url(url: str, api_key: Optional[str] = None) -> str:
    params = [("url", url), ("strategy", "mobile")]
    params += [("category", c) for c in PSI_CATEGORIES]
    if api_key:
        params.append(("key", api_key))
    return f"{PSI_API_URL}?{urlencode(params)}"


def _category_score(categories: Dict[str, Any], name: str) -> Optional[int]:
    score = (categories.get(name) or {}).get("score")
    # A score of 0 is reported as missing, matching how PSI omits unscored runs
    return round(score * 100) if score else None


def extract_core_web_vitals(lighthouse: Dict[str, Any], field_data: Dict[str, Any]) -> CoreWebVitals:
    cwv = CoreWebVitals()
    metrics = field_data.get("metrics") or {}
    for key, metric in FIELD_METRICS.items():
        percentile = (metrics.get(metric) or {}).get("percentile")
        if percentile is None:
            continue
        if key == "cls":
            # CrUX reports CLS multiplied by 100
            cwv.cls = percentile / 100 if percentile else None
        else:
            setattr(cwv, key, percentile)

    audits = lighthouse.get("audits") or {}
    for key, audit_id in LAB_AUDITS.items():
        if getattr(cwv, key) is not None:
            continue
        value = (audits.get(audit_id) or {}).get("numericValue")
        if key == "cls":
            if value is not None:
                cwv.cls = value
        elif value:
            setattr(cwv, key, round(value))
    return cwv


def extract_opportunities(audits: Dict[str, Any]) -> List[PerformanceOpportunity]:
    opportunities = []
    for audit_id in OPPORTUNITY_AUDITS:
        audit = audits.get(audit_id)
        if not audit:
            continue
        details = audit.get("details") or {}
        savings_ms = details.get("overallSavingsMs")
        savings_bytes = details.get("overallSavingsBytes")
        score = audit.get("score")
        has_savings = bool(savings_ms and savings_ms > 0) or bool(savings_bytes and savings_bytes > 0)
        has_score = score is not None and score < 0.9
        if has_savings or has_score:
            opportunities.append(PerformanceOpportunity(
                id=audit.get("id", audit_id),
                title=audit.get("title", audit_id),
                description=audit.get("description", ""),
                savings_ms=savings_ms,
                savings_bytes=savings_bytes,
                score=score,
            ))

    opportunities.sort(key=lambda o: (o.savings_ms or 0) + (o.savings_bytes or 0) / 1000, reverse=True)
    return opportunities


def parse_psi_response(data: Dict[str, Any]) -> PageSpeedResult:
    lighthouse = data.get("lighthouseResult") or {}
    field_data = data.get("loadingExperience") or data.get("originLoadingExperience") or {}

    if field_data.get("metrics"):
        data_source = "field"
    elif lighthouse.get("audits"):
        data_source = "lab"
    else:
        data_source = "unavailable"

    categories = lighthouse.get("categories") or {}
    audits = lighthouse.get("audits") or {}
    return PageSpeedResult(
        core_web_vitals=extract_core_web_vitals(lighthouse, field_data),
        performance_score=_category_score(categories, "performance"),
        accessibility_score=_category_score(categories, "accessibility"),
        best_practices_score=_category_score(categories, "best-practices"),
        seo_score=_category_score(categories, "seo"),
        opportunities=extract_opportunities(audits),
        passed_audits=[audit_id for audit_id, audit in audits.items() if audit.get("score") == 1],
        data_source=data_source,
    )


async def collect_pagespeed(
    fetcher: Fetcher,
    url: str,
    api_key: Optional[str] = None,
    timeout_ms: Optional[int] = None,
) -> PageSpeedResult:
    timeout_ms = settings.PSI_TIMEOUT_MS if timeout_ms is None else timeout_ms
    outcome = await fetcher.fetch(build_psi_url(url, api_key), timeout_ms=timeout_ms, retries=0, follow_redirects=True)
    if outcome.payload is None:
        return PageSpeedResult(error=outcome.error or "Failed")

    resp = outcome.payload
    try:
        data = json.loads(resp.text) if resp.text else {}
    except json.JSONDecodeError:
        data = {}

    if not resp.ok:
        message = (data.get("error") or {}).get("message") or f"HTTP {resp.status}"
        return PageSpeedResult(error=f"PSI API error: {resp.status} - {message}")
    if not data:
        return PageSpeedResult(error="PSI API error: empty or invalid JSON response")
    if data.get("error"):
        return PageSpeedResult(error=f"PSI API error: {data['error'].get('message', 'unknown')}")

    return parse_psi_response(data)


def get_cwv_rating(metric: str, value: Optional[float]) -> str:
    if value is None:
        return "unknown"
    good, poor = CWV_THRESHOLDS[metric]
    if value <= good:
        return "good"
    if value <= poor:
        return "needs-improvement"
    return "poor"


def format_cwv_value(metric: str, value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    if metric == "cls":
        return f"{value:.3f}"
    if value >= 1000:
        return f"{value / 1000:.2f}s"
    return f"{round(value)}ms"
