"""Pydantic schemas for raw evidence records.

One record per signal type (robots, sitemap, headers, html). Records are
frozen: a collector builds one and nothing downstream may change it.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class EvidenceRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    url: str
    normalized_url: str
    gathered_at: str = Field(default_factory=utc_now_iso)
    content: str = ""
    content_bytes: int = 0  # size of the full body, before truncation
    status: str  # HTTP status code as text, or a failure label ("Timeout", "Parse Error", ...)
    error: Optional[str] = None


class RobotsEvidence(EvidenceRecord):
    type: Literal["robots"] = "robots"


class SitemapEvidence(EvidenceRecord):
    type: Literal["sitemap"] = "sitemap"
    sitemap_url: str = ""


class HtmlEvidence(EvidenceRecord):
    type: Literal["html"] = "html"


class HeaderEvidence(EvidenceRecord):
    type: Literal["headers"] = "headers"
    status: str = ""
    https_headers: Dict[str, str] = {}
    http_headers: Dict[str, str] = {}
    redirect_chain: List[str] = []


class EvidenceBundle(BaseModel):
    robots: RobotsEvidence
    sitemap: SitemapEvidence
    headers: HeaderEvidence
    html: HtmlEvidence
