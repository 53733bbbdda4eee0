"""Pydantic schemas for the Layer-1 result and the assembled audit report."""

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..collectors.pagespeed import PageSpeedResult
from ..collectors.security_headers import SecurityHeadersResult
from ..collectors.shallow_crawl import ShallowCrawlResult
from ..retrieval.url import NormalizedUrl
from .evidence import EvidenceBundle, utc_now_iso
from .findings import Layer3Result, MicroAuditConfig, MicroAuditFinding
from .snapshot import Layer2Result

CrawlDepth = Literal["surface", "shallow", "deep"]

# crawl depth -> (max pages, max depth, HEAD-probe sampled URLs)
CRAWL_DEPTH_SETTINGS: Dict[str, tuple] = {
    "surface": (5, 1, False),
    "shallow": (10, 2, True),
    "deep": (20, 3, True),
}


class Layer1Limits(BaseModel):
    html_length: int = 50000
    robots_length: int = 5000
    sitemap_length: int = 10000


class Layer1Config(BaseModel):
    psi_enabled: bool = True
    psi_api_key: Optional[str] = None
    security_scope: Literal["headers_only", "full"] = "headers_only"
    crawl_depth: CrawlDepth = "surface"
    timeout_ms: int = 5000
    limits: Layer1Limits = Layer1Limits()


class Layer1Timings(BaseModel):
    robots: int = 0
    sitemap: int = 0
    headers: int = 0
    html: int = 0
    security_headers: int = 0
    page_speed: Optional[int] = None  # None when PSI was not attempted
    crawl: int = 0
    total: int = 0


class CollectorError(BaseModel):
    collector: str
    message: str


class Layer1Result(BaseModel):
    url: str
    normalized_url: NormalizedUrl
    evidence: EvidenceBundle
    security_headers: SecurityHeadersResult
    page_speed: Optional[PageSpeedResult] = None
    crawl_data: ShallowCrawlResult
    timings: Layer1Timings = Layer1Timings()
    errors: List[CollectorError] = []
    explicit_gaps: List[str] = []


class AuditRequest(BaseModel):
    url: str
    pdp_url: Optional[str] = None
    layer1: Layer1Config = Layer1Config()
    micro_audits: MicroAuditConfig = MicroAuditConfig()


class AuditReport(BaseModel):
    audit_id: str
    url: str
    started_at: str = Field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None
    duration_ms: int = 0
    layer1: Optional[Layer1Result] = None
    layer2: Optional[Layer2Result] = None
    layer3: Optional[Layer3Result] = None
    findings: List[MicroAuditFinding] = []
    explicit_gaps: List[str] = []
    error: Optional[str] = None
