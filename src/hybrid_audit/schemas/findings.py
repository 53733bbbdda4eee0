"""Pydantic schemas for micro-audit findings and the Layer-3 result."""

from typing import Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict

Priority = Literal["critical", "high", "medium", "low"]
FindingCategory = Literal["seo", "performance", "content", "technical", "security", "ux", "conversion"]
VisualMode = Literal["url_context", "rendered", "both", "none"]

PRIORITY_WEIGHT: Dict[str, int] = {
    "critical": 4,
    "high": 3,
    "medium": 2,
    "low": 1,
}

AUDIT_TYPES = (
    "technical-seo",
    "performance",
    "on-page-seo",
    "content-quality",
    "authority-trust",
    "visual-url-context",
    "visual-screenshot",
    "codebase-peek",
    "pdp",
)


class MicroAuditFinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    finding: str
    evidence: str
    why_it_matters: str
    fix: str
    priority: Priority
    category: FindingCategory
    source: str  # audit type that produced the finding


class MicroAuditResult(BaseModel):
    audit_type: str
    findings: List[MicroAuditFinding] = []
    raw_output: Optional[str] = None
    provider: Optional[str] = None
    model: Optional[str] = None
    duration_ms: int = 0
    cost: float = 0.0
    error: Optional[str] = None


class AuditError(BaseModel):
    audit: str
    error: str


class Layer3Result(BaseModel):
    audits: Dict[str, MicroAuditResult] = {}
    all_findings: List[MicroAuditFinding] = []
    duration_ms: int = 0
    total_cost: float = 0.0
    errors: List[AuditError] = []
    completed_audits: List[str] = []
    skipped_audits: List[str] = []


class MicroAuditConfig(BaseModel):
    visual_mode: VisualMode = "url_context"
    enable_codebase_peek: bool = True
    enable_pdp: bool = True
    max_findings_per_audit: int = 7  # 0 disables the cap
    provider_overrides: Dict[str, str] = {}


def sort_findings_by_priority(findings: Iterable[MicroAuditFinding]) -> List[MicroAuditFinding]:
    """Highest priority first; sorted() is stable so ties keep their order."""
    return sorted(findings, key=lambda f: PRIORITY_WEIGHT.get(f.priority, 0), reverse=True)


def limit_findings_per_audit(findings: List[MicroAuditFinding], max_per_audit: int) -> List[MicroAuditFinding]:
    """Keeps the first `max_per_audit` findings of each source, preserving order."""
    if max_per_audit <= 0:
        return list(findings)
    counts: Dict[str, int] = {}
    kept = []
    for finding in findings:
        seen = counts.get(finding.source, 0)
        if seen < max_per_audit:
            kept.append(finding)
            counts[finding.source] = seen + 1
    return kept
