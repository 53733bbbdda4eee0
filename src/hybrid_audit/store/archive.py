"""Evidence archive: an append-only record of one audit run.

Every gathered signal, every provider output (keyed by stage), the finding
parse counters and every error are kept here whether or not they made it into
the final report, so a run can be reproduced and debugged afterwards.
Archives live in an EvidenceRepository keyed by audit id until deleted.
"""

import re
import time
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..log import get_logger
from ..schemas.evidence import utc_now_iso

logger = get_logger("archive")

DEFAULT_EVIDENCE_TYPES = ("URL_CONTEXT", "HTML", "SERP", "ROBOTS", "SITEMAP", "HEADERS")
DEFAULT_FINDING_MARKERS = ("Evidence:", "Finding:", "Why it matters:", "Fix:")


class StageOutput(BaseModel):
    stage: str
    output: str
    provider: Optional[str] = None
    model: Optional[str] = None
    metadata: Dict[str, Any] = {}
    stored_at: str = Field(default_factory=utc_now_iso)


class ParseStatus(BaseModel):
    findings_parsed: int = 0
    findings_dropped: int = 0
    drop_reasons: Dict[str, int] = {}
    parse_errors: List[str] = []


class ArchivedError(BaseModel):
    phase: str
    message: str
    timestamp: str = Field(default_factory=utc_now_iso)


class EvidenceArchive(BaseModel):
    id: str
    url: str
    started_at: str = Field(default_factory=utc_now_iso)
    completed_at: Optional[str] = None
    raw_signals: Dict[str, Any] = {}
    stage_outputs: Dict[str, StageOutput] = {}
    parse_status: ParseStatus = ParseStatus()
    errors: List[ArchivedError] = []
    final_report: Optional[Dict[str, Any]] = None


class ArchiveSummary(BaseModel):
    id: str
    url: str
    duration_ms: int
    signals_gathered: int
    stage_outputs: int
    findings_parsed: int
    findings_dropped: int
    error_count: int
    completed: bool


class EvidenceStore:
    """Mutable handle over one run's EvidenceArchive. Not shared between runs."""

    def __init__(self, audit_id: str, url: str):
        self._start = time.monotonic()
        self.archive = EvidenceArchive(id=audit_id, url=url)

    # Signals

    def store_signal(self, signal_type: str, evidence: Any):
        if isinstance(evidence, BaseModel):
            evidence = evidence.model_dump()
        self.archive.raw_signals[signal_type] = evidence

    def get_signal(self, signal_type: str) -> Optional[Any]:
        return self.archive.raw_signals.get(signal_type)

    # Provider outputs

    def store_stage_output(
        self,
        stage: str,
        output: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self.archive.stage_outputs[stage] = StageOutput(
            stage=stage,
            output=output,
            provider=provider,
            model=model,
            metadata=metadata or {},
        )

    def get_stage_output(self, stage: str) -> Optional[StageOutput]:
        return self.archive.stage_outputs.get(stage)

    # Parse status

    def record_parsed_finding(self, count: int = 1):
        self.archive.parse_status.findings_parsed += count

    def record_dropped_finding(self, reason: str, finding_title: Optional[str] = None):
        status = self.archive.parse_status
        status.findings_dropped += 1
        status.drop_reasons[reason] = status.drop_reasons.get(reason, 0) + 1
        if finding_title:
            status.parse_errors.append(f'Dropped "{finding_title}": {reason}')

    def record_parse_error(self, error: str):
        self.archive.parse_status.parse_errors.append(error)

    # Errors

    def record_error(self, phase: str, message: str):
        self.archive.errors.append(ArchivedError(phase=phase, message=message))

    def has_errors(self) -> bool:
        return bool(self.archive.errors)

    # Final report

    def store_final_report(self, report: Any):
        if isinstance(report, BaseModel):
            report = report.model_dump()
        self.archive.final_report = report
        self.archive.completed_at = utc_now_iso()

    def get_archive(self) -> EvidenceArchive:
        return self.archive.model_copy(deep=True)

    def get_duration_ms(self) -> int:
        return int((time.monotonic() - self._start) * 1000)

    def get_summary(self) -> ArchiveSummary:
        return ArchiveSummary(
            id=self.archive.id,
            url=self.archive.url,
            duration_ms=self.get_duration_ms(),
            signals_gathered=len(self.archive.raw_signals),
            stage_outputs=len(self.archive.stage_outputs),
            findings_parsed=self.archive.parse_status.findings_parsed,
            findings_dropped=self.archive.parse_status.findings_dropped,
            error_count=len(self.archive.errors),
            completed=self.archive.completed_at is not None,
        )


class EvidenceRepository:
    """In-process keyed store of evidence archives. Nothing expires on its own."""

    def __init__(self):
        self._stores: Dict[str, EvidenceStore] = {}

    def create(self, audit_id: str, url: str) -> EvidenceStore:
        store = EvidenceStore(audit_id, url)
        self._stores[audit_id] = store
        return store

    def get(self, audit_id: str) -> Optional[EvidenceStore]:
        return self._stores.get(audit_id)

    def delete(self, audit_id: str) -> bool:
        return self._stores.pop(audit_id, None) is not None

    def active_summaries(self) -> List[ArchiveSummary]:
        return [store.get_summary() for store in self._stores.values()]

    def __len__(self) -> int:
        return len(self._stores)


class EvidenceQuote(BaseModel):
    type: str
    quote: str
    context: str = ""


def _context(text: str, position: int, context_lines: int = 2) -> str:
    before = text[:position].split("\n")[-context_lines:]
    after = text[position:].split("\n")[:context_lines + 1]
    return ("\n".join(before) + "\n" + "\n".join(after)).strip()


def extract_evidence_quotes(output: str, evidence_types=DEFAULT_EVIDENCE_TYPES) -> List[EvidenceQuote]:
    """Collects `Evidence: [TYPE] quote` lines from a provider output."""
    quotes = []
    for evidence_type in evidence_types:
        pattern = re.compile(rf'Evidence:\s*\[?{re.escape(evidence_type)}\]?\s*([^\n]+)(?:\n|$)', re.IGNORECASE)
        for match in pattern.finditer(output):
            quotes.append(EvidenceQuote(
                type=evidence_type,
                quote=match.group(1).strip(),
                context=_context(output, match.start()),
            ))
    return quotes


def validate_finding_evidence(finding_text: str, required_markers=DEFAULT_FINDING_MARKERS) -> List[str]:
    """Returns the markers missing from a free-text finding; empty means valid."""
    lowered = finding_text.lower()
    return [marker for marker in required_markers if marker.lower() not in lowered]
