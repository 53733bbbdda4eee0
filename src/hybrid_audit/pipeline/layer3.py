"""Layer 3: micro-audit task runner.

Every scheduled audit runs concurrently as one batch. An audit that fails
(returned error or raised exception) still contributes its deterministic
findings and is recorded exactly once in `errors`; it never aborts the batch.
"""

import asyncio
import time
from typing import List, Optional, Tuple

from ..audits.authority_trust import AuthorityTrustAudit
from ..audits.base import AuditContext, AuditInputs, MicroAudit
from ..audits.codebase_peek import CodebasePeekAudit
from ..audits.content_quality import ContentQualityAudit
from ..audits.on_page_seo import OnPageSeoAudit
from ..audits.pdp import PdpAudit
from ..audits.performance import PerformanceAudit
from ..audits.technical_seo import TechnicalSeoAudit
from ..audits.visual import VisualScreenshotAudit, VisualUrlContextAudit
from ..llm.registry import ProviderRegistry
from ..log import get_logger
from ..mlops.tracing import tracer
from ..retrieval.extract import extract_content_preview
from ..retrieval.fetch import Fetcher
from ..schemas.findings import (
    AuditError,
    Layer3Result,
    MicroAuditConfig,
    MicroAuditFinding,
    MicroAuditResult,
    limit_findings_per_audit,
    sort_findings_by_priority,
)
from ..schemas.report import Layer1Result
from ..schemas.snapshot import Layer2Result
from ..store.archive import EvidenceStore
from .events import EventCallback, EventEmitter

logger = get_logger("layer3")


def plan_audits(config: MicroAuditConfig, layer2: Layer2Result) -> Tuple[List[MicroAudit], List[str]]:
    """Returns (audits to run, audit types skipped by configuration)."""
    audits: List[MicroAudit] = [
        TechnicalSeoAudit(),
        PerformanceAudit(),
        OnPageSeoAudit(),
        ContentQualityAudit(),
        AuthorityTrustAudit(),
    ]
    skipped: List[str] = []

    if config.visual_mode in ("url_context", "both"):
        audits.append(VisualUrlContextAudit())
    else:
        skipped.append(VisualUrlContextAudit.audit_type)
    if config.visual_mode in ("rendered", "both"):
        audits.append(VisualScreenshotAudit())
    else:
        skipped.append(VisualScreenshotAudit.audit_type)

    if config.enable_codebase_peek:
        audits.append(CodebasePeekAudit())
    else:
        skipped.append(CodebasePeekAudit.audit_type)

    if config.enable_pdp and layer2.pdp is not None:
        audits.append(PdpAudit())
    else:
        skipped.append(PdpAudit.audit_type)

    return audits, skipped


def _deterministic_only(audit: MicroAudit, inputs: AuditInputs) -> List[MicroAuditFinding]:
    try:
        return audit.deterministic_findings(inputs)
    except Exception:
        logger.exception(f"{audit.audit_type}: deterministic rules raised")
        return []


async def _run_audit(audit: MicroAudit, inputs: AuditInputs, ctx: AuditContext, emitter: EventEmitter) -> MicroAuditResult:
    emitter.emit("layer3:audit", subject=audit.audit_type, status="started")
    try:
        result = await audit.run(inputs, ctx)
    except Exception as e:
        logger.exception(f"{audit.audit_type} audit raised")
        result = MicroAuditResult(
            audit_type=audit.audit_type,
            findings=_deterministic_only(audit, inputs),
            error=str(e) or e.__class__.__name__,
        )

    if result.error:
        emitter.emit("layer3:audit", subject=audit.audit_type, status="failed", message=result.error)
    else:
        emitter.emit("layer3:audit", subject=audit.audit_type, status="completed")
    for finding in result.findings:
        emitter.emit("layer3:finding", subject=audit.audit_type, data=finding.model_dump())
    return result


async def run_layer3_audits(
    layer1: Layer1Result,
    layer2: Layer2Result,
    config: Optional[MicroAuditConfig] = None,
    registry: Optional[ProviderRegistry] = None,
    fetcher: Optional[Fetcher] = None,
    pdp_html: Optional[str] = None,
    on_event: Optional[EventCallback] = None,
    archive: Optional[EvidenceStore] = None,
) -> Layer3Result:
    """
    Runs the configured micro-audits and merges their findings, highest
    priority first, capped per audit type. Every planned audit ends up in
    `completed_audits` or `errors`; unplanned ones are in `skipped_audits`.
    """
    cfg = config or MicroAuditConfig()
    ctx = AuditContext(registry or ProviderRegistry(), fetcher=fetcher, config=cfg, archive=archive)
    emitter = EventEmitter(on_event)

    with tracer.span("layer3.audits", span_type="CHAIN", inputs={"url": layer1.normalized_url.href}):
        start = time.monotonic()
        emitter.emit("layer3:start", message="Starting micro-audits")

        inputs = AuditInputs(
            layer1=layer1,
            layer2=layer2,
            content_preview=extract_content_preview(layer1.evidence.html.content, layer1.normalized_url.href),
            pdp_content_preview=extract_content_preview(pdp_html) if pdp_html else "",
        )
        audits, skipped = plan_audits(cfg, layer2)
        results = await asyncio.gather(*(_run_audit(a, inputs, ctx, emitter) for a in audits))

        layer3 = Layer3Result(skipped_audits=skipped)
        all_findings: List[MicroAuditFinding] = []
        for result in results:
            layer3.audits[result.audit_type] = result
            layer3.total_cost += result.cost
            all_findings.extend(result.findings)
            if result.error:
                layer3.errors.append(AuditError(audit=result.audit_type, error=result.error))
                if archive is not None:
                    archive.record_error(f"layer3-{result.audit_type}", result.error)
            else:
                layer3.completed_audits.append(result.audit_type)

        layer3.all_findings = limit_findings_per_audit(
            sort_findings_by_priority(all_findings), cfg.max_findings_per_audit
        )
        layer3.duration_ms = int((time.monotonic() - start) * 1000)

        tracer.trace_audits(
            completed=layer3.completed_audits,
            failed=[e.audit for e in layer3.errors],
            finding_count=len(layer3.all_findings),
            total_cost=layer3.total_cost,
        )
        emitter.emit(
            "layer3:complete",
            message="Micro-audits complete",
            data={
                "completed": layer3.completed_audits,
                "failed": [e.audit for e in layer3.errors],
                "skipped": skipped,
                "findings": len(layer3.all_findings),
                "total_cost": layer3.total_cost,
            },
        )
        logger.info(
            f"Layer 3: {len(layer3.completed_audits)} completed, {len(layer3.errors)} failed, "
            f"{len(skipped)} skipped, {len(layer3.all_findings)} findings"
        )
        return layer3
