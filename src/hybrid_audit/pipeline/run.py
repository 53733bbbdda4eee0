import time
import uuid
from typing import Optional, Tuple

from ..llm.registry import ProviderRegistry
from ..log import get_logger
from ..mlops.tracing import tracer
from ..retrieval.extract import extract_page_snapshot
from ..retrieval.fetch import Fetcher
from ..retrieval.signals import fetch_html
from ..retrieval.url import normalize_url
from ..schemas.evidence import utc_now_iso
from ..schemas.report import AuditReport, AuditRequest, Layer1Result
from ..schemas.snapshot import Layer2Result
from ..store.archive import EvidenceRepository, EvidenceStore
from .events import EventCallback
from .layer1 import run_layer1_collectors
from .layer3 import run_layer3_audits

logger = get_logger("pipeline")


async def run_layer2_extraction(
    layer1: Layer1Result,
    fetcher: Fetcher,
    pdp_url: Optional[str] = None,
    html_length: int = 50000,
) -> Tuple[Layer2Result, Optional[str]]:
    """Snapshots the homepage (and the product page, if given). Returns the PDP HTML too."""
    start = time.monotonic()
    homepage = extract_page_snapshot(layer1.evidence.html.content, layer1.normalized_url.href)

    pdp = None
    pdp_html = None
    if pdp_url:
        target = normalize_url(pdp_url).href
        evidence = await fetch_html(fetcher, target, target, max_length=html_length)
        if evidence.error or not evidence.content:
            # a 404 carries no error but is just as unusable
            logger.warning(f"PDP fetch failed for {target}: {evidence.error or evidence.status}")
        else:
            pdp_html = evidence.content
            pdp = extract_page_snapshot(pdp_html, target).snapshot

    layer2 = Layer2Result(
        homepage=homepage.snapshot,
        homepage_warnings=homepage.warnings,
        pdp=pdp,
        duration_ms=int((time.monotonic() - start) * 1000),
    )
    return layer2, pdp_html


class AuditPipeline:
    """
    Wires layers 1-3 for one audit and archives everything it sees.
    `run` always returns a report; a failure is recorded on `report.error`.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        fetcher: Optional[Fetcher] = None,
        repository: Optional[EvidenceRepository] = None,
    ):
        self.registry = registry
        self.fetcher = fetcher or Fetcher()
        self.repository = repository if repository is not None else EvidenceRepository()

    def _archive_layer1(self, archive: EvidenceStore, layer1: Layer1Result):
        for name in ("robots", "sitemap", "headers", "html"):
            archive.store_signal(name, getattr(layer1.evidence, name))
        archive.store_signal("securityHeaders", layer1.security_headers)
        if layer1.page_speed is not None:
            archive.store_signal("pageSpeed", layer1.page_speed)
        archive.store_signal("crawl", layer1.crawl_data)
        for error in layer1.errors:
            archive.record_error(f"layer1-{error.collector}", error.message)

    async def run(
        self,
        request: AuditRequest,
        audit_id: Optional[str] = None,
        on_event: Optional[EventCallback] = None,
    ) -> AuditReport:
        audit_id = audit_id or uuid.uuid4().hex
        report = AuditReport(audit_id=audit_id, url=request.url)
        archive = self.repository.create(audit_id, request.url)
        start = time.monotonic()
        logger.info(f"Starting audit {audit_id} for {request.url}")

        with tracer.span("audit.run", span_type="CHAIN", inputs={"url": request.url, "audit_id": audit_id}):
            try:
                layer1 = await run_layer1_collectors(request.url, request.layer1, self.fetcher, on_event)
                report.layer1 = layer1
                report.explicit_gaps = list(layer1.explicit_gaps)
                self._archive_layer1(archive, layer1)

                layer2, pdp_html = await run_layer2_extraction(
                    layer1, self.fetcher, request.pdp_url, request.layer1.limits.html_length
                )
                report.layer2 = layer2
                archive.store_signal("snapshot", layer2)

                layer3 = await run_layer3_audits(
                    layer1,
                    layer2,
                    request.micro_audits,
                    self.registry,
                    fetcher=self.fetcher,
                    pdp_html=pdp_html,
                    on_event=on_event,
                    archive=archive,
                )
                report.layer3 = layer3
                report.findings = layer3.all_findings
            except Exception as e:
                logger.exception(f"Audit {audit_id} failed")
                report.error = str(e) or e.__class__.__name__
                archive.record_error("pipeline", report.error)

        report.completed_at = utc_now_iso()
        report.duration_ms = int((time.monotonic() - start) * 1000)
        archive.store_final_report(report)
        logger.info(f"Audit {audit_id} finished in {report.duration_ms}ms with {len(report.findings)} findings")
        return report
