import time
from typing import Any, Dict, List, Optional

from ..collectors.pagespeed import PageSpeedResult, format_cwv_value, get_cwv_rating
from ..llm.prompts import format_opportunities_for_prompt
from ..schemas.findings import MicroAuditFinding, MicroAuditResult
from .base import AuditContext, AuditInputs, MicroAudit

NO_PAGESPEED_DATA = "No PageSpeed data available"


class PerformanceAudit(MicroAudit):
    """
    Core Web Vitals review. Without usable PageSpeed data no generation call
    is made: the audit reports the gap as its error (with a finding saying
    so when PSI returned an error).
    """

    audit_type = "performance"
    prompt_name = "performance"
    id_prefix = "perf"
    category = "performance"

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        psi = inputs.layer1.page_speed
        cwv = psi.core_web_vitals
        return {
            "lcp": format_cwv_value("lcp", cwv.lcp),
            "inp": format_cwv_value("inp", cwv.inp),
            "cls": format_cwv_value("cls", cwv.cls),
            "ttfb": format_cwv_value("ttfb", cwv.ttfb),
            "fcp": format_cwv_value("fcp", cwv.fcp),
            "performanceScore": psi.performance_score if psi.performance_score is not None else "N/A",
            "dataSource": psi.data_source,
            "opportunities": format_opportunities_for_prompt(psi.opportunities),
        }

    def deterministic_findings(self, inputs: AuditInputs) -> List[MicroAuditFinding]:
        psi = inputs.layer1.page_speed
        if psi is None or psi.error:
            return []
        return pagespeed_findings(self, psi)

    async def run(self, inputs: AuditInputs, ctx: AuditContext, image: Optional[str] = None) -> MicroAuditResult:
        psi = inputs.layer1.page_speed
        if psi is not None and not psi.error:
            return await super().run(inputs, ctx)

        start = time.monotonic()
        findings = []
        if psi is not None:
            findings.append(self.finding(
                1, "Performance data unavailable",
                f"PageSpeed Insights error: {psi.error}",
                "Cannot assess Core Web Vitals without performance data",
                "Ensure the page is publicly accessible and try again",
                "medium",
                category="technical",
            ))
        return self._result(
            start,
            self.assignment(ctx),
            findings=findings,
            raw_output="",
            error=(psi.error if psi is not None else None) or NO_PAGESPEED_DATA,
        )


def pagespeed_findings(audit: MicroAudit, psi: PageSpeedResult) -> List[MicroAuditFinding]:
    cwv = psi.core_web_vitals
    findings = []

    lcp = get_cwv_rating("lcp", cwv.lcp)
    if lcp == "poor":
        findings.append(audit.finding(
            "lcp", "Largest Contentful Paint (LCP) is poor",
            f"LCP: {format_cwv_value('lcp', cwv.lcp)} (threshold: < 2.5s good, < 4s needs improvement)",
            "Poor LCP indicates slow loading of the main content, frustrating users and hurting rankings",
            "Optimize images, use CDN, reduce server response time, remove render-blocking resources",
            "critical",
        ))
    elif lcp == "needs-improvement":
        findings.append(audit.finding(
            "lcp", "Largest Contentful Paint (LCP) needs improvement",
            f"LCP: {format_cwv_value('lcp', cwv.lcp)} (threshold: < 2.5s good)",
            "LCP is close to the poor threshold, may affect user experience on slower connections",
            "Optimize largest content element loading, consider preloading critical resources",
            "high",
        ))

    if get_cwv_rating("inp", cwv.inp) == "poor":
        findings.append(audit.finding(
            "inp", "Interaction to Next Paint (INP) is poor",
            f"INP: {format_cwv_value('inp', cwv.inp)} (threshold: < 200ms good, < 500ms needs improvement)",
            "Poor INP means interactions feel sluggish, leading to user frustration",
            "Reduce JavaScript execution time, break up long tasks, optimize event handlers",
            "critical",
        ))

    if get_cwv_rating("cls", cwv.cls) == "poor":
        findings.append(audit.finding(
            "cls", "Cumulative Layout Shift (CLS) is poor",
            f"CLS: {format_cwv_value('cls', cwv.cls)} (threshold: < 0.1 good, < 0.25 needs improvement)",
            "High CLS causes content to jump unexpectedly, frustrating users and hurting conversions",
            "Set explicit dimensions on images/videos, avoid inserting content above existing content",
            "high",
        ))

    if get_cwv_rating("ttfb", cwv.ttfb) == "poor":
        findings.append(audit.finding(
            "ttfb", "Time to First Byte (TTFB) is poor",
            f"TTFB: {format_cwv_value('ttfb', cwv.ttfb)} (threshold: < 800ms good)",
            "Slow server response delays everything else, impacting all other metrics",
            "Optimize server configuration, use caching, consider CDN, reduce database queries",
            "high",
        ))

    if psi.performance_score is not None and psi.performance_score < 50:
        findings.append(audit.finding(
            "score", "Overall performance score is poor",
            f"Lighthouse Performance Score: {psi.performance_score}/100",
            "Low performance scores correlate with higher bounce rates and lower conversions",
            "Address individual metric issues and implement performance best practices",
            "high",
        ))

    return findings
