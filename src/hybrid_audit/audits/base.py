"""Shared machinery for micro-audits.

A micro-audit is a MicroAudit subclass: deterministic rules over already
extracted page data plus (optionally) one generation call whose JSON array
output is parsed into findings. `run` never raises for a provider failure;
it returns the deterministic findings with `error` set.
"""

import json
import re
import time
from abc import ABC
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from ..llm.base import AllProvidersFailed, GenerateOptions, GenerateRequest, GenerateResult, GenerateTools
from ..llm.prompts import load_system_instruction, render_prompt
from ..llm.registry import AuditProviderAssignment, ProviderRegistry, get_audit_provider_assignment
from ..log import get_logger
from ..retrieval.fetch import Fetcher
from ..schemas.findings import MicroAuditConfig, MicroAuditFinding, MicroAuditResult
from ..schemas.report import Layer1Result
from ..schemas.snapshot import Layer2Result, PageSnapshot
from ..store.archive import EvidenceStore

logger = get_logger("audits")

JSON_ARRAY_RE = re.compile(r'\[[\s\S]*\]')
PRIORITIES = ("critical", "high", "medium", "low")


class AuditInputs(BaseModel):
    layer1: Layer1Result
    layer2: Layer2Result
    content_preview: str = ""
    pdp_content_preview: str = ""

    @property
    def homepage(self) -> PageSnapshot:
        return self.layer2.homepage


class AuditContext:
    """Collaborators handed to every audit of one Layer-3 run."""

    def __init__(
        self,
        registry: ProviderRegistry,
        fetcher: Optional[Fetcher] = None,
        config: Optional[MicroAuditConfig] = None,
        archive: Optional[EvidenceStore] = None,
    ):
        self.registry = registry
        self.fetcher = fetcher or Fetcher()
        self.config = config or MicroAuditConfig()
        self.archive = archive


class ParsedFindings(BaseModel):
    findings: List[MicroAuditFinding] = []
    dropped: List[str] = []  # one reason per dropped item
    error: Optional[str] = None


def normalize_priority(priority: Any) -> str:
    normalized = str(priority or "medium").lower()
    return normalized if normalized in PRIORITIES else "medium"


def parse_findings(text: str, audit_type: str, id_prefix: str, category: str) -> ParsedFindings:
    """
    Decodes the first JSON array in `text` into findings. Anything that is
    not an object is dropped; a missing or undecodable array yields no
    findings and an error message instead of an exception.
    """
    match = JSON_ARRAY_RE.search((text or "").strip())
    if not match:
        return ParsedFindings(error="No JSON array found in response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        return ParsedFindings(error=f"Invalid JSON array: {e}")
    if not isinstance(parsed, list):
        return ParsedFindings(error="Parsed result is not an array")

    result = ParsedFindings()
    for index, item in enumerate(parsed):
        if not isinstance(item, dict):
            result.dropped.append("not an object")
            continue
        result.findings.append(MicroAuditFinding(
            id=f"{id_prefix}-llm-{index + 1}",
            finding=str(item.get("finding") or "Unknown finding"),
            evidence=str(item.get("evidence") or ""),
            why_it_matters=str(item.get("whyItMatters") or item.get("why_it_matters") or ""),
            fix=str(item.get("fix") or ""),
            priority=normalize_priority(item.get("priority")),
            category=category,
            source=audit_type,
        ))
    return result


async def generate_with_assignment(
    registry: ProviderRegistry,
    assignment: AuditProviderAssignment,
    request: GenerateRequest,
    audit_type: str,
) -> GenerateResult:
    """
    Calls the assigned primary provider; on failure retries once on the
    assigned fallback (with the fallback's own default model). Raises
    AllProvidersFailed when both fail, or the primary error when there is
    no fallback.
    """
    try:
        return await registry.generate_with(assignment.primary, request)
    except Exception as primary_error:
        if not assignment.fallback:
            raise
        logger.warning(f"{audit_type} audit: {assignment.primary} failed, trying {assignment.fallback}: {primary_error}")
        try:
            return await registry.generate_with(assignment.fallback, request.without_model())
        except Exception as fallback_error:
            raise AllProvidersFailed({
                assignment.primary: str(primary_error),
                assignment.fallback: str(fallback_error),
            }) from fallback_error


class MicroAudit(ABC):
    audit_type: str = ""
    prompt_name: str = ""
    id_prefix: str = ""
    category: str = "seo"
    temperature: float = 0.3

    def deterministic_findings(self, inputs: AuditInputs) -> List[MicroAuditFinding]:
        return []

    def prompt_variables(self, inputs: AuditInputs) -> Dict[str, Any]:
        return {}

    def finding(self, number: Any, finding: str, evidence: str, why: str, fix: str, priority: str,
                category: Optional[str] = None) -> MicroAuditFinding:
        return MicroAuditFinding(
            id=f"{self.id_prefix}-det-{number}",
            finding=finding,
            evidence=evidence,
            why_it_matters=why,
            fix=fix,
            priority=priority,
            category=category or self.category,
            source=self.audit_type,
        )

    def assignment(self, ctx: AuditContext) -> AuditProviderAssignment:
        return get_audit_provider_assignment(
            self.audit_type,
            provider_override=ctx.config.provider_overrides.get(self.audit_type),
        )

    def build_request(self, inputs: AuditInputs, assignment: AuditProviderAssignment, image: Optional[str] = None) -> GenerateRequest:
        return GenerateRequest(
            prompt=render_prompt(self.prompt_name, self.prompt_variables(inputs)),
            image=image,
            options=GenerateOptions(
                model=assignment.model,
                system_instruction=load_system_instruction(self.prompt_name),
                response_format="json",
                temperature=self.temperature,
            ),
            tools=GenerateTools(url_context=assignment.url_context, google_search=assignment.google_search),
        )

    def _result(self, start: float, assignment: AuditProviderAssignment, **fields) -> MicroAuditResult:
        fields.setdefault("provider", assignment.primary)
        fields.setdefault("model", assignment.model)
        return MicroAuditResult(
            audit_type=self.audit_type,
            duration_ms=int((time.monotonic() - start) * 1000),
            **fields,
        )

    async def run(self, inputs: AuditInputs, ctx: AuditContext, image: Optional[str] = None) -> MicroAuditResult:
        start = time.monotonic()
        assignment = self.assignment(ctx)
        deterministic = self.deterministic_findings(inputs)

        try:
            request = self.build_request(inputs, assignment, image)
            result = await generate_with_assignment(ctx.registry, assignment, request, self.audit_type)
        except Exception as e:
            logger.warning(f"{self.audit_type} audit: generation failed: {e}")
            return self._result(start, assignment, findings=deterministic, raw_output="", error=str(e))

        parsed = parse_findings(result.text, self.audit_type, self.id_prefix, self.category)
        if parsed.error:
            logger.warning(f"{self.audit_type} audit: {parsed.error}")
        self._archive(ctx, result, parsed)

        return self._result(
            start,
            assignment,
            findings=deterministic + parsed.findings,
            raw_output=result.text,
            provider=result.provider,
            model=result.model,
            cost=result.cost,
        )

    def _archive(self, ctx: AuditContext, result: GenerateResult, parsed: ParsedFindings):
        if ctx.archive is None:
            return
        ctx.archive.store_stage_output(
            self.audit_type,
            result.text,
            provider=result.provider,
            model=result.model,
            metadata={"duration_ms": result.duration_ms, "cost": result.cost, **result.usage.model_dump()},
        )
        ctx.archive.record_parsed_finding(len(parsed.findings))
        for reason in parsed.dropped:
            ctx.archive.record_dropped_finding(reason)
        if parsed.error:
            ctx.archive.record_parse_error(f"{self.audit_type}: {parsed.error}")
