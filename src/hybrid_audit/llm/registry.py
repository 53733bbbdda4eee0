"""Provider registry and per-audit provider assignments.

A registry is built once per process (or per test) and passed explicitly to
whatever needs to generate; there is no module-level registry.
"""

import asyncio
from typing import Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, ConfigDict

from ..config import Settings, get_settings
from ..log import get_logger
from .base import (
    AllProvidersFailed,
    BaseProvider,
    ConcurrencyUsage,
    GenerateRequest,
    GenerateResult,
    ProviderUnavailable,
)
from .gemini_provider import GeminiProvider
from .openai_provider import OpenAIProvider

logger = get_logger("registry")


class AuditProviderAssignment(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: str
    fallback: Optional[str] = None
    model: Optional[str] = None  # None: the provider's default model
    url_context: bool = False
    google_search: bool = False


AUDIT_PROVIDER_ASSIGNMENTS: Dict[str, AuditProviderAssignment] = {
    "technical-seo": AuditProviderAssignment(primary="gemini", fallback="openai", model="gemini-2.0-flash"),
    "performance": AuditProviderAssignment(primary="openai", fallback="gemini", model="gpt-4o"),
    "on-page-seo": AuditProviderAssignment(primary="gemini", fallback="openai", model="gemini-2.0-flash"),
    "content-quality": AuditProviderAssignment(primary="openai", fallback="gemini", model="gpt-4o"),
    "authority-trust": AuditProviderAssignment(primary="gemini", fallback="openai", model="gemini-2.0-flash"),
    "visual-url-context": AuditProviderAssignment(primary="gemini", model="gemini-2.0-flash", url_context=True),
    "visual-screenshot": AuditProviderAssignment(primary="openai", fallback="gemini", model="gpt-4o"),
    "codebase-peek": AuditProviderAssignment(primary="openai", fallback="gemini", model="gpt-4o"),
    "pdp": AuditProviderAssignment(primary="gemini", fallback="openai", model="gemini-2.0-flash"),
}

DEFAULT_ASSIGNMENT = AuditProviderAssignment(primary="gemini", fallback="openai", model="gemini-2.0-flash")


def get_audit_provider_assignment(
    audit_type: str,
    model_override: Optional[str] = None,
    provider_override: Optional[str] = None,
) -> AuditProviderAssignment:
    """
    Looks up the assignment for an audit type. A model override also
    switches the primary provider (gpt* -> openai, anything else -> gemini);
    a provider override becomes the primary with the assigned primary as
    its fallback.
    """
    assignment = AUDIT_PROVIDER_ASSIGNMENTS.get(audit_type, DEFAULT_ASSIGNMENT)

    if model_override:
        primary = "openai" if model_override.startswith("gpt") else "gemini"
        fallback = assignment.fallback
        if fallback == primary:
            fallback = assignment.primary
        assignment = assignment.model_copy(update={"primary": primary, "fallback": fallback, "model": model_override})

    if provider_override and provider_override != assignment.primary:
        same_family = (assignment.model or "").startswith("gpt") == (provider_override == "openai")
        assignment = assignment.model_copy(update={
            "primary": provider_override,
            "fallback": assignment.primary,
            "model": assignment.model if same_family else None,
        })

    return assignment


class ParallelOutcome(BaseModel):
    result: Optional[GenerateResult] = None
    error: Optional[str] = None


class ProviderRegistry:
    def __init__(
        self,
        providers: Iterable[BaseProvider] = (),
        default_provider: str = "gemini",
        enable_fallback: bool = True,
    ):
        self.providers: Dict[str, BaseProvider] = {p.name: p for p in providers}
        self.default_provider = default_provider
        self.enable_fallback = enable_fallback

    def register(self, provider: BaseProvider):
        self.providers[provider.name] = provider

    def get(self, name: str) -> Optional[BaseProvider]:
        return self.providers.get(name)

    def get_available_providers(self) -> List[str]:
        return [name for name, p in self.providers.items() if p.is_available()]

    def _candidates(self, preferred: Optional[str]) -> List[str]:
        first = preferred or self.default_provider
        order = [first] + [name for name in self.providers if name != first]
        return [name for name in order if name in self.providers and self.providers[name].is_available()]

    async def generate(self, request: GenerateRequest, preferred_provider: Optional[str] = None) -> GenerateResult:
        """
        Tries the preferred (or default) provider, then every other available
        provider in registration order. Fallback providers receive the request
        without its model so they use their own default. With fallback
        disabled the first failure is raised as-is.
        """
        candidates = self._candidates(preferred_provider)
        if not candidates:
            raise ProviderUnavailable("No providers available")

        first = candidates[0]
        errors: Dict[str, str] = {}
        for name in candidates:
            provider = self.providers[name]
            attempt = request if name == first else request.without_model()
            try:
                return await provider.generate_content(attempt)
            except Exception as e:
                errors[name] = str(e)
                if not self.enable_fallback:
                    raise
                logger.warning(f"Provider {name} failed, trying next: {e}")

        raise AllProvidersFailed(errors)

    async def generate_with(self, provider_name: str, request: GenerateRequest) -> GenerateResult:
        provider = self.providers.get(provider_name)
        if provider is None or not provider.is_available():
            raise ProviderUnavailable(f"Provider {provider_name} not available")
        return await provider.generate_content(request)

    async def generate_parallel(
        self,
        requests: List[GenerateRequest],
        preferred_provider: Optional[str] = None,
    ) -> List[ParallelOutcome]:
        async def run(req: GenerateRequest) -> ParallelOutcome:
            try:
                return ParallelOutcome(result=await self.generate(req, preferred_provider))
            except Exception as e:
                return ParallelOutcome(error=str(e))

        return list(await asyncio.gather(*(run(r) for r in requests)))

    def get_concurrency_status(self) -> Dict[str, ConcurrencyUsage]:
        return {name: p.get_concurrency_usage() for name, p in self.providers.items()}


def build_registry(settings: Optional[Settings] = None) -> ProviderRegistry:
    settings = settings or get_settings()
    providers: List[Union[GeminiProvider, OpenAIProvider]] = [
        GeminiProvider(
            api_key=settings.GEMINI_API_KEY,
            max_concurrent=settings.GEMINI_MAX_CONCURRENT,
            default_model=settings.GEMINI_DEFAULT_MODEL,
            timeout_s=settings.GEMINI_TIMEOUT_S,
        ),
        OpenAIProvider(
            api_key=settings.OPENAI_API_KEY,
            max_concurrent=settings.OPENAI_MAX_CONCURRENT,
            default_model=settings.OPENAI_DEFAULT_MODEL,
            timeout_s=settings.OPENAI_TIMEOUT_S,
        ),
    ]
    registry = ProviderRegistry(
        providers,
        default_provider=settings.DEFAULT_PROVIDER,
        enable_fallback=settings.ENABLE_PROVIDER_FALLBACK,
    )
    available = registry.get_available_providers()
    if available:
        logger.info(f"Generation providers available: {', '.join(available)}")
    else:
        logger.warning("No generation providers configured; audits will return deterministic findings only")
    return registry
