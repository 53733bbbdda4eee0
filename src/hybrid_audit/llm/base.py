"""Generation provider contract.

GenerateRequest/GenerateResult are the only shapes that cross the provider
boundary. Every provider is a BaseProvider subclass: the base class owns the
concurrency permit, timing, cost and provider labelling, and subclasses only
implement `_call`.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Deque, Dict, List, Literal, Optional

from pydantic import BaseModel

from ..log import get_logger
from ..mlops.tracing import tracer

logger = get_logger("providers")

# USD per 1k tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    "gemini-2.0-flash": {"input": 0.0001, "output": 0.0004},
    "gemini-2.0-flash-exp": {"input": 0.0001, "output": 0.0004},
    "gemini-2.0-pro-exp-02-05": {"input": 0.00025, "output": 0.001},
    "gemini-3-pro-preview": {"input": 0.00025, "output": 0.001},
    "gpt-4o": {"input": 0.0025, "output": 0.01},
    "gpt-4o-mini": {"input": 0.00015, "output": 0.0006},
    "gpt-4-turbo": {"input": 0.01, "output": 0.03},
    "gpt-3.5-turbo": {"input": 0.0005, "output": 0.0015},
    "o1": {"input": 0.015, "output": 0.06},
    "o1-mini": {"input": 0.003, "output": 0.012},
    "default": {"input": 0.001, "output": 0.002},
}


class ProviderError(Exception):
    """A provider call failed."""


class ProviderUnavailable(ProviderError):
    """The provider is not configured (e.g. no API key) or not registered."""


class UnsupportedCapability(ProviderError):
    """The request asks for a tool the provider cannot honour."""


class AllProvidersFailed(ProviderError):
    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        detail = "; ".join(f"{name}: {err}" for name, err in errors.items())
        super().__init__(f"All providers failed: {detail}" if detail else "All providers failed")


class GenerateOptions(BaseModel):
    model: Optional[str] = None
    system_instruction: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    response_format: Literal["text", "json"] = "text"
    response_schema: Optional[Dict[str, Any]] = None


class GenerateTools(BaseModel):
    google_search: bool = False
    url_context: bool = False

    def any(self) -> bool:
        return self.google_search or self.url_context


class GenerateRequest(BaseModel):
    prompt: str
    image: Optional[str] = None  # base64 payload
    image_mime_type: str = "image/jpeg"
    options: GenerateOptions = GenerateOptions()
    tools: GenerateTools = GenerateTools()

    def without_model(self) -> "GenerateRequest":
        """Copy of the request that lets the receiving provider pick its own model."""
        return self.model_copy(update={"options": self.options.model_copy(update={"model": None})})


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerateResult(BaseModel):
    text: str
    usage: Usage = Usage()
    model: str
    provider: str
    duration_ms: int = 0
    cost: float = 0.0
    url_context_metadata: Optional[List[Dict[str, Any]]] = None


class ProviderOutput(BaseModel):
    """What a concrete provider returns from `_call`; the base class completes it."""
    text: str
    usage: Usage = Usage()
    model: str
    url_context_metadata: Optional[List[Dict[str, Any]]] = None


class ConcurrencyUsage(BaseModel):
    active: int
    max: int


def _pricing_for(model: str) -> Dict[str, float]:
    if model in MODEL_PRICING:
        return MODEL_PRICING[model]
    # dated snapshots such as gpt-4o-2024-08-06 price as their base model
    prefixes = [name for name in MODEL_PRICING if name != "default" and model.startswith(f"{name}-")]
    if prefixes:
        return MODEL_PRICING[max(prefixes, key=len)]
    return MODEL_PRICING["default"]


def calculate_cost(model: str, prompt_tokens: int, completion_tokens: int) -> float:
    pricing = _pricing_for(model)
    return (prompt_tokens / 1000) * pricing["input"] + (completion_tokens / 1000) * pricing["output"]


class ProviderSemaphore:
    """
    Counting semaphore with FIFO hand-off.

    release() gives the permit straight to the oldest waiter instead of
    returning it to the pool, so a newcomer can never overtake a queued
    caller. A waiter cancelled while queued leaves the queue; one cancelled
    after being handed a permit passes it on.
    """

    def __init__(self, permits: int):
        if permits < 1:
            raise ValueError("permits must be >= 1")
        self.max_permits = permits
        self.available = permits
        self._waiters: Deque[asyncio.Future] = deque()

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    def get_active(self) -> int:
        return self.max_permits - self.available + len(self._waiters)

    async def acquire(self):
        if self.available > 0 and not self._waiters:
            self.available -= 1
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter in self._waiters:
                self._waiters.remove(waiter)
            elif waiter.done() and not waiter.cancelled():
                # Permit was handed over just before cancellation
                self.release()
            raise

    def release(self):
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        if self.available < self.max_permits:
            self.available += 1

    async def __aenter__(self):
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()


class BaseProvider(ABC):
    """
    One generation backend. Subclasses set `name`/`default_model` and
    implement `is_available` and `_call`.
    """

    name: str = "base"
    default_model: str = ""
    supports_tools: bool = False

    def __init__(self, max_concurrent: int, timeout_s: float):
        self.semaphore = ProviderSemaphore(max_concurrent)
        self.timeout_s = timeout_s

    @abstractmethod
    def is_available(self) -> bool:
        ...

    @abstractmethod
    async def _call(self, request: GenerateRequest, model: str) -> ProviderOutput:
        ...

    def get_concurrency_usage(self) -> ConcurrencyUsage:
        return ConcurrencyUsage(active=self.semaphore.get_active(), max=self.semaphore.max_permits)

    async def generate_content(self, request: GenerateRequest) -> GenerateResult:
        if not self.is_available():
            raise ProviderUnavailable(f"Provider {self.name} not available")
        if request.tools.any() and not self.supports_tools:
            raise UnsupportedCapability(f"Provider {self.name} does not support tools")

        model = request.options.model or self.default_model
        async with self.semaphore:
            start = time.monotonic()
            with tracer.span(
                "provider.generate",
                span_type="LLM",
                attributes={"provider": self.name, "model": model},
            ):
                try:
                    output = await asyncio.wait_for(self._call(request, model), timeout=self.timeout_s)
                except asyncio.TimeoutError:
                    raise ProviderError(f"{self.name} request timed out after {self.timeout_s}s")
                tracer.trace_llm_call(
                    model=output.model,
                    prompt=request.prompt,
                    tokens={
                        "prompt_tokens": output.usage.prompt_tokens,
                        "completion_tokens": output.usage.completion_tokens,
                    },
                )
            duration_ms = int((time.monotonic() - start) * 1000)

        return GenerateResult(
            text=output.text,
            usage=output.usage,
            model=output.model,
            provider=self.name,
            duration_ms=duration_ms,
            cost=calculate_cost(model, output.usage.prompt_tokens, output.usage.completion_tokens),
            url_context_metadata=output.url_context_metadata,
        )
