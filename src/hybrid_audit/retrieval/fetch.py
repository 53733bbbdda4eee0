"""HTTP fetching with deadlines and bounded retry.

Every call returns a RetrievalOutcome; nothing in here raises to the caller.
Transient statuses and connection-level failures are retried with a linear
backoff (1s, 2s, ...), a deadline overrun is reported as "Timeout" and not
retried.
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional

import httpx
from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_result, stop_after_attempt, wait_incrementing

from ..config import get_settings
from ..log import get_logger

settings = get_settings()
logger = get_logger("fetch")

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})

# Matched case-insensitively against the error text of a failed attempt
RETRYABLE_ERROR_SIGNATURES = (
    "econnreset",
    "connection reset",
    "etimedout",
    "timed out",
    "econnrefused",
    "connection refused",
    "enotfound",
    "eai_again",
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "connection attempts failed",
    "network",
    "fetch failed",
)

Sleep = Callable[[float], Awaitable[None]]


class ErrorKind(str, Enum):
    NONE = "none"
    TIMEOUT = "timeout"
    TRANSIENT_HTTP = "transient_http"
    FATAL_HTTP = "fatal_http"
    NETWORK = "network"
    PARSE = "parse"


class FetchedResponse(BaseModel):
    status: int
    url: str
    headers: Dict[str, str] = {}
    text: str = ""
    content: bytes = b""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class RetrievalOutcome(BaseModel):
    payload: Optional[FetchedResponse] = None
    error: Optional[str] = None
    error_kind: ErrorKind = ErrorKind.NONE
    elapsed_ms: int = 0
    attempts: int = 0


def is_retryable_error(message: str) -> bool:
    lowered = message.lower()
    return any(sig in lowered for sig in RETRYABLE_ERROR_SIGNATURES)


def classify_status(status: int) -> ErrorKind:
    if status in TRANSIENT_STATUS_CODES:
        return ErrorKind.TRANSIENT_HTTP
    if status >= 400:
        return ErrorKind.FATAL_HTTP
    return ErrorKind.NONE


def _should_retry(outcome: RetrievalOutcome) -> bool:
    if outcome.payload is not None:
        return outcome.payload.status in TRANSIENT_STATUS_CODES
    if outcome.error_kind == ErrorKind.NETWORK:
        return is_retryable_error(outcome.error or "")
    return False


class Fetcher:
    """Async fetcher shared by every collector of one process.

    `transport` is handed to httpx (tests pass an httpx.MockTransport) and
    `sleep` is what the backoff awaits between attempts.
    """

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Sleep = asyncio.sleep,
        user_agent: Optional[str] = None,
    ):
        self.transport = transport
        self.sleep = sleep
        self.headers = {
            "User-Agent": user_agent or settings.USER_AGENT
        }

    def _client(self, follow_redirects: bool) -> httpx.AsyncClient:
        # The per-attempt deadline is enforced with asyncio.wait_for, not httpx.
        return httpx.AsyncClient(
            transport=self.transport,
            headers=self.headers,
            follow_redirects=follow_redirects,
            timeout=httpx.Timeout(None),
        )

    async def _attempt(self, method: str, url: str, timeout_ms: int, follow_redirects: bool) -> RetrievalOutcome:
        async with self._client(follow_redirects) as client:
            try:
                resp = await asyncio.wait_for(client.request(method, url), timeout=timeout_ms / 1000)
            except asyncio.TimeoutError:
                return RetrievalOutcome(error="Timeout", error_kind=ErrorKind.TIMEOUT)
            except httpx.DecodingError as e:
                return RetrievalOutcome(error=str(e) or "Failed to decode body", error_kind=ErrorKind.PARSE)
            except Exception as e:
                message = str(e) or e.__class__.__name__
                return RetrievalOutcome(error=message, error_kind=ErrorKind.NETWORK)

        try:
            text = resp.text if method != "HEAD" else ""
        except Exception as e:
            return RetrievalOutcome(error=str(e) or "Failed to read body", error_kind=ErrorKind.PARSE)

        payload = FetchedResponse(
            status=resp.status_code,
            url=str(resp.url),
            headers={k.lower(): v for k, v in resp.headers.items()},
            text=text,
            content=resp.content if method != "HEAD" else b"",
        )
        return RetrievalOutcome(payload=payload, error_kind=classify_status(resp.status_code))

    async def fetch(
        self,
        url: str,
        timeout_ms: Optional[int] = None,
        retries: Optional[int] = None,
        method: str = "GET",
        follow_redirects: bool = False,
    ) -> RetrievalOutcome:
        """
        Performs up to retries+1 attempts against `url`.
        The final outcome is returned as-is, including a transient status
        that survived the last attempt.
        """
        timeout_ms = settings.FETCH_TIMEOUT_MS if timeout_ms is None else timeout_ms
        retries = settings.FETCH_RETRIES if retries is None else retries
        start = time.monotonic()
        attempts = 0

        async def attempt() -> RetrievalOutcome:
            nonlocal attempts
            attempts += 1
            outcome = await self._attempt(method, url, timeout_ms, follow_redirects)
            if attempts <= retries and _should_retry(outcome):
                reason = outcome.error or f"HTTP {outcome.payload.status}"
                logger.warning(f"Retrying {method} {url} after attempt {attempts}: {reason}")
            return outcome

        retrying = AsyncRetrying(
            stop=stop_after_attempt(retries + 1),
            wait=wait_incrementing(start=1, increment=1),
            retry=retry_if_result(_should_retry),
            retry_error_callback=lambda state: state.outcome.result(),
            sleep=self.sleep,
        )
        outcome = await retrying(attempt)

        if outcome.payload is None and not outcome.error:
            outcome.error = "Max retries exceeded"
            outcome.error_kind = ErrorKind.NETWORK
        outcome.attempts = attempts
        outcome.elapsed_ms = int((time.monotonic() - start) * 1000)
        return outcome
