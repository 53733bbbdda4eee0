"""Redirect-chain resolution on top of the Fetcher.

Each hop is a single attempt (retries=0); hops are recorded as
"<status> → <location>" in the order they were followed.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel

from ..config import get_settings
from .fetch import Fetcher
from .url import resolve_url

settings = get_settings()

REDIRECT_STATUS_CODES = frozenset({301, 302, 307, 308})
MAX_HOPS_ERROR = "Max redirect hops exceeded"


class RedirectChainResult(BaseModel):
    final_url: str
    status: Optional[int] = None
    headers: Dict[str, str] = {}
    redirects: List[str] = []
    error: Optional[str] = None


async def resolve_redirect_chain(
    fetcher: Fetcher,
    url: str,
    max_hops: Optional[int] = None,
    timeout_ms: Optional[int] = None,
) -> RedirectChainResult:
    max_hops = settings.MAX_REDIRECT_HOPS if max_hops is None else max_hops
    redirects: List[str] = []
    current = url

    while len(redirects) < max_hops:
        outcome = await fetcher.fetch(current, timeout_ms=timeout_ms, retries=0)
        if outcome.payload is None:
            return RedirectChainResult(
                final_url=current,
                redirects=redirects,
                error=outcome.error or "Failed",
            )

        resp = outcome.payload
        location = resp.headers.get("location")
        if resp.status in REDIRECT_STATUS_CODES and location:
            redirects.append(f"{resp.status} → {location}")
            current = resolve_url(location, current)
            continue

        return RedirectChainResult(
            final_url=current,
            status=resp.status,
            headers=resp.headers,
            redirects=redirects,
        )

    return RedirectChainResult(final_url=current, redirects=redirects, error=MAX_HOPS_ERROR)
