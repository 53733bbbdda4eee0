"""Signal collectors: robots.txt, sitemap, response headers, homepage HTML.

Collectors never raise. A 404 is a valid absence (status "404", empty
content, no error), any other non-2xx is recorded as "HTTP <status>", and
bodies are silently truncated to the caller's limit.
"""

import asyncio
from typing import Any, Dict, Optional

from .fetch import ErrorKind, Fetcher, RetrievalOutcome
from .redirects import resolve_redirect_chain
from .url import InvalidUrlError, normalize_url
from ..schemas.evidence import HeaderEvidence, HtmlEvidence, RobotsEvidence, SitemapEvidence

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_RETRIES = 1


def _normalized(target_url: str) -> str:
    try:
        return normalize_url(target_url).href
    except InvalidUrlError:
        return target_url


def _text_fields(outcome: RetrievalOutcome, max_length: int) -> Dict[str, Any]:
    if outcome.payload is None:
        error = outcome.error or "Failed"
        status = "Parse Error" if outcome.error_kind == ErrorKind.PARSE else error
        return {"content": "", "status": status, "error": error}

    resp = outcome.payload
    if resp.status == 404:
        return {"content": "", "status": "404"}
    if not resp.ok:
        return {"content": "", "status": str(resp.status), "error": f"HTTP {resp.status}"}
    return {
        "content": resp.text[:max_length],
        "content_bytes": len(resp.content) or len(resp.text.encode()),
        "status": str(resp.status),
    }


async def _fetch_text(fetcher: Fetcher, url: str, timeout_ms: int, retries: int) -> RetrievalOutcome:
    return await fetcher.fetch(url, timeout_ms=timeout_ms, retries=retries, follow_redirects=True)


async def fetch_robots(
    fetcher: Fetcher,
    robots_url: str,
    target_url: str,
    max_length: int = 5000,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    retries: int = DEFAULT_RETRIES,
) -> RobotsEvidence:
    outcome = await _fetch_text(fetcher, robots_url, timeout_ms, retries)
    return RobotsEvidence(
        url=target_url,
        normalized_url=_normalized(target_url),
        **_text_fields(outcome, max_length),
    )


async def fetch_sitemap(
    fetcher: Fetcher,
    sitemap_url: str,
    target_url: str,
    max_length: int = 10000,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    retries: int = DEFAULT_RETRIES,
) -> SitemapEvidence:
    outcome = await _fetch_text(fetcher, sitemap_url, timeout_ms, retries)
    return SitemapEvidence(
        url=target_url,
        normalized_url=_normalized(target_url),
        sitemap_url=sitemap_url,
        **_text_fields(outcome, max_length),
    )


async def fetch_html(
    fetcher: Fetcher,
    page_url: str,
    target_url: str,
    max_length: int = 50000,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    retries: int = DEFAULT_RETRIES,
) -> HtmlEvidence:
    outcome = await _fetch_text(fetcher, page_url, timeout_ms, retries)
    return HtmlEvidence(
        url=target_url,
        normalized_url=_normalized(target_url),
        **_text_fields(outcome, max_length),
    )


async def fetch_headers(
    fetcher: Fetcher,
    https_url: str,
    http_url: str,
    target_url: str,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    max_hops: Optional[int] = None,
) -> HeaderEvidence:
    """
    Probes the HTTPS and HTTP variants of the target, each through its own
    redirect chain. The recorded chain is the HTTPS hops followed by the
    HTTP hops; the error is the first one encountered, HTTPS first.
    """
    https_chain, http_chain = await asyncio.gather(
        resolve_redirect_chain(fetcher, https_url, max_hops=max_hops, timeout_ms=timeout_ms),
        resolve_redirect_chain(fetcher, http_url, max_hops=max_hops, timeout_ms=timeout_ms),
    )
    error = https_chain.error or http_chain.error
    if https_chain.status is not None:
        status = str(https_chain.status)
    else:
        status = https_chain.error or "Failed"

    return HeaderEvidence(
        url=target_url,
        normalized_url=_normalized(target_url),
        status=status,
        https_headers=https_chain.headers,
        http_headers=http_chain.headers,
        redirect_chain=https_chain.redirects + http_chain.redirects,
        error=error,
    )
