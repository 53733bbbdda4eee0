"""Layer 1: concurrent evidence collection.

The four base collectors (robots, sitemap, headers, html) run concurrently,
each timed on its own. Security scoring, PageSpeed Insights and the shallow
crawl follow; the crawl reuses the robots/sitemap/homepage bodies already
fetched. Failures become `errors` entries (plus `explicit_gaps` where a
signal is knowingly absent) and never stop the other collectors.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional, Tuple

from ..collectors.pagespeed import PageSpeedResult, collect_pagespeed
from ..collectors.security_headers import analyze_security_headers, collect_security_headers
from ..collectors.shallow_crawl import CrawlConfig, ShallowCrawlResult, collect_shallow_crawl
from ..config import get_settings
from ..log import get_logger
from ..mlops.tracing import tracer
from ..retrieval.fetch import Fetcher
from ..retrieval.signals import fetch_headers, fetch_html, fetch_robots, fetch_sitemap
from ..retrieval.url import build_audit_urls, normalize_url
from ..schemas.evidence import EvidenceBundle, HeaderEvidence, HtmlEvidence, RobotsEvidence, SitemapEvidence
from ..schemas.report import CRAWL_DEPTH_SETTINGS, CollectorError, Layer1Config, Layer1Result, Layer1Timings
from .events import EventCallback, EventEmitter

logger = get_logger("layer1")
settings = get_settings()

SITEMAP_GAP = "Sitemap not available or could not be parsed"
PSI_FAILED_GAP = "PageSpeed Insights collection failed"
PSI_DISABLED_GAP = "PageSpeed Insights collection disabled"


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


async def _timed(
    name: str,
    run: Callable[[], Awaitable[Any]],
    on_failure: Callable[[str], Any],
    emitter: EventEmitter,
) -> Tuple[Any, int]:
    """
    Runs one collector and returns (result, duration_ms). An exception is
    turned into `on_failure(message)` so the caller always gets a result.
    """
    emitter.emit("layer1:collector", subject=name, status="started")
    start = time.monotonic()
    try:
        result = await run()
        error = getattr(result, "error", None)
    except Exception as e:
        logger.exception(f"Collector {name} raised")
        error = str(e) or e.__class__.__name__
        result = on_failure(error)
    duration = _elapsed_ms(start)

    if error:
        logger.warning(f"Collector {name} failed: {error}")
        emitter.emit("layer1:collector", subject=name, status="failed", message=error)
    else:
        emitter.emit("layer1:collector", subject=name, status="completed", data={"duration_ms": duration})
    return result, duration


async def run_layer1_collectors(
    url: str,
    config: Optional[Layer1Config] = None,
    fetcher: Optional[Fetcher] = None,
    on_event: Optional[EventCallback] = None,
) -> Layer1Result:
    """
    Collects every Layer-1 signal for `url`. Raises InvalidUrlError for an
    unusable URL before anything is fetched; after that it never raises.
    Events are a side channel: the result is the same with or without them.
    """
    cfg = config or Layer1Config()
    fetcher = fetcher or Fetcher()
    emitter = EventEmitter(on_event)

    normalized = normalize_url(url)
    urls = build_audit_urls(normalized)
    target = normalized.href

    with tracer.span("layer1.collect", span_type="RETRIEVER", inputs={"url": target}):
        start = time.monotonic()
        emitter.emit("layer1:start", subject=target, message="Starting Layer 1 collection")

        def failed(evidence_cls, **extra):
            return lambda message: evidence_cls(
                url=target, normalized_url=target, status=message, error=message, **extra
            )

        (robots, t_robots), (sitemap, t_sitemap), (headers, t_headers), (html, t_html) = await asyncio.gather(
            _timed(
                "robots",
                lambda: fetch_robots(fetcher, urls.robots, target, cfg.limits.robots_length, cfg.timeout_ms),
                failed(RobotsEvidence),
                emitter,
            ),
            _timed(
                "sitemap",
                lambda: fetch_sitemap(fetcher, urls.sitemap, target, cfg.limits.sitemap_length, cfg.timeout_ms),
                failed(SitemapEvidence, sitemap_url=urls.sitemap),
                emitter,
            ),
            _timed(
                "headers",
                lambda: fetch_headers(fetcher, urls.https_head, urls.http_head, target, cfg.timeout_ms),
                failed(HeaderEvidence),
                emitter,
            ),
            _timed(
                "html",
                lambda: fetch_html(fetcher, urls.https_get, target, cfg.limits.html_length, cfg.timeout_ms),
                failed(HtmlEvidence),
                emitter,
            ),
        )

        evidence = EvidenceBundle(robots=robots, sitemap=sitemap, headers=headers, html=html)
        timings = Layer1Timings(robots=t_robots, sitemap=t_sitemap, headers=t_headers, html=t_html)
        errors = []
        gaps = []

        for name, record in (("robots", robots), ("sitemap", sitemap), ("headers", headers), ("html", html)):
            if record.error:
                errors.append(CollectorError(collector=name, message=record.error))
        if sitemap.error:
            gaps.append(SITEMAP_GAP)

        # Secondary derivations
        is_https = normalized.scheme == "https"
        security_start = time.monotonic()
        if cfg.security_scope == "full" and not headers.https_headers:
            security_headers = await collect_security_headers(fetcher, target, cfg.timeout_ms)
        else:
            security_headers = analyze_security_headers(headers.https_headers, is_https)
        timings.security_headers = _elapsed_ms(security_start)
        if security_headers.error:
            errors.append(CollectorError(collector="securityHeaders", message=security_headers.error))

        max_pages, max_depth, check_status = CRAWL_DEPTH_SETTINGS[cfg.crawl_depth]
        crawl_config = CrawlConfig(
            max_pages=max_pages,
            max_depth=max_depth,
            timeout_ms=cfg.timeout_ms,
            check_link_status=check_status,
        )

        async def pagespeed() -> Tuple[Optional[PageSpeedResult], Optional[int]]:
            if not cfg.psi_enabled:
                gaps.append(PSI_DISABLED_GAP)
                return None, None
            emitter.emit("layer1:collector", subject="pageSpeed", status="started")
            psi_start = time.monotonic()
            try:
                result = await collect_pagespeed(fetcher, target, cfg.psi_api_key or settings.PSI_API_KEY or None)
            except Exception as e:
                logger.exception("PageSpeed Insights collector raised")
                message = str(e) or e.__class__.__name__
                errors.append(CollectorError(collector="pageSpeed", message=message))
                gaps.append(PSI_FAILED_GAP)
                emitter.emit("layer1:collector", subject="pageSpeed", status="failed", message=message)
                return PageSpeedResult(error=message), _elapsed_ms(psi_start)
            if result.error:
                errors.append(CollectorError(collector="pageSpeed", message=result.error))
                gaps.append(f"PageSpeed Insights data unavailable: {result.error}")
                emitter.emit("layer1:collector", subject="pageSpeed", status="failed", message=result.error)
            else:
                emitter.emit("layer1:collector", subject="pageSpeed", status="completed")
            return result, _elapsed_ms(psi_start)

        async def crawl():
            return await collect_shallow_crawl(
                target, robots.content, sitemap.content, html.content, crawl_config, fetcher
            )

        def crawl_failed(message: str) -> ShallowCrawlResult:
            errors.append(CollectorError(collector="crawl", message=message))
            return ShallowCrawlResult(canonical_host=normalized.host)

        (page_speed, t_psi), (crawl_data, t_crawl) = await asyncio.gather(
            pagespeed(),
            _timed("crawl", crawl, crawl_failed, emitter),
        )
        timings.page_speed = t_psi
        timings.crawl = t_crawl
        for crawl_error in crawl_data.errors:
            errors.append(CollectorError(collector="crawl", message=f"{crawl_error.url}: {crawl_error.error}"))

        timings.total = _elapsed_ms(start)
        result = Layer1Result(
            url=url,
            normalized_url=normalized,
            evidence=evidence,
            security_headers=security_headers,
            page_speed=page_speed,
            crawl_data=crawl_data,
            timings=timings,
            errors=errors,
            explicit_gaps=gaps,
        )

        tracer.trace_collection(url=target, error_count=len(errors), gap_count=len(gaps), duration_ms=timings.total)
        emitter.emit(
            "layer1:complete",
            subject=target,
            message="Layer 1 collection complete",
            data={"timings": timings.model_dump(), "errors": len(errors), "gaps": gaps},
        )
        logger.info(f"Layer 1 for {target}: {len(errors)} error(s), {len(gaps)} gap(s) in {timings.total}ms")
        return result
