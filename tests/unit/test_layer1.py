from unittest.mock import AsyncMock, patch

import httpx
import pytest

from hybrid_audit.pipeline.layer1 import PSI_DISABLED_GAP, SITEMAP_GAP, run_layer1_collectors
from hybrid_audit.retrieval.url import InvalidUrlError
from hybrid_audit.schemas.report import Layer1Config

from conftest import make_fetcher, site_handler


@pytest.mark.asyncio
async def test_collects_every_signal_from_a_healthy_site(site_fetcher):
    """
    WHY: The happy path must fill every evidence slot and derived signal.
    HOW: Run Layer 1 against the fake site with PSI disabled.
    EXPECTED: No errors, only the PSI-disabled gap, evidence and security score populated.
    """
    result = await run_layer1_collectors("acme.test", Layer1Config(psi_enabled=False), site_fetcher)

    assert result.errors == []
    assert result.explicit_gaps == [PSI_DISABLED_GAP]
    assert result.normalized_url.href == "https://acme.test/"
    assert "Disallow: /admin" in result.evidence.robots.content
    assert "<loc>" in result.evidence.sitemap.content
    assert "Acme Widgets" in result.evidence.html.content
    assert result.evidence.headers.redirect_chain == ["301 → https://acme.test/"]
    assert result.security_headers.hsts.present is True
    assert result.security_headers.score > 0
    assert result.page_speed is None
    assert result.timings.page_speed is None
    assert len(result.crawl_data.sampled_urls) == 3


@pytest.mark.asyncio
async def test_missing_sitemap_is_not_an_error():
    fetcher = make_fetcher(site_handler(sitemap=None))
    result = await run_layer1_collectors("https://acme.test", Layer1Config(psi_enabled=False), fetcher)

    assert result.evidence.sitemap.status == "404"
    assert result.errors == []
    assert SITEMAP_GAP not in result.explicit_gaps


@pytest.mark.asyncio
async def test_failed_sitemap_adds_error_and_gap():
    """
    WHY: A server error on the sitemap is a real failure and a knowingly absent signal.
    HOW: Serve 403 for /sitemap.xml only.
    EXPECTED: One sitemap error entry and the sitemap gap, other evidence intact.
    """
    base = site_handler()

    def handler(request):
        if request.url.path == "/sitemap.xml":
            return httpx.Response(403)
        return base(request)

    result = await run_layer1_collectors("https://acme.test", Layer1Config(psi_enabled=False), make_fetcher(handler))

    assert [(e.collector, e.message) for e in result.errors] == [("sitemap", "HTTP 403")]
    assert SITEMAP_GAP in result.explicit_gaps
    assert result.evidence.html.error is None


@pytest.mark.asyncio
async def test_pagespeed_failure_becomes_gap():
    """
    WHY: PSI outages are common; they must degrade to a gap, not fail the run.
    HOW: Enable PSI against a googleapis stub that returns 500.
    EXPECTED: page_speed carries the error, a pageSpeed error entry and a PSI gap exist.
    """
    fetcher = make_fetcher(site_handler(psi=None))
    result = await run_layer1_collectors("https://acme.test", Layer1Config(psi_enabled=True), fetcher)

    assert result.page_speed.error == "PSI API error: 500 - backend error"
    assert [e.collector for e in result.errors] == ["pageSpeed"]
    assert result.explicit_gaps == ["PageSpeed Insights data unavailable: PSI API error: 500 - backend error"]


@pytest.mark.asyncio
async def test_pagespeed_success_is_attached():
    psi = {"lighthouseResult": {"categories": {"performance": {"score": 0.9}}, "audits": {"speed-index": {"numericValue": 2100}}}}
    fetcher = make_fetcher(site_handler(psi=psi))
    result = await run_layer1_collectors("https://acme.test", Layer1Config(psi_enabled=True), fetcher)

    assert result.page_speed.performance_score == 90
    assert result.page_speed.data_source == "lab"
    assert result.explicit_gaps == []
    assert result.timings.page_speed is not None


@pytest.mark.asyncio
async def test_raising_collector_is_converted_to_error_entry(site_fetcher):
    """
    WHY: One collector blowing up must not take the others down.
    HOW: Patch the robots collector to raise.
    EXPECTED: A robots error entry with the message; the html collector still succeeded.
    """
    with patch("hybrid_audit.pipeline.layer1.fetch_robots", AsyncMock(side_effect=RuntimeError("boom"))):
        result = await run_layer1_collectors("https://acme.test", Layer1Config(psi_enabled=False), site_fetcher)

    assert [(e.collector, e.message) for e in result.errors] == [("robots", "boom")]
    assert result.evidence.robots.error == "boom"
    assert result.evidence.robots.content == ""
    assert result.evidence.html.status == "200"


@pytest.mark.asyncio
async def test_invalid_url_raises_before_fetching():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(InvalidUrlError):
        await run_layer1_collectors("https://", Layer1Config(psi_enabled=False), make_fetcher(handler))


@pytest.mark.asyncio
async def test_events_are_a_side_channel(site_fetcher):
    """
    WHY: Progress events are for UIs; they must not change the result or crash the run.
    HOW: Run once with a recording callback and once with a callback that always raises.
    EXPECTED: Start first, complete last, every collector started and finished; identical results.
    """
    events = []
    recorded = await run_layer1_collectors("https://acme.test", Layer1Config(psi_enabled=False), site_fetcher, events.append)

    def explode(event):
        raise RuntimeError("ui went away")

    exploded = await run_layer1_collectors("https://acme.test", Layer1Config(psi_enabled=False), site_fetcher, explode)

    assert events[0].type == "layer1:start"
    assert events[-1].type == "layer1:complete"
    finished = {e.subject for e in events if e.type == "layer1:collector" and e.status == "completed"}
    assert finished == {"robots", "sitemap", "headers", "html", "crawl"}
    assert exploded.errors == recorded.errors
    assert exploded.explicit_gaps == recorded.explicit_gaps
    assert exploded.evidence.html.content == recorded.evidence.html.content
