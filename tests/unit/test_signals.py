import asyncio

import httpx
import pytest

from hybrid_audit.retrieval.signals import fetch_headers, fetch_html, fetch_robots, fetch_sitemap
from hybrid_audit.retrieval.url import InvalidUrlError, build_audit_urls, get_apex_domain, normalize_url, urls_equal

from conftest import make_fetcher, site_handler


@pytest.mark.asyncio
@pytest.mark.parametrize("collector", [fetch_robots, fetch_sitemap, fetch_html])
async def test_404_is_a_valid_absence(collector):
    """
    WHY: A missing robots.txt or sitemap is information, not a failure.
    HOW: Serve 404 for everything and run each text collector.
    EXPECTED: status "404", empty content, no error.
    """
    fetcher = make_fetcher(lambda request: httpx.Response(404, text="nope"))
    evidence = await collector(fetcher, "https://acme.test/thing", "https://acme.test")

    assert evidence.status == "404"
    assert evidence.content == ""
    assert evidence.error is None


@pytest.mark.asyncio
async def test_other_http_errors_are_recorded():
    """
    WHY: A 403 on the homepage is a real collection failure.
    HOW: Serve 403 to the HTML collector.
    EXPECTED: status "403" with error "HTTP 403".
    """
    fetcher = make_fetcher(lambda request: httpx.Response(403))
    evidence = await fetch_html(fetcher, "https://acme.test/", "https://acme.test")

    assert evidence.status == "403"
    assert evidence.error == "HTTP 403"
    assert evidence.content == ""


@pytest.mark.asyncio
async def test_body_is_truncated_to_limit():
    """
    WHY: Oversized pages must not blow up prompts or memory.
    HOW: Serve a 10k body with max_length=100.
    EXPECTED: Exactly 100 characters kept, and the record still succeeds.
    """
    fetcher = make_fetcher(lambda request: httpx.Response(200, text="x" * 10000))
    evidence = await fetch_html(fetcher, "https://acme.test/", "acme.test", max_length=100)

    assert len(evidence.content) == 100
    assert evidence.status == "200"
    assert evidence.error is None
    assert evidence.normalized_url == "https://acme.test/"


@pytest.mark.asyncio
async def test_timeout_becomes_error_value():
    """
    WHY: Collectors never raise; a hung robots.txt is just an error entry.
    HOW: Handler sleeps past a 30ms deadline.
    EXPECTED: status and error both "Timeout".
    """
    async def handler(request):
        await asyncio.sleep(5)
        return httpx.Response(200)

    evidence = await fetch_robots(make_fetcher(handler), "https://acme.test/robots.txt", "https://acme.test", timeout_ms=30)

    assert evidence.status == "Timeout"
    assert evidence.error == "Timeout"
    assert evidence.content == ""


@pytest.mark.asyncio
async def test_headers_collector_probes_both_schemes():
    """
    WHY: The header record must show both the HTTPS headers and how HTTP is redirected.
    HOW: Use the fake site, where http:// 301s to https://.
    EXPECTED: HTTPS headers captured, the HTTP hop in the chain, status 200.
    """
    fetcher = make_fetcher(site_handler())
    urls = build_audit_urls(normalize_url("acme.test"))

    evidence = await fetch_headers(fetcher, urls.https_head, urls.http_head, "https://acme.test/")

    assert evidence.status == "200"
    assert evidence.https_headers["strict-transport-security"].startswith("max-age=31536000")
    assert evidence.redirect_chain == ["301 → https://acme.test/"]
    assert evidence.error is None


def test_normalize_url_defaults_to_https_and_lowercases_host():
    normalized = normalize_url("  WWW.Acme.TEST/Path?q=1 ")
    assert normalized.href == "https://www.acme.test/Path?q=1"
    assert normalized.hostname == "acme.test"
    assert normalized.origin == "https://www.acme.test"


def test_normalize_url_rejects_hostless_input():
    with pytest.raises(InvalidUrlError):
        normalize_url("https://")


def test_build_audit_urls():
    urls = build_audit_urls(normalize_url("https://acme.test/shop"))
    assert urls.robots == "https://acme.test/robots.txt"
    assert urls.sitemap == "https://acme.test/sitemap.xml"
    assert urls.http_head == "http://acme.test/shop"


def test_url_helpers():
    assert urls_equal("https://www.acme.test/a", "http://acme.test/a")
    assert not urls_equal("https://acme.test/a", "https://acme.test/b")
    assert get_apex_domain("shop.acme.co.uk") == "acme.co.uk"
    assert get_apex_domain("blog.acme.test") == "acme.test"
