import httpx
import pytest

from hybrid_audit.collectors.pagespeed import (
    collect_pagespeed,
    format_cwv_value,
    get_cwv_rating,
    parse_psi_response,
)
from hybrid_audit.collectors.security_headers import analyze_security_headers
from hybrid_audit.collectors.shallow_crawl import (
    CrawlConfig,
    collect_shallow_crawl,
    extract_links,
    get_nav_links,
    get_unique_internal_links,
    is_url_allowed,
    parse_robots_txt,
    parse_sitemap,
)

from conftest import HOMEPAGE_HTML, ROBOTS_TXT, SITEMAP_XML, make_fetcher

PSI_FIELD_RESPONSE = {
    "loadingExperience": {
        "metrics": {
            "LARGEST_CONTENTFUL_PAINT_MS": {"percentile": 3100},
            "CUMULATIVE_LAYOUT_SHIFT_SCORE": {"percentile": 12},
            "INTERACTION_TO_NEXT_PAINT": {"percentile": 180},
        }
    },
    "lighthouseResult": {
        "categories": {
            "performance": {"score": 0.62},
            "seo": {"score": 0.91},
        },
        "audits": {
            "first-contentful-paint": {"numericValue": 1834.2},
            "render-blocking-resources": {
                "id": "render-blocking-resources",
                "title": "Eliminate render-blocking resources",
                "score": 0.3,
                "details": {"overallSavingsMs": 900},
            },
            "unused-javascript": {
                "id": "unused-javascript",
                "title": "Reduce unused JavaScript",
                "score": 0.5,
                "details": {"overallSavingsMs": 300, "overallSavingsBytes": 120000},
            },
            "uses-http2": {"id": "uses-http2", "title": "Use HTTP/2", "score": 1},
        },
    },
}


def test_parse_robots_only_reads_wildcard_section():
    """
    WHY: Rules for other bots do not apply to a generic crawl.
    HOW: robots.txt with a Googlebot block and a * block plus a Sitemap line.
    EXPECTED: Only the * disallow and crawl-delay are kept; the sitemap is collected.
    """
    content = (
        "User-agent: Googlebot\nDisallow: /private\n\n"
        "User-agent: *\nDisallow: /admin\nCrawl-delay: 10\n"
        "Sitemap: https://acme.test/sitemap.xml\n"
    )
    rules = parse_robots_txt(content)

    assert rules.disallow_patterns == ["/admin"]
    assert rules.allow_all is False
    assert rules.crawl_delay == 10
    assert rules.sitemap_urls == ["https://acme.test/sitemap.xml"]


def test_parse_robots_empty_allows_all():
    rules = parse_robots_txt("")
    assert rules.allow_all is True
    assert rules.disallow_patterns == []


def test_parse_sitemap_xml_and_plain_text():
    assert parse_sitemap(SITEMAP_XML) == ["https://acme.test/products", "https://acme.test/about"]
    assert parse_sitemap("https://acme.test/a\nnot a url\nhttps://acme.test/b") == [
        "https://acme.test/a",
        "https://acme.test/b",
    ]
    assert len(parse_sitemap(SITEMAP_XML, max_urls=1)) == 1


def test_is_url_allowed_prefix_and_wildcard():
    rules = parse_robots_txt("User-agent: *\nDisallow: /admin\nDisallow: /*.pdf")
    assert not is_url_allowed("https://acme.test/admin/users", rules)
    assert not is_url_allowed("https://acme.test/docs/manual.pdf", rules)
    assert is_url_allowed("https://acme.test/products", rules)


def test_extract_links_classifies_internal_external_and_position():
    """
    WHY: The crawl graph depends on telling internal from external links and where they sit.
    HOW: Extract from the shared homepage fixture.
    EXPECTED: Two internal nav links, one external link, fragment/mailto skipped.
    """
    html = HOMEPAGE_HTML + '<a href="#top">Top</a><a href="mailto:hi@acme.test">Mail</a>'
    links = extract_links(html, "https://acme.test/", "https://acme.test/")

    assert [l.target for l in links.internal] == ["https://acme.test/products", "https://acme.test/about"]
    assert [l.target for l in links.external] == ["https://twitter.com/acme"]
    assert links.title.startswith("Acme Widgets")
    assert len(get_nav_links(links.internal)) == 2


@pytest.mark.asyncio
async def test_shallow_crawl_without_status_checks_makes_no_requests():
    """
    WHY: The surface crawl depth must stay offline.
    HOW: Crawl with check_link_status off and a handler that fails the test if called.
    EXPECTED: Homepage plus sitemap samples, no errors, crawl_depth 0.
    """
    def handler(request):
        raise AssertionError(f"unexpected request to {request.url}")

    result = await collect_shallow_crawl(
        "https://acme.test/", ROBOTS_TXT, SITEMAP_XML, HOMEPAGE_HTML,
        CrawlConfig(max_pages=5, check_link_status=False), make_fetcher(handler),
    )

    assert [p.url for p in result.sampled_urls] == [
        "https://acme.test/",
        "https://acme.test/products",
        "https://acme.test/about",
    ]
    assert result.sampled_urls[1].source == "sitemap"
    assert result.crawl_depth == 0
    assert result.errors == []
    assert result.robots_rules.disallow_patterns == ["/admin"]
    assert result.stats.external_links == 1


@pytest.mark.asyncio
async def test_shallow_crawl_records_broken_and_failed_probes():
    """
    WHY: A failing sampled URL must be recorded for that URL only, not fail the crawl.
    HOW: HEAD-probe two sitemap URLs: one 404s, the other raises a connection error.
    EXPECTED: One crawl error for the failed probe, two broken links, homepage still sampled.
    """
    def handler(request):
        if request.url.path == "/products":
            return httpx.Response(404)
        raise httpx.ConnectError("certificate verify failed", request=request)

    result = await collect_shallow_crawl(
        "https://acme.test/", "", SITEMAP_XML, "<html></html>",
        CrawlConfig(max_pages=3, check_link_status=True), make_fetcher(handler),
    )

    assert [e.url for e in result.errors] == ["https://acme.test/about"]
    assert result.stats.broken_links == 2
    assert result.stats.pages_checked == 2
    assert result.crawl_depth == 1
    statuses = {p.url: p.status for p in result.sampled_urls}
    assert statuses["https://acme.test/products"] == 404
    assert statuses["https://acme.test/about"] is None


@pytest.mark.asyncio
async def test_shallow_crawl_samples_each_internal_link_once():
    """
    WHY: Homepages repeat links (header, footer); a repeat must not use up the page budget.
    HOW: Crawl a page linking /products three times and /about once, with no sitemap.
    EXPECTED: Unique internal targets in first-seen order, each sampled once.
    """
    html = (
        '<nav><a href="/products">P</a></nav><a href="/products">P</a>'
        '<a href="/about">A</a><footer><a href="/products">P</a></footer>'
    )
    links = extract_links(html, "https://acme.test/", "https://acme.test/")
    assert get_unique_internal_links(links.internal) == ["https://acme.test/products", "https://acme.test/about"]

    result = await collect_shallow_crawl(
        "https://acme.test/", "", "", html, CrawlConfig(max_pages=5, check_link_status=False),
    )

    assert [p.url for p in result.sampled_urls] == [
        "https://acme.test/",
        "https://acme.test/products",
        "https://acme.test/about",
    ]
    assert result.total_urls_discovered == 3

def test_security_score_for_fully_hardened_headers():
    """
    WHY: The 0-100 score is what reports surface; a hardened site should max out.
    HOW: Provide every scored header with strong values over HTTPS.
    EXPECTED: The top score of 99 and nothing missing.
    """
    headers = {
        "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
        "Content-Security-Policy": "default-src 'self'; script-src 'self'",
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=()",
    }
    result = analyze_security_headers(headers, is_https=True)

    # 20 https + 20 hsts + 19 csp + 4 x 10 headers
    assert result.score == 99
    assert result.missing_headers == []
    assert result.hsts.preload is True
    assert result.csp.directives == ["default-src 'self'", "script-src 'self'"]


def test_security_score_for_bare_http_site():
    result = analyze_security_headers({}, is_https=False)

    assert result.score == 0
    assert result.missing_headers == [
        "Strict-Transport-Security",
        "Content-Security-Policy",
        "X-Frame-Options",
        "X-Content-Type-Options",
        "Referrer-Policy",
    ]
    assert len(result.recommendations) == 5


def test_security_score_partial():
    # https 20 + hsts 10 + 1y 5 + subdomains 3 + xfo 10
    result = analyze_security_headers(
        {"strict-transport-security": "max-age=31536000; includeSubDomains", "x-frame-options": "DENY"},
        is_https=True,
    )
    assert result.score == 48


def test_parse_psi_prefers_field_data():
    """
    WHY: Real-user (CrUX) metrics beat lab estimates when both exist.
    HOW: Parse a response with field LCP/CLS/INP and lab FCP.
    EXPECTED: Field values used, CLS rescaled, FCP filled from lab, opportunities by savings.
    """
    result = parse_psi_response(PSI_FIELD_RESPONSE)

    assert result.data_source == "field"
    assert result.core_web_vitals.lcp == 3100
    assert result.core_web_vitals.cls == pytest.approx(0.12)
    assert result.core_web_vitals.inp == 180
    assert result.core_web_vitals.fcp == 1834
    assert result.performance_score == 62
    assert result.seo_score == 91
    assert result.accessibility_score is None
    assert [o.id for o in result.opportunities] == ["render-blocking-resources", "unused-javascript"]
    assert result.passed_audits == ["uses-http2"]


@pytest.mark.asyncio
async def test_collect_pagespeed_reports_api_errors():
    """
    WHY: PSI quota errors must come back as a value with data_source "unavailable".
    HOW: Serve a 429 with a PSI error body.
    EXPECTED: error carries the status and message, no exception.
    """
    fetcher = make_fetcher(lambda request: httpx.Response(429, json={"error": {"message": "Quota exceeded"}}))
    result = await collect_pagespeed(fetcher, "https://acme.test/")

    assert result.error == "PSI API error: 429 - Quota exceeded"
    assert result.data_source == "unavailable"


@pytest.mark.asyncio
async def test_collect_pagespeed_requests_mobile_strategy():
    seen = []

    def handler(request):
        seen.append(request.url)
        return httpx.Response(200, json=PSI_FIELD_RESPONSE)

    result = await collect_pagespeed(make_fetcher(handler), "https://acme.test/", api_key="k")

    assert result.error is None
    params = seen[0].params
    assert params["strategy"] == "mobile"
    assert params.get_list("category") == ["performance", "accessibility", "best-practices", "seo"]
    assert params["key"] == "k"


def test_cwv_rating_and_formatting():
    assert get_cwv_rating("lcp", 2400) == "good"
    assert get_cwv_rating("lcp", 3100) == "needs-improvement"
    assert get_cwv_rating("cls", 0.3) == "poor"
    assert get_cwv_rating("inp", None) == "unknown"
    assert format_cwv_value("lcp", 3100) == "3.10s"
    assert format_cwv_value("inp", 180) == "180ms"
    assert format_cwv_value("cls", 0.12) == "0.120"
