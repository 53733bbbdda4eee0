import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from dotenv import load_dotenv

from hybrid_audit.llm.base import BaseProvider, GenerateRequest, ProviderError, ProviderOutput, Usage
from hybrid_audit.pipeline.layer1 import run_layer1_collectors
from hybrid_audit.retrieval.extract import extract_page_snapshot
from hybrid_audit.retrieval.fetch import Fetcher
from hybrid_audit.schemas.report import Layer1Config
from hybrid_audit.schemas.snapshot import Layer2Result


@pytest.fixture(scope="session", autouse=True)
def _load_env():
    # Load .env once per session to avoid side-effects on import time
    load_dotenv()


class SleepRecorder:
    """Stands in for asyncio.sleep so backoff is observable and instant."""

    def __init__(self):
        self.calls: List[float] = []

    async def __call__(self, seconds: float):
        self.calls.append(seconds)


class FakeProvider(BaseProvider):
    """In-memory provider: returns `text`, or raises when `error` is set."""

    def __init__(
        self,
        name: str,
        text: str = "[]",
        error: Optional[str] = None,
        max_concurrent: int = 2,
        supports_tools: bool = True,
        available: bool = True,
    ):
        super().__init__(max_concurrent=max_concurrent, timeout_s=5)
        self.name = name
        self.default_model = f"{name}-default"
        self.supports_tools = supports_tools
        self.text = text
        self.error = error
        self.available = available
        self.requests: List[GenerateRequest] = []

    def is_available(self) -> bool:
        return self.available

    async def _call(self, request: GenerateRequest, model: str) -> ProviderOutput:
        self.requests.append(request)
        if self.error:
            raise ProviderError(self.error)
        return ProviderOutput(text=self.text, model=model, usage=Usage(prompt_tokens=100, completion_tokens=50, total_tokens=150))


HOMEPAGE_HTML = """<html lang="en"><head>
<title>Acme Widgets - Hand-built widgets for every workshop</title>
<meta name="description" content="Acme builds durable widgets for workshops, makers and small factories. Free shipping on orders over $50.">
<meta name="viewport" content="width=device-width, initial-scale=1">
<link rel="canonical" href="https://acme.test/">
</head><body>
<nav><a href="/products">Products</a><a href="/about">About</a></nav>
<h2>Our widgets</h2>
<p>Widgets for every job.</p>
<a href="https://twitter.com/acme">Twitter</a>
</body></html>"""

ROBOTS_TXT = "User-agent: *\nDisallow: /admin\nSitemap: https://acme.test/sitemap.xml\n"

SITEMAP_XML = (
    '<?xml version="1.0"?><urlset>'
    "<url><loc>https://acme.test/products</loc></url>"
    "<url><loc>https://acme.test/about</loc></url>"
    "</urlset>"
)

SECURE_HEADERS = {
    "content-type": "text/html",
    "strict-transport-security": "max-age=31536000; includeSubDomains",
    "x-frame-options": "DENY",
}


def site_handler(
    pages: Optional[Dict[str, str]] = None,
    robots: Optional[str] = ROBOTS_TXT,
    sitemap: Optional[str] = SITEMAP_XML,
    psi: Optional[dict] = None,
) -> Callable[[httpx.Request], httpx.Response]:
    """
    A small fake site on acme.test: robots, sitemap and HTML pages by path.
    http:// requests redirect to https://, unknown paths 404.
    """
    pages = {"/": HOMEPAGE_HTML, **(pages or {})}

    def handler(request: httpx.Request) -> httpx.Response:
        url = request.url
        if url.host == "www.googleapis.com":
            if psi is None:
                return httpx.Response(500, json={"error": {"message": "backend error"}})
            return httpx.Response(200, text=json.dumps(psi))
        if url.scheme == "http":
            return httpx.Response(301, headers={"location": str(url.copy_with(scheme="https"))})
        if url.path == "/robots.txt" and robots is not None:
            return httpx.Response(200, text=robots)
        if url.path == "/sitemap.xml" and sitemap is not None:
            return httpx.Response(200, text=sitemap)
        if url.path in pages:
            return httpx.Response(200, text=pages[url.path], headers=SECURE_HEADERS)
        return httpx.Response(404, text="not found")

    return handler


def make_fetcher(handler, sleep: Optional[SleepRecorder] = None) -> Fetcher:
    return Fetcher(transport=httpx.MockTransport(handler), sleep=sleep or SleepRecorder())


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def site_fetcher():
    return make_fetcher(site_handler())


async def collect_site(html: str = HOMEPAGE_HTML, **handler_kwargs):
    """Runs Layer 1 (PSI off) and the homepage snapshot against the fake site."""
    fetcher = make_fetcher(site_handler(pages={"/": html}, **handler_kwargs))
    layer1 = await run_layer1_collectors("https://acme.test/", Layer1Config(psi_enabled=False), fetcher)
    extraction = extract_page_snapshot(layer1.evidence.html.content, layer1.normalized_url.href)
    return layer1, Layer2Result(homepage=extraction.snapshot, homepage_warnings=extraction.warnings)
