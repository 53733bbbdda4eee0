"""Shallow crawl over already-collected robots.txt, sitemap and homepage HTML.

Parsing here is line/pattern scanning (parse_robots_txt, parse_sitemap,
extract_links); the only network I/O is the optional HEAD probe of sampled
URLs when check_link_status is on.
"""

import asyncio
import re
from typing import List, Literal, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from pydantic import BaseModel

from ..log import get_logger
from ..retrieval.fetch import Fetcher
from ..retrieval.url import extract_hostname, strip_www

logger = get_logger("crawl")

ANCHOR_RE = re.compile(r'<a\s+[^>]*href=["\']([^"\']+)["\'][^>]*>([^<]*)</a>', re.IGNORECASE)
TITLE_RE = re.compile(r'<title[^>]*>([^<]+)</title>', re.IGNORECASE)
LOC_RE = re.compile(r'<loc>([^<]+)</loc>', re.IGNORECASE)
SKIPPED_HREF_PREFIXES = ("#", "javascript:", "mailto:", "tel:")
POSITION_WINDOW = 500
MAX_LINK_TEXT = 100

LinkPosition = Literal["nav", "header", "footer", "sidebar", "content", "unknown"]


class CrawlLink(BaseModel):
    source: str
    target: str
    text: str = ""
    is_internal: bool
    position: LinkPosition = "unknown"


class SampledPage(BaseModel):
    url: str
    status: Optional[int] = None
    title: Optional[str] = None
    source: Literal["sitemap", "crawl", "homepage"]
    internal_links: int = 0
    external_links: int = 0


class RobotsRules(BaseModel):
    allow_all: bool = True
    disallow_patterns: List[str] = []
    crawl_delay: Optional[int] = None
    sitemap_urls: List[str] = []


class CrawlStats(BaseModel):
    pages_checked: int = 0
    total_links: int = 0
    internal_links: int = 0
    external_links: int = 0
    broken_links: int = 0


class CrawlError(BaseModel):
    url: str
    error: str


class CrawlConfig(BaseModel):
    max_pages: int = 10
    max_depth: int = 2
    timeout_ms: int = 5000
    check_link_status: bool = False
    max_links_in_graph: int = 100


class ExtractedLinks(BaseModel):
    internal: List[CrawlLink] = []
    external: List[CrawlLink] = []
    title: Optional[str] = None


class ShallowCrawlResult(BaseModel):
    sampled_urls: List[SampledPage] = []
    link_graph: List[CrawlLink] = []
    crawl_depth: int = 0
    sitemap_urls: List[str] = []
    robots_rules: RobotsRules = RobotsRules()
    canonical_host: str = ""
    total_urls_discovered: int = 0
    stats: CrawlStats = CrawlStats()
    errors: List[CrawlError] = []


def parse_robots_txt(content: str) -> RobotsRules:
    """
    Collects Disallow/Crawl-delay lines of `User-agent: *` sections.
    Sitemap lines count wherever they appear.
    """
    rules = RobotsRules()
    if not content:
        return rules

    in_wildcard_section = False
    for line in content.splitlines():
        stripped = line.strip()
        lowered = stripped.lower()

        if lowered.startswith("user-agent:"):
            in_wildcard_section = lowered[len("user-agent:"):].strip() == "*"

        if in_wildcard_section and lowered.startswith("disallow:"):
            pattern = stripped[len("disallow:"):].strip()
            if pattern:
                rules.disallow_patterns.append(pattern)
                rules.allow_all = False

        if in_wildcard_section and lowered.startswith("crawl-delay:"):
            value = lowered[len("crawl-delay:"):].strip()
            match = re.match(r'\d+', value)
            if match:
                rules.crawl_delay = int(match.group(0))

        if lowered.startswith("sitemap:"):
            sitemap_url = stripped[len("sitemap:"):].strip()
            if sitemap_url:
                rules.sitemap_urls.append(sitemap_url)

    return rules


def parse_sitemap(content: str, max_urls: int = 50) -> List[str]:
    urls = []
    for match in LOC_RE.finditer(content or ""):
        if len(urls) >= max_urls:
            break
        url = match.group(1).strip()
        if url.startswith("http"):
            urls.append(url)

    if not urls:
        # Plain-text sitemap: one URL per line
        for line in (content or "").splitlines():
            if len(urls) >= max_urls:
                break
            url = line.strip()
            if url.startswith("http"):
                urls.append(url)
    return urls


def find_position(html: str, index: int) -> LinkPosition:
    before = html[max(0, index - POSITION_WINDOW):index].lower()
    if "<nav" in before or 'class="nav' in before:
        return "nav"
    if "<header" in before or 'class="header' in before:
        return "header"
    if "<footer" in before or 'class="footer' in before:
        return "footer"
    if "<aside" in before or 'class="sidebar' in before:
        return "sidebar"
    return "content"


def extract_links(html: str, base_url: str, source_url: str) -> ExtractedLinks:
    result = ExtractedLinks()
    base_host = extract_hostname(base_url)
    if not base_host:
        return result
    base_host = strip_www(base_host)

    title = TITLE_RE.search(html or "")
    if title:
        result.title = title.group(1).strip()

    for match in ANCHOR_RE.finditer(html or ""):
        href = match.group(1)
        if href.startswith(SKIPPED_HREF_PREFIXES):
            continue
        try:
            absolute = urljoin(base_url, href)
            host = urlsplit(absolute).hostname
        except ValueError:
            continue
        if not host:
            continue

        is_internal = strip_www(host) == base_host
        link = CrawlLink(
            source=source_url,
            target=absolute,
            text=match.group(2).strip()[:MAX_LINK_TEXT],
            is_internal=is_internal,
            position=find_position(html, match.start()),
        )
        (result.internal if is_internal else result.external).append(link)

    return result


def is_url_allowed(url: str, rules: RobotsRules) -> bool:
    if rules.allow_all:
        return True
    path = urlsplit(url).path or "/"
    for pattern in rules.disallow_patterns:
        if pattern == "/" or path.startswith(pattern):
            return False
        if "*" in pattern:
            regex = "^" + re.escape(pattern).replace(r"\*", ".*").replace(r"\?", ".") + "$"
            if re.match(regex, path):
                return False
    return True


def get_unique_internal_links(link_graph: List[CrawlLink]) -> List[str]:
    return list(dict.fromkeys(link.target for link in link_graph if link.is_internal))


def get_nav_links(link_graph: List[CrawlLink]) -> List[CrawlLink]:
    return [link for link in link_graph if link.position in ("nav", "header")]


async def _probe(fetcher: Fetcher, url: str, timeout_ms: int) -> Tuple[str, Optional[int], Optional[str]]:
    outcome = await fetcher.fetch(url, timeout_ms=timeout_ms, retries=0, method="HEAD", follow_redirects=True)
    if outcome.payload is None:
        return url, None, outcome.error or "Failed"
    return url, outcome.payload.status, None


async def collect_shallow_crawl(
    url: str,
    robots_txt: str,
    sitemap_content: str,
    homepage_html: str,
    config: Optional[CrawlConfig] = None,
    fetcher: Optional[Fetcher] = None,
) -> ShallowCrawlResult:
    """
    Samples up to max_pages URLs: the homepage, then sitemap URLs, then
    internal homepage links. With check_link_status the non-homepage samples
    are HEAD-probed concurrently; a failed probe is recorded for that URL only.
    """
    cfg = config or CrawlConfig()
    result = ShallowCrawlResult(canonical_host=extract_hostname(url) or "")

    result.robots_rules = parse_robots_txt(robots_txt)
    result.sitemap_urls = parse_sitemap(sitemap_content, cfg.max_pages * 2)

    homepage = extract_links(homepage_html, url, url)
    result.sampled_urls.append(SampledPage(
        url=url,
        status=200,
        title=homepage.title,
        source="homepage",
        internal_links=len(homepage.internal),
        external_links=len(homepage.external),
    ))
    result.stats = CrawlStats(
        pages_checked=1,
        internal_links=len(homepage.internal),
        external_links=len(homepage.external),
        total_links=len(homepage.internal) + len(homepage.external),
    )
    result.link_graph = (homepage.internal + homepage.external)[:cfg.max_links_in_graph]

    internal_targets = get_unique_internal_links(homepage.internal)
    budget = max(cfg.max_pages - 1, 0)
    candidates: List[str] = []
    for candidate in result.sitemap_urls + internal_targets:
        if len(candidates) >= budget:
            break
        if candidate not in candidates:
            candidates.append(candidate)

    def source_of(page_url: str) -> str:
        return "sitemap" if page_url in result.sitemap_urls else "crawl"

    if cfg.check_link_status and candidates and fetcher is not None:
        probes = await asyncio.gather(*(_probe(fetcher, c, cfg.timeout_ms) for c in candidates))
        for page_url, status, error in probes:
            result.sampled_urls.append(SampledPage(url=page_url, status=status, source=source_of(page_url)))
            if error:
                result.errors.append(CrawlError(url=page_url, error=error))
                result.stats.broken_links += 1
            else:
                result.stats.pages_checked += 1
                if status >= 400:
                    result.stats.broken_links += 1
    else:
        for page_url in candidates:
            result.sampled_urls.append(SampledPage(url=page_url, source=source_of(page_url)))

    discovered = set(result.sitemap_urls) | set(internal_targets)
    result.total_urls_discovered = len(discovered) + 1
    result.crawl_depth = 1 if cfg.check_link_status else 0

    if result.errors:
        logger.warning(f"Shallow crawl of {url}: {len(result.errors)} sampled URL(s) failed")
    return result
