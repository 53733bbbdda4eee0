"""Page snapshot extraction and readable-content previews.

Snapshot extraction is regex scanning over raw HTML and is deterministic.
Content previews prefer trafilatura's main-text extraction and fall back to
tag stripping when it finds nothing.
"""

import html as html_lib
import json
import re
import time
from typing import Dict, List, Optional, Tuple
from urllib.parse import urljoin

import trafilatura

from ..log import get_logger
from ..schemas.snapshot import (
    AnchorInfo,
    ExtractionResult,
    HeadingInfo,
    HreflangInfo,
    ImageInfo,
    OpenGraphData,
    PageSnapshot,
    SchemaInfo,
    TwitterCardData,
)
from .url import extract_hostname, strip_www

logger = get_logger("extract")

THIN_CONTENT_WORDS = 300
MAX_IMAGES = 20
ABOVE_FOLD_IMAGES = 3

TITLE_RE = re.compile(r'<title[^>]*>([^<]+)</title>', re.IGNORECASE)
HEADING_RE = re.compile(r'<h([1-6])[^>]*>([^<]*(?:<[^/h][^>]*>[^<]*)*)</h\1>', re.IGNORECASE)
ANCHOR_RE = re.compile(r'<a\s+[^>]*href=["\']([^"\']+)["\'][^>]*>([^<]*(?:<[^/a][^>]*>[^<]*)*)</a>', re.IGNORECASE)
NAV_RE = re.compile(r'<nav[^>]*>([\s\S]*?)</nav>', re.IGNORECASE)
JSON_LD_RE = re.compile(r'<script\s+[^>]*type=["\']application/ld\+json["\'][^>]*>([\s\S]*?)</script>', re.IGNORECASE)
IMG_RE = re.compile(r'<img\s+([^>]*)>', re.IGNORECASE)
FORM_RE = re.compile(r'<form\b', re.IGNORECASE)
SCRIPT_RE = re.compile(r'<script[^>]*>[\s\S]*?</script>', re.IGNORECASE)
STYLE_RE = re.compile(r'<style[^>]*>[\s\S]*?</style>', re.IGNORECASE)
TAG_RE = re.compile(r'<[^>]+>')
WS_RE = re.compile(r'\s+')

REQUIRED_PROPS: Dict[str, List[str]] = {
    "Product": ["name"],
    "Article": ["headline", "author"],
    "Organization": ["name"],
    "LocalBusiness": ["name", "address"],
    "BreadcrumbList": ["itemListElement"],
    "FAQPage": ["mainEntity"],
    "Review": ["itemReviewed", "reviewRating"],
    "AggregateRating": ["ratingValue", "reviewCount"],
}


def decode_entities(text: str) -> str:
    return html_lib.unescape(text).replace("\xa0", " ")


def strip_tags(fragment: str) -> str:
    return TAG_RE.sub("", fragment).strip()


def _meta_by(attr: str, key: str, html: str) -> Optional[str]:
    key = re.escape(key)
    forward = re.search(
        rf'<meta\s+[^>]*{attr}=["\']{key}["\'][^>]*content=["\']([^"\']+)["\']', html, re.IGNORECASE
    )
    if forward:
        return decode_entities(forward.group(1))
    reverse = re.search(
        rf'<meta\s+[^>]*content=["\']([^"\']+)["\'][^>]*{attr}=["\']{key}["\']', html, re.IGNORECASE
    )
    return decode_entities(reverse.group(1)) if reverse else None


def extract_meta_content(html: str, name: str) -> Optional[str]:
    return _meta_by("name", name, html)


def extract_meta_property(html: str, prop: str) -> Optional[str]:
    return _meta_by("property", prop, html)


def extract_title(html: str) -> Optional[str]:
    match = TITLE_RE.search(html)
    return decode_entities(match.group(1).strip()) if match else None


def extract_canonical(html: str) -> Optional[str]:
    match = re.search(r'<link\s+[^>]*rel=["\']canonical["\'][^>]*href=["\']([^"\']+)["\']', html, re.IGNORECASE)
    if match:
        return match.group(1)
    match = re.search(r'<link\s+[^>]*href=["\']([^"\']+)["\'][^>]*rel=["\']canonical["\']', html, re.IGNORECASE)
    return match.group(1) if match else None


def extract_headings(html: str) -> List[HeadingInfo]:
    headings = []
    for match in HEADING_RE.finditer(html):
        text = strip_tags(match.group(2))
        if text:
            headings.append(HeadingInfo(level=int(match.group(1)), text=text[:200], position=len(headings)))
    return headings


def extract_anchors(html: str, base_url: str) -> Tuple[List[AnchorInfo], int, int]:
    base_host = strip_www(extract_hostname(base_url) or "")
    nav = NAV_RE.search(html)
    nav_section = nav.group(1) if nav else ""
    nav_anchors: List[AnchorInfo] = []
    internal = external = 0

    for match in ANCHOR_RE.finditer(html):
        href = match.group(1)
        if href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue
        host = extract_hostname(urljoin(base_url, href))
        # Unparseable hosts are treated as relative, hence internal
        is_internal = host is None or strip_www(host) == base_host
        if is_internal:
            internal += 1
        else:
            external += 1

        if nav_section and match.group(0) in nav_section:
            nav_anchors.append(AnchorInfo(text=strip_tags(match.group(2))[:100], href=href, is_internal=is_internal))

    return nav_anchors, internal, external


def extract_schemas(html: str) -> List[SchemaInfo]:
    schemas = []
    for match in JSON_LD_RE.finditer(html):
        raw = match.group(1).strip()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            continue

        for item in data if isinstance(data, list) else [data]:
            if not isinstance(item, dict):
                continue
            types = item.get("@type") or "Unknown"
            for schema_type in types if isinstance(types, list) else [types]:
                required = REQUIRED_PROPS.get(schema_type, [])
                schemas.append(SchemaInfo(
                    type=str(schema_type),
                    has_required_props=all(prop in item for prop in required),
                    raw=raw[:500],
                ))
    return schemas


def _attr(attrs: str, name: str) -> Optional[str]:
    match = re.search(rf'(?<![\w-]){re.escape(name)}=["\']([^"\']*)["\']', attrs, re.IGNORECASE)
    return match.group(1) if match else None


def extract_images(html: str) -> List[ImageInfo]:
    images = []
    for match in IMG_RE.finditer(html):
        if len(images) >= MAX_IMAGES:
            break
        attrs = match.group(1)
        src = _attr(attrs, "src") or _attr(attrs, "data-src")
        if not src:
            continue
        alt = _attr(attrs, "alt")
        images.append(ImageInfo(
            src=src,
            alt=alt,
            missing_alt=not alt,
            width=_attr(attrs, "width"),
            height=_attr(attrs, "height"),
            loading=_attr(attrs, "loading"),
            likely_above_fold=len(images) < ABOVE_FOLD_IMAGES,
        ))
    return images


def extract_charset(html: str) -> Optional[str]:
    match = re.search(r'<meta\s+[^>]*charset=["\']?([^"\'\s/>]+)', html, re.IGNORECASE)
    if match:
        return match.group(1)
    match = re.search(
        r'<meta\s+[^>]*http-equiv=["\']Content-Type["\'][^>]*content=["\'][^"\']*charset=([^"\'\s;]+)',
        html,
        re.IGNORECASE,
    )
    return match.group(1) if match else None


def extract_hreflang(html: str) -> List[HreflangInfo]:
    entries = []
    for match in re.finditer(
        r'<link\s+[^>]*rel=["\']alternate["\'][^>]*hreflang=["\']([^"\']+)["\'][^>]*href=["\']([^"\']+)["\']',
        html,
        re.IGNORECASE,
    ):
        entries.append(HreflangInfo(lang=match.group(1), href=match.group(2)))
    for match in re.finditer(
        r'<link\s+[^>]*href=["\']([^"\']+)["\'][^>]*hreflang=["\']([^"\']+)["\'][^>]*rel=["\']alternate["\']',
        html,
        re.IGNORECASE,
    ):
        entries.append(HreflangInfo(lang=match.group(2), href=match.group(1)))
    return entries


def count_words(html: str) -> int:
    text = STYLE_RE.sub("", SCRIPT_RE.sub("", html))
    text = decode_entities(WS_RE.sub(" ", TAG_RE.sub(" ", text)).strip())
    return len(text.split())


def extract_page_snapshot(html: str, url: str) -> ExtractionResult:
    start = time.monotonic()
    warnings: List[str] = []
    html = html or ""

    lang = re.search(r'<html\s+[^>]*lang=["\']([^"\']+)["\']', html, re.IGNORECASE)
    nav_anchors, internal, external = extract_anchors(html, url)
    headings = extract_headings(html)
    word_count = count_words(html)

    snapshot = PageSnapshot(
        url=url,
        title=extract_title(html),
        meta_description=extract_meta_content(html, "description"),
        meta_robots=extract_meta_content(html, "robots"),
        canonical=extract_canonical(html),
        headings=headings,
        nav_anchors=nav_anchors,
        internal_link_count=internal,
        external_link_count=external,
        schemas=extract_schemas(html),
        has_forms=bool(FORM_RE.search(html)),
        open_graph=OpenGraphData(
            title=extract_meta_property(html, "og:title"),
            description=extract_meta_property(html, "og:description"),
            type=extract_meta_property(html, "og:type"),
            image=extract_meta_property(html, "og:image"),
            url=extract_meta_property(html, "og:url"),
            site_name=extract_meta_property(html, "og:site_name"),
        ),
        twitter_card=TwitterCardData(
            card=extract_meta_content(html, "twitter:card"),
            title=extract_meta_content(html, "twitter:title"),
            description=extract_meta_content(html, "twitter:description"),
            image=extract_meta_content(html, "twitter:image"),
            site=extract_meta_content(html, "twitter:site"),
        ),
        images=extract_images(html),
        lang=lang.group(1) if lang else None,
        viewport=extract_meta_content(html, "viewport"),
        charset=extract_charset(html),
        hreflang=extract_hreflang(html),
        word_count=word_count,
        is_thin_content=word_count < THIN_CONTENT_WORDS,
    )

    if not snapshot.title:
        warnings.append("Missing <title> tag")
    if not snapshot.meta_description:
        warnings.append("Missing meta description")
    h1_count = sum(1 for h in headings if h.level == 1)
    if h1_count == 0:
        warnings.append("Missing H1 heading")
    elif h1_count > 1:
        warnings.append("Multiple H1 headings found")
    if not snapshot.canonical:
        warnings.append("Missing canonical tag")
    if not snapshot.viewport:
        warnings.append("Missing viewport meta tag")
    if snapshot.is_thin_content:
        warnings.append(f"Content appears thin (< {THIN_CONTENT_WORDS} words)")
    for prev, cur in zip(headings, headings[1:]):
        if cur.level > prev.level + 1:
            warnings.append(f"Heading hierarchy skip: H{prev.level} to H{cur.level}")
            break
    missing_alt = sum(1 for img in snapshot.images if img.missing_alt)
    if missing_alt:
        warnings.append(f"{missing_alt} image(s) missing alt text")

    return ExtractionResult(
        snapshot=snapshot,
        warnings=warnings,
        duration_ms=int((time.monotonic() - start) * 1000),
    )


def _strip_preview(html: str) -> str:
    content = SCRIPT_RE.sub("", html)
    content = STYLE_RE.sub("", content)
    for tag in ("nav", "header", "footer"):
        content = re.sub(rf'<{tag}[^>]*>[\s\S]*?</{tag}>', "", content, flags=re.IGNORECASE)

    main = re.search(r'<main[^>]*>([\s\S]*?)</main>', content, re.IGNORECASE)
    article = re.search(r'<article[^>]*>([\s\S]*?)</article>', content, re.IGNORECASE)
    area = (main and main.group(1)) or (article and article.group(1)) or content
    return decode_entities(WS_RE.sub(" ", TAG_RE.sub(" ", area)).strip())


def extract_content_preview(html: str, url: Optional[str] = None, max_length: int = 2000) -> str:
    """
    Readable main text of a page, capped at max_length characters.
    """
    if not html:
        return ""
    try:
        extracted = trafilatura.extract(html, include_comments=False, include_tables=True, url=url)
    except Exception as e:
        logger.warning(f"trafilatura failed on {url or 'document'}: {e}")
        extracted = None

    text = WS_RE.sub(" ", extracted).strip() if extracted else _strip_preview(html)
    return text[:max_length]
