import re
from typing import Optional
from urllib.parse import urljoin, urlsplit

from pydantic import BaseModel

SCHEME_RE = re.compile(r'^https?://', re.IGNORECASE)

# Suffixes where the registrable domain has three labels
TWO_PART_TLDS = {"co.uk", "com.au", "co.nz", "org.uk", "net.au"}


class InvalidUrlError(ValueError):
    pass


class NormalizedUrl(BaseModel):
    href: str
    origin: str
    scheme: str
    hostname: str  # lowercased, leading www. removed
    host: str      # lowercased, as given (port included)
    path: str
    query: str = ""
    fragment: str = ""


class AuditUrls(BaseModel):
    robots: str
    sitemap: str
    https_head: str
    http_head: str
    https_get: str


def strip_www(hostname: str) -> str:
    hostname = hostname.lower()
    return hostname[4:] if hostname.startswith("www.") else hostname


def normalize_url(raw_url: str) -> NormalizedUrl:
    """
    Ensures a scheme (https by default) and lowercases scheme and host.
    Raises InvalidUrlError when the input has no usable host.
    """
    url = raw_url.strip()
    if not SCHEME_RE.match(url):
        url = "https://" + url

    parts = urlsplit(url)
    if not parts.hostname or " " in parts.netloc:
        raise InvalidUrlError(f"Invalid URL: {raw_url}")

    scheme = parts.scheme.lower()
    host = parts.netloc.lower().split("@")[-1]
    path = parts.path or "/"
    query = f"?{parts.query}" if parts.query else ""
    fragment = f"#{parts.fragment}" if parts.fragment else ""

    return NormalizedUrl(
        href=f"{scheme}://{host}{path}{query}{fragment}",
        origin=f"{scheme}://{host}",
        scheme=scheme,
        hostname=strip_www(parts.hostname),
        host=host,
        path=path,
        query=query,
        fragment=fragment,
    )


def extract_hostname(url: str) -> Optional[str]:
    hostname = urlsplit(url).hostname
    return hostname.lower() if hostname else None


def build_audit_urls(normalized: NormalizedUrl) -> AuditUrls:
    return AuditUrls(
        robots=f"{normalized.origin}/robots.txt",
        sitemap=f"{normalized.origin}/sitemap.xml",
        https_head=normalized.href,
        http_head=f"http://{normalized.host}{normalized.path}",
        https_get=normalized.href,
    )


def resolve_url(location: str, base: str) -> str:
    if location.lower().startswith(("http://", "https://")):
        return location
    return urljoin(base, location)


def urls_equal(url1: str, url2: str) -> bool:
    try:
        a, b = normalize_url(url1), normalize_url(url2)
    except InvalidUrlError:
        return False
    return a.hostname == b.hostname and a.path == b.path and a.query == b.query


def get_apex_domain(hostname: str) -> str:
    parts = hostname.lower().split(".")
    if ".".join(parts[-2:]) in TWO_PART_TLDS and len(parts) > 2:
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])
