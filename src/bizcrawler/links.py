import logging
from typing import Iterable, Iterator, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from .config import DEFAULT_DENY_EXTENSIONS

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


def canonical_url(url: str) -> str:
    """Normalized form of a URL used as the dedup key for a run."""
    url = url.strip()
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return url
    if not parts.scheme or not parts.hostname:
        return url

    scheme = parts.scheme.lower()
    netloc = parts.hostname.lower()
    if port is not None and port != DEFAULT_PORTS.get(scheme):
        netloc = f"{netloc}:{port}"
    if parts.username:
        credentials = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{credentials}@{netloc}"

    path = parts.path.rstrip('/') or '/'
    query = urlencode(sorted(
        (key, value) for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith("utm_")
    ))
    return urlunsplit((scheme, netloc, path, query, ""))


def url_origin(url: str) -> Optional[Tuple[str, str, int]]:
    """(scheme, host, effective port) or None for URLs that cannot be crawled."""
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in DEFAULT_PORTS or not parts.hostname:
        return None
    return scheme, parts.hostname.lower(), port or DEFAULT_PORTS[scheme]


def has_denied_extension(url: str, deny_extensions: Iterable[str] = DEFAULT_DENY_EXTENSIONS) -> bool:
    try:
        path_lower = urlsplit(url).path.lower()
    except ValueError:
        return False
    return any(path_lower.endswith(ext) for ext in deny_extensions)


class LinkExpander:
    """Finds same-origin content links on a rendered page."""

    def __init__(self, deny_extensions: Iterable[str] = DEFAULT_DENY_EXTENSIONS):
        self.deny_extensions = tuple(deny_extensions)

    async def expand(self, page_url: str, page) -> Iterator[str]:
        html = await page.content()
        return self.iter_links(page_url, html)

    def iter_links(self, page_url: str, html: str) -> Iterator[str]:
        origin = url_origin(page_url)
        if origin is None:
            return
        soup = BeautifulSoup(html or "", "html.parser")

        base_url = page_url
        base_tag = soup.find("base", href=True)
        if base_tag:
            base_url = urljoin(page_url, base_tag["href"].strip())

        for anchor in soup.find_all("a", href=True):
            href = anchor["href"].strip()
            if not href or href.startswith(('#', 'mailto:', 'tel:', 'javascript:')):
                continue
            try:
                absolute_link = urljoin(base_url, href)
            except ValueError:
                continue
            if url_origin(absolute_link) != origin:
                continue
            if has_denied_extension(absolute_link, self.deny_extensions):
                logger.debug(f"Skipping non-content link: {absolute_link}")
                continue
            yield urlunsplit(urlsplit(absolute_link)._replace(fragment=""))
