"""
HTML parser that locates image references and crawlable links.
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup


@dataclass
class ExtractedPage:
    """What a page points at, as absolute URLs in order of first appearance."""
    url: str
    images: List[str] = field(default_factory=list)
    links: List[str] = field(default_factory=list)


class ImageExtractor:
    """
    Extracts image URLs (and, for recursive crawls, page links) from HTML.

    Extraction is best effort: markup that cannot be parsed yields nothing
    instead of an error.
    """

    # Link targets with these extensions are never crawled as pages
    SKIP_EXTENSIONS = (
        '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.avif', '.ico',
        '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
        '.zip', '.rar', '.tar', '.gz', '.exe', '.dmg', '.iso',
        '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv',
        '.css', '.js', '.woff', '.woff2', '.ttf', '.eot'
    )

    def __init__(self, allowed_domains: Optional[List[str]] = None,
                 blocked_domains: Optional[List[str]] = None,
                 parser: str = 'lxml'):
        self.allowed_domains = set(allowed_domains) if allowed_domains else set()
        self.blocked_domains = set(blocked_domains) if blocked_domains else set()
        self.parser = parser
        self.logger = logging.getLogger(__name__)

    def extract_images(self, body: bytes, base_url: str) -> List[str]:
        """Absolute image URLs referenced by the page."""
        return self.parse(body, base_url).images

    def extract_links(self, body: bytes, base_url: str) -> List[str]:
        """Absolute page links worth crawling."""
        return self.parse(body, base_url).links

    def parse(self, body: bytes, base_url: str) -> ExtractedPage:
        """
        Parse HTML and extract image and link references.

        Args:
            body: Raw HTML bytes (the encoding is detected by BeautifulSoup)
            base_url: URL the page was served from

        Returns:
            ExtractedPage, empty if the markup could not be parsed
        """
        try:
            soup = BeautifulSoup(body, self.parser)
            base_url = self._document_base(soup, base_url)

            images = _unique(
                url for url in (self._resolve(base_url, ref) for ref in self._image_refs(soup))
                if url and self._is_http(url)
            )
            links = _unique(
                url for url in (self._resolve(base_url, a['href']) for a in soup.find_all('a', href=True))
                if url and self._is_crawlable_link(url)
            )
        except Exception as e:
            self.logger.warning(f"Could not parse {base_url}: {e}")
            return ExtractedPage(url=base_url)

        self.logger.debug(f"Parsed {base_url}: {len(images)} images, {len(links)} links")
        return ExtractedPage(url=base_url, images=images, links=links)

    def _document_base(self, soup: BeautifulSoup, page_url: str) -> str:
        """Honor a <base href> element if the page declares one."""
        base = soup.find('base', href=True)
        if base and base['href'].strip():
            return urljoin(page_url, base['href'].strip())
        return page_url

    def _image_refs(self, soup: BeautifulSoup) -> Iterable[str]:
        for img in soup.find_all('img'):
            for attribute in ('src', 'data-src'):
                value = img.get(attribute)
                if value:
                    yield value
            if img.get('srcset'):
                yield from _srcset_urls(img['srcset'])

        # <picture><source srcset="..."></picture>
        for source in soup.find_all('source', srcset=True):
            if source.find_parent('picture') is not None:
                yield from _srcset_urls(source['srcset'])

    def _resolve(self, base_url: str, ref: str) -> Optional[str]:
        ref = ref.strip()
        if not ref or ref.startswith('#'):
            return None
        try:
            return normalize_url(urljoin(base_url, ref))
        except ValueError:
            self.logger.warning(f"Malformed link found: {ref}")
            return None

    def _is_http(self, url: str) -> bool:
        parsed = urlparse(url)
        return parsed.scheme in ('http', 'https') and bool(parsed.netloc)

    def _is_crawlable_link(self, url: str) -> bool:
        """Check if a link should be crawled as a page."""
        if not self._is_http(url):
            return False

        parsed = urlparse(url)
        domain = parsed.netloc.lower()

        if any(blocked in domain for blocked in self.blocked_domains):
            return False

        if self.allowed_domains and not any(allowed in domain for allowed in self.allowed_domains):
            return False

        return not parsed.path.lower().endswith(self.SKIP_EXTENSIONS)


def normalize_url(url: str) -> str:
    """Lower-case the host and drop the fragment."""
    parsed = urlparse(url)
    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        parsed.path,
        parsed.params,
        parsed.query,
        ''  # Remove fragment
    ))


def _srcset_urls(srcset: str) -> List[str]:
    """URLs of a srcset attribute ("a.png 1x, b.png 2x")."""
    urls = []
    for candidate in srcset.split(','):
        parts = candidate.strip().split()
        if parts:
            urls.append(parts[0])
    return urls


def _unique(urls: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered
