"""Sitemap parser that fetches through the renderer pool."""

import html
import logging
import re
from typing import Dict, List, Optional, Set
from xml.etree import ElementTree as ET

from crawlaudit.constants import MAX_SITEMAP_DEPTH, SITEMAP_TIMEOUT_MS
from crawlaudit.errors import PoolDrainingError
from crawlaudit.infrastructure.renderer_pool import RendererPool

logger = logging.getLogger(__name__)

_LOC_RE = re.compile(r"<loc>\s*(.*?)\s*</loc>", re.IGNORECASE | re.DOTALL)


class SitemapParser:
    """
    Parse XML sitemaps to extract URLs for crawling.

    Supports:
    - Standard sitemap.xml files
    - Sitemap index files (children followed up to ``max_depth``)
    - XML that the renderer wrapped in an HTML viewer document
    """

    # XML namespaces used in sitemaps
    NAMESPACES = {
        'sm': 'http://www.sitemaps.org/schemas/sitemap/0.9',
    }

    def __init__(
        self,
        pool: RendererPool,
        timeout_ms: int = SITEMAP_TIMEOUT_MS,
        max_depth: int = MAX_SITEMAP_DEPTH,
    ):
        """
        Initialize the sitemap parser.

        Args:
            pool: Renderer pool used to fetch sitemap documents
            timeout_ms: Navigation timeout per sitemap document
            max_depth: Maximum sitemap index nesting to follow
        """
        self.pool = pool
        self.timeout_ms = timeout_ms
        self.max_depth = max_depth
        self._urls: Dict[str, None] = {}
        self._seen_sitemaps: Set[str] = set()

    async def fetch_urls(self, sitemap_url: str) -> List[str]:
        """
        Fetch a sitemap and return every page URL it lists.

        Args:
            sitemap_url: URL to the sitemap.xml or sitemap index

        Returns:
            Page URLs in document order, deduplicated; empty on any failure

        Raises:
            PoolDrainingError: If the renderer pool is being torn down
        """
        self._urls = {}
        self._seen_sitemaps = set()

        try:
            await self._fetch_and_parse_sitemap(sitemap_url, depth=0)
        except PoolDrainingError:
            raise
        except Exception as e:
            logger.error(f"Failed to fetch sitemap {sitemap_url}: {e}")

        urls = list(self._urls)
        logger.info(f"Extracted {len(urls)} URLs from sitemap {sitemap_url}")
        return urls

    async def _fetch_and_parse_sitemap(self, sitemap_url: str, depth: int) -> None:
        """Recursively fetch and parse sitemaps."""
        if depth > self.max_depth or sitemap_url in self._seen_sitemaps:
            return
        self._seen_sitemaps.add(sitemap_url)

        logger.info(f"Fetching sitemap: {sitemap_url}")
        content = await self._fetch(sitemap_url)
        if not content:
            return

        for child_url in self._parse_sitemap_content(content):
            logger.info(f"Found child sitemap: {child_url}")
            await self._fetch_and_parse_sitemap(child_url, depth + 1)

    async def _fetch(self, url: str) -> Optional[str]:
        page = await self.pool.new_page(timeout_ms=self.timeout_ms)
        try:
            response = await page.goto(url, wait_until="networkidle", timeout=self.timeout_ms)
            if response is None or response.status >= 400:
                status = response.status if response is not None else "no response"
                logger.info(f"No sitemap at {url} ({status})")
                return None
            try:
                return await response.text()
            except Exception as e:
                # Body unavailable (e.g. evicted); use the rendered document
                logger.debug(f"Falling back to rendered sitemap for {url}: {e}")
                return await page.content()
        finally:
            try:
                await page.close()
            except Exception as e:
                logger.warning(f"Error closing sitemap page: {e}")

    def _parse_sitemap_content(self, content: str) -> List[str]:
        """Parse sitemap content, collecting page URLs.

        Returns:
            Child sitemap URLs to follow (non-empty only for sitemap indexes)
        """
        try:
            root = ET.fromstring(self._clean_xml_content(content))
        except ET.ParseError as e:
            logger.debug(f"Sitemap is not well-formed XML ({e}), scanning for <loc> tags")
            for loc in _LOC_RE.findall(content):
                self._add(html.unescape(loc))
            return []

        # Get the root tag without namespace
        root_tag = root.tag.split('}')[-1] if '}' in root.tag else root.tag

        if root_tag == 'sitemapindex':
            return self._locs(root, 'sitemap')
        if root_tag == 'urlset':
            for loc in self._locs(root, 'url'):
                self._add(loc)
        else:
            logger.warning(f"Unknown sitemap root element: {root_tag}")
        return []

    def _clean_xml_content(self, content: str) -> str:
        """Strip a DOCTYPE and any HTML wrapper around the XML."""
        content = content.strip()
        content = re.sub(r'<!DOCTYPE[^>]*>', '', content)

        if '<html' in content.lower():
            match = re.search(
                r'(<(?:urlset|sitemapindex)\b.*?</(?:urlset|sitemapindex)>)', content, re.DOTALL
            )
            if match:
                return match.group(1)

        return content

    def _locs(self, root: ET.Element, entry_tag: str) -> List[str]:
        locs = []
        for entry in root.iter():
            if entry.tag.split('}')[-1] != entry_tag:
                continue
            loc = entry.find('sm:loc', self.NAMESPACES)
            if loc is None:
                loc = entry.find('loc')
            if loc is not None and loc.text and loc.text.strip():
                locs.append(loc.text.strip())
        return locs

    def _add(self, loc: str) -> None:
        url = loc.strip()
        if url:
            self._urls.setdefault(url)
