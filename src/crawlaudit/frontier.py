"""URL frontier: visited-set bookkeeping and discovery planning."""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, FrozenSet, Iterable, List, Optional, Set
from urllib.parse import urldefrag, urljoin, urlparse, urlunparse

from crawlaudit.constants import SITEMAP_PATH
from crawlaudit.errors import PoolDrainingError
from crawlaudit.models import CrawlResult
from crawlaudit.sitemap_parser import SitemapParser

logger = logging.getLogger(__name__)


def normalize_url(url: str, base: Optional[str] = None) -> Optional[str]:
    """Canonical form of an absolute http(s) URL.

    Resolves against ``base``, drops the fragment, lowercases scheme and host
    and gives an empty path a ``/``. The query and any trailing slash are kept.

    Returns:
        Normalized URL, or None if it is not an http(s) URL with a host
    """
    try:
        absolute = urljoin(base, url) if base else url
        absolute, _ = urldefrag(absolute.strip())
        parsed = urlparse(absolute)
    except ValueError:
        return None

    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https") or not parsed.netloc:
        return None

    return urlunparse(parsed._replace(
        scheme=scheme,
        netloc=parsed.netloc.lower(),
        path=parsed.path or "/",
    ))


def origin_of(url: str) -> str:
    """Scheme and host of ``url``, e.g. https://example.test"""
    parsed = urlparse(url)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def is_same_origin(url: str, origin_base_url: str) -> bool:
    """Whether ``url`` lies under ``origin_base_url``.

    A plain prefix test would also accept ``https://site.test.evil``; the
    character after the origin must end the authority.
    """
    if not url.startswith(origin_base_url):
        return False
    rest = url[len(origin_base_url):]
    return rest == "" or rest[0] in "/?#"


class VisitedSet:
    """URLs claimed for fetching in one crawl.

    A URL is claimed when it is selected for a wave, before the fetch starts,
    so it is never fetched twice in a run.
    """

    def __init__(self, urls: Iterable[str] = ()):
        self._urls: Set[str] = {self._key(u) for u in urls}
        self._lock = asyncio.Lock()

    @staticmethod
    def _key(url: str) -> str:
        return normalize_url(url) or url

    async def claim(self, url: str) -> bool:
        """Add ``url``; True if this caller won it, False if already claimed."""
        key = self._key(url)
        async with self._lock:
            if key in self._urls:
                return False
            self._urls.add(key)
            return True

    async def claim_many(self, urls: Iterable[str]) -> List[str]:
        """Claim URLs in order; returns the ones this caller won."""
        won = []
        async with self._lock:
            for url in urls:
                key = self._key(url)
                if key not in self._urls:
                    self._urls.add(key)
                    won.append(url)
        return won

    def __contains__(self, url: str) -> bool:
        return self._key(url) in self._urls

    def __len__(self) -> int:
        return len(self._urls)

    def snapshot(self) -> FrozenSet[str]:
        return frozenset(self._urls)


@dataclass
class DiscoveryPlan:
    """Initial frontier for an entire-site crawl."""
    urls: List[str]
    used_sitemap: bool


class FrontierManager:
    """Pending queue plus visited set for one crawl.

    In sitemap mode the pending queue is filled once from the sitemap; in
    recursive mode it grows with the links harvested from each wave.
    """

    def __init__(
        self,
        pool=None,
        visited: Optional[VisitedSet] = None,
        sitemap_parser: Optional[SitemapParser] = None,
    ):
        """
        Args:
            pool: Renderer pool used to fetch the sitemap
            visited: Visited set (a fresh one if None)
            sitemap_parser: Parser override (built on ``pool`` if None)
        """
        self.visited = visited or VisitedSet()
        self.sitemap_parser = sitemap_parser or (SitemapParser(pool) if pool is not None else None)
        self.pending: Deque[str] = deque()
        self._queued: Set[str] = set()

    async def plan_discovery(self, seed_url: str, origin_base_url: str) -> DiscoveryPlan:
        """Pick the initial URLs: the sitemap if it lists any, else the seed.

        The plan's URLs are enqueued.

        Raises:
            PoolDrainingError: If the renderer pool is being torn down
        """
        urls: List[str] = []
        if self.sitemap_parser is not None:
            sitemap_url = origin_base_url + SITEMAP_PATH
            try:
                urls = await self.sitemap_parser.fetch_urls(sitemap_url)
            except PoolDrainingError:
                raise
            except Exception as e:
                logger.error(f"Sitemap discovery failed for {sitemap_url}: {e}")
                urls = []

        normalized = list(dict.fromkeys(
            u for u in (normalize_url(url) for url in urls) if u is not None
        ))

        if normalized:
            plan = DiscoveryPlan(urls=normalized, used_sitemap=True)
        else:
            plan = DiscoveryPlan(urls=[normalize_url(seed_url) or seed_url], used_sitemap=False)

        logger.info(f"Sitemap found: {plan.used_sitemap}, URLs to crawl: {len(plan.urls)}")
        self.enqueue(plan.urls)
        return plan

    def enqueue(self, urls: Iterable[str]) -> int:
        """Append URLs that are neither visited nor already pending.

        Returns:
            Number of URLs added
        """
        added = 0
        for url in urls:
            key = normalize_url(url) or url
            if key in self.visited or key in self._queued:
                continue
            self._queued.add(key)
            self.pending.append(key)
            added += 1
        return added

    async def next_batch(self, batch_size: int) -> List[str]:
        """Pop and claim up to ``batch_size`` pending URLs.

        URLs claimed since they were enqueued are skipped.
        """
        batch: List[str] = []
        while self.pending and len(batch) < batch_size:
            url = self.pending.popleft()
            self._queued.discard(url)
            if await self.visited.claim(url):
                batch.append(url)
        return batch

    def harvest(self, results: Iterable[CrawlResult]) -> List[str]:
        """Links from ``results`` that are not yet visited, first-seen order."""
        links: dict = {}
        for result in results:
            for link in result.links:
                if link not in self.visited:
                    links.setdefault(link)
        return list(links)

    @property
    def pending_count(self) -> int:
        return len(self.pending)

    @property
    def total_known(self) -> int:
        """Claimed plus pending URLs."""
        return len(self.visited) + len(self.pending)
