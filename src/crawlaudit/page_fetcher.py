"""Single-page fetch: navigate, classify, screenshot, extract links, audit.

``PageFetcher.fetch`` turns every per-page failure into an error result. The
only exception it lets through is ``PoolDrainingError``, which means the
crawl's renderer pool is gone and the run cannot continue.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional
from urllib.parse import urlparse

from crawlaudit.accessibility import AccessibilityAuditor
from crawlaudit.browser_config import BrowserConfig
from crawlaudit.constants import (
    BLOCKED_HOSTS,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DOCUMENT_READY_TIMEOUT_MS,
    SLOW_RATE_LIMIT_PAGE_DELAY_SECONDS,
)
from crawlaudit.errors import (
    BLOCKED_HOST_MESSAGE,
    CHALLENGE_MESSAGE,
    ErrorKind,
    PoolDrainingError,
    classify_exception,
    classify_status,
)
from crawlaudit.frontier import is_same_origin, normalize_url
from crawlaudit.infrastructure.renderer_pool import RendererPool
from crawlaudit.models import (
    AccessibilityReport,
    CrawlResult,
    NavigationBlocked,
    NavigationHttpError,
    NavigationNetworkError,
    NavigationOutcome,
    NavigationSuccess,
)
from crawlaudit.output_manager import OutputManager
from crawlaudit.request import CrawlRequest, WcagLevels
from crawlaudit.utils.challenge_handler import ChallengeDetector, detect_challenge

logger = logging.getLogger(__name__)

_COLLECT_HREFS_JS = """
() => Array.from(document.querySelectorAll('a[href]')).map(a => a.getAttribute('href'))
"""


@dataclass(frozen=True)
class FetchOptions:
    """Per-page options derived from the crawl request."""
    take_screenshots: bool = False
    collect_links: bool = False
    check_accessibility: bool = False
    wcag_levels: WcagLevels = field(default_factory=WcagLevels)
    timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    slow_rate_limit: bool = False

    @classmethod
    def from_request(cls, request: CrawlRequest, collect_links: bool) -> "FetchOptions":
        return cls(
            take_screenshots=request.take_screenshots,
            collect_links=collect_links,
            check_accessibility=request.check_accessibility,
            wcag_levels=request.wcag_levels,
            timeout_ms=request.navigation_timeout_ms,
            slow_rate_limit=request.slow_rate_limit,
        )


def filter_links(
    hrefs: Iterable[Optional[str]],
    page_url: str,
    origin_base_url: str,
    visited,
) -> list[str]:
    """Resolve raw hrefs into new same-origin crawl candidates.

    Fragment-only and ``javascript:`` hrefs are dropped, the rest resolved
    against ``page_url``. Order of first appearance is kept.
    """
    links: dict[str, None] = {}
    for href in hrefs:
        if not href:
            continue
        href = href.strip()
        if href.startswith("#") or href.lower().startswith("javascript:"):
            continue
        absolute = normalize_url(href, page_url)
        if absolute is None or not is_same_origin(absolute, origin_base_url):
            continue
        if absolute in visited:
            continue
        links.setdefault(absolute)
    return list(links)


class PageFetcher:
    """Fetches and processes one URL on a pooled renderer page."""

    def __init__(
        self,
        pool: RendererPool,
        output_manager: OutputManager,
        auditor: Optional[AccessibilityAuditor] = None,
        challenge_detector: Optional[ChallengeDetector] = None,
        browser_config: Optional[BrowserConfig] = None,
        blocked_hosts: Iterable[str] = BLOCKED_HOSTS,
    ):
        """
        Args:
            pool: Renderer pool shared by the crawl
            output_manager: Screenshot locations
            auditor: Accessibility auditor (required for accessibility checks)
            challenge_detector: Async predicate naming a detected bot challenge
            browser_config: Navigation wait policy and settle delay
            blocked_hosts: Hostnames that are never navigated to
        """
        self.pool = pool
        self.output = output_manager
        self.auditor = auditor
        self.challenge_detector = challenge_detector or detect_challenge
        self.browser_config = browser_config or pool.browser_config
        self.blocked_hosts = frozenset(h.lower() for h in blocked_hosts)

    async def fetch(
        self,
        url: str,
        visited,
        origin_base_url: str,
        options: FetchOptions,
    ) -> CrawlResult:
        """Fetch one URL.

        Args:
            url: Absolute URL, already claimed by the caller
            visited: Visited set used to filter discovered links
            origin_base_url: Scheme and host links must stay within
            options: Per-page options

        Returns:
            CrawlResult; failures are carried in ``error``

        Raises:
            PoolDrainingError: If the renderer pool is being torn down
        """
        logger.info(f"Starting crawl of {url}")

        host = (urlparse(url).hostname or "").lower()
        if host in self.blocked_hosts:
            logger.warning(f"Skipping {url}: {host} is known to block crawlers")
            return CrawlResult.failure(
                url, ErrorKind.BLOCKED_HOST, BLOCKED_HOST_MESSAGE.format(host=host)
            )

        page = None
        closed = False
        try:
            page = await self.pool.new_page(timeout_ms=options.timeout_ms)
            page.on("dialog", lambda dialog: dialog.dismiss())

            outcome = await self._navigate(page, url, options.timeout_ms)
            if not isinstance(outcome, NavigationSuccess):
                logger.warning(f"Failed to crawl {url}: {outcome.message}")
                return CrawlResult.failure(url, outcome.kind, outcome.message)

            await self._wait_for_content(page, url)

            result = CrawlResult(url=url)

            if options.take_screenshots:
                result.screenshot = await self._take_screenshot(page, url)

            if options.collect_links:
                hrefs = await page.evaluate(_COLLECT_HREFS_JS) or []
                result.links = filter_links(hrefs, page.url or url, origin_base_url, visited)
                logger.debug(f"Found {len(result.links)} new link(s) on {url}")

            if options.check_accessibility:
                result.accessibility = await self._audit(page, options.wcag_levels)

            closed = True
            await self._close_page(page, url)

            if options.slow_rate_limit:
                await asyncio.sleep(SLOW_RATE_LIMIT_PAGE_DELAY_SECONDS)

            return result

        except PoolDrainingError:
            raise
        except Exception as e:
            kind, message = classify_exception(e)
            logger.error(f"Error crawling {url}: {e}")
            return CrawlResult.failure(url, kind, message)
        finally:
            if page is not None and not closed:
                await self._close_page(page, url)

    async def _close_page(self, page, url: str) -> None:
        try:
            await page.close()
        except Exception as e:
            logger.warning(f"Error closing page for {url}: {e}")

    async def _navigate(self, page, url: str, timeout_ms: int) -> NavigationOutcome:
        """Navigate and classify the main-document response.

        Navigation exceptions are classified here too, so the caller only
        has to branch on the outcome type.
        """
        try:
            response = await page.goto(
                url,
                wait_until=self.browser_config.wait_until,
                timeout=timeout_ms,
            )
        except PoolDrainingError:
            raise
        except Exception as e:
            kind, message = classify_exception(e)
            return NavigationNetworkError(kind=kind, message=message)

        status = response.status if response is not None else None
        classified = classify_status(status)
        if classified is not None:
            kind, message = classified
            if kind.is_policy:
                return NavigationBlocked(kind=kind, message=message)
            return NavigationHttpError(status=status, kind=kind, message=message)

        challenge = await self.challenge_detector(page)
        if challenge:
            logger.warning(f"Bot challenge ({challenge}) detected on {url}")
            return NavigationBlocked(kind=ErrorKind.CHALLENGE, message=CHALLENGE_MESSAGE)

        return NavigationSuccess(status=status, final_url=page.url)

    async def _wait_for_content(self, page, url: str) -> None:
        try:
            await page.wait_for_function(
                "() => document.readyState === 'complete'",
                timeout=DOCUMENT_READY_TIMEOUT_MS,
            )
        except Exception:
            logger.info(f"Page load timeout for {url}, continuing anyway...")

        delay = self.browser_config.settle_delay_ms
        if delay:
            await asyncio.sleep(delay / 1000)

    async def _take_screenshot(self, page, url: str) -> Optional[str]:
        path, web_path = self.output.screenshot_path(url)
        try:
            await page.screenshot(path=str(path), full_page=True)
            return web_path
        except Exception as e:
            logger.error(f"Error taking screenshot of {url}: {e}")
            return None

    async def _audit(self, page, levels: WcagLevels) -> AccessibilityReport:
        if self.auditor is None:
            return AccessibilityReport.failed("Accessibility auditor not configured")
        try:
            return await self.auditor.audit(page, levels)
        except PoolDrainingError:
            raise
        except Exception as e:
            logger.error(f"Accessibility check failed: {e}")
            return AccessibilityReport.failed(str(e) or "Unknown error during accessibility check")
