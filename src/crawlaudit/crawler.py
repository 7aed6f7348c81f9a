"""Crawl orchestration: discovery, concurrent waves, progress frames, teardown."""

import asyncio
import logging
import time
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator, List, Optional

from crawlaudit.accessibility import AccessibilityAuditor, load_axe_script
from crawlaudit.browser_config import AUDIT_CONFIG, CRAWL_CONFIG
from crawlaudit.config import Config
from crawlaudit.constants import SLOW_RATE_LIMIT_WAVE_DELAY_SECONDS
from crawlaudit.errors import (
    POOL_BUSY_MESSAGE,
    TIMEOUT_MESSAGE,
    ErrorKind,
    PoolDrainingError,
)
from crawlaudit.frontier import FrontierManager, normalize_url, origin_of
from crawlaudit.infrastructure.renderer_pool import RendererPool
from crawlaudit.models import CrawlResult, ProgressFrame, error_frame
from crawlaudit.output_manager import OutputManager
from crawlaudit.page_fetcher import FetchOptions, PageFetcher
from crawlaudit.request import CrawlRequest, validate_seed_url

logger = logging.getLogger(__name__)

INTERNAL_ERROR_MESSAGE = "Internal server error during crawl"


class CrawlState(Enum):
    IDLE = "idle"
    PLANNING = "planning"
    FETCHING = "fetching"
    DISCOVERING = "discovering"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CrawlOrchestrator:
    """Runs one crawl request and yields its progress frames.

    Usage:
        orchestrator = CrawlOrchestrator(request, config=config)
        async for frame in orchestrator.run():
            send(frame)

    Single-page mode fetches the seed once. Entire-site mode plans discovery
    (sitemap, else recursive link-following from the seed) and fetches the
    frontier in waves of ``concurrent_pages``. Every wave yields one
    non-terminal frame with that wave's results; a successful run ends with
    one terminal frame holding all results. The renderer pool is released
    on every exit path.
    """

    def __init__(
        self,
        request: CrawlRequest,
        pool: Optional[RendererPool] = None,
        fetcher: Optional[PageFetcher] = None,
        frontier: Optional[FrontierManager] = None,
        output_manager: Optional[OutputManager] = None,
        config: Optional[Config] = None,
        clean_outputs: bool = True,
    ):
        """
        Args:
            request: Validated crawl request
            pool: Renderer pool (built from ``config`` if None)
            fetcher: Page fetcher (built on ``pool`` if None)
            frontier: Frontier manager (built on ``pool`` if None)
            output_manager: Output locations (built from ``config`` if None)
            config: Service configuration
            clean_outputs: Delete previous screenshots and stale snapshots on
                start. Must be False while other crawls share the directories.
        """
        self.request = request
        self.config = config or Config()
        self.output = output_manager or OutputManager(self.config.public_dir, self.config.temp_dir)
        self.pool = pool or RendererPool(
            max_size=self.config.pool_size,
            browser_config=CRAWL_CONFIG.model_copy(update={
                "headless": self.config.headless,
                "settle_delay_ms": self.config.settle_delay_ms,
            }),
        )
        self.fetcher = fetcher or PageFetcher(
            self.pool,
            self.output,
            auditor=self._build_auditor() if request.check_accessibility else None,
        )
        self.frontier = frontier or FrontierManager(pool=self.pool)
        self.clean_outputs = clean_outputs

        self.state = CrawlState.IDLE
        self.results: List[CrawlResult] = []
        self._cancelled = False
        self._deadline: Optional[float] = None

    def _build_auditor(self) -> AccessibilityAuditor:
        axe_script = None
        if self.config.axe_script_path:
            axe_script = load_axe_script(self.config.axe_script_path)
        return AccessibilityAuditor(
            self.output,
            browser_config=AUDIT_CONFIG.model_copy(update={"headless": self.config.headless}),
            axe_script=axe_script,
        )

    def cancel(self) -> None:
        """Stop after the current wave."""
        if not self._cancelled:
            logger.info("Crawl cancelled, stopping after the current wave")
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def _should_stop(self) -> bool:
        if self._cancelled:
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            logger.warning(
                f"Crawl time limit of {self.config.crawl_timeout_seconds}s reached, "
                f"finishing with {len(self.results)} result(s)"
            )
            return True
        return False

    async def run(self) -> AsyncIterator[dict]:
        """Execute the crawl, yielding progress frames as dicts."""
        request = self.request
        try:
            if not request.url:
                logger.error("No URL provided")
                self.state = CrawlState.FAILED
                yield error_frame("URL is required")
                return

            reason = validate_seed_url(request.url)
            if reason:
                logger.error(f"Invalid URL {request.url}: {reason}")
                self.state = CrawlState.FAILED
                yield error_frame(f"Invalid URL: {reason}")
                return

            logger.info(f"Starting crawl for URL: {request.url}")
            logger.debug(f"Options: {request.model_dump(by_alias=True)}")
            self._deadline = time.monotonic() + self.config.crawl_timeout_seconds

            if self.clean_outputs:
                self._prepare_outputs()

            async with aclosing(self._crawl()) as frames:
                async for frame in frames:
                    yield frame

        except PoolDrainingError as e:
            logger.error(f"Renderer pool unavailable: {e}")
            self.state = CrawlState.FAILED
            yield error_frame(POOL_BUSY_MESSAGE)
        except Exception:
            logger.exception("Error during crawl")
            self.state = CrawlState.FAILED
            yield error_frame(INTERNAL_ERROR_MESSAGE)
        finally:
            logger.info("Cleaning up resources")
            await self.pool.release_all()

    def _prepare_outputs(self) -> None:
        if self.request.take_screenshots:
            removed = self.output.cleanup_screenshots()
            logger.info(f"Cleaned up {removed} old screenshot(s)")
        self.output.cleanup_temp()

    async def _crawl(self) -> AsyncIterator[dict]:
        request = self.request
        seed = normalize_url(request.url) or request.url
        origin = origin_of(seed)
        checked_accessibility = request.check_accessibility

        if request.crawl_entire_website:
            logger.info("Starting full website crawl")
            self.state = CrawlState.PLANNING
            plan = await self.frontier.plan_discovery(seed, origin)
            used_sitemap: Optional[bool] = plan.used_sitemap
            batch_size = request.concurrent_pages
            collect_links = not plan.used_sitemap
        else:
            logger.info("Starting single page crawl")
            self.frontier.enqueue([seed])
            used_sitemap = None
            batch_size = 1
            collect_links = False

        options = FetchOptions.from_request(request, collect_links=collect_links)

        while self.frontier.pending_count and not self._should_stop():
            self.state = CrawlState.FETCHING
            batch = await self.frontier.next_batch(batch_size)
            if not batch:
                continue

            logger.info(f"Processing batch of {len(batch)} URLs with concurrency {batch_size}")
            wave = await self._run_wave(batch, origin, options)
            self.results.extend(wave)

            if collect_links:
                self.state = CrawlState.DISCOVERING
                added = self.frontier.enqueue(self.frontier.harvest(wave))
                logger.info(f"Found {added} new links to crawl")

            logger.info(f"Completed batch, total results: {len(self.results)}")
            yield ProgressFrame(
                results=wave,
                used_sitemap=used_sitemap,
                is_complete=False,
                checked_accessibility=checked_accessibility,
                current=len(self.results),
                total=self.frontier.total_known,
            ).to_dict()

            if request.slow_rate_limit and self.frontier.pending_count:
                await asyncio.sleep(SLOW_RATE_LIMIT_WAVE_DELAY_SECONDS)

        self.state = CrawlState.CANCELLED if self._cancelled else CrawlState.COMPLETED
        logger.info(f"Crawl {self.state.value}, sending final results")
        yield ProgressFrame(
            results=list(self.results),
            used_sitemap=used_sitemap,
            is_complete=True,
            checked_accessibility=checked_accessibility,
        ).to_dict()

    async def _run_wave(self, batch: List[str], origin: str, options: FetchOptions) -> List[CrawlResult]:
        """Fetch a batch concurrently; results keep the batch order."""

        async def fetch_one(url: str) -> CrawlResult:
            try:
                return await asyncio.wait_for(
                    self.fetcher.fetch(url, self.frontier.visited, origin, options),
                    timeout=self.config.page_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.error(f"Page timeout for {url}")
                return CrawlResult.failure(url, ErrorKind.TIMEOUT, TIMEOUT_MESSAGE)

        tasks = [asyncio.ensure_future(fetch_one(url)) for url in batch]
        try:
            _, unfinished = await asyncio.wait(tasks, timeout=self.config.batch_timeout_seconds)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if unfinished:
            logger.error(f"Batch timeout, {len(unfinished)} page(s) did not finish")

        results = []
        for url, task in zip(batch, tasks):
            if task in unfinished:
                results.append(CrawlResult.failure(url, ErrorKind.TIMEOUT, TIMEOUT_MESSAGE))
            else:
                results.append(task.result())
        return results
