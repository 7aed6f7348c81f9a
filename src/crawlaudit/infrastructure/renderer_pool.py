"""
Renderer Pool Management.

This module manages a small pool of browser instances shared by every page
fetch of one crawl. Each fetch opens its own page (in its own browser
context) on a pooled instance; instances are reused round-robin once the
pool is full, and all of them are closed when the crawl ends.

Teardown and acquisition are mutually exclusive: while ``release_all()`` is
in flight, ``acquire()`` fails fast with ``PoolDrainingError``.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from playwright.async_api import async_playwright

from crawlaudit.browser_config import BrowserConfig
from crawlaudit.constants import MAX_RENDERER_INSTANCES
from crawlaudit.errors import PoolDrainingError

logger = logging.getLogger(__name__)

Launcher = Callable[[], Awaitable[Any]]


@dataclass
class PoolStatus:
    """Current status of the renderer pool."""
    instances: int
    max_size: int
    draining: bool
    launches: int
    pages_opened: int
    close_failures: int
    uptime_seconds: float


class RendererPool:
    """
    Bounded pool of renderer (browser) instances for one crawl.

    Features:
    - Lazy launch up to ``max_size`` instances, then round-robin reuse
    - One fresh page per fetch; several pages may share an instance
    - Idempotent teardown that tolerates individual close failures
    - Fail-fast acquisition while teardown is in progress
    """

    def __init__(
        self,
        max_size: int = MAX_RENDERER_INSTANCES,
        browser_config: Optional[BrowserConfig] = None,
        launcher: Optional[Launcher] = None,
    ):
        """
        Initialize renderer pool.

        Args:
            max_size: Maximum number of live renderer instances
            browser_config: Launch and page settings
            launcher: Async callable returning a new renderer instance.
                Defaults to launching Playwright chromium.
        """
        self.max_size = max(1, max_size)
        self.browser_config = browser_config or BrowserConfig()
        self._launcher = launcher

        self._playwright = None
        self._instances: list[Any] = []
        self._next_index = 0
        self._lock = asyncio.Lock()
        self._draining = False
        self._drain_task: Optional[asyncio.Future] = None
        self._start_time = datetime.now()
        self._launches = 0
        self._pages_opened = 0
        self._close_failures = 0

    async def __aenter__(self) -> "RendererPool":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.release_all()

    async def _launch(self) -> Any:
        """Launch a new renderer instance."""
        if self._launcher is not None:
            return await self._launcher()

        if self._playwright is None:
            self._playwright = await async_playwright().start()

        return await self._playwright.chromium.launch(
            headless=self.browser_config.headless,
            args=self.browser_config.launch_args,
            timeout=self.browser_config.launch_timeout,
        )

    async def acquire(self) -> Any:
        """
        Get a renderer instance for one fetch.

        Launches a new instance while the pool is below capacity, otherwise
        returns a pooled one round-robin.

        Returns:
            Renderer instance (Playwright Browser)

        Raises:
            PoolDrainingError: If release_all() is in progress
        """
        if self._draining:
            raise PoolDrainingError()

        async with self._lock:
            # Teardown may have started while we waited for the lock
            if self._draining:
                raise PoolDrainingError()

            if len(self._instances) < self.max_size:
                instance = await self._launch()
                self._instances.append(instance)
                self._launches += 1
                logger.debug(
                    f"Launched renderer instance {len(self._instances)}/{self.max_size}"
                )
                return instance

            instance = self._instances[self._next_index % len(self._instances)]
            self._next_index += 1
            return instance

    async def new_page(
        self,
        user_agent: Optional[str] = None,
        timeout_ms: Optional[int] = None,
    ) -> Any:
        """
        Open a fresh page on a pooled instance.

        The page gets its own browser context, so closing the page also
        discards its cookies and storage.

        Args:
            user_agent: User agent for this page (rotated if None)
            timeout_ms: Default timeout for navigation and other operations

        Returns:
            Playwright Page
        """
        instance = await self.acquire()
        config = self.browser_config

        page = await instance.new_page(
            user_agent=user_agent or config.get_user_agent(),
            ignore_https_errors=True,
            viewport={"width": config.viewport_width, "height": config.viewport_height},
        )

        timeout = timeout_ms or config.timeout
        page.set_default_timeout(timeout)
        page.set_default_navigation_timeout(timeout)

        self._pages_opened += 1
        return page

    async def release_all(self) -> None:
        """
        Close every instance and clear the pool.

        Idempotent: concurrent callers share the in-flight teardown, and
        calling on an empty pool is a no-op. Individual close failures are
        logged and do not stop the teardown.
        """
        if self._drain_task is not None:
            await asyncio.shield(self._drain_task)
            return

        self._draining = True
        self._drain_task = asyncio.ensure_future(self._drain())
        await asyncio.shield(self._drain_task)

    async def _drain(self) -> None:
        # Cleared here so a cancelled release_all() caller cannot end draining early
        try:
            await self._close_instances()
        finally:
            self._drain_task = None
            self._draining = False

    async def _close_instances(self) -> None:
        async with self._lock:
            instances, self._instances = self._instances, []
            self._next_index = 0

            if instances:
                logger.info(f"Closing {len(instances)} renderer instance(s)")

            results = await asyncio.gather(
                *(instance.close() for instance in instances),
                return_exceptions=True,
            )
            for index, result in enumerate(results):
                if isinstance(result, BaseException):
                    self._close_failures += 1
                    logger.warning(f"Error closing renderer instance {index}: {result}")

            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.warning(f"Error stopping playwright: {e}")
                self._playwright = None

    def get_status(self) -> PoolStatus:
        """Get current pool status."""
        return PoolStatus(
            instances=len(self._instances),
            max_size=self.max_size,
            draining=self._draining,
            launches=self._launches,
            pages_opened=self._pages_opened,
            close_failures=self._close_failures,
            uptime_seconds=(datetime.now() - self._start_time).total_seconds(),
        )

    @property
    def size(self) -> int:
        """Number of live renderer instances."""
        return len(self._instances)

    @property
    def is_draining(self) -> bool:
        """Whether teardown is in progress."""
        return self._draining


@asynccontextmanager
async def isolated_renderer(
    browser_config: Optional[BrowserConfig] = None,
    launcher: Optional[Launcher] = None,
):
    """
    Launch a standalone renderer outside any pool.

    Usage:
        async with isolated_renderer(AUDIT_CONFIG) as browser:
            page = await browser.new_page()

    The renderer (and its Playwright driver) is closed on exit, whether the
    body succeeded or raised.
    """
    config = browser_config or BrowserConfig()
    playwright = None
    browser = None

    try:
        if launcher is not None:
            browser = await launcher()
        else:
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(
                headless=config.headless,
                args=config.launch_args,
                timeout=config.launch_timeout,
            )
        yield browser
    finally:
        if browser is not None:
            try:
                await browser.close()
            except Exception as e:
                logger.warning(f"Error closing isolated renderer: {e}")
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping playwright: {e}")
