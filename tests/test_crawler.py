"""Tests for CrawlOrchestrator.

Covers the streaming contract, discovery modes, dedup and pool teardown.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock, call, patch

from crawlaudit.constants import SLOW_RATE_LIMIT_WAVE_DELAY_SECONDS
from crawlaudit.crawler import CrawlOrchestrator, CrawlState
from crawlaudit.errors import PoolDrainingError
from crawlaudit.frontier import FrontierManager
from crawlaudit.models import CrawlResult
from crawlaudit.request import CrawlRequest


NO_SITEMAP = {"status": 404}

SITEMAP_XML = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">
  <url><loc>https://example.test/</loc></url>
  <url><loc>https://example.test/a</loc></url>
</urlset>
"""


async def collect(orchestrator):
    return [frame async for frame in orchestrator.run()]


def result_urls(frame):
    return [r["url"] for r in frame["results"]]


@pytest.fixture
def make_orchestrator(make_pool, output_manager, test_config):
    def _make(site, clean_outputs=True, **request_fields):
        pool, renderer = make_pool(site)
        request = CrawlRequest(**request_fields)
        orchestrator = CrawlOrchestrator(
            request,
            pool=pool,
            output_manager=output_manager,
            config=test_config,
            clean_outputs=clean_outputs,
        )
        return orchestrator, renderer

    return _make


class TestStreamingContract:
    """Frame sequence produced by a run."""

    @pytest.mark.asyncio
    async def test_three_pages_concurrency_one(self, make_orchestrator):
        """3 pages at concurrency 1 give 3 non-terminal frames and 1 terminal frame."""
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {"links": ["/a"]},
            "https://example.test/a": {"links": ["/b"]},
            "https://example.test/b": {"links": ["/"]},
        }
        orchestrator, _ = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True, concurrentPages=1
        )

        frames = await collect(orchestrator)

        assert len(frames) == 4
        for frame in frames[:3]:
            assert frame["isComplete"] is False
            assert len(frame["newResults"]) == 1
        terminal = frames[-1]
        assert terminal["isComplete"] is True
        assert len(terminal["results"]) == 3
        assert terminal["usedSitemap"] is False
        assert orchestrator.state == CrawlState.COMPLETED

    @pytest.mark.asyncio
    async def test_progress_counts(self, make_orchestrator):
        """progress.current counts emitted results; total counts known URLs."""
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {"links": ["/a", "/b"]},
            "https://example.test/a": {},
            "https://example.test/b": {},
        }
        orchestrator, _ = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True, concurrentPages=1
        )

        frames = await collect(orchestrator)

        assert frames[0]["progress"] == {"current": 1, "total": 3}
        assert frames[2]["progress"] == {"current": 3, "total": 3}

    @pytest.mark.asyncio
    async def test_single_page_mode(self, make_orchestrator):
        """Single-page mode emits one wave, usedSitemap null, and no links."""
        site = {"https://example.test/": {"links": ["/a"]}}
        orchestrator, renderer = make_orchestrator(site, url="https://example.test/")

        frames = await collect(orchestrator)

        assert len(frames) == 2
        assert frames[0]["newResults"] == [{"url": "https://example.test/", "links": []}]
        assert frames[0]["usedSitemap"] is None
        assert frames[1]["usedSitemap"] is None
        assert frames[1]["checkedAccessibility"] is False
        assert not renderer.navigated("https://example.test/sitemap.xml")

    @pytest.mark.asyncio
    async def test_missing_url(self, make_orchestrator):
        """A request without a URL yields a single error frame."""
        orchestrator, renderer = make_orchestrator({}, url=None)

        frames = await collect(orchestrator)

        assert frames == [{"error": "URL is required"}]
        assert renderer.browsers == []

    @pytest.mark.asyncio
    async def test_invalid_url(self, make_orchestrator):
        """A malformed seed yields an Invalid URL error frame."""
        orchestrator, _ = make_orchestrator({}, url="ftp://example.test/file")

        frames = await collect(orchestrator)

        assert len(frames) == 1
        assert frames[0]["error"].startswith("Invalid URL:")
        assert orchestrator.state == CrawlState.FAILED


class TestDiscovery:
    """Sitemap and recursive discovery."""

    @pytest.mark.asyncio
    async def test_recursive_scenario(self, make_orchestrator):
        """Seed with two in-domain links and one cross-origin link, no sitemap."""
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {
                "links": ["/one", "https://example.test/two", "https://other.test/three"],
            },
            "https://example.test/one": {},
            "https://example.test/two": {},
        }
        orchestrator, renderer = make_orchestrator(
            site, url="https://example.test", crawlEntireWebsite=True, concurrentPages=2
        )

        frames = await collect(orchestrator)

        assert [len(f["newResults"]) for f in frames[:-1]] == [1, 2]
        assert frames[0]["newResults"][0]["links"] == [
            "https://example.test/one",
            "https://example.test/two",
        ]
        terminal = frames[-1]
        assert len(terminal["results"]) == 3
        assert terminal["usedSitemap"] is False
        assert not renderer.navigated("https://other.test/three")

    @pytest.mark.asyncio
    async def test_sitemap_exclusivity(self, make_orchestrator):
        """Pages linked from sitemap pages but absent from the sitemap are not crawled."""
        site = {
            "https://example.test/sitemap.xml": {"body": SITEMAP_XML},
            "https://example.test/": {"links": ["/hidden"]},
            "https://example.test/a": {"links": ["/hidden", "/also-hidden"]},
            "https://example.test/hidden": {},
            "https://example.test/also-hidden": {},
        }
        orchestrator, renderer = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True, concurrentPages=2
        )

        frames = await collect(orchestrator)

        terminal = frames[-1]
        assert terminal["usedSitemap"] is True
        assert sorted(result_urls(terminal)) == ["https://example.test/", "https://example.test/a"]
        assert not renderer.navigated("https://example.test/hidden")
        assert not renderer.navigated("https://example.test/also-hidden")

    @pytest.mark.asyncio
    async def test_dedup_under_concurrent_discovery(self, make_orchestrator):
        """A link found by several pages in one wave is fetched once."""
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {"links": ["/a", "/b", "/c"]},
            "https://example.test/a": {"links": ["/shared", "/", "/b"]},
            "https://example.test/b": {"links": ["/shared", "/a#top"]},
            "https://example.test/c": {"links": ["/shared", "/shared?"]},
            "https://example.test/shared": {"links": ["/a", "/b", "/c"]},
            "https://example.test/shared?": {},
        }
        orchestrator, renderer = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True, concurrentPages=3
        )

        frames = await collect(orchestrator)

        urls = result_urls(frames[-1])
        assert len(urls) == len(set(urls))
        assert urls.count("https://example.test/shared") == 1
        navigations = [url for url, _ in renderer.navigations if not url.endswith("sitemap.xml")]
        assert len(navigations) == len(set(navigations))


class TestTeardown:
    """The pool ends every run with zero live instances."""

    @pytest.mark.asyncio
    async def test_after_success(self, make_orchestrator):
        site = {"https://example.test/": {}}
        orchestrator, renderer = make_orchestrator(site, url="https://example.test/")

        await collect(orchestrator)

        assert renderer.browsers
        assert renderer.live_browsers == []
        assert orchestrator.pool.size == 0

    @pytest.mark.asyncio
    async def test_after_cancel(self, make_orchestrator):
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {"links": ["/a"]},
            "https://example.test/a": {},
        }
        orchestrator, renderer = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True, concurrentPages=1
        )

        frames = []
        async for frame in orchestrator.run():
            frames.append(frame)
            orchestrator.cancel()

        assert len(frames) == 2
        assert frames[-1]["isComplete"] is True
        assert len(frames[-1]["results"]) == 1
        assert orchestrator.state == CrawlState.CANCELLED
        assert renderer.live_browsers == []

    @pytest.mark.asyncio
    async def test_after_consumer_stops_reading(self, make_orchestrator):
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {"links": ["/a"]},
            "https://example.test/a": {},
        }
        orchestrator, renderer = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True, concurrentPages=1
        )

        frames = orchestrator.run()
        await frames.__anext__()
        await frames.aclose()

        assert renderer.live_browsers == []

    @pytest.mark.asyncio
    async def test_after_request_error(self, make_orchestrator):
        orchestrator, _ = make_orchestrator({}, url="not a url")
        orchestrator.pool.release_all = AsyncMock()

        await collect(orchestrator)

        orchestrator.pool.release_all.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_after_internal_exception(self, make_orchestrator):
        site = {"https://example.test/": {}}
        orchestrator, renderer = make_orchestrator(site, url="https://example.test/")
        orchestrator.fetcher.fetch = AsyncMock(side_effect=RuntimeError("boom"))

        frames = await collect(orchestrator)

        assert frames == [{"error": "Internal server error during crawl"}]
        assert orchestrator.state == CrawlState.FAILED
        assert renderer.live_browsers == []

    @pytest.mark.asyncio
    async def test_pool_draining_reports_busy(self, make_orchestrator):
        site = {"https://example.test/": {}}
        orchestrator, _ = make_orchestrator(site, url="https://example.test/")
        orchestrator.fetcher.fetch = AsyncMock(side_effect=PoolDrainingError())

        frames = await collect(orchestrator)

        assert frames == [{"error": "System busy, please retry later"}]
        assert orchestrator.state == CrawlState.FAILED


class TestTimeouts:
    """Per-page and global time bounds."""

    @pytest.mark.asyncio
    async def test_page_timeout_becomes_error_result(self, make_orchestrator, test_config):
        site = {"https://example.test/": {"delay": 5}}
        test_config.page_timeout_seconds = 0.05
        orchestrator, renderer = make_orchestrator(site, url="https://example.test/")

        frames = await collect(orchestrator)

        result = frames[-1]["results"][0]
        assert result["error"] == "Page load timed out"
        assert renderer.live_browsers == []
        assert all(page.closed for page in renderer.pages)

    @pytest.mark.asyncio
    async def test_crawl_deadline_stops_new_waves(self, make_orchestrator, test_config):
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {"links": ["/a"]},
            "https://example.test/a": {},
        }
        test_config.crawl_timeout_seconds = 0
        orchestrator, _ = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True
        )

        frames = await collect(orchestrator)

        assert frames[-1]["isComplete"] is True
        assert frames[-1]["results"] == []

    @pytest.mark.asyncio
    async def test_batch_timeout_fails_unfinished_pages(self, make_orchestrator, test_config):
        site = {
            "https://example.test/sitemap.xml": {"body": SITEMAP_XML},
            "https://example.test/": {},
            "https://example.test/a": {"delay": 5},
        }
        test_config.batch_timeout_seconds = 0.05
        orchestrator, renderer = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True, concurrentPages=2
        )

        frames = await collect(orchestrator)

        results = {r["url"]: r for r in frames[-1]["results"]}
        assert "error" not in results["https://example.test/"]
        assert results["https://example.test/a"]["error"] == "Page load timed out"
        assert renderer.live_browsers == []
        assert all(page.closed for page in renderer.pages)


class TestSlowRateLimit:
    """Pacing between pages and waves."""

    @pytest.mark.asyncio
    async def test_delay_between_waves(self, make_orchestrator):
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {"links": ["/a"]},
            "https://example.test/a": {"links": ["/b"]},
            "https://example.test/b": {},
        }
        orchestrator, _ = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True,
            concurrentPages=1, slowRateLimit=True,
        )

        with patch("crawlaudit.crawler.asyncio.sleep", new_callable=AsyncMock) as sleep:
            frames = await collect(orchestrator)

        assert len(frames[-1]["results"]) == 3
        wave_delay = call(SLOW_RATE_LIMIT_WAVE_DELAY_SECONDS)
        wave_delays = [c for c in sleep.await_args_list if c == wave_delay]
        # No delay after the last wave
        assert len(wave_delays) == 2

    @pytest.mark.asyncio
    async def test_no_delay_without_flag(self, make_orchestrator):
        site = {
            "https://example.test/sitemap.xml": NO_SITEMAP,
            "https://example.test/": {"links": ["/a"]},
            "https://example.test/a": {},
        }
        orchestrator, _ = make_orchestrator(
            site, url="https://example.test/", crawlEntireWebsite=True, concurrentPages=1
        )

        with patch("crawlaudit.crawler.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await collect(orchestrator)

        sleep.assert_not_awaited()


class TestOutputs:
    """Output directory handling."""

    @pytest.mark.asyncio
    async def test_screenshots_cleaned_and_taken(self, make_orchestrator, output_manager):
        output_manager.screenshot_dir.mkdir(parents=True)
        stale = output_manager.screenshot_dir / "old.png"
        stale.write_bytes(b"old")
        site = {"https://example.test/": {}}
        orchestrator, _ = make_orchestrator(
            site, url="https://example.test/", takeScreenshots=True
        )

        frames = await collect(orchestrator)

        assert not stale.exists()
        screenshot = frames[-1]["results"][0]["screenshot"]
        assert screenshot.startswith("/screenshots/")
        assert (output_manager.screenshot_dir / screenshot.rsplit("/", 1)[1]).exists()

    @pytest.mark.asyncio
    async def test_clean_outputs_disabled(self, make_orchestrator, output_manager):
        output_manager.screenshot_dir.mkdir(parents=True)
        other = output_manager.screenshot_dir / "other-crawl.png"
        other.write_bytes(b"keep")
        site = {"https://example.test/": {}}
        orchestrator, _ = make_orchestrator(
            site, clean_outputs=False, url="https://example.test/", takeScreenshots=True
        )

        await collect(orchestrator)

        assert other.exists()


class TestWithInjectedCollaborators:
    """The orchestrator only relies on the fetcher and frontier interfaces."""

    @pytest.mark.asyncio
    async def test_results_keep_batch_order(self, test_config, output_manager):
        pool = MagicMock()
        pool.release_all = AsyncMock()
        frontier = FrontierManager(sitemap_parser=MagicMock(fetch_urls=AsyncMock(return_value=[
            "https://example.test/slow",
            "https://example.test/fast",
        ])))

        async def fetch(url, visited, origin, options):
            if url.endswith("slow"):
                await asyncio.sleep(0.05)
            return CrawlResult(url=url)

        fetcher = MagicMock()
        fetcher.fetch = fetch
        orchestrator = CrawlOrchestrator(
            CrawlRequest(url="https://example.test/", crawlEntireWebsite=True),
            pool=pool,
            fetcher=fetcher,
            frontier=frontier,
            output_manager=output_manager,
            config=test_config,
        )

        frames = await collect(orchestrator)

        assert [r["url"] for r in frames[0]["newResults"]] == [
            "https://example.test/slow",
            "https://example.test/fast",
        ]
        pool.release_all.assert_awaited_once()
