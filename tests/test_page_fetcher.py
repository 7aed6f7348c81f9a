"""Tests for PageFetcher."""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from crawlaudit.browser_config import USER_AGENTS, BrowserConfig
from crawlaudit.constants import SLOW_RATE_LIMIT_PAGE_DELAY_SECONDS
from crawlaudit.errors import ErrorKind, PoolDrainingError
from crawlaudit.frontier import VisitedSet
from crawlaudit.models import AccessibilityReport
from crawlaudit.page_fetcher import FetchOptions, PageFetcher, filter_links
from crawlaudit.request import CrawlRequest, WcagLevels
from crawlaudit.utils.challenge_handler import selector_detector

ORIGIN = "https://example.test"


@pytest.fixture
def make_fetcher(make_pool, output_manager):
    def _make(site, **kwargs):
        pool, renderer = make_pool(site)
        return PageFetcher(pool, output_manager, **kwargs), renderer

    return _make


async def fetch(fetcher, url, options=None, visited=None):
    return await fetcher.fetch(url, visited or VisitedSet(), ORIGIN, options or FetchOptions())


class TestFetchOptions:
    """Tests for FetchOptions."""

    def test_from_request(self):
        request = CrawlRequest(
            url="https://example.test/",
            takeScreenshots=True,
            increaseTimeout=True,
            wcagLevels={"A": True, "AA": False, "AAA": True},
        )

        options = FetchOptions.from_request(request, collect_links=True)

        assert options.take_screenshots is True
        assert options.collect_links is True
        assert options.timeout_ms == 120000
        assert options.wcag_levels.enabled() == {"A", "AAA"}


class TestStatusClassification:
    """Main-document statuses become error results."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,expected", [
        (403, "forbidden"),
        (429, "Too many requests"),
        (304, "not modified"),
        (407, "Proxy authentication required (407)"),
        (204, "No content (204)"),
    ])
    async def test_status_errors(self, make_fetcher, status, expected):
        fetcher, renderer = make_fetcher({f"{ORIGIN}/": {"status": status, "links": ["/a"]}})

        result = await fetch(fetcher, f"{ORIGIN}/", FetchOptions(collect_links=True))

        assert expected in result.error
        assert result.links == []
        assert all(page.closed for page in renderer.pages)

    @pytest.mark.asyncio
    async def test_server_error(self, make_fetcher):
        fetcher, _ = make_fetcher({f"{ORIGIN}/": {"status": 500}})

        result = await fetch(fetcher, f"{ORIGIN}/")

        assert result.error == "HTTP Error 500"
        assert result.error_kind == ErrorKind.HTTP_ERROR

    @pytest.mark.asyncio
    async def test_dns_failure(self, make_fetcher):
        fetcher, _ = make_fetcher({})

        result = await fetch(fetcher, "https://missing.test/")

        assert "not resolved" in result.error
        assert result.error_kind == ErrorKind.DNS_FAILURE

    @pytest.mark.asyncio
    async def test_navigation_exception_text(self, make_fetcher):
        site = {f"{ORIGIN}/": {"error": Exception("net::ERR_TOO_MANY_REDIRECTS")}}
        fetcher, renderer = make_fetcher(site)

        result = await fetch(fetcher, f"{ORIGIN}/")

        assert result.error == "Too many redirects detected"
        assert renderer.pages[0].closed


class TestPolicy:
    """Blocked hosts and bot challenges."""

    @pytest.mark.asyncio
    async def test_blocked_host_never_navigates(self, make_fetcher):
        fetcher, renderer = make_fetcher({})

        result = await fetch(fetcher, "https://www.reddit.com/r/python")

        assert "www.reddit.com" in result.error
        assert "known to block web crawlers" in result.error
        assert result.error_kind == ErrorKind.BLOCKED_HOST
        assert renderer.navigations == []
        assert renderer.browsers == []

    @pytest.mark.asyncio
    async def test_challenge_detected(self, make_fetcher):
        site = {f"{ORIGIN}/": {"challenge": ["#cf-please-wait"]}}
        fetcher, _ = make_fetcher(site)

        result = await fetch(fetcher, f"{ORIGIN}/")

        assert result.error_kind == ErrorKind.CHALLENGE
        assert "detected automated access" in result.error

    @pytest.mark.asyncio
    async def test_custom_challenge_detector(self, make_fetcher):
        site = {f"{ORIGIN}/": {"challenge": ["#sec-cpt-if"]}}
        fetcher, _ = make_fetcher(
            site, challenge_detector=selector_detector({"akamai": "#sec-cpt-if"})
        )

        result = await fetch(fetcher, f"{ORIGIN}/")

        assert result.error_kind == ErrorKind.CHALLENGE


class TestSuccess:
    """Successful fetches."""

    @pytest.mark.asyncio
    async def test_links_filtered(self, make_fetcher):
        site = {f"{ORIGIN}/docs/": {"links": [
            "#top",
            "javascript:void(0)",
            "intro",
            "/about",
            "/about",
            "https://other.test/",
            "https://example.test.evil/",
            "/seen",
            "mailto:someone@example.test",
        ]}}
        fetcher, _ = make_fetcher(site)
        visited = VisitedSet([f"{ORIGIN}/seen"])

        result = await fetch(fetcher, f"{ORIGIN}/docs/", FetchOptions(collect_links=True), visited)

        assert result.success
        assert result.links == [f"{ORIGIN}/docs/intro", f"{ORIGIN}/about"]

    @pytest.mark.asyncio
    async def test_links_not_collected_by_default(self, make_fetcher):
        fetcher, _ = make_fetcher({f"{ORIGIN}/": {"links": ["/a"]}})

        result = await fetch(fetcher, f"{ORIGIN}/")

        assert result.links == []

    @pytest.mark.asyncio
    async def test_page_setup(self, make_fetcher):
        fetcher, renderer = make_fetcher({f"{ORIGIN}/": {}})

        await fetch(fetcher, f"{ORIGIN}/", FetchOptions(timeout_ms=120000))

        page = renderer.pages[0]
        assert page.default_timeout == 120000
        assert page.options["ignore_https_errors"] is True
        assert page.options["user_agent"]
        assert "dialog" in page.handlers
        assert renderer.navigations == [(f"{ORIGIN}/", "domcontentloaded")]
        assert page.closed

    @pytest.mark.asyncio
    async def test_screenshot(self, make_fetcher, output_manager):
        fetcher, renderer = make_fetcher({f"{ORIGIN}/": {}})

        result = await fetch(fetcher, f"{ORIGIN}/", FetchOptions(take_screenshots=True))

        assert result.screenshot.startswith("/screenshots/")
        assert result.screenshot.endswith(".png")
        assert len(renderer.screenshots) == 1

    @pytest.mark.asyncio
    async def test_screenshot_failure_is_not_fatal(self, make_fetcher):
        fetcher, renderer = make_fetcher({f"{ORIGIN}/": {"links": ["/a"]}})
        fetcher._take_screenshot = AsyncMock(return_value=None)

        result = await fetch(
            fetcher, f"{ORIGIN}/", FetchOptions(take_screenshots=True, collect_links=True)
        )

        assert result.success
        assert result.screenshot is None
        assert result.links == [f"{ORIGIN}/a"]


class TestAccessibilityDelegation:
    """Audit results are attached to the page result."""

    @pytest.mark.asyncio
    async def test_report_attached(self, make_fetcher):
        auditor = MagicMock()
        auditor.audit = AsyncMock(return_value=AccessibilityReport())
        fetcher, _ = make_fetcher({f"{ORIGIN}/": {}}, auditor=auditor)
        levels = WcagLevels(A=True, AA=False)

        result = await fetch(
            fetcher, f"{ORIGIN}/", FetchOptions(check_accessibility=True, wcag_levels=levels)
        )

        assert result.accessibility is not None
        assert result.accessibility.succeeded
        assert auditor.audit.await_args.args[1] == levels

    @pytest.mark.asyncio
    async def test_audit_exception_becomes_report_error(self, make_fetcher):
        auditor = MagicMock()
        auditor.audit = AsyncMock(side_effect=RuntimeError("renderer crashed"))
        fetcher, _ = make_fetcher({f"{ORIGIN}/": {}}, auditor=auditor)

        result = await fetch(fetcher, f"{ORIGIN}/", FetchOptions(check_accessibility=True))

        assert result.success
        assert result.accessibility.error == "renderer crashed"
        assert result.accessibility.violations == []


class TestPoolDraining:
    """PoolDrainingError is the only exception fetch lets through."""

    @pytest.mark.asyncio
    async def test_propagates(self, make_fetcher):
        fetcher, _ = make_fetcher({f"{ORIGIN}/": {}})
        fetcher.pool.new_page = AsyncMock(side_effect=PoolDrainingError())

        with pytest.raises(PoolDrainingError):
            await fetch(fetcher, f"{ORIGIN}/")


class TestFilterLinks:
    """Tests for filter_links."""

    def test_relative_resolution_and_order(self):
        links = filter_links(
            ["b", "/a", "b#frag", None, "  /c  "],
            f"{ORIGIN}/dir/page",
            ORIGIN,
            set(),
        )

        assert links == [f"{ORIGIN}/dir/b", f"{ORIGIN}/a", f"{ORIGIN}/c"]


class TestPageLifecycle:
    """Page closing, user agents and pacing."""

    @pytest.mark.asyncio
    async def test_close_failure_keeps_result(self, make_fetcher):
        site = {f"{ORIGIN}/": {
            "links": ["/a", "/b"],
            "close_error": RuntimeError("Target page, context or browser has been closed"),
        }}
        fetcher, renderer = make_fetcher(site)

        result = await fetch(fetcher, f"{ORIGIN}/", FetchOptions(collect_links=True))

        assert result.success
        assert result.error is None
        assert result.links == [f"{ORIGIN}/a", f"{ORIGIN}/b"]
        assert renderer.pages[0].closed

    @pytest.mark.asyncio
    async def test_fixed_user_agent_when_rotation_off(self, make_pool, output_manager):
        config = BrowserConfig(settle_delay_ms=0, rotate_user_agent=False)
        pool, renderer = make_pool({f"{ORIGIN}/": {}}, browser_config=config)
        fetcher = PageFetcher(pool, output_manager)

        await fetch(fetcher, f"{ORIGIN}/")
        await fetch(fetcher, f"{ORIGIN}/")

        assert [page.options["user_agent"] for page in renderer.pages] == [USER_AGENTS[0]] * 2

    @pytest.mark.asyncio
    async def test_slow_rate_limit_delays_after_page(self, make_fetcher):
        fetcher, renderer = make_fetcher({f"{ORIGIN}/": {}})

        with patch("crawlaudit.page_fetcher.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await fetch(fetcher, f"{ORIGIN}/", FetchOptions(slow_rate_limit=True))

        assert result.success
        sleep.assert_awaited_once_with(SLOW_RATE_LIMIT_PAGE_DELAY_SECONDS)
        assert renderer.pages[0].closed

    @pytest.mark.asyncio
    async def test_no_delay_by_default(self, make_fetcher):
        fetcher, _ = make_fetcher({f"{ORIGIN}/": {}})

        with patch("crawlaudit.page_fetcher.asyncio.sleep", new_callable=AsyncMock) as sleep:
            await fetch(fetcher, f"{ORIGIN}/")

        sleep.assert_not_awaited()
