"""Shared fixtures: an in-memory renderer driven by a site map.

A site map is a dict of URL -> page entry:

    {
        "https://example.test/": {
            "status": 200,
            "links": ["/about", "https://other.test/"],
            "body": "<html>...</html>",
        },
        "https://example.test/sitemap.xml": {"status": 404},
    }

Entry keys (all optional):
    status: HTTP status of the main document (default 200)
    links: raw href values returned for a[href]
    body: document text (page.content() and response.text())
    error: exception raised by goto
    delay: seconds goto sleeps before answering
    challenge: CSS selectors that match on the page
    close_error: exception raised by page.close()

URLs missing from the map fail like an unresolvable host.
"""

import asyncio
from pathlib import Path

import pytest

from crawlaudit.browser_config import BrowserConfig
from crawlaudit.config import Config
from crawlaudit.infrastructure.renderer_pool import RendererPool
from crawlaudit.output_manager import OutputManager


class FakeResponse:
    def __init__(self, status: int, body: str = ""):
        self.status = status
        self._body = body

    async def text(self):
        return self._body


class FakePage:
    def __init__(self, browser, site, options):
        self.browser = browser
        self.site = site
        self.options = options
        self.url = "about:blank"
        self.entry = {}
        self.closed = False
        self.handlers = {}
        self.default_timeout = None
        self.default_navigation_timeout = None

    def on(self, event, handler):
        self.handlers[event] = handler

    def set_default_timeout(self, timeout):
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout):
        self.default_navigation_timeout = timeout

    async def goto(self, url, wait_until=None, timeout=None):
        self.browser.renderer.navigations.append((url, wait_until))
        entry = self.site.get(url)
        if entry is None:
            raise Exception(f"net::ERR_NAME_NOT_RESOLVED at {url}")
        if entry.get("delay"):
            await asyncio.sleep(entry["delay"])
        if entry.get("error") is not None:
            raise entry["error"]
        self.url = url
        self.entry = entry
        return FakeResponse(entry.get("status", 200), entry.get("body", ""))

    async def query_selector(self, selector):
        if selector in self.entry.get("challenge", ()):
            return object()
        return None

    async def wait_for_function(self, expression, timeout=None):
        return True

    async def evaluate(self, script, arg=None):
        if "a[href]" in script:
            return list(self.entry.get("links", []))
        return None

    async def content(self):
        return self.entry.get("body", "")

    async def screenshot(self, path=None, full_page=False, clip=None):
        Path(path).write_bytes(b"\x89PNG")
        self.browser.renderer.screenshots.append(path)

    async def close(self):
        if self.closed:
            raise RuntimeError("page closed twice")
        self.closed = True
        if self.entry.get("close_error") is not None:
            raise self.entry["close_error"]


class FakeBrowser:
    def __init__(self, renderer):
        self.renderer = renderer
        self.pages = []
        self.closed = False

    async def new_page(self, **options):
        page = FakePage(self, self.renderer.site, options)
        self.pages.append(page)
        return page

    async def close(self):
        self.closed = True


class FakeRenderer:
    """Launcher for RendererPool that records everything it hands out."""

    def __init__(self, site):
        self.site = site
        self.browsers = []
        self.navigations = []
        self.screenshots = []

    async def __call__(self):
        browser = FakeBrowser(self)
        self.browsers.append(browser)
        return browser

    @property
    def pages(self):
        return [page for browser in self.browsers for page in browser.pages]

    @property
    def live_browsers(self):
        return [browser for browser in self.browsers if not browser.closed]

    def navigated(self, url):
        return any(u == url for u, _ in self.navigations)


@pytest.fixture
def fast_browser_config():
    """Browser config without the settle delay."""
    return BrowserConfig(settle_delay_ms=0)


@pytest.fixture
def make_pool(fast_browser_config):
    """Build a RendererPool backed by a FakeRenderer for a site map."""

    def _make(site, max_size=3, browser_config=None):
        renderer = FakeRenderer(site)
        pool = RendererPool(
            max_size=max_size,
            browser_config=browser_config or fast_browser_config,
            launcher=renderer,
        )
        return pool, renderer

    return _make


@pytest.fixture
def output_manager(tmp_path):
    return OutputManager(public_dir=tmp_path / "public", temp_dir=tmp_path / "temp")


@pytest.fixture
def test_config(tmp_path):
    return Config(
        public_dir=tmp_path / "public",
        temp_dir=tmp_path / "temp",
        settle_delay_ms=0,
    )
