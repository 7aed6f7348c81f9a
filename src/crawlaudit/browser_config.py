"""
Browser configuration for Playwright-based crawling.

This module provides a validated Pydantic configuration model for the
renderer settings shared by the crawl pool and the isolated audit renderer,
plus the user agent rotation used for every page.
"""
import random
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

from crawlaudit.constants import (
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    DYNAMIC_CONTENT_SETTLE_MS,
    RENDERER_LAUNCH_TIMEOUT_MS,
)


# User agent pool for rotation
USER_AGENTS = [
    # Chrome on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Chrome on Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    # Firefox on Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0",
    # Safari on Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2.1 Safari/605.1.15",
]


def get_random_user_agent() -> str:
    """Get a random user agent from the pool."""
    return random.choice(USER_AGENTS)


class BrowserConfig(BaseModel):
    """
    Configuration for the renderer instances.

    All fields are validated by Pydantic to ensure type safety and valid values.
    """

    model_config = ConfigDict(validate_assignment=True)

    headless: bool = Field(
        default=True,
        description="Run browser in headless mode (no visible UI)"
    )

    launch_timeout: int = Field(
        default=RENDERER_LAUNCH_TIMEOUT_MS,
        description="Browser launch timeout in milliseconds",
        ge=1000,
        le=300000
    )

    timeout: int = Field(
        default=DEFAULT_NAVIGATION_TIMEOUT_MS,
        description="Page load timeout in milliseconds",
        ge=1000,
        le=300000
    )

    # "domcontentloaded" tolerates pages that keep long-lived connections open
    # (analytics beacons, websockets); the trade-off is that content injected
    # after DOMContentLoaded may be missing from links and screenshots.
    # "networkidle" is slower and more complete.
    wait_until: Literal["load", "domcontentloaded", "networkidle", "commit"] = Field(
        default="domcontentloaded",
        description="When to consider navigation complete"
    )

    settle_delay_ms: int = Field(
        default=DYNAMIC_CONTENT_SETTLE_MS,
        description="Extra wait for dynamic content after the document is ready",
        ge=0,
        le=60000
    )

    viewport_width: int = Field(default=1920, ge=320)
    viewport_height: int = Field(default=1080, ge=240)

    launch_args: List[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-web-security",
            "--disable-features=IsolateOrigins,site-per-process",
            "--window-size=1920,1080",
        ],
        description="Additional browser launch arguments"
    )

    rotate_user_agent: bool = Field(
        default=True,
        description="Pick a random user agent for every page"
    )

    def get_user_agent(self) -> str:
        """Get the user agent to use for a new page."""
        if self.rotate_user_agent:
            return get_random_user_agent()
        return USER_AGENTS[0]  # Default to first agent


# --- Pre-configured Instances ---

CRAWL_CONFIG = BrowserConfig()
"""
Default configuration for the crawl pool.

Navigation completes on DOMContentLoaded, followed by a bounded
document-ready wait and a settle delay.
"""

AUDIT_CONFIG = BrowserConfig(
    timeout=120000,
    launch_timeout=120000,
    wait_until="load",
    settle_delay_ms=0,
    launch_args=[
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-web-security",
        "--allow-file-access-from-files",
        "--disable-features=IsolateOrigins,site-per-process",
        "--disable-http2",
        "--disable-gpu",
        "--disable-dev-shm-usage",
        "--disable-software-rasterizer",
        "--disable-extensions",
        "--disable-default-apps",
        "--disable-popup-blocking",
        "--disable-notifications",
        "--disable-background-timer-throttling",
        "--disable-backgrounding-occluded-windows",
        "--disable-renderer-backgrounding",
        "--disable-background-networking",
        "--disable-breakpad",
        "--no-first-run",
        "--password-store=basic",
        "--use-mock-keychain",
        "--window-size=1920,1080",
    ],
)
"""
Configuration for the isolated renderer that loads offline snapshots.

Uses longer timeouts and waits for the full load event, since the snapshot
is a local file with no long-lived connections.
"""
