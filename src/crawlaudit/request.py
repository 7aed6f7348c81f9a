"""
Inbound crawl request model.

Validated with Pydantic so the streaming endpoint and the CLI share one
definition. JSON clients send camelCase keys (``takeScreenshots``); Python
callers may use the snake_case attribute names.
"""
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from crawlaudit.constants import (
    DEFAULT_CONCURRENT_PAGES,
    DEFAULT_NAVIGATION_TIMEOUT_MS,
    INCREASED_NAVIGATION_TIMEOUT_MS,
    MAX_CONCURRENT_PAGES,
    MIN_CONCURRENT_PAGES,
)


class WcagLevels(BaseModel):
    """WCAG conformance levels to report. Each level is independent."""

    model_config = ConfigDict(frozen=True)

    A: bool = True
    AA: bool = True
    AAA: bool = False

    def enabled(self) -> set[str]:
        """Names of the enabled levels, e.g. {"A", "AA"}."""
        return {name for name in ("A", "AA", "AAA") if getattr(self, name)}


class CrawlRequest(BaseModel):
    """
    Options for one crawl run. Immutable once the run starts.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    url: Optional[str] = Field(
        default=None,
        description="Seed URL; required"
    )

    take_screenshots: bool = Field(
        default=False,
        alias="takeScreenshots",
        description="Capture a full-page screenshot of each crawled page"
    )

    crawl_entire_website: bool = Field(
        default=False,
        alias="crawlEntireWebsite",
        description="Discover every in-domain page (sitemap or link-following)"
    )

    check_accessibility: bool = Field(
        default=False,
        alias="checkAccessibility",
        description="Run the accessibility audit against each page"
    )

    wcag_levels: WcagLevels = Field(
        default_factory=WcagLevels,
        alias="wcagLevels",
        description="Conformance levels kept in accessibility reports"
    )

    increase_timeout: bool = Field(
        default=False,
        alias="increaseTimeout",
        description="Double the per-navigation timeout"
    )

    slow_rate_limit: bool = Field(
        default=False,
        alias="slowRateLimit",
        description="Insert fixed delays between pages and waves"
    )

    concurrent_pages: int = Field(
        default=DEFAULT_CONCURRENT_PAGES,
        alias="concurrentPages",
        description="Pages fetched concurrently per wave (1-5)"
    )

    @field_validator("url", mode="before")
    @classmethod
    def _strip_url(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("wcag_levels", mode="before")
    @classmethod
    def _default_levels(cls, value):
        return WcagLevels() if value is None else value

    @field_validator("concurrent_pages", mode="before")
    @classmethod
    def _clamp_concurrency(cls, value):
        if value is None:
            return DEFAULT_CONCURRENT_PAGES
        try:
            value = int(value)
        except (TypeError, ValueError):
            return DEFAULT_CONCURRENT_PAGES
        return max(MIN_CONCURRENT_PAGES, min(MAX_CONCURRENT_PAGES, value))

    @property
    def navigation_timeout_ms(self) -> int:
        """Per-navigation timeout in milliseconds."""
        if self.increase_timeout:
            return INCREASED_NAVIGATION_TIMEOUT_MS
        return DEFAULT_NAVIGATION_TIMEOUT_MS

    @property
    def origin(self) -> str:
        """Scheme and host of the seed URL, e.g. https://example.test"""
        parsed = urlparse(self.url or "")
        return f"{parsed.scheme}://{parsed.netloc}"


def validate_seed_url(url: str) -> Optional[str]:
    """Return a reason the seed URL cannot be crawled, or None if it is fine."""
    try:
        parsed = urlparse(url)
    except ValueError as e:
        return str(e)
    if parsed.scheme not in ("http", "https"):
        return f"unsupported scheme '{parsed.scheme}'" if parsed.scheme else "missing scheme"
    if not parsed.netloc:
        return "missing host"
    return None
