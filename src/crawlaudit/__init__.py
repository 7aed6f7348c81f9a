"""Website crawler with full-page screenshots and axe-core accessibility audits."""

__version__ = "0.1.0"

from crawlaudit.accessibility import AccessibilityAuditor
from crawlaudit.browser_config import BrowserConfig, CRAWL_CONFIG, AUDIT_CONFIG
from crawlaudit.config import Config, settings
from crawlaudit.crawler import CrawlOrchestrator, CrawlState
from crawlaudit.errors import (
    ErrorKind,
    CrawlAuditError,
    PoolDrainingError,
    AuditError,
    InvalidRequestError,
)
from crawlaudit.frontier import FrontierManager, VisitedSet, DiscoveryPlan, normalize_url
from crawlaudit.models import (
    CrawlResult,
    AccessibilityReport,
    RuleOutcome,
    NodeResult,
    ProgressFrame,
)
from crawlaudit.output_manager import OutputManager
from crawlaudit.page_fetcher import PageFetcher, FetchOptions
from crawlaudit.request import CrawlRequest, WcagLevels

# Infrastructure
from crawlaudit.infrastructure import (
    RendererPool,
    PoolStatus,
    isolated_renderer,
)

__all__ = [
    "AccessibilityAuditor",
    "BrowserConfig",
    "CRAWL_CONFIG",
    "AUDIT_CONFIG",
    "Config",
    "settings",
    "CrawlOrchestrator",
    "CrawlState",
    "ErrorKind",
    "CrawlAuditError",
    "PoolDrainingError",
    "AuditError",
    "InvalidRequestError",
    "FrontierManager",
    "VisitedSet",
    "DiscoveryPlan",
    "normalize_url",
    "CrawlResult",
    "AccessibilityReport",
    "RuleOutcome",
    "NodeResult",
    "ProgressFrame",
    "OutputManager",
    "PageFetcher",
    "FetchOptions",
    "CrawlRequest",
    "WcagLevels",
    "RendererPool",
    "PoolStatus",
    "isolated_renderer",
]
