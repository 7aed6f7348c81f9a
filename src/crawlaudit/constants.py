# src/crawlaudit/constants.py
"""Centralized constants for the crawler and accessibility auditor.

This module contains magic numbers and fixed lists used across multiple
modules. For environment-configurable values, see config.py.
"""

# =============================================================================
# Renderer Pool Constants
# =============================================================================

# Maximum number of live renderer (browser) instances shared by one crawl
MAX_RENDERER_INSTANCES = 3

# Timeout for launching a renderer instance (milliseconds)
RENDERER_LAUNCH_TIMEOUT_MS = 60000


# =============================================================================
# Navigation Constants
# =============================================================================

# Default per-navigation timeout (milliseconds)
DEFAULT_NAVIGATION_TIMEOUT_MS = 60000

# Per-navigation timeout when the request asks for more time (milliseconds)
INCREASED_NAVIGATION_TIMEOUT_MS = 120000

# Bound on waiting for document.readyState === 'complete' (milliseconds)
DOCUMENT_READY_TIMEOUT_MS = 30000

# Settle delay for dynamic content after the document is ready (milliseconds)
DYNAMIC_CONTENT_SETTLE_MS = 5000

# Delay after each page when slow rate limiting is requested (seconds)
SLOW_RATE_LIMIT_PAGE_DELAY_SECONDS = 2.0

# Delay between waves when slow rate limiting is requested (seconds)
SLOW_RATE_LIMIT_WAVE_DELAY_SECONDS = 1.0

# Hosts that are known to block crawlers outright
BLOCKED_HOSTS = frozenset({
    "reddit.com",
    "www.reddit.com",
    "udemy.com",
    "www.udemy.com",
})


# =============================================================================
# Crawl Orchestration Constants
# =============================================================================

# Bounds for the number of pages fetched concurrently in one wave
MIN_CONCURRENT_PAGES = 1
MAX_CONCURRENT_PAGES = 5
DEFAULT_CONCURRENT_PAGES = 3

# Hard stop for a single page fetch inside a wave (seconds)
PER_PAGE_TIMEOUT_SECONDS = 300.0

# Hard stop for a whole wave (seconds)
PER_BATCH_TIMEOUT_SECONDS = 900.0

# Overall crawl budget; no new wave starts once exceeded (seconds)
CRAWL_TIMEOUT_SECONDS = 3600.0


# =============================================================================
# Sitemap Constants
# =============================================================================

# Sitemap location relative to the site origin
SITEMAP_PATH = "/sitemap.xml"

# Navigation timeout for fetching the sitemap (milliseconds)
SITEMAP_TIMEOUT_MS = 30000

# Maximum sitemap index nesting that will be followed
MAX_SITEMAP_DEPTH = 3


# =============================================================================
# Accessibility Audit Constants
# =============================================================================

# Curated axe-core rule subset executed against every page
ACCESSIBILITY_RULES = (
    "color-contrast",
    "document-title",
    "html-has-lang",
    "image-alt",
    "link-name",
    "meta-viewport",
)

# axe-core result categories requested from every run
AXE_RESULT_TYPES = ("violations", "passes", "incomplete", "inapplicable")

# Number of attempts for a whole audit (snapshot + isolated renderer + run)
MAX_AUDIT_ATTEMPTS = 3

# Linear backoff between audit attempts (seconds)
AUDIT_RETRY_DELAY_SECONDS = 1.0

# Hard timeout for a single axe.run() call (seconds)
AUDIT_ANALYSIS_TIMEOUT_SECONDS = 60.0

# Wait for the injected axe global to become available (milliseconds)
AXE_AVAILABLE_TIMEOUT_MS = 30000

# Navigation timeout for loading the offline snapshot (milliseconds)
SNAPSHOT_LOAD_TIMEOUT_MS = 120000

# Best-effort wait for images in the snapshot to finish loading (milliseconds)
SNAPSHOT_IMAGES_TIMEOUT_MS = 30000

# Timeout for downloading a single stylesheet or image (seconds)
SNAPSHOT_ASSET_TIMEOUT_SECONDS = 10.0

# Asset URL fragments that are never copied into a snapshot
SNAPSHOT_ASSET_DENYLIST = (
    "/disallowed/",
    "brokencss.css",
)

# Padding around a highlighted element screenshot (pixels)
VIOLATION_SCREENSHOT_PADDING_PX = 20

# Height reserved above the element for the violation label (pixels)
VIOLATION_LABEL_HEIGHT_PX = 25


# =============================================================================
# Output Constants
# =============================================================================

# Web path prefixes under which stored images are served
SCREENSHOT_URL_PREFIX = "/screenshots"
VIOLATION_SCREENSHOT_URL_PREFIX = "/violation-screenshots"

# Directory names under the public directory
SCREENSHOT_DIR_NAME = "screenshots"
VIOLATION_SCREENSHOT_DIR_NAME = "violation-screenshots"
