# src/crawlaudit/accessibility.py
"""Accessibility auditing with axe-core.

The audit never runs against the live crawl page. Each attempt:

1. builds an offline snapshot of the rendered page (see snapshot.py),
2. loads it in a separate renderer launched outside the crawl pool,
3. injects axe-core and runs a fixed rule subset,
4. screenshots each violating element,
5. tears the renderer down and deletes the snapshot, whatever happened.

A failed attempt is retried from scratch; after the last attempt the
auditor returns an empty report with an ``error`` instead of raising.
"""

import asyncio
import logging
import re
from importlib import resources
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional

from crawlaudit.browser_config import AUDIT_CONFIG, BrowserConfig
from crawlaudit.config import settings
from crawlaudit.constants import (
    ACCESSIBILITY_RULES,
    AUDIT_ANALYSIS_TIMEOUT_SECONDS,
    AUDIT_RETRY_DELAY_SECONDS,
    AXE_AVAILABLE_TIMEOUT_MS,
    AXE_RESULT_TYPES,
    DOCUMENT_READY_TIMEOUT_MS,
    MAX_AUDIT_ATTEMPTS,
    SNAPSHOT_IMAGES_TIMEOUT_MS,
    SNAPSHOT_LOAD_TIMEOUT_MS,
    VIOLATION_LABEL_HEIGHT_PX,
    VIOLATION_SCREENSHOT_PADDING_PX,
)
from crawlaudit.errors import AuditError
from crawlaudit.infrastructure.renderer_pool import Launcher, isolated_renderer
from crawlaudit.models import (
    AccessibilityReport,
    AuditCompleted,
    AuditFailed,
    AuditOutcome,
    RuleOutcome,
)
from crawlaudit.output_manager import OutputManager
from crawlaudit.request import WcagLevels
from crawlaudit.snapshot import SnapshotBuilder

logger = logging.getLogger(__name__)

AXE_PACKAGE = "axe_playwright_python"
AXE_FILE_NAME = "axe.min.js"

# wcag2a, wcag21aa, wcag22aaa ... (success-criterion tags like wcag111 do not match)
_LEVEL_TAG_RE = re.compile(r"^wcag\d+(a{1,3})$")
_LEVEL_NAMES = {"a": "A", "aa": "AA", "aaa": "AAA"}

_CONFIGURE_AXE_JS = """
(rules) => {
    window.axe.configure({
        rules: rules.map(id => ({ id: id, enabled: true }))
    });
}
"""

_RUN_AXE_JS = """
async ({ rules, resultTypes }) => {
    if (typeof window.axe === 'undefined') {
        throw new Error('axe-core not available');
    }
    const results = await window.axe.run(document, {
        runOnly: { type: 'rule', values: rules },
        resultTypes: resultTypes,
        performanceTimer: false
    });
    return {
        violations: results.violations || [],
        passes: results.passes || [],
        incomplete: results.incomplete || [],
        inapplicable: results.inapplicable || []
    };
}
"""

_HIGHLIGHT_JS = """
(selector) => {
    const element = document.querySelector(selector);
    if (!element) return;
    element.setAttribute('data-a11y-prev-style', element.getAttribute('style') || '');
    element.style.outline = '3px dashed #ff0000';
    element.style.outlineOffset = '2px';
    const label = document.createElement('div');
    label.textContent = 'Accessibility Violation';
    label.setAttribute('data-a11y-label', '1');
    label.style.cssText = 'position:absolute;background:#ff0000;color:white;'
        + 'padding:2px 8px;font-size:12px;border-radius:3px;z-index:2147483647;';
    const box = element.getBoundingClientRect();
    label.style.left = (box.left + window.scrollX) + 'px';
    label.style.top = Math.max(0, box.top + window.scrollY - 25) + 'px';
    document.body.appendChild(label);
}
"""

_UNHIGHLIGHT_JS = """
(selector) => {
    document.querySelectorAll('[data-a11y-label]').forEach(label => label.remove());
    const element = document.querySelector(selector);
    if (!element) return;
    const previous = element.getAttribute('data-a11y-prev-style');
    if (previous) {
        element.setAttribute('style', previous);
    } else {
        element.removeAttribute('style');
    }
    element.removeAttribute('data-a11y-prev-style');
}
"""


# =============================================================================
# Conformance filtering
# =============================================================================

def wcag_level(tag: str) -> Optional[str]:
    """Conformance level named by a tag ("wcag2aa" -> "AA"), or None."""
    match = _LEVEL_TAG_RE.match(tag.lower())
    if not match:
        return None
    return _LEVEL_NAMES[match.group(1)]


def is_relevant(outcome: RuleOutcome, levels: WcagLevels) -> bool:
    """Keep outcomes without a level tag, or with any tag at an enabled level."""
    outcome_levels = {level for level in map(wcag_level, outcome.tags) if level}
    if not outcome_levels:
        return True
    return bool(outcome_levels & levels.enabled())


def filter_by_levels(outcomes: Iterable[RuleOutcome], levels: WcagLevels) -> list[RuleOutcome]:
    return [outcome for outcome in outcomes if is_relevant(outcome, levels)]


def filter_report(report: AccessibilityReport, levels: WcagLevels) -> AccessibilityReport:
    """Apply conformance filtering to every category of a report."""
    return AccessibilityReport(
        violations=filter_by_levels(report.violations, levels),
        passes=filter_by_levels(report.passes, levels),
        incomplete=filter_by_levels(report.incomplete, levels),
        non_applicable=filter_by_levels(report.non_applicable, levels),
        error=report.error,
    )


def report_from_axe(raw: dict) -> AccessibilityReport:
    """Convert axe-core's result object into a report."""
    return AccessibilityReport(
        violations=[RuleOutcome.from_axe(r, include_nodes=True) for r in raw.get("violations") or []],
        passes=[RuleOutcome.from_axe(r) for r in raw.get("passes") or []],
        incomplete=[RuleOutcome.from_axe(r) for r in raw.get("incomplete") or []],
        non_applicable=[RuleOutcome.from_axe(r) for r in raw.get("inapplicable") or []],
    )


# =============================================================================
# Retry
# =============================================================================

async def retry_async(
    attempt: Callable[[], Awaitable[AccessibilityReport]],
    max_attempts: int = MAX_AUDIT_ATTEMPTS,
    delay: float = AUDIT_RETRY_DELAY_SECONDS,
) -> AuditOutcome:
    """Run ``attempt`` until it succeeds or ``max_attempts`` is reached.

    Each call of ``attempt`` must own its setup and cleanup; nothing is
    carried over between attempts.

    Returns:
        AuditCompleted with the report, or AuditFailed with the last error
    """
    last_error = "unknown error"
    for number in range(1, max_attempts + 1):
        try:
            return AuditCompleted(await attempt())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_error = str(e) or type(e).__name__
            logger.warning(
                f"Accessibility check attempt {number}/{max_attempts} failed: {last_error}"
            )
            if number < max_attempts and delay > 0:
                await asyncio.sleep(delay * number)
    return AuditFailed(last_error)


def load_axe_script(path: Optional[str] = None) -> Optional[str]:
    """Read the axe-core source.

    Args:
        path: Explicit axe.min.js path; defaults to AXE_SCRIPT_PATH, then the
            copy shipped with the axe-playwright-python distribution

    Returns:
        Script text, or None if it cannot be found
    """
    path = path or settings.AXE_SCRIPT_PATH
    try:
        if path:
            return Path(path).read_text(encoding="utf-8")
        return (resources.files(AXE_PACKAGE) / AXE_FILE_NAME).read_text(encoding="utf-8")
    except (ModuleNotFoundError, OSError) as e:
        logger.error(f"Error loading axe-core: {e}")
        return None


# =============================================================================
# Auditor
# =============================================================================

class AccessibilityAuditor:
    """Runs axe-core against offline snapshots of crawled pages."""

    def __init__(
        self,
        output_manager: OutputManager,
        browser_config: Optional[BrowserConfig] = None,
        launcher: Optional[Launcher] = None,
        axe_script: Optional[str] = None,
        snapshot_builder: Optional[SnapshotBuilder] = None,
        max_attempts: int = MAX_AUDIT_ATTEMPTS,
        analysis_timeout: float = AUDIT_ANALYSIS_TIMEOUT_SECONDS,
        retry_delay: float = AUDIT_RETRY_DELAY_SECONDS,
        rules: tuple[str, ...] = ACCESSIBILITY_RULES,
    ):
        """
        Args:
            output_manager: Provides snapshot and violation screenshot locations
            browser_config: Settings for the isolated renderer
            launcher: Async callable launching the isolated renderer
            axe_script: axe-core source (loaded from disk if None)
            snapshot_builder: Builds the offline copy of a page
            max_attempts: Whole-audit attempts before giving up
            analysis_timeout: Seconds allowed for one axe.run()
            retry_delay: Base delay between attempts (seconds, linear)
            rules: axe-core rule ids to run
        """
        self.output = output_manager
        self.browser_config = browser_config or AUDIT_CONFIG
        self._launcher = launcher
        self._axe_script = axe_script
        self.snapshot_builder = snapshot_builder or SnapshotBuilder()
        self.max_attempts = max(1, max_attempts)
        self.analysis_timeout = analysis_timeout
        self.retry_delay = retry_delay
        self.rules = tuple(rules)

    @property
    def axe_script(self) -> Optional[str]:
        if self._axe_script is None:
            self._axe_script = load_axe_script()
        return self._axe_script

    async def audit(self, page, levels: WcagLevels) -> AccessibilityReport:
        """Audit a rendered page.

        Args:
            page: Loaded crawl page (only read, never navigated)
            levels: Conformance levels to keep

        Returns:
            Filtered report; on failure an empty report with ``error`` set
        """
        if not self.axe_script:
            return AccessibilityReport.failed("axe-core script not available")

        source_url = page.url
        logger.info(f"Starting accessibility check on local copy of {source_url}")

        outcome = await retry_async(
            lambda: self._attempt(page, levels),
            max_attempts=self.max_attempts,
            delay=self.retry_delay,
        )

        if isinstance(outcome, AuditCompleted):
            report = outcome.report
            logger.info(
                f"Accessibility check complete for {source_url}: "
                f"{len(report.violations)} violation(s), {len(report.passes)} pass(es)"
            )
            return report

        logger.error(f"Accessibility check failed for {source_url}: {outcome.message}")
        return AccessibilityReport.failed(
            f"Accessibility check failed after {self.max_attempts} attempts: {outcome.message}"
        )

    async def _attempt(self, page, levels: WcagLevels) -> AccessibilityReport:
        """One full audit: snapshot, isolated renderer, axe run, cleanup."""
        with self.output.snapshot_directory() as directory:
            snapshot = await self.snapshot_builder.build(page, directory)

            async with isolated_renderer(self.browser_config, self._launcher) as browser:
                local_page = await browser.new_page(
                    viewport={
                        "width": self.browser_config.viewport_width,
                        "height": self.browser_config.viewport_height,
                    }
                )
                try:
                    local_page.set_default_timeout(self.browser_config.timeout)
                    await local_page.goto(
                        snapshot.file_url,
                        wait_until="load",
                        timeout=SNAPSHOT_LOAD_TIMEOUT_MS,
                    )
                    await self._wait_for_document(local_page)
                    await self._inject_axe(local_page)

                    try:
                        raw = await asyncio.wait_for(
                            local_page.evaluate(
                                _RUN_AXE_JS,
                                {"rules": list(self.rules), "resultTypes": list(AXE_RESULT_TYPES)},
                            ),
                            timeout=self.analysis_timeout,
                        )
                    except asyncio.TimeoutError:
                        raise AuditError("Analysis timed out")

                    report = filter_report(report_from_axe(raw or {}), levels)
                    await self._capture_violation_screenshots(local_page, report)
                    return report
                finally:
                    try:
                        await local_page.close()
                    except Exception as e:
                        logger.warning(f"Error closing local page: {e}")

    async def _wait_for_document(self, page) -> None:
        await page.wait_for_function(
            "() => document.readyState === 'complete'",
            timeout=DOCUMENT_READY_TIMEOUT_MS,
        )
        try:
            await page.wait_for_function(
                "() => Array.from(document.images).every(img => img.complete)",
                timeout=SNAPSHOT_IMAGES_TIMEOUT_MS,
            )
        except Exception:
            logger.debug("Image load timeout, continuing anyway...")

    async def _inject_axe(self, page) -> None:
        await page.add_script_tag(content=self.axe_script)
        try:
            await page.wait_for_function(
                "() => typeof window.axe !== 'undefined'",
                timeout=AXE_AVAILABLE_TIMEOUT_MS,
            )
        except Exception as e:
            raise AuditError(f"axe-core not available: {e}") from e
        await page.evaluate(_CONFIGURE_AXE_JS, list(self.rules))

    async def _capture_violation_screenshots(self, page, report: AccessibilityReport) -> None:
        for violation in report.violations:
            for node in violation.nodes:
                if node.target:
                    node.screenshot = await self.capture_element_screenshot(page, node.selector)

    async def capture_element_screenshot(self, page, selector: str) -> Optional[str]:
        """Screenshot one element with a highlight around it.

        Best-effort: any failure is logged and yields None.

        Returns:
            Web path of the image, or None
        """
        try:
            element = await page.query_selector(selector)
            if element is None:
                return None

            await element.scroll_into_view_if_needed()
            box = await element.bounding_box()
            if not box:
                return None

            path, web_path = self.output.violation_screenshot_path(selector)
            padding = VIOLATION_SCREENSHOT_PADDING_PX
            label = VIOLATION_LABEL_HEIGHT_PX

            await page.evaluate(_HIGHLIGHT_JS, selector)
            try:
                await page.screenshot(
                    path=str(path),
                    clip={
                        "x": max(0, box["x"] - padding),
                        "y": max(0, box["y"] - padding - label),
                        "width": box["width"] + padding * 2,
                        "height": box["height"] + padding * 2 + label,
                    },
                )
            finally:
                await page.evaluate(_UNHIGHLIGHT_JS, selector)

            return web_path
        except Exception as e:
            logger.warning(f"Error capturing element screenshot for {selector}: {e}")
            return None
