"""
Anti-bot challenge detection.

This module provides predicates that decide whether a page that loaded
successfully is really a bot challenge (CAPTCHA form, Cloudflare interstitial,
bot-check form) rather than the requested content.

Detection is heuristic and real-world challenge pages vary, so the detector
is pluggable: ``PageFetcher`` accepts any async callable taking a page and
returning the name of the detected challenge (or None).
"""
import logging
from typing import Awaitable, Callable, Mapping, Optional

logger = logging.getLogger(__name__)

ChallengeDetector = Callable[[object], Awaitable[Optional[str]]]


# =============================================================================
# Challenge Detection Selectors
# =============================================================================

CHALLENGE_INDICATORS = {
    # Forms that post to a CAPTCHA or bot-check endpoint
    "captcha_form": "form[action*='captcha']",
    "bot_check_form": "form[action*='bot']",

    # Cloudflare
    "cloudflare_wait": "#cf-please-wait",
    "cloudflare_challenge": "#cf-challenge-running, .cf-browser-verification",
}


async def detect_challenge(
    page,
    indicators: Mapping[str, str] = CHALLENGE_INDICATORS,
) -> Optional[str]:
    """
    Detect if the current page is a CAPTCHA or bot challenge.

    Args:
        page: Playwright Page instance
        indicators: Mapping of challenge name to CSS selector

    Returns:
        Name of detected challenge type, or None if no challenge found
    """
    for name, selector in indicators.items():
        try:
            if await page.query_selector(selector) is not None:
                return name
        except Exception as e:
            logger.debug(f"Challenge selector {name} failed: {e}")
            continue

    return None


def selector_detector(indicators: Mapping[str, str]) -> ChallengeDetector:
    """
    Build a detector from site-specific selectors.

    Usage:
        detector = selector_detector({"akamai": "#sec-cpt-if"})
        fetcher = PageFetcher(pool, output, challenge_detector=detector)
    """
    selectors = dict(indicators)

    async def _detect(page) -> Optional[str]:
        return await detect_challenge(page, selectors)

    return _detect


def combine_detectors(*detectors: ChallengeDetector) -> ChallengeDetector:
    """Detector that reports the first challenge any of ``detectors`` finds."""

    async def _detect(page) -> Optional[str]:
        for detector in detectors:
            found = await detector(page)
            if found:
                return found
        return None

    return _detect


async def is_challenge_page(page) -> bool:
    """Check if current page has any challenge."""
    return await detect_challenge(page) is not None
