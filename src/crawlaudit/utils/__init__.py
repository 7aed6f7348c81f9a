"""
Utilities Package.

Provides anti-bot challenge detection for loaded pages.
"""

from .challenge_handler import (
    ChallengeDetector,
    detect_challenge,
    is_challenge_page,
    selector_detector,
    combine_detectors,
    CHALLENGE_INDICATORS,
)

__all__ = [
    "ChallengeDetector",
    "detect_challenge",
    "is_challenge_page",
    "selector_detector",
    "combine_detectors",
    "CHALLENGE_INDICATORS",
]
