"""Error taxonomy for page navigation, auditing and the renderer pool.

Every per-page failure is turned into data (an ``ErrorKind`` plus a
human-readable message) by the two classification functions here.
Renderer exceptions only carry their failure in message text
(``net::ERR_NAME_NOT_RESOLVED`` and friends), so ``classify_exception``
keeps a marker table that adapts that text into the enumeration.
"""

import asyncio
from enum import Enum
from typing import Optional, Tuple

from playwright.async_api import TimeoutError as PlaywrightTimeoutError


class ErrorKind(Enum):
    """Classification of a failed page fetch."""
    # Policy errors
    BLOCKED_HOST = "blocked_host"
    FORBIDDEN = "forbidden"
    RATE_LIMITED = "rate_limited"
    CHALLENGE = "challenge"

    # Responses without usable content
    NOT_MODIFIED = "not_modified"
    NO_CONTENT = "no_content"
    PROXY_AUTH = "proxy_auth"
    HTTP_ERROR = "http_error"

    # Network / renderer errors
    TOO_MANY_REDIRECTS = "too_many_redirects"
    ABORTED = "aborted"
    HTTP2_PROTOCOL = "http2_protocol"
    UNEXPECTED_PROXY_AUTH = "unexpected_proxy_auth"
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_TIMED_OUT = "connection_timed_out"
    DNS_FAILURE = "dns_failure"
    UNKNOWN = "unknown"

    @property
    def is_policy(self) -> bool:
        """Whether the site itself refused the crawler (not worth retrying)."""
        return self in _POLICY_KINDS


_POLICY_KINDS = frozenset({
    ErrorKind.BLOCKED_HOST,
    ErrorKind.FORBIDDEN,
    ErrorKind.RATE_LIMITED,
    ErrorKind.CHALLENGE,
})


# =============================================================================
# Messages
# =============================================================================

BLOCKED_HOST_MESSAGE = (
    "This website ({host}) is known to block web crawlers. "
    "Please use their official API or contact them for access."
)

CHALLENGE_MESSAGE = (
    "This website has detected automated access and is blocking the crawler. "
    "Please use their official API or contact them for access."
)

FORBIDDEN_MESSAGE = (
    "Access forbidden (403). This website is blocking web crawlers. "
    "Please use their official API or contact them for access."
)

RATE_LIMITED_MESSAGE = (
    "Too many requests (429). This website is rate limiting access. "
    "Please try again later."
)

POOL_BUSY_MESSAGE = "System busy, please retry later"

# Ordered: the first marker found in the exception text wins
_EXCEPTION_MARKERS = (
    ("ERR_TOO_MANY_REDIRECTS", ErrorKind.TOO_MANY_REDIRECTS, "Too many redirects detected"),
    ("ERR_ABORTED", ErrorKind.ABORTED, "Request was aborted"),
    ("ERR_HTTP2_PROTOCOL_ERROR", ErrorKind.HTTP2_PROTOCOL, "HTTP/2 protocol error"),
    ("ERR_UNEXPECTED_PROXY_AUTH", ErrorKind.UNEXPECTED_PROXY_AUTH, "Unexpected proxy authentication"),
    ("timeout", ErrorKind.TIMEOUT, "Page load timed out"),
    ("net::ERR_CONNECTION_REFUSED", ErrorKind.CONNECTION_REFUSED, "Connection refused"),
    ("net::ERR_CONNECTION_TIMED_OUT", ErrorKind.CONNECTION_TIMED_OUT, "Connection timed out"),
    ("net::ERR_NAME_NOT_RESOLVED", ErrorKind.DNS_FAILURE, "Domain name not resolved"),
)

TIMEOUT_MESSAGE = "Page load timed out"


# =============================================================================
# Exceptions
# =============================================================================

class CrawlAuditError(Exception):
    """Base class for errors raised by the crawl service."""


class PoolDrainingError(CrawlAuditError):
    """Raised when a renderer is requested while the pool is being torn down."""

    def __init__(self, message: str = "Renderer pool is draining; cannot acquire a renderer"):
        super().__init__(message)


class AuditError(CrawlAuditError):
    """Raised by a single accessibility audit attempt."""


class InvalidRequestError(CrawlAuditError):
    """Raised when a crawl request cannot be started."""


# =============================================================================
# Classification
# =============================================================================

def classify_status(status: Optional[int]) -> Optional[Tuple[ErrorKind, str]]:
    """Map an HTTP response status to an error, or None if the page is usable.

    Args:
        status: HTTP status code of the main document (None if unknown)

    Returns:
        (ErrorKind, message) for statuses without usable content, else None
    """
    if not status:
        return None
    if status == 403:
        return ErrorKind.FORBIDDEN, FORBIDDEN_MESSAGE
    if status == 429:
        return ErrorKind.RATE_LIMITED, RATE_LIMITED_MESSAGE
    if status == 304:
        return ErrorKind.NOT_MODIFIED, "Page not modified (304)"
    if status in (204, 205):
        return ErrorKind.NO_CONTENT, f"No content ({status})"
    if status == 407:
        return ErrorKind.PROXY_AUTH, "Proxy authentication required (407)"
    if status >= 400:
        return ErrorKind.HTTP_ERROR, f"HTTP Error {status}"
    return None


def classify_exception(error: BaseException) -> Tuple[ErrorKind, str]:
    """Map a renderer/navigation exception to an error kind and message.

    Args:
        error: Exception raised while driving a page

    Returns:
        (ErrorKind, message); unrecognized errors keep their raw text
    """
    if isinstance(error, asyncio.TimeoutError):
        return ErrorKind.TIMEOUT, TIMEOUT_MESSAGE
    if isinstance(error, PlaywrightTimeoutError):
        return ErrorKind.TIMEOUT, TIMEOUT_MESSAGE

    text = str(error)
    lowered = text.lower()
    for marker, kind, message in _EXCEPTION_MARKERS:
        if marker.lower() in lowered:
            return kind, message

    return ErrorKind.UNKNOWN, text or type(error).__name__
