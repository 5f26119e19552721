"""
Error taxonomy for the crawler core.

Every failure surfaced by ``CrawlOrchestrator.crawl`` is a ``CrawlerError``
subclass carrying an ``ErrorKind`` tag and a ``retryable`` flag, so callers
can decide between "try again later" and "give up on this source".
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from politecrawl.protocols import ErrorKind

RETRYABLE_STATUS_CODES = frozenset({408, 429})


class CrawlerError(Exception):
    """Base class for all crawl failures."""

    kind: ErrorKind = ErrorKind.TRANSPORT
    retryable: bool = False

    def __init__(self, message: str, *, url: Optional[str] = None, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class InvalidURLError(CrawlerError, ValueError):
    """Raised when a URL has no usable scheme or host."""

    kind = ErrorKind.INVALID_URL
    retryable = False


class PolicyBlockedError(CrawlerError):
    """robots.txt disallows the URL for our user agent."""

    kind = ErrorKind.POLICY_BLOCKED
    retryable = False

    def __init__(self, url: str) -> None:
        super().__init__(f"Crawling blocked by robots.txt for {url}", url=url)


class RateLimitedError(CrawlerError):
    """The scheduler refused to grant a request slot for a host."""

    kind = ErrorKind.RATE_LIMITED
    retryable = True

    def __init__(self, message: str, *, host: str, url: Optional[str] = None) -> None:
        super().__init__(message, url=url)
        self.host = host


class RateLimitExceededError(RateLimitedError):
    """The host's hourly request quota is used up."""

    def __init__(self, host: str, limit: int) -> None:
        super().__init__(f"Hourly request limit of {limit} exceeded for domain {host}", host=host)
        self.limit = limit


class DomainBlockedError(RateLimitedError):
    """The host is under a temporary block after repeated failures."""

    kind = ErrorKind.DOMAIN_BLOCKED

    def __init__(self, host: str, blocked_until: float) -> None:
        until = datetime.fromtimestamp(blocked_until, tz=timezone.utc).isoformat()
        super().__init__(f"Domain {host} is blocked until {until}", host=host)
        self.blocked_until = blocked_until


class TransportError(CrawlerError):
    """Timeout, DNS failure, connection reset and other network-level errors."""

    kind = ErrorKind.TRANSPORT
    retryable = True

    def __init__(self, message: str, *, url: Optional[str] = None, timeout: bool = False) -> None:
        super().__init__(message, url=url)
        self.timeout = timeout


class HTTPStatusError(CrawlerError):
    """The origin answered with a non-2xx status."""

    kind = ErrorKind.HTTP_STATUS

    def __init__(self, url: str, status: int, reason: str = "") -> None:
        message = f"HTTP {status}: {reason}" if reason else f"HTTP {status}"
        super().__init__(message, url=url, status=status)

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status is not None and (self.status >= 500 or self.status in RETRYABLE_STATUS_CODES)
