"""
Value objects and result types shared by the crawler components.

Architecture Overview:
- ``CrawlRequest`` / ``CrawlResponse`` are plain value objects
- ``Ok`` / ``Err`` form a closed result type returned by ``crawl_result``
- ``CrawlError`` is the per-request failure entry in batch results
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Optional, Union

if TYPE_CHECKING:
    from politecrawl.exceptions import CrawlerError

# ============================================================================
# Enums
# ============================================================================


class Priority(Enum):
    """Scheduling priority for batch crawls."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 3, Priority.NORMAL: 2, Priority.LOW: 1}


class ErrorKind(Enum):
    """Closed set of crawl failure categories."""

    POLICY_BLOCKED = "policy_blocked"
    RATE_LIMITED = "rate_limited"
    DOMAIN_BLOCKED = "domain_blocked"
    TRANSPORT = "transport"
    HTTP_STATUS = "http_status"
    INVALID_URL = "invalid_url"


class CrawlFrequency(Enum):
    """Informational re-crawl cadence hint for a host."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

    @property
    def seconds(self) -> float:
        return _FREQUENCY_SECONDS[self]


_FREQUENCY_SECONDS = {
    CrawlFrequency.DAILY: 24 * 60 * 60.0,
    CrawlFrequency.WEEKLY: 7 * 24 * 60 * 60.0,
    CrawlFrequency.MONTHLY: 30 * 24 * 60 * 60.0,
}

# ============================================================================
# Requests and responses
# ============================================================================


@dataclass(frozen=True)
class CrawlRequest:
    """A single URL to crawl."""

    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    timeout: Optional[float] = None
    retries: Optional[int] = None
    priority: Priority = Priority.NORMAL
    respect_cache: bool = True


@dataclass(frozen=True)
class CrawlResponse:
    """Outcome of a successful crawl, from the network or from cache."""

    url: str
    status: int
    headers: Dict[str, str]
    payload: bytes
    from_cache: bool
    elapsed: float
    size: int

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class CrawlError:
    """Failure entry in a batch result."""

    url: str
    error: str
    kind: ErrorKind
    retryable: bool
    code: Optional[int] = None


@dataclass(frozen=True)
class ComplianceReport:
    """What the crawler did to stay polite during a crawl cycle."""

    robots_txt_checked: bool
    rate_limiting_applied: bool
    cache_utilized: bool
    user_agent: str
    contact_info: str
    blocked_by_robots: int


# ============================================================================
# Tagged results
# ============================================================================


@dataclass(frozen=True)
class Ok:
    response: CrawlResponse

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    kind: ErrorKind
    error: "CrawlerError"

    @property
    def ok(self) -> bool:
        return False

    def to_crawl_error(self, url: str) -> CrawlError:
        return CrawlError(
            url=url,
            error=str(self.error),
            kind=self.kind,
            retryable=self.error.retryable,
            code=self.error.status,
        )


CrawlResult = Union[Ok, Err]
