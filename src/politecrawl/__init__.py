"""
PoliteCrawl - compliance-aware crawling core for job aggregation.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .config import Config
from .crawler import CrawlOrchestrator
from .exceptions import (
    CrawlerError,
    DomainBlockedError,
    HTTPStatusError,
    InvalidURLError,
    PolicyBlockedError,
    RateLimitedError,
    RateLimitExceededError,
    TransportError,
)
from .protocols import CrawlError, CrawlRequest, CrawlResponse, Err, ErrorKind, Ok, Priority

__all__ = [
    "__version__",
    "Config",
    "CrawlError",
    "CrawlOrchestrator",
    "CrawlRequest",
    "CrawlResponse",
    "CrawlerError",
    "DomainBlockedError",
    "Err",
    "ErrorKind",
    "HTTPStatusError",
    "InvalidURLError",
    "Ok",
    "PolicyBlockedError",
    "Priority",
    "RateLimitExceededError",
    "RateLimitedError",
    "TransportError",
]
