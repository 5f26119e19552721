"""
PoliteCrawl Crawler Module - Compliance-Aware Fetching Core

Key Features:
- robots.txt fetching, parsing and 24h policy caching
- Per-host crawl delays, hourly quotas and a global in-flight host cap
- Exponential backoff on 429 and temporary blocking after repeated errors
- Response cache with per-domain TTLs, size caps and conditional requests
- Retention sweeps and audit exports for compliance
"""

from .cache import CacheEntry, ResponseCache
from .clock import Clock, ManualClock, SystemClock
from .http_client import HttpTransport, TransportResponse
from .orchestrator import CrawlOrchestrator, CrawlStats
from .rate_limiter import DomainScheduler, DomainState
from .robots_parser import RobotsPolicy, RobotsPolicyResolver, RobotsRule, parse_robots_txt

__all__ = [
    "CacheEntry",
    "Clock",
    "CrawlOrchestrator",
    "CrawlStats",
    "DomainScheduler",
    "DomainState",
    "HttpTransport",
    "ManualClock",
    "ResponseCache",
    "RobotsPolicy",
    "RobotsPolicyResolver",
    "RobotsRule",
    "SystemClock",
    "TransportResponse",
    "parse_robots_txt",
]
