"""
Implements fetching, parsing and caching of robots.txt policies.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

import structlog

from politecrawl.config.config import RobotsConfig
from politecrawl.crawler.clock import Clock, SystemClock
from politecrawl.crawler.http_client import HttpTransport
from politecrawl.exceptions import TransportError
from politecrawl.observability import increment
from politecrawl.utils.urls import request_path

logger = structlog.get_logger(__name__)

WILDCARD_AGENT = "*"

_REQUEST_RATE = re.compile(r"^\s*(\d+)\s*/\s*(\d+(?:\.\d+)?)\s*([smh]?)", re.IGNORECASE)
_UNIT_SECONDS = {"": 1.0, "s": 1.0, "m": 60.0, "h": 3600.0}


@dataclass(frozen=True)
class RobotsRule:
    """Directives of one user-agent block."""

    agent: str
    allow: Tuple[str, ...] = ()
    disallow: Tuple[str, ...] = ()
    crawl_delay: Optional[float] = None
    request_rate: Optional[str] = None
    visit_time: Optional[str] = None

    def effective_delay(self) -> Optional[float]:
        """Crawl-delay, or the interval implied by Request-rate."""
        if self.crawl_delay is not None:
            return self.crawl_delay
        if self.request_rate:
            match = _REQUEST_RATE.match(self.request_rate)
            if match and int(match.group(1)) > 0:
                period = float(match.group(2)) * _UNIT_SECONDS[match.group(3).lower()]
                return period / int(match.group(1))
        return None


@dataclass(frozen=True)
class RobotsPolicy:
    """Parsed robots.txt for one host."""

    rules: Tuple[RobotsRule, ...] = ()
    sitemaps: Tuple[str, ...] = ()
    host: Optional[str] = None
    clean_params: Tuple[str, ...] = ()

    def applicable_rule(self, user_agent: str) -> Optional[RobotsRule]:
        """
        The single rule that governs ``user_agent``.

        A rule applies when its agent names one of our product tokens; the
        longest such agent wins and ``*`` is the fallback.
        """
        tokens = agent_tokens(user_agent)
        best: Optional[RobotsRule] = None
        wildcard: Optional[RobotsRule] = None
        for rule in self.rules:
            if rule.agent == WILDCARD_AGENT:
                if wildcard is None:
                    wildcard = rule
            elif rule.agent.split("/", 1)[0] in tokens and (best is None or len(rule.agent) > len(best.agent)):
                best = rule
        return best or wildcard

    def wildcard_rule(self) -> Optional[RobotsRule]:
        for rule in self.rules:
            if rule.agent == WILDCARD_AGENT:
                return rule
        return None


def agent_tokens(user_agent: str) -> Set[str]:
    """
    Product names a robots.txt User-agent line may address.

    ``Mozilla/5.0 (compatible; JobBot/2.1; +https://x.org/bot)`` yields
    ``{"mozilla", "compatible", "jobbot"}``; URLs and contact details are
    skipped so their fragments never match an agent.
    """
    tokens = set()
    for word in re.split(r"[\s;()]+", user_agent.lower()):
        if not word or word.startswith("+") or "://" in word or "@" in word:
            continue
        name = word.split("/", 1)[0]
        if name:
            tokens.add(name)
    return tokens


def default_policy() -> RobotsPolicy:
    """Permissive policy used when robots.txt is missing or unreachable."""
    return RobotsPolicy(rules=(RobotsRule(agent=WILDCARD_AGENT, allow=("/",)),))


@dataclass
class _Block:
    agents: List[str] = field(default_factory=list)
    allow: List[str] = field(default_factory=list)
    disallow: List[str] = field(default_factory=list)
    crawl_delay: Optional[float] = None
    request_rate: Optional[str] = None
    visit_time: Optional[str] = None
    has_directives: bool = False

    def to_rules(self) -> List[RobotsRule]:
        return [
            RobotsRule(
                agent=agent,
                allow=tuple(self.allow),
                disallow=tuple(self.disallow),
                crawl_delay=self.crawl_delay,
                request_rate=self.request_rate,
                visit_time=self.visit_time,
            )
            for agent in self.agents
        ]


def parse_robots_txt(content: str) -> RobotsPolicy:
    """Parse robots.txt text into an immutable ``RobotsPolicy``."""
    rules: List[RobotsRule] = []
    sitemaps: List[str] = []
    clean_params: List[str] = []
    host: Optional[str] = None
    current: Optional[_Block] = None

    for raw_line in content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line or ":" not in line:
            continue
        key, value = line.split(":", 1)
        key = key.strip().lower()
        value = value.strip()

        if key == "user-agent":
            # Consecutive User-agent lines share one block
            if current is None or current.has_directives:
                if current is not None:
                    rules.extend(current.to_rules())
                current = _Block()
            current.agents.append(value.lower() or WILDCARD_AGENT)
        elif key in ("allow", "disallow", "crawl-delay", "request-rate", "visit-time"):
            if current is None:
                continue
            current.has_directives = True
            if key == "allow":
                current.allow.append(value)
            elif key == "disallow":
                current.disallow.append(value)
            elif key == "crawl-delay":
                try:
                    delay = float(value)
                except ValueError:
                    continue
                if delay >= 0:
                    current.crawl_delay = delay
            elif key == "request-rate":
                current.request_rate = value
            else:
                current.visit_time = value
        elif key == "sitemap":
            sitemaps.append(value)
        elif key == "host":
            host = value
        elif key == "clean-param":
            clean_params.append(value)

    if current is not None:
        rules.extend(current.to_rules())

    return RobotsPolicy(rules=tuple(rules), sitemaps=tuple(sitemaps), host=host, clean_params=tuple(clean_params))


def path_matches(path: str, pattern: str) -> bool:
    """Anchored robots.txt glob match; ``*`` is a wildcard, trailing ``$`` ends the match."""
    if not pattern:
        return False
    anchored = pattern.endswith("$")
    body = pattern[:-1] if anchored else pattern
    regex = ".*".join(re.escape(part) for part in body.split("*"))
    if anchored:
        regex += "$"
    return re.match(regex, path) is not None


def _longest_match(path: str, patterns: Tuple[str, ...]) -> int:
    """Length of the longest pattern matching ``path``, -1 if none does."""
    best = -1
    for pattern in patterns:
        if len(pattern) > best and path_matches(path, pattern):
            best = len(pattern)
    return best


class RobotsPolicyResolver:
    """
    Fetches, parses and caches robots.txt policies per host.

    Lookups never raise: a missing or unreachable robots.txt yields the
    permissive default policy. Concurrent lookups for the same host share
    a single fetch.
    """

    def __init__(
        self,
        transport: HttpTransport,
        config: Optional[RobotsConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self.transport = transport
        self.config = config or RobotsConfig()
        self.clock = clock or SystemClock()
        self._cache: Dict[str, Tuple[float, RobotsPolicy]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _cached(self, host: str) -> Optional[RobotsPolicy]:
        entry = self._cache.get(host)
        if entry is None:
            return None
        expires_at, policy = entry
        if self.clock.monotonic() >= expires_at:
            del self._cache[host]
            return None
        return policy

    async def get_policy(self, host: str, scheme: str = "https") -> RobotsPolicy:
        """
        Return the policy for ``host``, fetching robots.txt on a cache miss.

        Args:
            host: Host name, with ":port" for a non-default port (case-insensitive)
            scheme: Scheme used to reach robots.txt

        Returns:
            The parsed policy, or the permissive default on any failure.
        """
        key = host.lower()
        policy = self._cached(key)
        if policy is not None:
            return policy

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another task may have fetched it while we waited
            policy = self._cached(key)
            if policy is not None:
                return policy
            policy, ttl = await self._fetch_policy(key, scheme)
            self._cache[key] = (self.clock.monotonic() + ttl, policy)
            return policy

    async def _fetch_policy(self, host: str, scheme: str) -> Tuple[RobotsPolicy, float]:
        url = f"{scheme}://{host}/robots.txt"
        try:
            response = await self.transport.request("GET", url, timeout=self.config.fetch_timeout)
        except TransportError as e:
            logger.warning("Failed to fetch robots.txt, allowing by default", host=host, error=str(e))
            increment("robots_fetch_total", labels={"result": "error"})
            return default_policy(), self.config.failure_ttl

        if not response.ok:
            if response.status >= 500:
                logger.warning("robots.txt server error, allowing by default", host=host, status=response.status)
                increment("robots_fetch_total", labels={"result": "error"})
                return default_policy(), self.config.failure_ttl
            # 4xx means there is no robots.txt to obey
            logger.debug("No robots.txt found", host=host, status=response.status)
            increment("robots_fetch_total", labels={"result": "missing"})
            return default_policy(), self.config.cache_ttl

        if len(response.body) > self.config.max_size_bytes:
            logger.warning("robots.txt too large, allowing by default", host=host, size=len(response.body))
            increment("robots_fetch_total", labels={"result": "oversized"})
            return default_policy(), self.config.failure_ttl

        policy = parse_robots_txt(response.body.decode("utf-8", errors="replace"))
        increment("robots_fetch_total", labels={"result": "parsed"})
        logger.debug("Parsed robots.txt", host=host, rules=len(policy.rules), sitemaps=len(policy.sitemaps))
        return policy, self.config.cache_ttl

    def is_allowed(self, policy: RobotsPolicy, url: str, user_agent: str) -> bool:
        """
        Check whether ``user_agent`` may fetch ``url`` under ``policy``.

        The longest matching Allow and Disallow patterns are compared; Allow
        wins only when strictly longer. A path no rule addresses is allowed.
        """
        rule = policy.applicable_rule(user_agent)
        if rule is None:
            return True
        path = request_path(url)
        allow_len = _longest_match(path, rule.allow)
        disallow_len = _longest_match(path, rule.disallow)
        if disallow_len < 0:
            return True
        return allow_len > disallow_len

    def crawl_delay(self, policy: RobotsPolicy, user_agent: str) -> float:
        """Seconds to wait between requests for ``user_agent``."""
        rule = policy.applicable_rule(user_agent)
        for candidate in (rule, policy.wildcard_rule()):
            if candidate is not None:
                delay = candidate.effective_delay()
                if delay is not None:
                    return delay
        return self.config.default_crawl_delay

    def clear_cache(self, host: Optional[str] = None) -> None:
        """Drop cached policies for one host or for all hosts."""
        if host is not None:
            self._cache.pop(host.lower(), None)
        else:
            self._cache.clear()

    def cached_hosts(self) -> List[str]:
        return sorted(host for host in list(self._cache) if self._cached(host) is not None)
