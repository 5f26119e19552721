"""
Per-Host Scheduler with Backoff and Temporary Blocking

Enforces a minimum spacing between requests to the same host, an hourly
quota per host, a global cap on hosts with requests in flight, exponential
backoff after 429 responses and a temporary block after repeated failures.
"""

from __future__ import annotations

import asyncio
from collections import Counter, deque
from dataclasses import dataclass
from typing import Any, Deque, Dict, Optional, Tuple

import structlog

from politecrawl.config.config import RateLimiterConfig
from politecrawl.crawler.clock import Clock, SystemClock
from politecrawl.exceptions import DomainBlockedError, RateLimitExceededError
from politecrawl.observability import gauge, histogram, increment
from politecrawl.protocols import CrawlFrequency

logger = structlog.get_logger(__name__)

HOURLY_WINDOW = 3600.0
ONE_DAY = CrawlFrequency.DAILY.seconds


@dataclass
class DomainState:
    """Scheduling state for a single host."""

    domain: str
    current_delay: float
    last_request_time: Optional[float] = None
    backoff_multiplier: float = 1.0
    consecutive_errors: int = 0
    hourly_request_count: int = 0
    window_start: float = 0.0
    blocked_until: Optional[float] = None
    last_success_time: Optional[float] = None
    crawl_frequency: CrawlFrequency = CrawlFrequency.DAILY

    def is_blocked(self, now: float) -> bool:
        return self.blocked_until is not None and now < self.blocked_until


class DomainScheduler:
    """
    Grants permission to issue requests to a host.

    ``permission`` must be paired with exactly one ``release`` once the
    request finishes, whatever its outcome. Times are taken from the
    injected clock: ``monotonic`` for spacing and windows, ``time`` for
    block deadlines and success timestamps that are reported to callers.
    """

    def __init__(self, config: Optional[RateLimiterConfig] = None, clock: Optional[Clock] = None):
        self.config = config or RateLimiterConfig()
        self.clock = clock or SystemClock()

        self._states: Dict[str, DomainState] = {}
        self._in_flight: Counter[str] = Counter()
        self._waiters: Deque[Tuple[str, asyncio.Future[None]]] = deque()

        logger.debug(
            "Domain scheduler initialized",
            default_delay=self.config.default_crawl_delay,
            max_concurrent_hosts=self.config.max_concurrent_hosts,
        )

    # ------------------------------------------------------------------
    # State helpers
    # ------------------------------------------------------------------

    def _get_state(self, domain: str) -> DomainState:
        state = self._states.get(domain)
        if state is None:
            state = DomainState(
                domain=domain,
                current_delay=self.config.default_crawl_delay,
                window_start=self.clock.monotonic(),
            )
            self._states[domain] = state
        return state

    def _check_block(self, state: DomainState) -> None:
        if state.blocked_until is None:
            return
        now = self.clock.time()
        if now < state.blocked_until:
            raise DomainBlockedError(state.domain, state.blocked_until)
        # Block expired: forget the failures that caused it
        logger.info("Domain block expired", domain=state.domain)
        state.blocked_until = None
        state.consecutive_errors = 0
        state.backoff_multiplier = 1.0

    def _check_hourly_limit(self, state: DomainState) -> None:
        now = self.clock.monotonic()
        if now - state.window_start >= HOURLY_WINDOW:
            state.window_start = now
            state.hourly_request_count = 0
        if state.hourly_request_count >= self.config.max_requests_per_hour:
            raise RateLimitExceededError(state.domain, self.config.max_requests_per_hour)

    def _has_capacity(self, domain: str) -> bool:
        return domain in self._in_flight or len(self._in_flight) < self.config.max_concurrent_hosts

    def _take_slot(self, domain: str) -> None:
        self._in_flight[domain] += 1
        gauge("scheduler_in_flight_hosts", len(self._in_flight))

    def _return_slot(self, domain: str) -> None:
        if self._in_flight[domain] <= 1:
            self._in_flight.pop(domain, None)
        else:
            self._in_flight[domain] -= 1
        gauge("scheduler_in_flight_hosts", len(self._in_flight))
        self._drain_queue()

    def _drain_queue(self) -> None:
        """Hand freed slots to queued callers in FIFO order."""
        while self._waiters:
            domain, future = self._waiters[0]
            if future.done():
                self._waiters.popleft()
                continue
            if not self._has_capacity(domain):
                break
            self._waiters.popleft()
            self._take_slot(domain)
            future.set_result(None)

    async def _acquire_slot(self, domain: str) -> None:
        if not self._waiters and self._has_capacity(domain):
            self._take_slot(domain)
            return

        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append((domain, future))
        logger.debug("Waiting for a free host slot", domain=domain, queued=len(self._waiters))
        try:
            await future
        except asyncio.CancelledError:
            if future.done() and not future.cancelled():
                # The slot was handed to us just before cancellation
                self._return_slot(domain)
            raise

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def permission(self, domain: str, override_delay: Optional[float] = None) -> float:
        """
        Wait until a request to ``domain`` may be issued.

        Args:
            domain: Target host
            override_delay: Externally imposed spacing (robots.txt crawl
                delay); the larger of it and the tracked delay applies

        Returns:
            Seconds spent waiting

        Raises:
            DomainBlockedError: the host is under a temporary block
            RateLimitExceededError: the hourly quota is used up
        """
        state = self._get_state(domain)
        self._check_block(state)
        self._check_hourly_limit(state)

        started = self.clock.monotonic()
        await self._acquire_slot(domain)
        try:
            while True:
                self._check_block(state)
                delay = max(override_delay or 0.0, state.current_delay)
                if state.last_request_time is None:
                    break
                remaining = delay - (self.clock.monotonic() - state.last_request_time)
                if remaining <= 0:
                    break
                logger.debug("Waiting for crawl delay", domain=domain, wait=round(remaining, 3))
                await self.clock.sleep(remaining)

            self._check_hourly_limit(state)
        except BaseException:
            self._return_slot(domain)
            raise

        state.last_request_time = self.clock.monotonic()
        state.hourly_request_count += 1
        waited = state.last_request_time - started
        histogram("scheduler_wait_seconds", waited)
        return waited

    def release(self, domain: str, success: bool, status_code: Optional[int] = None) -> None:
        """
        Return the slot granted by ``permission`` and record the outcome.

        Args:
            domain: Host the permission was granted for
            success: Whether the request succeeded
            status_code: HTTP status of a failed request, if any
        """
        state = self._get_state(domain)

        if success:
            self._record_success(state)
        elif status_code == 429:
            self._handle_rate_limit_error(state)
        else:
            self._handle_general_error(state, status_code)

        if domain in self._in_flight:
            self._return_slot(domain)
        else:
            logger.warning("Release without a granted permission", domain=domain)
            self._drain_queue()

    def _record_success(self, state: DomainState) -> None:
        now = self.clock.time()
        if state.last_success_time is not None:
            since_last = now - state.last_success_time
            if since_last < ONE_DAY and state.crawl_frequency is CrawlFrequency.WEEKLY:
                state.crawl_frequency = CrawlFrequency.DAILY
            elif since_last > 7 * ONE_DAY and state.crawl_frequency is CrawlFrequency.DAILY:
                state.crawl_frequency = CrawlFrequency.WEEKLY

        state.last_success_time = now
        state.consecutive_errors = 0
        state.backoff_multiplier = 1.0
        state.current_delay = self.config.default_crawl_delay

    def _handle_rate_limit_error(self, state: DomainState) -> None:
        base = max(state.current_delay, self.config.min_crawl_delay)
        state.backoff_multiplier = min(
            state.backoff_multiplier * self.config.backoff_multiplier,
            self.config.max_backoff_delay / base,
        )
        state.current_delay = min(base * state.backoff_multiplier, self.config.max_backoff_delay)
        increment("scheduler_backoff_total")
        logger.warning(
            "Rate limit hit, backing off",
            domain=state.domain,
            new_delay=state.current_delay,
            multiplier=state.backoff_multiplier,
        )

    def _handle_general_error(self, state: DomainState, status_code: Optional[int]) -> None:
        state.consecutive_errors += 1
        if state.consecutive_errors >= self.config.error_threshold and not state.is_blocked(self.clock.time()):
            state.blocked_until = self.clock.time() + self.config.block_duration
            increment("scheduler_domain_blocks_total")
            logger.warning(
                "Domain blocked due to consecutive errors",
                domain=state.domain,
                consecutive_errors=state.consecutive_errors,
                status=status_code,
                block_seconds=self.config.block_duration,
            )

    def next_crawl_time(self, domain: str) -> float:
        """Wall-clock time at which the host is next due for a crawl."""
        state = self._get_state(domain)
        if state.is_blocked(self.clock.time()):
            assert state.blocked_until is not None
            return state.blocked_until
        return (state.last_success_time or 0.0) + state.crawl_frequency.seconds

    def is_blocked(self, domain: str) -> bool:
        state = self._states.get(domain)
        return state is not None and state.is_blocked(self.clock.time())

    def update_crawl_delay(self, domain: str, delay: float) -> None:
        state = self._get_state(domain)
        state.current_delay = min(max(delay, self.config.min_crawl_delay), self.config.max_backoff_delay)

    def clear_domain_state(self, domain: str) -> None:
        self._states.pop(domain, None)

    def in_flight(self) -> Dict[str, int]:
        return dict(self._in_flight)

    def queued(self) -> int:
        return sum(1 for _, future in self._waiters if not future.done())

    def get_domain_stats(self, domain: str) -> Dict[str, Any]:
        """Get statistics for a specific host."""
        state = self._states.get(domain)
        if state is None:
            return {"exists": False}

        now = self.clock.time()
        return {
            "exists": True,
            "current_delay": state.current_delay,
            "backoff_multiplier": state.backoff_multiplier,
            "consecutive_errors": state.consecutive_errors,
            "hourly_request_count": state.hourly_request_count,
            "blocked": state.is_blocked(now),
            "blocked_until": state.blocked_until,
            "last_success_time": state.last_success_time,
            "crawl_frequency": state.crawl_frequency.value,
            "in_flight": self._in_flight.get(domain, 0),
        }

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {domain: self.get_domain_stats(domain) for domain in list(self._states)}
