"""
Crawl Orchestrator

Composes robots.txt policy, per-host scheduling and the response cache
around the network fetch. Every request follows the same path:

    CheckPolicy -> Blocked
                -> CheckCache -> HitCache (done)
                              -> ScheduleWait -> Fetch -> Success -> StoreCache (done)
                                                       -> Failure (error)

All state (policies, host schedules, cached responses, counters) belongs to
the orchestrator instance, so several instances can coexist.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from politecrawl.config.config import Config
from politecrawl.crawler.cache import CacheEntry, ResponseCache, payload_size
from politecrawl.crawler.clock import Clock, SystemClock
from politecrawl.crawler.http_client import HttpTransport, TransportResponse
from politecrawl.crawler.rate_limiter import DomainScheduler
from politecrawl.crawler.robots_parser import RobotsPolicyResolver
from politecrawl.exceptions import (
    CrawlerError,
    HTTPStatusError,
    PolicyBlockedError,
    RateLimitedError,
    TransportError,
)
from politecrawl.observability import histogram, increment
from politecrawl.protocols import (
    ComplianceReport,
    CrawlError,
    CrawlRequest,
    CrawlResponse,
    CrawlResult,
    Err,
    Ok,
)
from politecrawl.utils.urls import extract_scheme, url_authority

logger = structlog.get_logger(__name__)


@dataclass
class CrawlStats:
    """Process-wide counters for one orchestrator."""

    total_requests: int = 0
    successful_requests: int = 0
    cached_responses: int = 0
    blocked_requests: int = 0
    errors: int = 0


class CrawlOrchestrator:
    """
    Compliance-aware fetcher.

    Collaborators are constructor-injected; anything not supplied is built
    from ``config`` and shares one clock and one HTTP transport.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        *,
        transport: Optional[HttpTransport] = None,
        robots: Optional[RobotsPolicyResolver] = None,
        scheduler: Optional[DomainScheduler] = None,
        cache: Optional[ResponseCache] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config or Config()
        self.crawler_config = self.config.crawler
        self.clock = clock or SystemClock()

        self.transport = transport or HttpTransport(self.crawler_config)
        self.robots = robots or RobotsPolicyResolver(self.transport, self.config.robots, self.clock)
        self.scheduler = scheduler or DomainScheduler(self.config.rate_limiter, self.clock)
        self.cache = cache or ResponseCache(self.config.cache, self.clock)

        self._stats = CrawlStats()
        self._started = False

        logger.info(
            "Crawl orchestrator initialized",
            user_agent=self.crawler_config.user_agent,
            respect_robots_txt=self.crawler_config.respect_robots_txt,
            caching=self.crawler_config.enable_caching,
            rate_limiting=self.crawler_config.enable_rate_limiting,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open the transport and start the cache sweep."""
        if self._started:
            return
        await self.transport.initialize()
        if self.crawler_config.enable_caching:
            self.cache.start()
        self._started = True

    async def close(self) -> None:
        """Stop the cache sweep and close the transport."""
        await self.cache.close()
        await self.transport.close()
        self._started = False
        logger.info("Crawl orchestrator closed")

    async def __aenter__(self) -> "CrawlOrchestrator":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Crawling
    # ------------------------------------------------------------------

    async def crawl(self, request: Union[CrawlRequest, str]) -> CrawlResponse:
        """
        Crawl a single URL.

        Args:
            request: CrawlRequest, or a bare URL for a default GET

        Returns:
            CrawlResponse, from the cache or the network

        Raises:
            PolicyBlockedError: robots.txt disallows the URL
            RateLimitedError: the scheduler refused (hourly quota or domain block)
            TransportError: network failure after retries
            HTTPStatusError: non-2xx response after retries
            InvalidURLError: the URL has no usable scheme or host
        """
        if isinstance(request, str):
            request = CrawlRequest(url=request)

        await self.start()
        started = self.clock.monotonic()
        self._stats.total_requests += 1
        increment("crawl_requests_total")

        try:
            return await self._crawl(request, started)
        except CrawlerError as e:
            self._stats.errors += 1
            increment("crawl_errors_total", labels={"kind": e.kind.value})
            raise

    async def _crawl(self, request: CrawlRequest, started: float) -> CrawlResponse:
        url = request.url
        host = url_authority(url)

        robots_delay: Optional[float] = None
        if self.crawler_config.respect_robots_txt:
            policy = await self.robots.get_policy(host, extract_scheme(url))
            if not self.robots.is_allowed(policy, url, self.crawler_config.user_agent):
                self._stats.blocked_requests += 1
                increment("crawl_robots_blocked_total")
                logger.info("Blocked by robots.txt", url=url)
                raise PolicyBlockedError(url)
            robots_delay = self.robots.crawl_delay(policy, self.crawler_config.user_agent)

        use_cache = self.crawler_config.enable_caching and request.respect_cache
        conditional: Dict[str, str] = {}
        stale: Optional[CacheEntry] = None
        if use_cache:
            # Validators must be read before get() drops an expired entry
            conditional = self.cache.conditional_headers(url)
            stale = self.cache.peek(url)
            payload = self.cache.get(url)
            if payload is not None:
                self._stats.cached_responses += 1
                increment("crawl_cache_hits_total")
                logger.debug("Served from cache", url=url)
                return CrawlResponse(
                    url=url,
                    status=200,
                    headers={},
                    payload=payload,
                    from_cache=True,
                    elapsed=self.clock.monotonic() - started,
                    size=payload_size(payload),
                )

        retries = request.retries if request.retries is not None else self.crawler_config.max_retries
        attempt = 0
        last_error: Optional[CrawlerError] = None
        while True:
            attempt += 1
            try:
                response = await self._scheduled_fetch(request, host, robots_delay, conditional, stale, started)
            except RateLimitedError as e:
                # A refusal on a retry is a consequence of the earlier failure
                if last_error is not None:
                    raise last_error from e
                raise
            except CrawlerError as e:
                if not e.retryable or attempt > retries:
                    raise
                if self.crawler_config.enable_rate_limiting and self.scheduler.is_blocked(host):
                    logger.info("Host blocked, giving up retries", url=url, attempt=attempt, error=str(e))
                    raise
                last_error = e
                logger.info(
                    "Retrying request",
                    url=url,
                    attempt=attempt,
                    max_retries=retries,
                    error=str(e),
                )
                continue
            self._stats.successful_requests += 1
            increment("crawl_success_total")
            return response

    async def _scheduled_fetch(
        self,
        request: CrawlRequest,
        host: str,
        robots_delay: Optional[float],
        conditional: Dict[str, str],
        stale: Optional[CacheEntry],
        started: float,
    ) -> CrawlResponse:
        rate_limited = self.crawler_config.enable_rate_limiting
        if rate_limited:
            await self.scheduler.permission(host, robots_delay)

        headers = dict(request.headers)
        if stale is not None:
            headers.update(conditional)

        success = False
        status: Optional[int] = None
        try:
            raw = await self.transport.request(
                request.method,
                request.url,
                headers=headers,
                timeout=request.timeout or self.crawler_config.timeout,
                data=request.body,
            )
            status = raw.status
            histogram("fetch_latency_seconds", raw.elapsed)

            if raw.status == 304 and stale is not None:
                response = self._revalidated(request, raw, stale, started)
                success = True
                return response

            if not raw.ok:
                raise HTTPStatusError(request.url, raw.status, raw.reason)

            if self.crawler_config.enable_caching:
                self.cache.set(
                    request.url,
                    raw.body,
                    etag=raw.header("ETag"),
                    last_modified=raw.header("Last-Modified"),
                )
            success = True
            return CrawlResponse(
                url=request.url,
                status=raw.status,
                headers=raw.headers,
                payload=raw.body,
                from_cache=False,
                elapsed=self.clock.monotonic() - started,
                size=len(raw.body),
            )
        except TransportError as e:
            logger.warning("Fetch failed", url=request.url, error=str(e))
            raise
        finally:
            # Runs on success, failure and cancellation alike
            if rate_limited:
                self.scheduler.release(host, success, None if success else status)

    def _revalidated(
        self, request: CrawlRequest, raw: TransportResponse, stale: CacheEntry, started: float
    ) -> CrawlResponse:
        """A 304 confirmed the stale entry: extend its TTL and serve it."""
        self.cache.set(
            request.url,
            stale.payload,
            etag=raw.header("ETag") or stale.etag,
            last_modified=raw.header("Last-Modified") or stale.last_modified,
        )
        self._stats.cached_responses += 1
        increment("crawl_cache_hits_total")
        logger.debug("Revalidated cached entry", url=request.url)
        return CrawlResponse(
            url=request.url,
            status=304,
            headers=raw.headers,
            payload=stale.payload,
            from_cache=True,
            elapsed=self.clock.monotonic() - started,
            size=stale.size_bytes,
        )

    async def crawl_result(self, request: Union[CrawlRequest, str]) -> CrawlResult:
        """Like ``crawl`` but returns ``Ok``/``Err`` instead of raising."""
        try:
            return Ok(await self.crawl(request))
        except CrawlerError as e:
            return Err(e.kind, e)

    async def crawl_batch(self, requests: Sequence[CrawlRequest]) -> List[Union[CrawlResponse, CrawlError]]:
        """
        Crawl several URLs one after another.

        Requests are ordered by priority (high first) and then grouped by
        host; results come back in that processing order. A failing request
        becomes a ``CrawlError`` entry and never aborts the batch.
        """
        results: List[Union[CrawlResponse, CrawlError]] = []
        for request in self.sort_requests(requests):
            result = await self.crawl_result(request)
            if isinstance(result, Ok):
                results.append(result.response)
            else:
                results.append(result.to_crawl_error(request.url))
        return results

    @staticmethod
    def sort_requests(requests: Sequence[CrawlRequest]) -> List[CrawlRequest]:
        def sort_key(request: CrawlRequest) -> tuple:
            try:
                host = url_authority(request.url)
            except CrawlerError:
                host = ""
            return (-request.priority.rank, host)

        return sorted(requests, key=sort_key)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        """Counters plus scheduler and cache statistics."""
        return {
            **asdict(self._stats),
            "domain_states": self.scheduler.get_all_stats(),
            "cache_stats": self.cache.get_stats(),
        }

    def compliance_report(self) -> ComplianceReport:
        return ComplianceReport(
            robots_txt_checked=self.crawler_config.respect_robots_txt,
            rate_limiting_applied=self.crawler_config.enable_rate_limiting,
            cache_utilized=self._stats.cached_responses > 0,
            user_agent=self.crawler_config.user_agent,
            contact_info=self.crawler_config.contact_info,
            blocked_by_robots=self._stats.blocked_requests,
        )

    def reset(self) -> None:
        """Clear cached responses, cached robots policies and counters."""
        self.cache.clear()
        self.robots.clear_cache()
        self._stats = CrawlStats()
        logger.info("Crawl orchestrator reset")
