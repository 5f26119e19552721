"""
Defines Prometheus metrics for the crawler.
"""

from __future__ import annotations

from typing import Any, Dict

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import start_http_server

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Reloading this module (tests do) must not raise duplicate registration
# errors, so an already registered collector is returned as is.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race, fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Gauge = _duplicate_safe_factory(_OrigGauge)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "crawl_requests_total": Counter(
            "politecrawl_crawl_requests_total",
            "Crawl requests received by the orchestrator",
        ),
        "crawl_success_total": Counter(
            "politecrawl_crawl_success_total",
            "Crawl requests that produced a response",
        ),
        "crawl_cache_hits_total": Counter(
            "politecrawl_crawl_cache_hits_total",
            "Crawl requests answered from the response cache",
        ),
        "crawl_robots_blocked_total": Counter(
            "politecrawl_crawl_robots_blocked_total",
            "Crawl requests refused because robots.txt disallows them",
        ),
        "crawl_errors_total": Counter(
            "politecrawl_crawl_errors_total",
            "Crawl requests that failed, by error kind",
            ["kind"],
        ),
        "fetch_latency_seconds": Histogram(
            "politecrawl_fetch_latency_seconds",
            "Latency of network fetches",
        ),
        "scheduler_wait_seconds": Histogram(
            "politecrawl_scheduler_wait_seconds",
            "Time spent waiting for a scheduler permission",
        ),
        "scheduler_in_flight_hosts": Gauge(
            "politecrawl_scheduler_in_flight_hosts",
            "Hosts currently holding a scheduler slot",
        ),
        "scheduler_backoff_total": Counter(
            "politecrawl_scheduler_backoff_total",
            "Backoff increases after 429 responses",
        ),
        "scheduler_domain_blocks_total": Counter(
            "politecrawl_scheduler_domain_blocks_total",
            "Hosts temporarily blocked after consecutive errors",
        ),
        "robots_fetch_total": Counter(
            "politecrawl_robots_fetch_total",
            "robots.txt fetch attempts, by result",
            ["result"],
        ),
        "cache_entries": Gauge(
            "politecrawl_cache_entries",
            "Entries held by the response cache",
        ),
        "cache_bytes": Gauge(
            "politecrawl_cache_bytes",
            "Bytes held by the response cache",
        ),
        "cache_evictions_total": Counter(
            "politecrawl_cache_evictions_total",
            "Cache entries removed, by reason",
            ["reason"],
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


class MetricsManager:
    """Starts the Prometheus exporter once per process."""

    def __init__(self) -> None:
        self._started_port: int | None = None

    def start_server(self, port: int) -> None:
        if self._started_port is not None:
            return
        start_http_server(port)
        self._started_port = port
