"""Tests for logging configuration and metric helpers."""

import json
import logging

import pytest
import structlog

from politecrawl.config import MonitoringConfig
from politecrawl.observability import METRICS, configure_logging, gauge, histogram, increment
from politecrawl.observability.metrics import Counter
from tests.helpers.metric_delta import histogram_observes, metric_delta


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers:
        handler.close()
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.mark.unit
class TestMetricHelpers:
    def test_increment_labelled_counter(self):
        with metric_delta(METRICS["robots_fetch_total"].labels(result="parsed"), 2):
            increment("robots_fetch_total", 2, labels={"result": "parsed"})

    def test_gauge_sets_value(self):
        gauge("cache_entries", 7)

        assert METRICS["cache_entries"]._value.get() == 7

    def test_histogram_observes(self):
        with histogram_observes(METRICS["fetch_latency_seconds"]):
            histogram("fetch_latency_seconds", 0.25)

    def test_unknown_metric_is_ignored(self):
        increment("no_such_metric")
        gauge("no_such_metric", 1)
        histogram("no_such_metric", 1)

    def test_duplicate_registration_reuses_collector(self):
        first = Counter("politecrawl_test_duplicate_total", "Duplicate registration check")
        second = Counter("politecrawl_test_duplicate_total", "Duplicate registration check")

        assert first is second


@pytest.mark.unit
class TestLogging:
    def test_file_logging_is_json(self, tmp_path, restore_logging):
        log_file = tmp_path / "logs" / "crawl.log"
        configure_logging(MonitoringConfig(log_level="DEBUG", log_file=str(log_file)))

        structlog.get_logger("politecrawl.test").info("Fetched page", url="https://example.com/")
        for handler in logging.getLogger().handlers:
            handler.flush()

        records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
        fetched = [r for r in records if r["event"] == "Fetched page"]
        assert fetched[0]["url"] == "https://example.com/"
        assert fetched[0]["level"] == "info"
        assert "timestamp" in fetched[0]

    def test_crawl_id_is_attached(self, tmp_path, restore_logging):
        log_file = tmp_path / "crawl.log"
        configure_logging(MonitoringConfig(log_file=str(log_file)))

        structlog.contextvars.bind_contextvars(crawl_id="run-42")
        try:
            structlog.get_logger("politecrawl.test").warning("Backing off")
        finally:
            structlog.contextvars.clear_contextvars()
        for handler in logging.getLogger().handlers:
            handler.flush()

        records = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
        assert any(r.get("crawl_id") == "run-42" for r in records if r["event"] == "Backing off")

    def test_level_filters_records(self, tmp_path, restore_logging):
        log_file = tmp_path / "crawl.log"
        configure_logging(MonitoringConfig(log_level="WARNING", log_file=str(log_file)))

        structlog.get_logger("politecrawl.test").info("Too chatty")
        for handler in logging.getLogger().handlers:
            handler.flush()

        assert "Too chatty" not in log_file.read_text(encoding="utf-8")
