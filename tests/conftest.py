"""
Shared fixtures for the PoliteCrawl test suite.

Time is driven by ``ManualClock`` wherever the crawler would sleep, and
HTTP traffic is mocked with aioresponses, so no test touches the network
or waits in real time.
"""

# Standard library imports
import asyncio
from pathlib import Path
from typing import AsyncGenerator

# Third-party imports
import pytest
import pytest_asyncio

# Local imports
from politecrawl.config import (
    CacheConfig,
    Config,
    CrawlerConfig,
    MonitoringConfig,
    RateLimiterConfig,
    RetentionConfig,
    RobotsConfig,
)
from politecrawl.crawler import CrawlOrchestrator, ManualClock


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """
    Cancel any asyncio tasks a test leaves behind so a stuck waiter never
    leaks into the next test.
    """
    tasks_before = asyncio.all_tasks()
    yield
    tasks_after = asyncio.all_tasks()
    new_tasks = tasks_after - tasks_before

    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                print(f"Unexpected error during task cleanup: {e}")


# ============================================================================
# Configuration fixtures
# ============================================================================


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def test_config() -> Config:
    """
    Configuration with zero baseline delays, no job-board overrides and no
    background sweep, so tests control every wait explicitly.
    """
    return Config(
        crawler=CrawlerConfig(
            user_agent="TestBot/1.0 (+https://example.org/bot)",
            contact_info="bot@example.org",
            max_retries=2,
            timeout=5.0,
        ),
        robots=RobotsConfig(default_crawl_delay=0.0),
        rate_limiter=RateLimiterConfig(
            default_crawl_delay=0.0,
            min_crawl_delay=1.0,
            max_backoff_delay=60.0,
            error_threshold=3,
            block_duration=600.0,
        ),
        cache=CacheConfig(domains={}, retention=RetentionConfig(auto_cleanup=False)),
        monitoring=MonitoringConfig(log_file=None),
    )


@pytest.fixture
def manual_clock() -> ManualClock:
    return ManualClock()


@pytest_asyncio.fixture
async def orchestrator(test_config: Config, manual_clock: ManualClock) -> AsyncGenerator[CrawlOrchestrator, None]:
    orch = CrawlOrchestrator(test_config, clock=manual_clock)
    yield orch
    await orch.close()
