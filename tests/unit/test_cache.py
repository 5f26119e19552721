"""
Tests for the response cache: TTLs, domain overrides, capacity and retention.
"""

import pytest

from politecrawl.config import CacheConfig, DomainCacheConfig, RetentionConfig
from politecrawl.crawler import ManualClock, ResponseCache
from politecrawl.observability import METRICS
from tests.helpers.metric_delta import metric_delta

HOUR = 3600.0


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def config():
    return CacheConfig(
        default_ttl=HOUR,
        max_cache_size=10_000,
        max_entries=10,
        default_domain_max_entries=5,
        domains={"Jobs.Example.com": DomainCacheConfig(ttl=60.0, max_entries=2)},
        retention=RetentionConfig(max_age=2 * HOUR, max_size_per_domain=1_000, auto_cleanup=False),
    )


@pytest.fixture
def cache(config, clock):
    return ResponseCache(config, clock)


@pytest.mark.unit
class TestBasicOperations:
    def test_set_then_get(self, cache):
        assert cache.set("https://example.com/a", b"payload") is True

        assert cache.get("https://example.com/a") == b"payload"
        assert cache.has("https://example.com/a")

    def test_keys_are_normalized(self, cache):
        cache.set("HTTPS://Example.COM:443/a#frag", b"payload")

        assert cache.get("https://example.com/a") == b"payload"

    def test_query_strings_are_distinct(self, cache):
        cache.set("https://example.com/list?page=1", b"one")

        assert cache.get("https://example.com/list?page=2") is None

    def test_missing_entry_counts_a_miss(self, cache):
        assert cache.get("https://example.com/nothing") is None
        assert cache.get_stats()["misses"] == 1

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("https://example.com/a", b"payload", ttl=30)

        await clock.advance(29)
        assert cache.get("https://example.com/a") == b"payload"

        with metric_delta(METRICS["cache_evictions_total"].labels(reason="expired")):
            await clock.advance(1)
            assert cache.get("https://example.com/a") is None
        assert cache.peek("https://example.com/a") is None

    def test_non_positive_ttl_rejected(self, cache):
        with pytest.raises(ValueError):
            cache.set("https://example.com/a", b"payload", ttl=0)

    def test_replacing_entry_updates_size(self, cache):
        cache.set("https://example.com/a", b"x" * 100)
        cache.set("https://example.com/a", b"x" * 40)

        stats = cache.get_stats()
        assert stats["total_entries"] == 1
        assert stats["total_size"] == 40

    def test_payload_types(self, cache):
        cache.set("https://example.com/text", "héllo")
        cache.set("https://example.com/json", {"jobs": [1, 2]})

        assert cache.peek("https://example.com/text").size_bytes == len("héllo".encode("utf-8"))
        assert cache.get("https://example.com/json") == {"jobs": [1, 2]}

    def test_delete(self, cache):
        cache.set("https://example.com/a", b"payload")

        assert cache.delete("https://example.com/a") is True
        assert cache.delete("https://example.com/a") is False
        assert cache.get("https://example.com/a") is None

    def test_hit_rate(self, cache):
        cache.set("https://example.com/a", b"payload")
        cache.get("https://example.com/a")
        cache.get("https://example.com/b")

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5


@pytest.mark.unit
class TestDomainConfiguration:
    @pytest.mark.asyncio
    async def test_domain_ttl_applies_to_subdomains(self, cache, clock):
        cache.set("https://www.jobs.example.com/post/1", b"job")

        entry = cache.peek("https://www.jobs.example.com/post/1")
        assert entry.expires_at - entry.stored_at == 60.0

        await clock.advance(60)
        assert cache.get("https://www.jobs.example.com/post/1") is None

    def test_unrelated_domain_uses_default_ttl(self, cache):
        cache.set("https://notjobs.example.com/post/1", b"job")

        entry = cache.peek("https://notjobs.example.com/post/1")
        assert entry.expires_at - entry.stored_at == HOUR

    def test_explicit_ttl_beats_domain_ttl(self, cache):
        cache.set("https://jobs.example.com/post/1", b"job", ttl=5)

        entry = cache.peek("https://jobs.example.com/post/1")
        assert entry.expires_at - entry.stored_at == 5

    def test_disabled_domain_is_not_cached(self, cache):
        cache.set_domain_config("example.org", enabled=False)

        assert cache.set("https://example.org/a", b"payload") is False
        assert cache.get("https://example.org/a") is None

    def test_most_specific_domain_wins(self, cache):
        cache.set_domain_config("example.com", ttl=10.0)

        assert cache.domain_config("jobs.example.com").ttl == 60.0
        assert cache.domain_config("www.example.com").ttl == 10.0
        assert cache.domain_config("example.net") is None

    def test_set_domain_config_keeps_other_fields(self, cache):
        updated = cache.set_domain_config("jobs.example.com", enabled=False)

        assert updated.ttl == 60.0
        assert updated.max_entries == 2
        assert updated.enabled is False

    def test_default_job_board_overrides(self):
        cache = ResponseCache(CacheConfig(), ManualClock())

        assert cache.domain_config("www.indeed.co.za").ttl == 2 * HOUR
        assert cache.domain_config("careers24.com").ttl == 6 * HOUR


@pytest.mark.unit
class TestCapacity:
    def test_domain_entry_cap_evicts_oldest_of_same_domain(self, cache):
        cache.set("https://example.net/keep", b"other")
        cache.set("https://jobs.example.com/1", b"one")
        cache.set("https://jobs.example.com/2", b"two")

        with metric_delta(METRICS["cache_evictions_total"].labels(reason="capacity")):
            assert cache.set("https://jobs.example.com/3", b"three") is True

        assert cache.get("https://jobs.example.com/1") is None
        assert cache.get("https://jobs.example.com/2") == b"two"
        assert cache.get("https://example.net/keep") == b"other"

    def test_oversized_payload_rejected(self, cache):
        assert cache.set("https://example.com/huge", b"x" * 2_000) is False
        assert cache.get_stats()["total_entries"] == 0

    def test_domain_size_cap_evicts_same_domain_only(self, cache):
        cache.set("https://other.com/a", b"o" * 900)
        cache.set("https://example.com/a", b"x" * 600)

        assert cache.set("https://example.com/b", b"y" * 600) is True
        assert cache.peek("https://example.com/a") is None
        assert cache.peek("https://other.com/a") is not None

    def test_global_cap_never_evicts_other_domains(self, clock):
        cache = ResponseCache(
            CacheConfig(max_entries=3, default_domain_max_entries=5, domains={}),
            clock,
        )
        cache.set("https://a.com/1", b"a")
        cache.set("https://b.com/1", b"b")
        cache.set("https://c.com/1", b"c")

        assert cache.set("https://d.com/1", b"d") is False
        assert {e["domain"] for e in cache.export_entries()} == {"a.com", "b.com", "c.com"}

    def test_rejected_set_keeps_own_domain_entries(self, clock):
        cache = ResponseCache(
            CacheConfig(max_cache_size=100, default_domain_max_entries=5, domains={}),
            clock,
        )
        cache.set("https://b.com/1", b"b" * 90)
        cache.set("https://a.com/1", b"a" * 5)

        with metric_delta(METRICS["cache_evictions_total"].labels(reason="capacity"), 0):
            assert cache.set("https://a.com/2", b"x" * 20) is False

        assert cache.get("https://a.com/1") == b"a" * 5
        assert cache.get("https://b.com/1") == b"b" * 90
        assert cache.get_stats()["total_entries"] == 2

    @pytest.mark.asyncio
    async def test_expired_entries_make_room(self, clock):
        cache = ResponseCache(CacheConfig(max_entries=2, domains={}), clock)
        cache.set("https://a.com/1", b"a", ttl=10)
        cache.set("https://b.com/1", b"b")

        await clock.advance(11)

        assert cache.set("https://c.com/1", b"c") is True
        assert cache.peek("https://a.com/1") is None


@pytest.mark.unit
class TestRetention:
    @pytest.mark.asyncio
    async def test_cleanup_removes_expired_and_over_age(self, cache, clock):
        cache.set("https://example.com/short", b"s", ttl=10)
        cache.set("https://example.com/long", b"l", ttl=10 * HOUR)

        await clock.advance(20)
        assert cache.cleanup() == 1

        await clock.advance(2 * HOUR)
        assert cache.cleanup() == 1
        assert cache.get_stats()["total_entries"] == 0

    @pytest.mark.asyncio
    async def test_purge_older_than(self, cache, clock):
        cache.set("https://example.com/old", b"old")
        await clock.advance(100)
        cache.set("https://example.com/new", b"new")

        assert cache.purge_older_than(50) == 1
        assert cache.peek("https://example.com/new") is not None

    def test_export_entries_has_metadata_only(self, cache):
        cache.set("https://jobs.example.com/1", b"secret", etag='"v1"')
        cache.set("https://example.net/1", b"other")

        exported = cache.export_entries("example.com")

        assert len(exported) == 1
        assert exported[0]["url"] == "https://jobs.example.com/1"
        assert exported[0]["etag"] == '"v1"'
        assert "payload" not in exported[0]

    def test_clear_domain(self, cache):
        cache.set("https://jobs.example.com/1", b"1")
        cache.set("https://www.jobs.example.com/2", b"2")
        cache.set("https://example.net/1", b"3")

        assert cache.clear_domain("jobs.example.com") == 2
        assert cache.get_stats()["total_entries"] == 1

    def test_clear_resets_everything(self, cache):
        cache.set("https://example.com/a", b"a")
        cache.get("https://example.com/a")

        cache.clear()

        stats = cache.get_stats()
        assert stats["total_entries"] == 0
        assert stats["total_size"] == 0
        assert stats["hits"] == 0


@pytest.mark.unit
class TestConditionalHeaders:
    @pytest.mark.asyncio
    async def test_validators_survive_expiry(self, cache, clock):
        cache.set(
            "https://example.com/a",
            b"payload",
            ttl=10,
            etag='"abc"',
            last_modified="Wed, 21 Oct 2015 07:28:00 GMT",
        )
        await clock.advance(20)

        headers = cache.conditional_headers("https://example.com/a")

        assert headers == {
            "If-None-Match": '"abc"',
            "If-Modified-Since": "Wed, 21 Oct 2015 07:28:00 GMT",
        }
        assert cache.has("https://example.com/a") is False

    def test_no_validators_no_headers(self, cache):
        cache.set("https://example.com/a", b"payload")

        assert cache.conditional_headers("https://example.com/a") == {}


@pytest.mark.unit
class TestPeriodicSweep:
    @pytest.mark.asyncio
    async def test_sweep_runs_on_interval(self, clock):
        config = CacheConfig(cleanup_interval=100.0, domains={})
        cache = ResponseCache(config, clock)
        cache.start()
        assert cache.sweeping

        cache.set("https://example.com/a", b"a", ttl=50)
        await clock.advance(100)

        assert cache.peek("https://example.com/a") is None
        await cache.close()
        assert not cache.sweeping

    @pytest.mark.asyncio
    async def test_sweep_disabled_by_retention(self, clock):
        cache = ResponseCache(CacheConfig(retention=RetentionConfig(auto_cleanup=False)), clock)
        cache.start()

        assert not cache.sweeping
