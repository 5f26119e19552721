"""
In-memory response cache with TTLs, size caps and retention controls.

Entries are keyed by normalized URL. Each domain may override the TTL, its
entry cap, or disable caching entirely. Admission never evicts another
domain's entries: when space is short the cache sweeps expired entries,
then drops the target domain's oldest entries, and otherwise refuses.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import structlog

from politecrawl.config.config import CacheConfig, DomainCacheConfig
from politecrawl.crawler.clock import Clock, SystemClock
from politecrawl.observability import gauge, increment
from politecrawl.utils.urls import domain_matches, extract_host, normalize_url

logger = structlog.get_logger(__name__)


@dataclass
class CacheEntry:
    """A cached payload plus the metadata needed for revalidation and audits."""

    key: str
    payload: Any
    domain: str
    source_url: str
    stored_at: float
    expires_at: float
    size_bytes: int
    etag: Optional[str] = None
    last_modified: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def metadata(self) -> Dict[str, Any]:
        return {
            "url": self.source_url,
            "domain": self.domain,
            "stored_at": self.stored_at,
            "expires_at": self.expires_at,
            "size": self.size_bytes,
            "etag": self.etag,
            "last_modified": self.last_modified,
        }


def payload_size(payload: Any) -> int:
    """Byte size of a payload as stored."""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return len(payload)
    if isinstance(payload, str):
        return len(payload.encode("utf-8"))
    return len(json.dumps(payload, default=str).encode("utf-8"))


class ResponseCache:
    """
    TTL- and size-bounded response store.

    Not safe for concurrent mutation from several threads; all calls are
    expected from one event loop.
    """

    def __init__(self, config: Optional[CacheConfig] = None, clock: Optional[Clock] = None):
        self.config = config or CacheConfig()
        self.clock = clock or SystemClock()

        self._entries: Dict[str, CacheEntry] = {}
        self._domain_configs: Dict[str, DomainCacheConfig] = dict(self.config.domains)
        self._total_size = 0
        self._hits = 0
        self._misses = 0
        self._cleanup_task: Optional[asyncio.Task[None]] = None

    # ------------------------------------------------------------------
    # Domain configuration
    # ------------------------------------------------------------------

    def set_domain_config(
        self,
        domain: str,
        *,
        ttl: Optional[float] = None,
        max_entries: Optional[int] = None,
        enabled: Optional[bool] = None,
    ) -> DomainCacheConfig:
        """Create or update the overrides for ``domain`` and its subdomains."""
        key = domain.lower()
        current = self._domain_configs.get(key) or DomainCacheConfig(
            max_entries=self.config.default_domain_max_entries
        )
        updates: Dict[str, Any] = {}
        if ttl is not None:
            updates["ttl"] = ttl
        if max_entries is not None:
            updates["max_entries"] = max_entries
        if enabled is not None:
            updates["enabled"] = enabled
        config = current.model_copy(update=updates)
        self._domain_configs[key] = config
        return config

    def domain_config(self, host: str) -> Optional[DomainCacheConfig]:
        """Most specific configured domain that ``host`` belongs to."""
        best: Optional[Tuple[str, DomainCacheConfig]] = None
        for domain, config in self._domain_configs.items():
            if domain_matches(host, domain) and (best is None or len(domain) > len(best[0])):
                best = (domain, config)
        return best[1] if best else None

    def _domain_max_entries(self, host: str) -> int:
        config = self.domain_config(host)
        return config.max_entries if config else self.config.default_domain_max_entries

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    def peek(self, url: str) -> Optional[CacheEntry]:
        """The stored entry for ``url``, expired or not, without side effects."""
        return self._entries.get(normalize_url(url))

    def get(self, url: str) -> Any:
        """Cached payload for ``url``, or None when absent, expired or disabled."""
        key = normalize_url(url)
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        if entry.is_expired(self.clock.time()):
            self._remove(key, reason="expired")
            self._misses += 1
            return None

        config = self.domain_config(entry.domain)
        if config is not None and not config.enabled:
            self._misses += 1
            return None

        self._hits += 1
        return entry.payload

    def has(self, url: str) -> bool:
        entry = self.peek(url)
        return entry is not None and not entry.is_expired(self.clock.time())

    def set(
        self,
        url: str,
        payload: Any,
        *,
        ttl: Optional[float] = None,
        etag: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> bool:
        """
        Store ``payload`` for ``url``.

        Args:
            url: Source URL
            payload: Data to cache (bytes, str or JSON-serializable)
            ttl: Seconds until expiry, overriding domain and global TTLs
            etag: ETag validator for conditional requests
            last_modified: Last-Modified validator for conditional requests

        Returns:
            True when the entry was admitted
        """
        if ttl is not None and ttl <= 0:
            raise ValueError(f"ttl must be positive, got {ttl}")
        key = normalize_url(url)
        domain = extract_host(url)
        config = self.domain_config(domain)
        if config is not None and not config.enabled:
            return False

        size = payload_size(payload)
        if size > self.config.max_cache_size or size > self.config.retention.max_size_per_domain:
            logger.debug("Payload exceeds cache caps, not cached", url=url, size=size)
            return False

        if not self._can_add(domain, size, replacing=key):
            self._make_space(domain, size, replacing=key)
            if not self._can_add(domain, size, replacing=key):
                logger.debug("Cache full for domain, not cached", url=url, domain=domain, size=size)
                return False

        effective_ttl = ttl or (config.ttl if config is not None else None) or self.config.default_ttl
        # TODO: support Cache-Control max-age from the origin as a TTL source
        # once response headers are passed through set().
        now = self.clock.time()

        existing = self._entries.pop(key, None)
        if existing is not None:
            self._total_size -= existing.size_bytes

        self._entries[key] = CacheEntry(
            key=key,
            payload=payload,
            domain=domain,
            source_url=url,
            stored_at=now,
            expires_at=now + effective_ttl,
            size_bytes=size,
            etag=etag,
            last_modified=last_modified,
        )
        self._total_size += size
        self._update_gauges()
        return True

    def delete(self, url: str) -> bool:
        return self._remove(normalize_url(url), reason="deleted")

    def conditional_headers(self, url: str) -> Dict[str, str]:
        """Validators for a conditional re-fetch, from the entry even if expired."""
        entry = self.peek(url)
        headers: Dict[str, str] = {}
        if entry is not None:
            if entry.etag:
                headers["If-None-Match"] = entry.etag
            if entry.last_modified:
                headers["If-Modified-Since"] = entry.last_modified
        return headers

    # ------------------------------------------------------------------
    # Capacity management
    # ------------------------------------------------------------------

    def _domain_usage(self, domain: str, exclude: Optional[str] = None) -> Tuple[int, int]:
        entries = 0
        size = 0
        for key, entry in self._entries.items():
            if entry.domain == domain and key != exclude:
                entries += 1
                size += entry.size_bytes
        return entries, size

    def _can_add(
        self,
        domain: str,
        size: int,
        replacing: Optional[str] = None,
        freed_entries: int = 0,
        freed_size: int = 0,
    ) -> bool:
        """Whether ``size`` bytes fit once ``freed_*`` of this domain's entries are gone."""
        existing = self._entries.get(replacing) if replacing else None
        total_entries = len(self._entries) - (1 if existing else 0) - freed_entries
        total_size = self._total_size - (existing.size_bytes if existing else 0) - freed_size

        if total_entries >= self.config.max_entries:
            return False
        if total_size + size > self.config.max_cache_size:
            return False

        domain_entries, domain_size = self._domain_usage(domain, exclude=replacing)
        if domain_entries - freed_entries >= self._domain_max_entries(domain):
            return False
        if domain_size - freed_size + size > self.config.retention.max_size_per_domain:
            return False
        return True

    def _make_space(self, domain: str, size: int, replacing: Optional[str] = None) -> None:
        self.cleanup()
        if self._can_add(domain, size, replacing=replacing):
            return

        oldest_first = sorted(
            (entry for key, entry in self._entries.items() if entry.domain == domain and key != replacing),
            key=lambda entry: entry.stored_at,
        )
        # Nothing is evicted unless the domain's own entries free enough room
        victims: List[CacheEntry] = []
        freed_size = 0
        for entry in oldest_first:
            victims.append(entry)
            freed_size += entry.size_bytes
            if self._can_add(domain, size, replacing=replacing, freed_entries=len(victims), freed_size=freed_size):
                break
        else:
            return

        for entry in victims:
            self._remove(entry.key, reason="capacity")
        logger.debug("Evicted oldest entries for domain", domain=domain, evicted=len(victims))

    def _remove(self, key: str, reason: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self._total_size -= entry.size_bytes
        increment("cache_evictions_total", labels={"reason": reason})
        self._update_gauges()
        return True

    def _update_gauges(self) -> None:
        gauge("cache_entries", len(self._entries))
        gauge("cache_bytes", self._total_size)

    # ------------------------------------------------------------------
    # Retention and compliance
    # ------------------------------------------------------------------

    def cleanup(self) -> int:
        """Remove expired entries and entries older than the retention max age."""
        now = self.clock.time()
        max_age = self.config.retention.max_age
        stale = [
            key
            for key, entry in self._entries.items()
            if entry.is_expired(now) or now - entry.stored_at > max_age
        ]
        for key in stale:
            self._remove(key, reason="expired")
        return len(stale)

    def purge_older_than(self, max_age: float) -> int:
        """Delete entries stored more than ``max_age`` seconds ago."""
        cutoff = self.clock.time() - max_age
        old = [key for key, entry in self._entries.items() if entry.stored_at < cutoff]
        for key in old:
            self._remove(key, reason="retention")
        if old:
            logger.info("Purged cache entries for retention", purged=len(old), max_age=max_age)
        return len(old)

    def export_entries(self, domain: Optional[str] = None) -> List[Dict[str, Any]]:
        """Metadata of cached entries (no payloads) for audits."""
        return [
            entry.metadata()
            for entry in self._entries.values()
            if domain is None or domain_matches(entry.domain, domain)
        ]

    def clear_domain(self, domain: str) -> int:
        keys = [key for key, entry in self._entries.items() if domain_matches(entry.domain, domain)]
        for key in keys:
            self._remove(key, reason="cleared")
        return len(keys)

    def clear(self) -> None:
        self._entries.clear()
        self._total_size = 0
        self._hits = 0
        self._misses = 0
        self._update_gauges()

    def get_stats(self) -> Dict[str, Any]:
        domain_stats: Dict[str, Dict[str, int]] = {}
        for entry in self._entries.values():
            stats = domain_stats.setdefault(entry.domain, {"entries": 0, "size": 0})
            stats["entries"] += 1
            stats["size"] += entry.size_bytes

        lookups = self._hits + self._misses
        return {
            "total_entries": len(self._entries),
            "total_size": self._total_size,
            "domain_stats": domain_stats,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": self._hits / lookups if lookups else 0.0,
        }

    # ------------------------------------------------------------------
    # Periodic sweep
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic cleanup task on the running loop."""
        if not self.config.retention.auto_cleanup:
            return
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.get_running_loop().create_task(self._cleanup_loop())

    @property
    def sweeping(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    async def _cleanup_loop(self) -> None:
        while True:
            await self.clock.sleep(self.config.cleanup_interval)
            removed = self.cleanup()
            if removed:
                logger.debug("Cache sweep removed entries", removed=removed)

    async def close(self) -> None:
        """Stop the periodic cleanup task."""
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
