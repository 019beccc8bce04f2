"""
Image Cache Manager

In-memory cache for proxied images with:
- TTL (Time To Live) applied lazily on read
- LRU (Least Recently Used) eviction by entry count and total bytes
- asyncio.Lock around every read-then-write sequence
"""

import time
import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached image."""
    key: str
    payload: bytes
    content_type: str
    inserted_at: float
    last_accessed: float

    @property
    def size_bytes(self) -> int:
        return len(self.payload)


class ImageCacheManager:
    """
    Process-wide image cache keyed by normalized URL.

    Each gateway owns its own instance, so tests can build independent
    stores. Entries are only removed by expiry or LRU pressure.
    """

    def __init__(
        self,
        cache_ttl_seconds: float = 3600,
        max_entries: int = 500,
        max_cache_size_bytes: int = 100 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        if cache_ttl_seconds <= 0:
            raise ValueError("cache_ttl_seconds must be positive")
        if max_entries <= 0 or max_cache_size_bytes <= 0:
            raise ValueError("cache bounds must be positive")

        self.cache_ttl_seconds = cache_ttl_seconds
        self.max_entries = max_entries
        self.max_cache_size_bytes = max_cache_size_bytes
        self._clock = clock

        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()
        self._total_bytes = 0
        self._lock = asyncio.Lock()

        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.inserted_at >= self.cache_ttl_seconds

    def _remove_entry(self, key: str) -> Optional[CacheEntry]:
        """Remove an entry (assumes lock held)."""
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._total_bytes -= entry.size_bytes
        return entry

    async def get(self, key: str) -> Optional[Tuple[bytes, str]]:
        """
        Get cached image by key.

        Returns:
            Tuple of (payload, content_type) if cached and fresh, None otherwise.
        """
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None

            now = self._clock()
            if self._is_expired(entry, now):
                logger.debug(f"[ImageCache] Expired: {key[:60]}")
                self._remove_entry(key)
                self.misses += 1
                return None

            entry.last_accessed = now
            self._entries.move_to_end(key)
            self.hits += 1
            return entry.payload, entry.content_type

    async def put(self, key: str, payload: bytes, content_type: str) -> bool:
        """
        Cache an image, overwriting any previous entry for the key.

        Returns:
            False if the payload alone exceeds the byte bound, True otherwise.
        """
        size = len(payload)
        if size > self.max_cache_size_bytes:
            logger.warning(f"[ImageCache] Not caching {size} bytes, above cache bound: {key[:60]}")
            return False

        async with self._lock:
            self._remove_entry(key)
            self._ensure_space(size)

            now = self._clock()
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                content_type=content_type,
                inserted_at=now,
                last_accessed=now,
            )
            self._total_bytes += size
            logger.debug(f"[ImageCache] Cached: {key[:60]} ({size} bytes)")
            return True

    def _ensure_space(self, needed_bytes: int) -> None:
        """Evict expired entries, then least recently used ones (assumes lock held)."""
        now = self._clock()
        for key in [k for k, e in self._entries.items() if self._is_expired(e, now)]:
            self._remove_entry(key)

        while self._entries and (
            len(self._entries) >= self.max_entries
            or self._total_bytes + needed_bytes > self.max_cache_size_bytes
        ):
            key, entry = self._entries.popitem(last=False)
            self._total_bytes -= entry.size_bytes
            self.evictions += 1
            logger.info(f"[ImageCache] LRU evicted: {key[:60]}")

    async def cleanup_expired(self) -> int:
        """
        Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        async with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if self._is_expired(e, now)]
            for key in expired:
                self._remove_entry(key)
            if expired:
                logger.info(f"[ImageCache] Cleaned up {len(expired)} expired entries")
            return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not self._is_expired(entry, self._clock())

    def get_stats(self) -> dict:
        """Get cache statistics."""
        lookups = self.hits + self.misses
        return {
            "total_entries": len(self._entries),
            "total_size_bytes": self._total_bytes,
            "total_size_mb": round(self._total_bytes / (1024 * 1024), 2),
            "max_entries": self.max_entries,
            "max_size_mb": round(self.max_cache_size_bytes / (1024 * 1024), 2),
            "cache_ttl_seconds": self.cache_ttl_seconds,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "hit_rate": round(self.hits / lookups, 3) if lookups else 0.0,
        }
