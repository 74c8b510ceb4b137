"""Caching utilities with TTL support for scan results.

Repeated scans of the same unchanged file are coalesced through a
time-boxed cache keyed by file path. Each detector owns its cache
instance, so independent detectors never share results.
"""

import threading
import time
from collections.abc import Callable
from typing import Any

from ..constants import DEFAULT_SCAN_CACHE_TTL_SECONDS, SCAN_CACHE_MAX_SIZE


class TTLCache:
    """Thread-safe cache with TTL expiration.

    Entries automatically expire after the configured TTL period.
    Uses a dictionary for O(1) lookup with eviction on demand.
    """

    def __init__(
        self,
        maxsize: int = SCAN_CACHE_MAX_SIZE,
        ttl_seconds: float = DEFAULT_SCAN_CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize TTL cache.

        Args:
            maxsize: Maximum number of entries to store
            ttl_seconds: Time-to-live in seconds for cache entries
            clock: Monotonic time source, replaceable in tests
        """
        self.maxsize = maxsize
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[Any, float]] = {}  # key -> (value, expire_time)
        self._lock = threading.RLock()
        self._hits = 0
        self._misses = 0

    def get(self, key: str) -> tuple[bool, Any]:
        """Get a value from the cache.

        Returns:
            Tuple of (found, value). If found is False, value is None.
        """
        with self._lock:
            if key in self._cache:
                value, expire_time = self._cache[key]
                if self._clock() < expire_time:
                    self._hits += 1
                    return True, value
                del self._cache[key]

            self._misses += 1
            return False, None

    def set(self, key: str, value: Any) -> None:
        """Set a value in the cache."""
        with self._lock:
            if key not in self._cache and len(self._cache) >= self.maxsize:
                self._evict_expired()
                if len(self._cache) >= self.maxsize:
                    self._evict_oldest()

            self._cache[key] = (value, self._clock() + self.ttl_seconds)

    def delete(self, key: str) -> bool:
        """Remove *key* from the cache. Returns True if it was present."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def _evict_expired(self) -> int:
        now = self._clock()
        expired_keys = [k for k, (_, exp) in self._cache.items() if exp <= now]
        for key in expired_keys:
            del self._cache[key]
        return len(expired_keys)

    def _evict_oldest(self) -> None:
        """Remove the entry with the earliest expiration time."""
        if not self._cache:
            return

        oldest_key = min(self._cache.keys(), key=lambda k: self._cache[k][1])
        del self._cache[oldest_key]

    def clear(self) -> None:
        """Clear all entries from the cache."""
        with self._lock:
            self._cache.clear()
            self._hits = 0
            self._misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def stats(self) -> dict[str, int | float]:
        """Get cache statistics.

        Returns:
            Dictionary with hits, misses, size, and hit rate
        """
        with self._lock:
            total = self._hits + self._misses
            hit_rate = (self._hits / total * 100) if total > 0 else 0
            return {
                "hits": self._hits,
                "misses": self._misses,
                "size": len(self._cache),
                "maxsize": self.maxsize,
                "ttl_seconds": self.ttl_seconds,
                "hit_rate_percent": round(hit_rate, 2),
            }


class ScanCache:
    """Per-path cache of scan results guarded by a content hash.

    A hit requires both an unexpired entry for the path and an identical
    content hash, so an edited file is always re-analyzed even inside the
    TTL window.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_SCAN_CACHE_TTL_SECONDS, **kwargs: Any):
        self._cache = TTLCache(ttl_seconds=ttl_seconds, **kwargs)

    @property
    def ttl_seconds(self) -> float:
        return self._cache.ttl_seconds

    def lookup(self, file_path: str, content_hash: str) -> Any | None:
        found, entry = self._cache.get(file_path)
        if not found:
            return None
        cached_hash, value = entry
        if cached_hash != content_hash:
            self._cache.delete(file_path)
            return None
        return value

    def store(self, file_path: str, content_hash: str, value: Any) -> None:
        self._cache.set(file_path, (content_hash, value))

    def invalidate(self, file_path: str) -> None:
        self._cache.delete(file_path)

    def clear(self) -> None:
        self._cache.clear()

    def stats(self) -> dict[str, int | float]:
        return self._cache.stats()
