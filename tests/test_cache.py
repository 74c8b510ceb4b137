"""Tests for the TTL cache and the content-hash scan cache."""

import threading

import pytest

from leakwatch.core.cache import ScanCache, TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestTTLCache:
    """Test the TTLCache class."""

    def test_init(self):
        cache = TTLCache(maxsize=100, ttl_seconds=60)
        assert cache.maxsize == 100
        assert cache.ttl_seconds == 60

    def test_get_set(self):
        cache = TTLCache(maxsize=10, ttl_seconds=60)

        cache.set("key1", "value1")
        found, value = cache.get("key1")
        assert found is True
        assert value == "value1"

    def test_get_missing_key(self):
        """Test get returns (False, None) for missing key."""
        cache = TTLCache(maxsize=10, ttl_seconds=60)
        found, value = cache.get("nonexistent")
        assert found is False
        assert value is None

    def test_cached_none_is_found(self):
        cache = TTLCache(maxsize=10, ttl_seconds=60)
        cache.set("key1", None)
        assert cache.get("key1") == (True, None)

    def test_ttl_expiration(self, clock):
        """Test that entries expire after TTL."""
        cache = TTLCache(maxsize=10, ttl_seconds=1, clock=clock)

        cache.set("key1", "value1")
        assert cache.get("key1")[0] is True

        clock.now = 1.1
        assert cache.get("key1")[0] is False
        assert len(cache) == 0

    def test_eviction_prefers_expired_entries(self, clock):
        cache = TTLCache(maxsize=2, ttl_seconds=10, clock=clock)
        cache.set("old", 1)
        clock.now = 5
        cache.set("mid", 2)
        clock.now = 11
        cache.set("new", 3)

        assert cache.get("old")[0] is False
        assert cache.get("mid") == (True, 2)
        assert cache.get("new") == (True, 3)

    def test_eviction_drops_oldest_when_full(self, clock):
        cache = TTLCache(maxsize=2, ttl_seconds=10, clock=clock)
        cache.set("a", 1)
        clock.now = 1
        cache.set("b", 2)
        cache.set("c", 3)

        assert len(cache) == 2
        assert cache.get("a")[0] is False

    def test_overwrite_does_not_evict(self):
        cache = TTLCache(maxsize=1, ttl_seconds=60)
        cache.set("a", 1)
        cache.set("a", 2)
        assert cache.get("a") == (True, 2)

    def test_delete(self):
        cache = TTLCache(maxsize=10, ttl_seconds=60)
        cache.set("a", 1)
        assert cache.delete("a") is True
        assert cache.delete("a") is False

    def test_stats(self):
        """Test cache statistics."""
        cache = TTLCache(maxsize=10, ttl_seconds=60)

        cache.set("key1", "value1")
        cache.get("key1")  # Hit
        cache.get("key1")  # Hit
        cache.get("missing")  # Miss

        stats = cache.stats()
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["size"] == 1
        assert stats["hit_rate_percent"] == pytest.approx(66.67)

    def test_clear_resets_stats(self):
        cache = TTLCache(maxsize=10, ttl_seconds=60)
        cache.set("key1", "value1")
        cache.get("key1")

        cache.clear()

        assert len(cache) == 0
        assert cache.stats()["hits"] == 0

    def test_thread_safety(self):
        cache = TTLCache(maxsize=1000, ttl_seconds=60)

        def worker(n):
            for i in range(100):
                cache.set(f"{n}-{i}", i)
                cache.get(f"{n}-{i}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) == 500
        assert cache.stats()["hits"] == 500


class TestScanCache:
    def test_hit_requires_same_hash(self):
        cache = ScanCache(ttl_seconds=60)
        cache.store("src/App.tsx", "abc", ["report"])

        assert cache.lookup("src/App.tsx", "abc") == ["report"]
        assert cache.lookup("src/App.tsx", "def") is None
        # A hash mismatch drops the stale entry
        assert cache.lookup("src/App.tsx", "abc") is None

    def test_expired_entry_is_a_miss(self, clock):
        cache = ScanCache(ttl_seconds=300, clock=clock)
        cache.store("a.ts", "h", [])

        clock.now = 301
        assert cache.lookup("a.ts", "h") is None

    def test_empty_result_is_cached(self):
        cache = ScanCache()
        cache.store("a.ts", "h", [])
        assert cache.lookup("a.ts", "h") == []

    def test_invalidate_and_clear(self):
        cache = ScanCache()
        cache.store("a.ts", "h", [1])
        cache.store("b.ts", "h", [2])

        cache.invalidate("a.ts")
        assert cache.lookup("a.ts", "h") is None
        assert cache.lookup("b.ts", "h") == [2]

        cache.clear()
        assert cache.stats()["size"] == 0

    def test_default_ttl(self):
        assert ScanCache().ttl_seconds == 300
