"""Unit tests for the bounded, time-expiring geo cache."""

import threading

import pytest

from cabcore.infrastructure.geocache import GeoCache
from cabcore.workers.cache_sweeper import run_sweep_cycle


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestGeoCache:
    def test_get_before_ttl_returns_value(self, clock):
        cache = GeoCache(default_ttl=60, clock=clock)
        cache.put("geocode:pune", (18.52, 73.85))
        clock.advance(59)
        assert cache.get("geocode:pune") == (18.52, 73.85)

    def test_get_after_ttl_is_miss_without_sweep(self, clock):
        cache = GeoCache(default_ttl=60, clock=clock)
        cache.put("geocode:pune", (18.52, 73.85))
        clock.advance(60)
        assert cache.get("geocode:pune") is None
        assert "geocode:pune" not in cache

    def test_per_entry_ttl(self, clock):
        cache = GeoCache(default_ttl=60, clock=clock)
        cache.put("short", 1, ttl=5)
        cache.put("long", 2)
        clock.advance(10)
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_capacity_evicts_nearest_expiry_first(self, clock):
        cache = GeoCache(default_ttl=100, max_entries=3, clock=clock)
        cache.put("a", 1, ttl=50)
        cache.put("b", 2, ttl=10)
        cache.put("c", 3, ttl=300)
        cache.put("d", 4, ttl=200)
        assert len(cache) == 3
        assert "b" not in cache
        assert all(k in cache for k in ("a", "c", "d"))

    def test_newest_entry_kept_when_others_expire_sooner(self, clock):
        cache = GeoCache(default_ttl=100, max_entries=2, clock=clock)
        cache.put("old-1", 1)
        clock.advance(1)
        cache.put("old-2", 2)
        clock.advance(1)
        cache.put("new", 3)
        assert "new" in cache
        assert "old-1" not in cache
        assert len(cache) == 2

    def test_overwrite_same_key_does_not_grow(self, clock):
        cache = GeoCache(max_entries=2, clock=clock)
        cache.put("k", 1)
        cache.put("k", 2)
        assert len(cache) == 1
        assert cache.get("k") == 2

    def test_sweep_removes_only_expired(self, clock):
        cache = GeoCache(default_ttl=60, clock=clock)
        cache.put("a", 1, ttl=10)
        cache.put("b", 2, ttl=100)
        clock.advance(30)
        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("b") == 2

    def test_stats_and_clear(self, clock):
        cache = GeoCache(clock=clock)
        cache.put("a", 1)
        cache.get("a")
        cache.get("missing")
        stats = cache.stats()
        assert stats["size"] == 1
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        cache.clear()
        assert cache.stats() == {
            "size": 0, "max_entries": 5000, "hits": 0, "misses": 0, "hit_rate": 0.0,
        }

    @pytest.mark.parametrize(
        "read", [len, lambda cache: "geocode:pune" in cache], ids=["len", "contains"]
    )
    def test_size_and_membership_wait_for_writers(self, clock, read):
        cache = GeoCache(default_ttl=60, clock=clock)
        cache.put("geocode:pune", (18.52, 73.85))
        results = []
        reader = threading.Thread(target=lambda: results.append(read(cache)))

        with cache._lock:
            reader.start()
            reader.join(timeout=0.2)
            assert reader.is_alive()
            assert results == []
        reader.join(timeout=2)

        assert not reader.is_alive()
        assert results[0] in (1, True)

    def test_invalid_capacity(self):
        with pytest.raises(ValueError):
            GeoCache(max_entries=0)


class TestSweepWorker:
    def test_run_sweep_cycle_on_empty_cache(self, clock):
        cache = GeoCache(clock=clock)
        assert run_sweep_cycle(cache) == 0

    def test_run_sweep_cycle_purges_expired(self, clock):
        cache = GeoCache(default_ttl=5, clock=clock)
        cache.put("a", 1)
        cache.put("b", 2)
        clock.advance(6)
        assert run_sweep_cycle(cache) == 2
        assert len(cache) == 0
