"""
Tests for TTLCache

Expiry is checked with a fake clock so no test sleeps.
"""

import pytest


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestExpiry:
    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def cache(self, clock):
        from rekky.common.ttl_cache import TTLCache
        return TTLCache(ttl_seconds=60, clock=clock)

    def test_fresh_entry_hits(self, cache, clock):
        cache.set("cozy coffee shop", [0.1, 0.2])
        clock.advance(59)
        assert cache.get("cozy coffee shop") == [0.1, 0.2]

    def test_stale_entry_misses_and_is_removed(self, cache, clock):
        cache.set("cozy coffee shop", [0.1, 0.2])
        clock.advance(61)
        assert cache.get("cozy coffee shop") is None
        assert len(cache) == 0

    def test_exact_ttl_counts_as_expired(self, cache, clock):
        cache.set("k", "v")
        clock.advance(60)
        assert cache.get("k") is None

    def test_set_refreshes_timestamp(self, cache, clock):
        cache.set("k", "old")
        clock.advance(50)
        cache.set("k", "new")
        clock.advance(50)
        assert cache.get("k") == "new"

    def test_missing_key(self, cache):
        assert cache.get("nope") is None
        assert "nope" not in cache


class TestEviction:
    def test_oldest_insert_evicted_past_capacity(self):
        from rekky.common.ttl_cache import TTLCache

        cache = TTLCache(ttl_seconds=600, max_entries=100, clock=FakeClock())
        for i in range(101):
            cache.set(f"q{i}", i)

        assert len(cache) == 100
        assert cache.get("q0") is None
        assert cache.get("q1") == 1
        assert cache.get("q100") == 100

    def test_reads_do_not_refresh_position(self):
        from rekky.common.ttl_cache import TTLCache

        cache = TTLCache(ttl_seconds=600, max_entries=3, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("c", 3)
        assert cache.get("a") == 1

        cache.set("d", 4)

        # FIFO: "a" is still the oldest insert even though it was just read
        assert cache.get("a") is None
        assert cache.get("b") == 2

    def test_resetting_key_keeps_position(self):
        from rekky.common.ttl_cache import TTLCache

        cache = TTLCache(ttl_seconds=600, max_entries=2, clock=FakeClock())
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)
        cache.set("c", 3)

        assert cache.get("a") is None
        assert cache.get("b") == 2
        assert cache.get("c") == 3

    def test_invalid_capacity(self):
        from rekky.common.ttl_cache import TTLCache
        with pytest.raises(ValueError):
            TTLCache(ttl_seconds=60, max_entries=0)


class TestStats:
    def test_hit_rate(self):
        from rekky.common.ttl_cache import TTLCache

        cache = TTLCache(ttl_seconds=60, clock=FakeClock())
        cache.set("a", 1)
        cache.get("a")
        cache.get("a")
        cache.get("b")

        stats = cache.get_stats()
        assert stats["size"] == 1
        assert stats["hits"] == 2
        assert stats["misses"] == 1
        assert stats["hit_rate"] == pytest.approx(2 / 3)

    def test_clear(self):
        from rekky.common.ttl_cache import TTLCache

        cache = TTLCache(ttl_seconds=60, clock=FakeClock())
        cache.set("a", 1)
        cache.get("a")
        cache.clear()

        assert len(cache) == 0
        assert cache.get_stats()["hits"] == 0
