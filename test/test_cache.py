"""Tests for the two-tier in-memory cache."""

import asyncio

import pytest

from tradeguard.cache import TieredCache, sweep_periodically


class TestTieredCache:
    @pytest.fixture()
    def cache(self, clock):
        cache = TieredCache(default_ttl=60, stale_ttl=3600)
        cache._clock = clock
        return cache

    def test_cold_start_empty(self, cache):
        assert cache.get("nonexistent") is None
        assert cache.get("nonexistent", allow_stale=True) is None

    def test_set_writes_both_tiers(self, cache):
        assert cache.set("btc", {"price": 100}, 60) is True
        assert cache.get("btc") == {"price": 100}
        assert cache.get("btc", allow_stale=True) == {"price": 100}

    def test_default_ttl_applies(self, cache, clock):
        cache.set("k1", "value")
        clock.advance(60)
        assert cache.get("k1") == "value"
        clock.advance(1)
        assert cache.get("k1") is None

    def test_entry_valid_at_ttl_boundary(self, cache, clock):
        cache.set("k1", "value", 20)
        clock.advance(20)
        assert cache.get("k1") == "value"

    def test_stale_survives_fresh_expiry(self, cache, clock):
        cache.set("k1", "v", 1)
        clock.advance(2)
        assert cache.get("k1") is None
        assert cache.get("k1", allow_stale=True) == "v"

    def test_stale_expires_after_an_hour(self, cache, clock):
        cache.set("k1", "v", 1)
        clock.advance(3601)
        assert cache.get("k1", allow_stale=True) is None

    def test_set_overwrites_rather_than_merges(self, cache):
        cache.set("k1", {"a": 1})
        cache.set("k1", {"b": 2})
        assert cache.get("k1") == {"b": 2}

    def test_overwrite_resets_expiry(self, cache, clock):
        cache.set("k1", "old", 20)
        clock.advance(15)
        cache.set("k1", "new", 20)
        clock.advance(10)
        assert cache.get("k1") == "new"

    def test_zero_ttl_never_expires(self, cache, clock):
        cache.set("logo_BTC", "https://img/btc.png", 0)
        clock.advance(10 * 86400)
        assert cache.get("logo_BTC") == "https://img/btc.png"

    def test_negative_ttl_rejected_but_stale_written(self, cache):
        assert cache.set("k1", "v", -5) is False
        assert cache.get("k1") is None
        assert cache.get("k1", allow_stale=True) == "v"

    def test_delete_leaves_stale_intact(self, cache):
        cache.set("k1", "v")
        assert cache.delete("k1") == 1
        assert cache.get("k1") is None
        assert cache.get("k1", allow_stale=True) == "v"

    def test_delete_missing_key(self, cache):
        assert cache.delete("nope") == 0

    def test_delete_expired_key_counts_zero(self, cache, clock):
        cache.set("k1", "v", 5)
        clock.advance(6)
        assert cache.delete("k1") == 0

    def test_has_and_keys_see_fresh_tier_only(self, cache, clock):
        cache.set("a", 1, 10)
        cache.set("b", 2, 100)
        clock.advance(20)
        assert not cache.has("a")
        assert cache.has("b")
        assert cache.keys() == ["b"]

    def test_rearm_writes_fresh_tier_only(self, cache, clock):
        cache.set("sol", {"price": 150}, 60)
        clock.advance(3000)
        assert cache.rearm("sol", {"price": 150}, 600) is True
        clock.advance(601)
        # The stale copy still expires one hour after the original set.
        assert cache.get("sol") is None
        assert cache.get("sol", allow_stale=True) is None

    def test_stats_count_hits_and_misses(self, cache, clock):
        cache.set("a", 1, 10)
        cache.get("a")
        cache.get("a")
        cache.get("missing")
        clock.advance(11)
        cache.get("a", allow_stale=True)
        stats = cache.stats()
        assert stats.hits == 2
        assert stats.misses == 2
        assert stats.stale_hits == 1
        assert stats.keys == 0
        assert stats.stale_keys == 1

    def test_flush_keeps_stale_tier(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.flush()
        assert cache.keys() == []
        assert cache.get("a", allow_stale=True) == 1
        assert cache.get("b", allow_stale=True) == 2

    def test_clear_removes_everything(self, cache):
        cache.set("a", 1)
        cache.get("a")
        cache.clear()
        assert cache.get("a", allow_stale=True) is None
        assert cache.stats().hits == 0

    def test_sweep_removes_expired_entries(self, cache, clock):
        cache.set("short", 1, 5)
        cache.set("long", 2, 500)
        clock.advance(10)
        assert cache.sweep() == 1  # fresh copy of "short"
        assert cache._fresh.keys() == {"long"}
        clock.advance(3600)
        assert cache.sweep() == 3
        assert cache.stats().stale_keys == 0

    def test_multiple_keys_independent(self, cache, clock):
        cache.set("k1", "a", 20)
        clock.advance(10)
        cache.set("k2", "b", 20)
        clock.advance(15)
        assert cache.get("k1") is None
        assert cache.get("k2") == "b"

    def test_none_is_a_cacheable_value(self, cache):
        cache.set("k1", None)
        entry = cache.get_entry("k1")
        assert entry is not None
        assert entry.value is None
        assert cache.get_entry("missing") is None

    def test_get_stale_reads_stale_tier_only(self, cache, clock):
        cache.set("k1", None, 10)
        clock.advance(11)
        assert cache.get_entry("k1") is None
        entry = cache.get_stale("k1")
        assert entry is not None
        assert entry.value is None

    def test_get_stale_is_not_counted_as_a_miss(self, cache, clock):
        cache.set("k1", "v", 10)
        clock.advance(11)
        cache.get_entry("k1")
        cache.get_stale("k1")
        cache.get_stale("missing")
        stats = cache.stats()
        assert stats.misses == 1
        assert stats.stale_hits == 1


class TestSweepPeriodically:
    @pytest.mark.asyncio
    async def test_sweeps_until_cancelled(self, clock):
        cache = TieredCache(default_ttl=1, stale_ttl=2)
        cache._clock = clock
        cache.set("k1", "v")
        clock.advance(5)

        task = asyncio.create_task(sweep_periodically(cache, interval=0.01))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert cache._fresh == {}
        assert cache._stale == {}
