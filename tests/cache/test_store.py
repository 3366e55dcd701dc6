"""Tests for iot_data.cache.store: TTL, LRU eviction, stats, backing, sweep."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from iot_data.cache.store import CacheEntry, CacheMetrics, CacheStore
from iot_data.storage.cache_backing import SQLiteCacheBacking
from tests.factories import FakeClock, make_device


class _YieldingBacking:
    """In-memory backing whose every call gives control back to the event loop."""

    def __init__(self) -> None:
        self.rows: dict[str, str] = {}

    async def get(self, key: str) -> str | None:
        await asyncio.sleep(0)
        return self.rows.get(key)

    async def set(self, key: str, value: str) -> None:
        await asyncio.sleep(0)
        self.rows[key] = value

    async def delete(self, key: str) -> None:
        await asyncio.sleep(0)
        self.rows.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        await asyncio.sleep(0)
        return [k for k in self.rows if k.startswith(prefix)]


class TestCacheEntry:
    def test_live_before_deadline(self):
        assert CacheEntry("v", 100.0).is_live(99.9)

    def test_not_live_at_deadline(self):
        entry = CacheEntry("v", 100.0)
        assert not entry.is_live(100.0)
        # Not yet stale either: purge only happens strictly after the deadline
        assert not entry.is_stale(100.0)

    def test_never_expires(self):
        entry = CacheEntry("v", None)
        assert entry.is_live(1e12)
        assert not entry.is_stale(1e12)


class TestCacheMetrics:
    def test_hit_rate_without_traffic(self):
        assert CacheMetrics().hit_rate == 0.0

    def test_hit_rate(self):
        metrics = CacheMetrics()
        metrics.hits = 3
        metrics.misses = 1
        assert metrics.hit_rate == 0.75


class TestGetSet:
    async def test_round_trip(self, cache):
        await cache.set("k", {"a": 1})
        assert await cache.get("k") == {"a": 1}

    async def test_missing_key_returns_none(self, cache):
        assert await cache.get("missing") is None
        assert cache.metrics.misses == 1

    async def test_expires_after_ttl(self, cache, clock):
        await cache.set("k", "v", ttl=10)
        clock.advance(9.9)
        assert await cache.get("k") == "v"
        clock.advance(0.1)
        assert await cache.get("k") is None

    async def test_expired_entry_is_purged_on_read(self, cache, clock):
        await cache.set("k", "v", ttl=10)
        clock.advance(11)
        await cache.get("k")
        assert cache.size == 0

    async def test_default_ttl_used(self, cache, clock):
        await cache.set("k", "v")
        clock.advance(59)
        assert await cache.get("k") == "v"
        clock.advance(1)
        assert await cache.get("k") is None

    @pytest.mark.parametrize("ttl", [0, None])
    async def test_zero_or_none_ttl_never_expires(self, cache, clock, ttl):
        await cache.set("k", "v", ttl=ttl)
        clock.advance(10 ** 9)
        assert await cache.get("k") == "v"

    async def test_store_default_of_zero_never_expires(self, clock):
        store = CacheStore(ttl=0, auto_cleanup=False, clock=clock)
        await store.set("k", "v")
        clock.advance(10 ** 9)
        assert await store.get("k") == "v"

    async def test_update_keeps_single_entry(self, cache):
        await cache.set("k", 1)
        await cache.set("k", 2)
        assert cache.size == 1
        assert await cache.get("k") == 2

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError, match="max_size"):
            CacheStore(max_size=0)


class TestHasAndInvalidate:
    async def test_has_live_entry(self, cache):
        await cache.set("k", "v")
        assert await cache.has("k")

    async def test_has_expired_entry(self, cache, clock):
        await cache.set("k", "v", ttl=5)
        clock.advance(5)
        assert not await cache.has("k")

    async def test_has_does_not_count_as_use(self, clock):
        store = CacheStore(max_size=2, auto_cleanup=False, clock=clock)
        await store.set("a", 1)
        clock.advance(1)
        await store.set("b", 2)
        clock.advance(1)
        assert await store.has("a")
        await store.set("c", 3)
        assert await store.get("a") is None
        assert await store.get("b") == 2

    async def test_invalidate_removes(self, cache):
        await cache.set("k", "v")
        await cache.invalidate("k")
        assert await cache.get("k") is None

    async def test_invalidate_missing_key_is_silent(self, cache):
        await cache.invalidate("nope")


class TestLRUEviction:
    async def test_evicts_least_recently_used(self, clock):
        store = CacheStore(max_size=3, auto_cleanup=False, clock=clock)
        for key in ("a", "b", "c"):
            await store.set(key, key)
            clock.advance(1)
        await store.set("d", "d")
        assert await store.get("a") is None
        assert store.metrics.evictions == 1

    async def test_read_protects_from_eviction(self, clock):
        store = CacheStore(max_size=3, auto_cleanup=False, clock=clock)
        for key in ("a", "b", "c"):
            await store.set(key, key)
            clock.advance(1)
        assert await store.get("a") == "a"
        clock.advance(1)
        await store.set("d", "d")
        assert await store.get("a") == "a"
        assert await store.get("b") is None

    async def test_ties_evict_first_touched(self, clock):
        store = CacheStore(max_size=2, auto_cleanup=False, clock=clock)
        await store.set("a", 1)
        await store.set("b", 2)
        await store.set("c", 3)
        assert await store.get("a") is None
        assert await store.get("b") == 2

    async def test_updating_existing_key_at_capacity_does_not_evict(self, clock):
        store = CacheStore(max_size=2, auto_cleanup=False, clock=clock)
        await store.set("a", 1)
        await store.set("b", 2)
        await store.set("a", 10)
        assert store.size == 2
        assert store.metrics.evictions == 0

    async def test_size_never_exceeds_capacity(self, clock):
        store = CacheStore(max_size=5, auto_cleanup=False, clock=clock)
        for i in range(50):
            await store.set(f"k{i}", i)
            clock.advance(0.5)
            assert store.size <= 5


class TestClear:
    async def test_clear_all(self, cache):
        await cache.set("devices_auto", 1)
        await cache.set("readings:s1", 2)
        await cache.clear()
        assert cache.size == 0

    async def test_clear_by_pattern(self, cache):
        await cache.set("readings:s1", 1)
        await cache.set("readings:s2", 2)
        await cache.set("devices_auto", 3)
        await cache.clear("readings:")
        assert await cache.get("devices_auto") == 3
        assert await cache.get("readings:s1") is None
        assert await cache.get("readings:s2") is None


class TestRemoveExpired:
    async def test_returns_number_removed(self, cache, clock):
        await cache.set("short1", 1, ttl=5)
        await cache.set("short2", 2, ttl=5)
        await cache.set("long", 3, ttl=100)
        clock.advance(6)
        assert await cache.remove_expired_entries() == 2
        assert cache.size == 1

    async def test_nothing_expired(self, cache):
        await cache.set("k", 1)
        assert await cache.remove_expired_entries() == 0

    async def test_entry_at_exact_deadline_is_kept(self, cache, clock):
        await cache.set("k", 1, ttl=5)
        clock.advance(5)
        assert await cache.remove_expired_entries() == 0


class TestStats:
    async def test_stats_counts(self, cache, clock):
        await cache.set("a", 1, ttl=5)
        await cache.set("b", 2, ttl=50)
        clock.advance(10)
        stats = cache.get_stats()
        assert stats.size == 2
        assert stats.expired == 1
        assert stats.active == 1
        assert stats.capacity == 10
        assert stats.ttl == 60
        assert stats.namespace == "test"
        assert stats.storage == "memory"

    async def test_snapshot(self, cache):
        await cache.set("a", 1)
        await cache.set("b", [1, 2])
        assert cache.get_snapshot() == {"a": 1, "b": [1, 2]}


class TestUpdateOptions:
    async def test_shrinking_capacity_evicts_lru(self, cache, clock):
        for key in ("a", "b", "c", "d"):
            await cache.set(key, key)
            clock.advance(1)
        stats = await cache.update_options(max_size=2)
        assert stats.size == 2
        assert stats.capacity == 2
        assert set(cache.get_snapshot()) == {"c", "d"}

    async def test_changing_ttl_applies_to_new_entries(self, cache, clock):
        await cache.update_options(ttl=1)
        await cache.set("k", "v")
        clock.advance(1)
        assert await cache.get("k") is None

    async def test_rejects_zero_capacity(self, cache):
        with pytest.raises(ValueError):
            await cache.update_options(max_size=0)


class TestPersistentBacking:
    @pytest.fixture
    async def backing(self):
        store = SQLiteCacheBacking(":memory:")
        await store.initialize()
        yield store
        await store.close()

    async def test_write_through_layout(self, backing, clock):
        store = CacheStore(namespace="iot", ttl=30, backing=backing, auto_cleanup=False, clock=clock)
        await store.set("devices_auto", [make_device(id="s1")])
        raw = json.loads(await backing.get("iot:devices_auto"))
        assert raw["expiresAt"] == clock.now + 30
        assert raw["value"][0]["id"] == "s1"
        assert store.storage == "persistent"

    async def test_memory_miss_hydrates_from_backing(self, backing, clock):
        first = CacheStore(namespace="iot", backing=backing, auto_cleanup=False, clock=clock)
        await first.set("k", {"a": 1})
        second = CacheStore(namespace="iot", backing=backing, auto_cleanup=False, clock=clock)
        assert await second.get("k") == {"a": 1}
        assert second.size == 1

    async def test_expired_backing_entry_is_a_miss(self, backing, clock):
        first = CacheStore(namespace="iot", backing=backing, auto_cleanup=False, clock=clock)
        await first.set("k", "v", ttl=5)
        clock.advance(6)
        second = CacheStore(namespace="iot", backing=backing, auto_cleanup=False, clock=clock)
        assert await second.get("k") is None
        assert await backing.get("iot:k") is None

    async def test_clear_pattern_hits_backing(self, backing, clock):
        store = CacheStore(namespace="iot", backing=backing, auto_cleanup=False, clock=clock)
        await store.set("readings:s1", 1)
        await store.set("devices_auto", 2)
        await store.clear("readings")
        assert await backing.keys("iot:") == ["iot:devices_auto"]

    async def test_remove_expired_counts_backing_only_entries(self, backing, clock):
        first = CacheStore(namespace="iot", backing=backing, auto_cleanup=False, clock=clock)
        await first.set("a", 1, ttl=5)
        await first.set("b", 2, ttl=5)
        clock.advance(6)
        second = CacheStore(namespace="iot", backing=backing, auto_cleanup=False, clock=clock)
        assert await second.remove_expired_entries() == 2
        assert await backing.keys("iot:") == []

    async def test_namespaces_are_isolated(self, backing, clock):
        a = CacheStore(namespace="a", backing=backing, auto_cleanup=False, clock=clock)
        b = CacheStore(namespace="b", backing=backing, auto_cleanup=False, clock=clock)
        await a.set("k", 1)
        await b.clear()
        assert await backing.get("a:k") is not None

    async def test_write_failure_falls_back_to_memory(self, clock):
        broken = AsyncMock()
        broken.set.side_effect = OSError("disk full")
        broken.get.return_value = None
        store = CacheStore(backing=broken, auto_cleanup=False, clock=clock)
        await store.set("k", "v")
        assert await store.get("k") == "v"

    async def test_read_failure_is_a_miss(self, clock):
        broken = AsyncMock()
        broken.get.side_effect = OSError("locked")
        store = CacheStore(backing=broken, auto_cleanup=False, clock=clock)
        assert await store.get("k") is None
        assert not await store.has("k")

    async def test_unreadable_payload_is_a_miss(self, clock):
        backing = AsyncMock()
        backing.get.return_value = "{not json"
        store = CacheStore(backing=backing, auto_cleanup=False, clock=clock)
        assert await store.get("k") is None

    async def test_clear_survives_backing_scan_failure(self, clock):
        broken = AsyncMock()
        broken.keys.side_effect = OSError("gone")
        store = CacheStore(backing=broken, auto_cleanup=False, clock=clock)
        await store.set("k", "v")
        await store.clear()
        assert store.size == 0

    async def test_concurrent_writes_respect_capacity(self, clock):
        backing = _YieldingBacking()
        store = CacheStore(max_size=2, backing=backing, auto_cleanup=False, clock=clock)
        await store.set("a", 1)
        clock.advance(1)
        await store.set("b", 2)
        clock.advance(1)
        await asyncio.gather(store.set("c", 3), store.set("d", 4))
        assert store.size == 2
        assert set(store.get_snapshot()) == {"c", "d"}
        assert sorted(await backing.keys("default:")) == ["default:c", "default:d"]

    async def test_concurrent_writes_during_capacity_shrink(self, clock):
        backing = _YieldingBacking()
        store = CacheStore(max_size=3, backing=backing, auto_cleanup=False, clock=clock)
        for key in ("a", "b", "c"):
            await store.set(key, key)
            clock.advance(1)
        await asyncio.gather(store.update_options(max_size=1), store.set("d", "d"))
        assert store.size <= 1

    async def test_value_written_during_backing_read_wins(self, clock):
        backing = _YieldingBacking()
        first = CacheStore(backing=backing, auto_cleanup=False, clock=clock)
        await first.set("k", "old")
        second = CacheStore(backing=backing, auto_cleanup=False, clock=clock)
        await asyncio.gather(second.get("k"), second.set("k", "new"))
        assert await second.get("k") == "new"

    async def test_backing_helpers_require_a_backing(self, cache):
        with pytest.raises(RuntimeError, match="has no backing"):
            cache._store()


class TestSweep:
    async def test_sweep_runs_periodically(self):
        clock = FakeClock()
        store = CacheStore(cleanup_interval=0.01, clock=clock)
        await store.set("k", "v", ttl=1)
        clock.advance(2)
        async with store:
            assert store.is_sweeping
            await asyncio.sleep(0.05)
        assert not store.is_sweeping
        assert store.size == 0

    async def test_start_without_auto_cleanup_is_noop(self, cache):
        cache.start()
        assert not cache.is_sweeping

    async def test_stop_without_start(self, cache):
        await cache.stop()

    async def test_start_twice_keeps_one_task(self):
        store = CacheStore(cleanup_interval=60)
        store.start()
        task = store._sweep_task
        store.start()
        assert store._sweep_task is task
        await store.stop()

    async def test_overlapping_tick_is_skipped(self, cache):
        cache._sweeping = True
        assert await cache.sweep() == 0
