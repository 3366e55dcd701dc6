from datetime import timedelta

import pytest

from iot_data.errors import AllSourcesFailedError
from iot_data.models.enums import Source
from iot_data.models.reading import MetricStats
from iot_data.repositories.device_data import (
    DeviceDataRepository,
    historical_cache_key,
    metric_stats,
    readings_cache_key,
)
from tests.factories import BASE_TIME, FakeAdapter, make_reading


def _readings(*temperatures: float | None) -> list:
    """Readings one minute apart, oldest first."""
    return [
        make_reading(timestamp=BASE_TIME + timedelta(minutes=i), temperature=t, humidity=40.0 + i)
        for i, t in enumerate(temperatures)
    ]


class TestCacheKeys:
    def test_readings_key(self):
        assert readings_cache_key("s1") == "readings:s1"

    def test_historical_key_uses_literal_range(self):
        assert historical_cache_key("s1", "2026-01-01", "2026-01-02") == (
            "historical:s1:2026-01-01:2026-01-02"
        )


class TestGetDeviceReadings:
    async def test_fetches_and_caches(self, cache):
        adapter = FakeAdapter(Source.LOCAL, readings=_readings(20))
        repo = DeviceDataRepository([adapter], cache)
        first = await repo.get_device_readings("s1")
        second = await repo.get_device_readings("s1")
        assert first == second
        assert adapter.calls == ["readings:s1"]
        assert await cache.has("readings:s1")

    async def test_force_refresh(self, cache):
        adapter = FakeAdapter(Source.LOCAL, readings=_readings(20))
        repo = DeviceDataRepository([adapter], cache)
        await repo.get_device_readings("s1")
        await repo.get_device_readings("s1", {"forceRefresh": True})
        assert adapter.calls == ["readings:s1", "readings:s1"]

    async def test_falls_back_to_next_adapter(self, cache):
        firebase = FakeAdapter(Source.FIREBASE, readings=RuntimeError("down"))
        local = FakeAdapter(Source.LOCAL, readings=_readings(22))
        repo = DeviceDataRepository([firebase, local], cache)
        readings = await repo.get_device_readings("s1")
        assert readings[0].temperature == 22

    async def test_fallback_disabled_uses_first_adapter_only(self, cache):
        firebase = FakeAdapter(Source.FIREBASE, readings=RuntimeError("down"))
        local = FakeAdapter(Source.LOCAL, readings=_readings(22))
        repo = DeviceDataRepository([firebase, local], cache)
        with pytest.raises(AllSourcesFailedError):
            await repo.get_device_readings("s1", {"fallback_enabled": False})
        assert local.calls == []

    async def test_all_fail_serves_cached(self, cache):
        adapter = FakeAdapter(Source.LOCAL, readings=_readings(20))
        repo = DeviceDataRepository([adapter], cache)
        await repo.get_device_readings("s1")
        adapter.readings = RuntimeError("down")
        readings = await repo.get_device_readings("s1", {"force_refresh": True})
        assert readings[0].temperature == 20

    async def test_empty_list_is_cached(self, cache):
        adapter = FakeAdapter(Source.LOCAL, readings=[])
        repo = DeviceDataRepository([adapter], cache)
        assert await repo.get_device_readings("s1") == []
        assert await repo.get_device_readings("s1") == []
        assert adapter.calls == ["readings:s1"]


class TestGetHistoricalData:
    async def test_distinct_ranges_are_cached_separately(self, cache):
        adapter = FakeAdapter(Source.LOCAL, history=_readings(20))
        repo = DeviceDataRepository([adapter], cache)
        await repo.get_historical_data("s1", "2026-01-01", "2026-01-02")
        await repo.get_historical_data("s1", "2026-01-01T00:00:00Z", "2026-01-02")
        await repo.get_historical_data("s1", "2026-01-01", "2026-01-02")
        assert adapter.calls == ["historical:s1", "historical:s1"]

    async def test_uses_longer_ttl(self, cache, clock):
        adapter = FakeAdapter(Source.LOCAL, history=_readings(20))
        repo = DeviceDataRepository([adapter], cache, historical_ttl=1800)
        await repo.get_historical_data("s1", "a", "b")
        clock.advance(1000)
        assert await cache.has("historical:s1:a:b")
        clock.advance(800)
        assert not await cache.has("historical:s1:a:b")

    async def test_ttl_option_overrides(self, cache, clock):
        adapter = FakeAdapter(Source.LOCAL, history=_readings(20))
        repo = DeviceDataRepository([adapter], cache)
        await repo.get_historical_data("s1", "a", "b", {"ttl": 10})
        clock.advance(10)
        assert not await cache.has("historical:s1:a:b")

    async def test_readings_ttl_is_store_default(self, cache, clock):
        repo = DeviceDataRepository([FakeAdapter(Source.LOCAL, readings=_readings(20))], cache)
        await repo.get_device_readings("s1")
        clock.advance(60)
        assert not await cache.has("readings:s1")


class TestGetDeviceStats:
    async def test_no_readings(self, cache):
        repo = DeviceDataRepository([FakeAdapter(Source.LOCAL, readings=[])], cache)
        stats = await repo.get_device_stats("s1")
        assert stats.device_id == "s1"
        assert stats.temperature_stats == MetricStats()
        assert stats.humidity_stats == MetricStats(min=None, max=None, avg=None, current=None)
        assert stats.reading_count == 0
        assert stats.last_updated is None

    async def test_basic_stats(self, cache):
        repo = DeviceDataRepository([FakeAdapter(Source.LOCAL, readings=_readings(20, 22, 24))], cache)
        stats = await repo.get_device_stats("s1")
        assert stats.temperature_stats.min == 20
        assert stats.temperature_stats.max == 24
        assert stats.temperature_stats.avg == 22
        assert stats.temperature_stats.current == 24
        assert stats.reading_count == 3
        assert stats.last_updated == BASE_TIME + timedelta(minutes=2)

    async def test_unsorted_input(self, cache):
        readings = list(reversed(_readings(20, 22, 24)))
        repo = DeviceDataRepository([FakeAdapter(Source.LOCAL, readings=readings)], cache)
        stats = await repo.get_device_stats("s1")
        assert stats.temperature_stats.current == 24
        assert stats.humidity_stats.current == 42.0

    async def test_newest_reading_without_value(self, cache):
        repo = DeviceDataRepository(
            [FakeAdapter(Source.LOCAL, readings=_readings(20, 22, None))], cache
        )
        stats = await repo.get_device_stats("s1")
        assert stats.temperature_stats.current is None
        assert stats.temperature_stats.min == 20
        assert stats.temperature_stats.avg == 21
        assert stats.reading_count == 3

    async def test_metric_without_any_value(self, cache):
        repo = DeviceDataRepository(
            [FakeAdapter(Source.LOCAL, readings=_readings(None, None))], cache
        )
        stats = await repo.get_device_stats("s1")
        assert stats.temperature_stats == MetricStats()
        assert stats.humidity_stats.min == 40.0

    async def test_recomputed_from_cached_readings(self, cache):
        adapter = FakeAdapter(Source.LOCAL, readings=_readings(20))
        repo = DeviceDataRepository([adapter], cache)
        await repo.get_device_stats("s1")
        await repo.get_device_stats("s1")
        assert adapter.calls == ["readings:s1"]


class TestMetricStats:
    def test_empty(self):
        assert metric_stats([], "temperature") == MetricStats()
