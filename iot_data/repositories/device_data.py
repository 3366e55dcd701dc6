"""Device readings, historical ranges and statistics derived from them."""

import logging
from collections.abc import Sequence
from statistics import fmean

from pydantic import TypeAdapter

from iot_data.adapters.base import SourceAdapter
from iot_data.cache.store import CacheStore
from iot_data.models.options import FetchOptions
from iot_data.models.reading import DeviceStatistics, MetricStats, Reading
from iot_data.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

_READING_LIST = TypeAdapter(list[Reading])

DEFAULT_HISTORICAL_TTL = 30 * 60


def readings_cache_key(device_id: str) -> str:
    return f"readings:{device_id}"


def historical_cache_key(device_id: str, start: str, end: str) -> str:
    return f"historical:{device_id}:{start}:{end}"


def metric_stats(readings: list[Reading], field: str) -> MetricStats:
    """Summarize *field* over readings sorted newest first.

    ``current`` is the newest reading's value, which may be None even when
    older readings carry one.
    """
    values = [v for v in (getattr(r, field) for r in readings) if v is not None]
    if not values:
        return MetricStats()
    return MetricStats(
        min=min(values),
        max=max(values),
        avg=fmean(values),
        current=getattr(readings[0], field),
    )


class DeviceDataRepository(BaseRepository):
    """Reads per-device readings through the shared cache.

    Args:
        adapters: Adapters in priority order.
        cache: Shared cache; keys are prefixed ``readings:`` and ``historical:``.
        fallback_enabled: Whether reads may move on to another source.
        historical_ttl: Default lifetime of historical ranges, in seconds.
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        cache: CacheStore | None = None,
        fallback_enabled: bool = True,
        historical_ttl: float = DEFAULT_HISTORICAL_TTL,
    ) -> None:
        super().__init__(adapters, cache, fallback_enabled)
        self.historical_ttl = historical_ttl

    def _adapters_for(self, opts: FetchOptions) -> list[SourceAdapter]:
        if opts.fallback_enabled and self.fallback_enabled:
            return self.adapters
        return self.adapters[:1]

    async def get_device_readings(
        self, device_id: str, options: FetchOptions | dict | None = None
    ) -> list[Reading]:
        opts = FetchOptions.coerce(options)
        return await self._cached_fetch(
            readings_cache_key(device_id),
            _READING_LIST,
            lambda adapter: adapter.fetch_device_readings(device_id, opts),
            f"Failed to fetch readings for device {device_id}",
            force_refresh=opts.force_refresh,
            adapters=self._adapters_for(opts),
        )

    async def get_historical_data(
        self,
        device_id: str,
        start: str,
        end: str,
        options: FetchOptions | dict | None = None,
    ) -> list[Reading]:
        """Return readings between *start* and *end*.

        The range strings are used verbatim in the cache key, so the same
        window written two ways is cached twice.
        """
        opts = FetchOptions.coerce(options)
        return await self._cached_fetch(
            historical_cache_key(device_id, start, end),
            _READING_LIST,
            lambda adapter: adapter.fetch_historical_data(device_id, start, end, opts),
            f"Failed to fetch historical data for device {device_id}",
            force_refresh=opts.force_refresh,
            ttl=opts.ttl or self.historical_ttl,
            adapters=self._adapters_for(opts),
        )

    async def get_device_stats(
        self, device_id: str, options: FetchOptions | dict | None = None
    ) -> DeviceStatistics:
        readings = await self.get_device_readings(device_id, options)
        if not readings:
            return DeviceStatistics(device_id=device_id)

        newest_first = sorted(readings, key=lambda r: r.timestamp, reverse=True)
        return DeviceStatistics(
            device_id=device_id,
            temperature_stats=metric_stats(newest_first, "temperature"),
            humidity_stats=metric_stats(newest_first, "humidity"),
            reading_count=len(readings),
            last_updated=newest_first[0].timestamp,
        )
