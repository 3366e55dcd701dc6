"""Facade over the device repositories, and the factory that wires them."""

import asyncio
import logging
from collections.abc import Sequence

from iot_data.adapters.base import SourceAdapter
from iot_data.adapters.firebase import FirebaseAdapter
from iot_data.adapters.local_server import LocalServerAdapter
from iot_data.cache.store import CacheStore
from iot_data.clients.firebase import FirebaseClient
from iot_data.clients.local_server import LocalServerClient
from iot_data.config import Settings, get_settings
from iot_data.errors import DataAccessError
from iot_data.models.device import Device
from iot_data.models.options import FetchOptions
from iot_data.models.reading import DeviceReadings, DeviceStatistics, Reading
from iot_data.repositories.device_data import DeviceDataRepository
from iot_data.repositories.devices import DeviceRepository
from iot_data.storage.cache_backing import CacheBacking

logger = logging.getLogger(__name__)

Options = FetchOptions | dict | None


class DataContext:
    """Single entry point for device data.

    Every failure is re-raised as :class:`DataAccessError` whose message names
    the operation, chained to the original exception.

    Args:
        devices: Repository for device snapshots.
        device_data: Repository for readings and statistics.
        cache: The cache both repositories share. Owned by the context: its
            sweep is started by :meth:`start` and stopped by :meth:`close`.
    """

    def __init__(
        self,
        devices: DeviceRepository,
        device_data: DeviceDataRepository,
        cache: CacheStore | None = None,
    ) -> None:
        self.devices = devices
        self.device_data = device_data
        self.cache = cache

    async def get_devices(self, options: Options = None) -> list[Device]:
        try:
            return await self.devices.get_devices(options)
        except Exception as exc:
            raise DataAccessError(f"Failed to fetch devices: {exc}") from exc

    async def get_device(self, device_id: str, options: Options = None) -> Device | None:
        try:
            return await self.devices.get_device(device_id, options)
        except Exception as exc:
            raise DataAccessError(f"Failed to fetch device {device_id}: {exc}") from exc

    async def get_devices_by_room(self, room: str, options: Options = None) -> list[Device]:
        try:
            devices = await self.devices.get_devices(options)
        except Exception as exc:
            raise DataAccessError(f"Failed to fetch devices for room {room}: {exc}") from exc
        return [device for device in devices if device.room == room]

    async def get_merged_devices(self) -> list[Device]:
        try:
            return await self.devices.get_merged_devices()
        except Exception as exc:
            raise DataAccessError(f"Failed to merge devices: {exc}") from exc

    async def get_device_readings(self, device_id: str, options: Options = None) -> list[Reading]:
        try:
            return await self.device_data.get_device_readings(device_id, options)
        except Exception as exc:
            raise DataAccessError(
                f"Failed to fetch readings for device {device_id}: {exc}"
            ) from exc

    async def get_historical_data(
        self, device_id: str, start: str, end: str, options: Options = None
    ) -> list[Reading]:
        try:
            return await self.device_data.get_historical_data(device_id, start, end, options)
        except Exception as exc:
            raise DataAccessError(
                f"Failed to fetch historical data for device {device_id}: {exc}"
            ) from exc

    async def get_device_stats(self, device_id: str, options: Options = None) -> DeviceStatistics:
        try:
            return await self.device_data.get_device_stats(device_id, options)
        except Exception as exc:
            raise DataAccessError(
                f"Failed to compute stats for device {device_id}: {exc}"
            ) from exc

    async def get_device_with_readings(
        self, device_id: str, options: Options = None
    ) -> DeviceReadings:
        """Fetch the device snapshot and its readings concurrently."""
        try:
            device, readings = await asyncio.gather(
                self.devices.get_device(device_id, options),
                self.device_data.get_device_readings(device_id, options),
            )
        except Exception as exc:
            raise DataAccessError(f"Failed to fetch device with readings: {exc}") from exc
        return DeviceReadings(device=device, readings=readings)

    # ── Refresh ───────────────────────────────────────────────────────────
    # Forced fetches leave the cached entry in place so that a failed
    # refresh still falls back to the last good value.

    async def refresh_device(self, device_id: str) -> Device | None:
        try:
            return await self.devices.get_device(device_id, FetchOptions(force_refresh=True))
        except Exception as exc:
            raise DataAccessError(f"Failed to refresh device {device_id}: {exc}") from exc

    async def refresh_devices(self) -> list[Device]:
        try:
            return await self.devices.get_devices(FetchOptions(force_refresh=True))
        except Exception as exc:
            raise DataAccessError(f"Failed to refresh devices: {exc}") from exc

    async def refresh_device_data(self, device_id: str) -> list[Reading]:
        try:
            return await self.device_data.get_device_readings(
                device_id, FetchOptions(force_refresh=True)
            )
        except Exception as exc:
            raise DataAccessError(f"Failed to refresh device data: {exc}") from exc

    async def refresh_all_data(self) -> list[Device]:
        """Refresh the device list, then every device's readings concurrently."""
        try:
            devices = await self.devices.get_devices(FetchOptions(force_refresh=True))
            await asyncio.gather(
                *(
                    self.device_data.get_device_readings(
                        device.id, FetchOptions(force_refresh=True)
                    )
                    for device in devices
                )
            )
        except Exception as exc:
            raise DataAccessError(f"Failed to refresh all data: {exc}") from exc
        return devices

    async def clear_cache(self, pattern: str | None = None) -> None:
        if self.cache is not None:
            await self.cache.clear(pattern)
            return
        await self.devices.clear_cache(pattern)
        await self.device_data.clear_cache(pattern)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def start(self) -> None:
        """Start the cache sweep. Requires a running event loop."""
        if self.cache is not None:
            self.cache.start()

    async def close(self) -> None:
        if self.cache is not None:
            await self.cache.stop()

    async def __aenter__(self) -> "DataContext":
        self.start()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        await self.close()


def default_adapters(settings: Settings) -> list[SourceAdapter]:
    """Build the firebase and local server adapters, firebase first."""
    firebase = FirebaseClient(
        settings.firebase_functions_url,
        timeout=settings.firebase_timeout,
        probe_timeout=settings.probe_timeout,
    )
    local = LocalServerClient(
        settings.local_api_url,
        timeout=settings.local_timeout,
        probe_timeout=settings.probe_timeout,
    )
    return [FirebaseAdapter(firebase), LocalServerAdapter(local)]


def create_data_context(
    settings: Settings | None = None,
    adapters: Sequence[SourceAdapter] | None = None,
    backing: CacheBacking | None = None,
) -> DataContext:
    """Wire one shared cache and both repositories.

    Args:
        settings: Defaults to :func:`get_settings`.
        adapters: Defaults to :func:`default_adapters`.
        backing: Persistent store for the cache; memory-only when omitted.
    """
    settings = settings or get_settings()
    adapters = list(adapters) if adapters is not None else default_adapters(settings)

    cache = CacheStore(
        namespace=settings.cache_namespace,
        ttl=settings.cache_ttl,
        max_size=settings.cache_max_size,
        backing=backing,
        cleanup_interval=settings.cleanup_interval,
    )
    logger.info(
        "Data context ready: sources=%s cache=%s",
        ", ".join(str(a.source) for a in adapters),
        cache.storage,
    )
    return DataContext(
        DeviceRepository(adapters, cache),
        DeviceDataRepository(adapters, cache, historical_ttl=settings.historical_cache_ttl),
        cache,
    )
