"""Device snapshots: source selection, same-source fallback and cross-source merge."""

import asyncio
import logging
from datetime import UTC, datetime

from pydantic import TypeAdapter

from iot_data.errors import AdapterError, AllSourcesFailedError
from iot_data.models.device import Device
from iot_data.models.enums import Source, SourceSelection
from iot_data.models.options import FetchOptions
from iot_data.repositories.base import BaseRepository

logger = logging.getLogger(__name__)

_DEVICE_LIST = TypeAdapter(list[Device])

# Missing timestamps lose every recency comparison
_OLDEST = datetime.min.replace(tzinfo=UTC)

CACHE_PREFIX = "devices_"


def devices_cache_key(source: SourceSelection | str) -> str:
    return f"{CACHE_PREFIX}{source}"


def _firebase_time(device: Device) -> datetime:
    return device.last_seen or device.last_update or _OLDEST


def _local_time(device: Device) -> datetime:
    return device.last_update or device.last_seen or _OLDEST


def _newest_value(firebase: Device, local: Device, field: str) -> float | None:
    """Pick *field* from whichever record reported last. Ties go to firebase."""
    firebase_value = getattr(firebase, field)
    local_value = getattr(local, field)
    if _local_time(local) > _firebase_time(firebase):
        return local_value if local_value is not None else firebase_value
    return firebase_value if firebase_value is not None else local_value


def merge_device(firebase: Device, local: Device) -> Device:
    """Combine two snapshots of the same device.

    The name always comes from firebase, temperature and humidity from the
    more recent side, and stats from the local server when it has them.
    """
    return firebase.model_copy(
        update={
            "temperature": _newest_value(firebase, local, "temperature"),
            "humidity": _newest_value(firebase, local, "humidity"),
            "stats": local.stats if local.stats is not None else firebase.stats,
        }
    )


def merge_devices(firebase: list[Device], local: list[Device]) -> list[Device]:
    """Merge by id, keeping firebase order first and appending local-only devices."""
    merged: dict[str, Device] = {device.id: device for device in firebase}
    for device in local:
        existing = merged.get(device.id)
        merged[device.id] = device if existing is None else merge_device(existing, device)
    return list(merged.values())


class DeviceRepository(BaseRepository):
    """Reads device snapshots from firebase and/or the local server."""

    async def get_source_devices(self, source: Source | str) -> list[Device]:
        """Fetch and normalize the device list of one source.

        Raises:
            AdapterError: The source is not configured or its fetch failed.
        """
        adapter = self.get_adapter(source)
        if adapter is None:
            raise AdapterError(str(source), "source is not configured")
        try:
            raw = await adapter.fetch_raw_devices()
        except Exception as exc:
            raise AdapterError(str(source), f"device fetch failed: {exc}") from exc
        if not raw:
            logger.warning("No devices returned by %s", source)
            return []
        return adapter.normalize_devices(raw)

    async def get_devices(self, options: FetchOptions | dict | None = None) -> list[Device]:
        """Return the device list for ``options.source``.

        ``auto`` prefers firebase when it answers its health probe, otherwise
        the local server; an empty answer triggers a probe of the other
        source. Non-empty results are cached under ``devices_{source}`` and
        that entry is served when fetching fails.
        """
        opts = FetchOptions.coerce(options)
        key = devices_cache_key(opts.source)

        if not opts.force_refresh:
            cached = await self._read_cache(key, _DEVICE_LIST)
            if cached is not None:
                logger.debug("Using cached devices (%s)", opts.source)
                return cached

        try:
            primary, devices = await self._fetch_selected(opts.source)

            if not devices and opts.source == SourceSelection.AUTO and (
                opts.fallback_enabled and self.fallback_enabled
            ):
                other = self._other_source(primary)
                if other is not None and await self.is_source_available(other):
                    logger.warning(
                        "%s returned no devices, falling back to %s", primary, other
                    )
                    devices = await self.get_source_devices(other)

            if devices:
                await self._write_cache(key, devices)
            return devices
        except Exception as exc:
            cached = await self._read_cache(key, _DEVICE_LIST)
            if cached is not None:
                logger.warning("Returning cached devices (%s) after error: %s", opts.source, exc)
                return cached
            raise

    async def _fetch_selected(self, selection: SourceSelection) -> tuple[Source, list[Device]]:
        if selection == SourceSelection.FIREBASE or (
            selection == SourceSelection.AUTO and await self.is_source_available(Source.FIREBASE)
        ):
            return Source.FIREBASE, await self.get_source_devices(Source.FIREBASE)
        return Source.LOCAL, await self.get_source_devices(Source.LOCAL)

    def _other_source(self, source: Source) -> Source | None:
        for adapter in self.adapters:
            if adapter.source != source:
                return adapter.source
        return None

    async def get_device(
        self, device_id: str, options: FetchOptions | dict | None = None
    ) -> Device | None:
        """Return one device, or None when no source lists *device_id*."""
        devices = await self.get_devices(options)
        return next((device for device in devices if device.id == device_id), None)

    async def get_merged_devices(self) -> list[Device]:
        """Fetch every configured source concurrently and merge the results.

        Raises:
            AllSourcesFailedError: No source answered.
        """
        sources = [adapter.source for adapter in self.adapters]
        results = await asyncio.gather(
            *(self.get_source_devices(source) for source in sources),
            return_exceptions=True,
        )

        by_source: dict[Source, list[Device]] = {}
        errors: list[BaseException] = []
        for source, result in zip(sources, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Merge skipped %s: %s", source, result)
                errors.append(result)
            else:
                by_source[source] = result

        if not by_source:
            last = errors[-1] if errors else None
            raise AllSourcesFailedError(f"Failed to merge devices: {last}") from last

        return merge_devices(
            by_source.get(Source.FIREBASE, []), by_source.get(Source.LOCAL, [])
        )
