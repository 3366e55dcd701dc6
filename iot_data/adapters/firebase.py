"""Adapter for the Firebase real-time backend."""

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from uuid import uuid4

from iot_data.adapters.base import (
    SourceAdapter,
    air_quality_for,
    clean_number,
    first_match,
    normalize_timestamp,
    require_mapping,
)
from iot_data.clients.firebase import FirebaseClient
from iot_data.errors import NormalizationError
from iot_data.models.device import Alert, Device
from iot_data.models.enums import DeviceStatus, Source
from iot_data.models.options import FetchOptions
from iot_data.models.reading import Reading

logger = logging.getLogger(__name__)

# Candidate keys, most specific first
TEMPERATURE_KEYS = (
    "temperature_immediate",
    "temp",
    "temperature",
    "last_temperature",
    "avg_temperature",
    "current_temperature",
    "temp_c",
    "value_temperature",
)
HUMIDITY_KEYS = (
    "humidity_immediate",
    "humidity",
    "last_humidity",
    "avg_humidity",
    "current_humidity",
    "rh",
    "value_humidity",
)
CO2_KEYS = ("co2_immediate", "co2", "carbon_dioxide", "last_co2", "avg_co2")
PRESSURE_KEYS = (
    "pressure_immediate",
    "pressure",
    "barometric_pressure",
    "last_pressure",
    "avg_pressure",
)
ID_KEYS = ("id", "uid", "deviceId", "device_id", "sensor_id")

_STATUS_MAP: dict[str, DeviceStatus] = {
    "online": DeviceStatus.ACTIVE,
    "offline": DeviceStatus.INACTIVE,
    "error": DeviceStatus.ERROR,
    "warning": DeviceStatus.WARNING,
    "active": DeviceStatus.ACTIVE,
    "inactive": DeviceStatus.INACTIVE,
}


def _status(status: object, last_seen: datetime | None) -> DeviceStatus:
    """Map a Firebase status string, or derive one from how long ago the device reported."""
    if not status and last_seen is not None:
        minutes = (datetime.now(tz=UTC) - last_seen).total_seconds() / 60
        if minutes < 5:
            return DeviceStatus.ACTIVE
        if minutes < 30:
            return DeviceStatus.WARNING
        return DeviceStatus.INACTIVE
    if isinstance(status, str):
        return _STATUS_MAP.get(status.lower(), DeviceStatus.UNKNOWN)
    return DeviceStatus.UNKNOWN


def _alerts(raw: object) -> list[Alert]:
    if not raw:
        return []
    items = raw.values() if isinstance(raw, Mapping) else raw
    alerts: list[Alert] = []
    for alert in items:
        if not isinstance(alert, Mapping):
            continue
        alerts.append(
            Alert(
                id=str(first_match(alert, ("id", "uid"), f"auto-{uuid4().hex[:8]}")),
                type=alert.get("type") or "info",
                message=first_match(alert, ("message", "text"), "Alert information not available"),
                severity=alert.get("severity") or "low",
                timestamp=normalize_timestamp(
                    first_match(alert, ("timestamp", "created_at", "last_seen")),
                    datetime.now(tz=UTC),
                ),
                device_id=str(first_match(alert, ("device_id", "deviceId", "device"), "unknown")),
            )
        )
    return alerts


class FirebaseAdapter(SourceAdapter):
    """Normalizes Cloud Function payloads.

    Args:
        client: Firebase Cloud Functions client.
    """

    source = Source.FIREBASE

    def __init__(self, client: FirebaseClient) -> None:
        self.client = client

    def normalize_device(self, raw: Mapping | None) -> Device | None:
        if not raw:
            return None
        raw = require_mapping(raw, "Device record")

        device_id = first_match(raw, ID_KEYS)
        if device_id is None:
            raise NormalizationError("Firebase device without an id")

        co2 = clean_number(first_match(raw, CO2_KEYS))
        raw_last_seen = first_match(raw, ("last_seen", "lastUpdate", "timestamp"))
        last_seen = normalize_timestamp(raw_last_seen)

        return Device(
            id=str(device_id),
            name=str(first_match(raw, ("name", "device_name"), "Unknown Device")),
            temperature=clean_number(first_match(raw, TEMPERATURE_KEYS)),
            humidity=clean_number(first_match(raw, HUMIDITY_KEYS)),
            co2=co2,
            pressure=clean_number(first_match(raw, PRESSURE_KEYS)),
            air_quality=air_quality_for(co2),
            last_seen=last_seen,
            status=_status(raw.get("status"), last_seen),
            room=str(first_match(raw, ("room", "location", "room_id"), "Unknown")),
            alerts=_alerts(raw.get("alerts")),
            source=self.source,
        )

    def device_records(self, raw: object) -> list:
        # Firebase may key devices by id instead of returning a list
        if isinstance(raw, Mapping) and "devices" not in raw and "data" not in raw:
            return [
                {**device, "id": device.get("id") or key}
                for key, device in raw.items()
                if isinstance(device, Mapping)
            ]
        return super().device_records(raw)

    def normalize_reading(self, raw: Mapping | None) -> Reading | None:
        if not raw:
            return None
        raw = require_mapping(raw, "Reading record")
        device_id = first_match(raw, ("device_id", "deviceId", "sensor_id"))
        return Reading(
            timestamp=normalize_timestamp(
                first_match(raw, ("timestamp", "time")), datetime.now(tz=UTC)
            ),
            temperature=clean_number(first_match(raw, ("temperature_immediate", "temp", "temperature"))),
            humidity=clean_number(first_match(raw, ("humidity_immediate", "humidity"))),
            co2=clean_number(first_match(raw, ("co2_immediate", "co2"))),
            pressure=clean_number(first_match(raw, ("pressure_immediate", "pressure"))),
            device_id=str(device_id) if device_id is not None else None,
            source=self.source,
        )

    async def fetch_raw_devices(self) -> object:
        return await self.client.get_devices()

    def _for_device(self, readings: list[Reading], device_id: str) -> list[Reading]:
        # getReadings filters by room only; sensor filtering happens here
        return [r for r in readings if r.device_id == device_id]

    async def fetch_device_readings(
        self, device_id: str, options: FetchOptions | None = None
    ) -> list[Reading]:
        raw = await self.client.get_readings()
        return self._for_device(self.normalize_readings(raw), device_id)

    async def fetch_historical_data(
        self, device_id: str, start: str, end: str, options: FetchOptions | None = None
    ) -> list[Reading]:
        raw = await self.client.get_readings(start=start, end=end)
        return self._for_device(self.normalize_readings(raw), device_id)

    async def is_available(self) -> bool:
        return await self.client.is_available()
