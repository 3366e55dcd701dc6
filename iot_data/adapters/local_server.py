"""Adapter for the local sensor server."""

import logging
import math
from collections.abc import Mapping
from datetime import UTC, datetime

from iot_data.adapters.base import (
    SourceAdapter,
    air_quality_for,
    clean_number,
    first_match,
    normalize_timestamp,
    require_mapping,
)
from iot_data.clients.local_server import LocalServerClient
from iot_data.errors import NormalizationError
from iot_data.models.device import Alert, Device, DeviceStats, HourlyAverages
from iot_data.models.enums import AlertSeverity, DeviceStatus, Source
from iot_data.models.options import FetchOptions
from iot_data.models.reading import Reading

logger = logging.getLogger(__name__)

# The server reports averages (avg_*) alongside last values
TEMPERATURE_KEYS = (
    "last_temperature",
    "temp",
    "avg_temperature",
    "current_temperature",
    "temperature",
)
HUMIDITY_KEYS = ("last_humidity", "rh", "avg_humidity", "current_humidity", "humidity")
CO2_KEYS = ("avg_co2", "current_co2", "co2")
PRESSURE_KEYS = ("avg_pressure", "current_pressure", "pressure")

_STATUS_CODES: dict[str, DeviceStatus] = {
    "1": DeviceStatus.ACTIVE,
    "0": DeviceStatus.INACTIVE,
    "-1": DeviceStatus.ERROR,
    "2": DeviceStatus.WARNING,
    "online": DeviceStatus.ACTIVE,
    "offline": DeviceStatus.INACTIVE,
    "healthy": DeviceStatus.ACTIVE,
    "error": DeviceStatus.ERROR,
    "warning": DeviceStatus.WARNING,
}


def _status(status: object, is_online: object) -> DeviceStatus:
    if isinstance(is_online, bool):
        return DeviceStatus.ACTIVE if is_online else DeviceStatus.INACTIVE
    if status is None:
        return DeviceStatus.UNKNOWN
    return _STATUS_CODES.get(str(status).strip().lower(), DeviceStatus.UNKNOWN)


def _severity(severity: object) -> str:
    if isinstance(severity, (int, float)) and not isinstance(severity, bool):
        if severity >= 3:
            return AlertSeverity.HIGH
        if severity >= 2:
            return AlertSeverity.MEDIUM
        return AlertSeverity.LOW
    return str(severity) if severity else AlertSeverity.LOW


def _count(value: object) -> int | None:
    number = clean_number(value)
    if number is None or not math.isfinite(number):
        return None
    return int(number)


def _stats(raw: Mapping) -> DeviceStats | None:
    """Build the server-side aggregates, or None when the server sent none."""
    fields = {
        "min_temperature": clean_number(raw.get("min_temperature")),
        "max_temperature": clean_number(raw.get("max_temperature")),
        "avg_temperature": clean_number(raw.get("avg_temperature")),
        "readings_count": _count(raw.get("readings_count")),
    }
    hourly = HourlyAverages(
        temperature=clean_number(raw.get("last_hour_avg_temp")),
        humidity=clean_number(raw.get("last_hour_avg_humidity")),
        co2=clean_number(raw.get("last_hour_avg_co2")),
    )
    has_hourly = any(v is not None for v in hourly.model_dump().values())
    if all(v is None for v in fields.values()) and not has_hourly:
        return None
    return DeviceStats(**fields, last_hour_avg=hourly if has_hourly else None)


def _alerts(raw: object) -> list[Alert]:
    if not raw:
        return []
    items = raw.values() if isinstance(raw, Mapping) else raw
    return [
        Alert(
            id=_optional_str(first_match(alert, ("alert_id", "id"))),
            type=first_match(alert, ("alert_type", "type"), "info"),
            message=first_match(
                alert, ("alert_message", "message"), "Alert information not available"
            ),
            severity=_severity(first_match(alert, ("severity_level", "severity"))),
            timestamp=normalize_timestamp(
                first_match(alert, ("created_at", "timestamp")), datetime.now(tz=UTC)
            ),
            device_id=_optional_str(alert.get("device_id")),
        )
        for alert in items
        if isinstance(alert, Mapping)
    ]


def _optional_str(value: object) -> str | None:
    return None if value is None else str(value)


class LocalServerAdapter(SourceAdapter):
    """Normalizes payloads from the local REST API.

    Args:
        client: Local server client.
    """

    source = Source.LOCAL

    def __init__(self, client: LocalServerClient) -> None:
        self.client = client

    def normalize_device(self, raw: Mapping | None) -> Device | None:
        if not raw:
            return None
        raw = require_mapping(raw, "Device record")

        device_id = first_match(raw, ("sensor_id", "device_id", "id"))
        if device_id is None:
            raise NormalizationError("Local server device without an id")

        room_name = raw.get("room_name")
        if room_name:
            name = f"{room_name} Sensor"
        else:
            name = str(first_match(raw, ("device_name", "name"), "Unknown Device"))

        co2 = clean_number(first_match(raw, CO2_KEYS))
        return Device(
            id=str(device_id),
            name=name,
            temperature=clean_number(first_match(raw, TEMPERATURE_KEYS)),
            humidity=clean_number(first_match(raw, HUMIDITY_KEYS)),
            co2=co2,
            pressure=clean_number(first_match(raw, PRESSURE_KEYS)),
            air_quality=air_quality_for(co2),
            last_seen=normalize_timestamp(
                first_match(raw, ("last_seen", "updated_at", "last_update", "timestamp"))
            ),
            last_update=normalize_timestamp(
                first_match(raw, ("last_update", "updated_at", "created_at"))
            ),
            status=_status(first_match(raw, ("status", "device_status")), raw.get("is_online")),
            room=str(first_match(raw, ("room_name", "location"), "Unknown")),
            stats=_stats(raw),
            alerts=_alerts(first_match(raw, ("alerts", "active_alerts"))),
            source=self.source,
        )

    def normalize_reading(self, raw: Mapping | None) -> Reading | None:
        if not raw:
            return None
        raw = require_mapping(raw, "Reading record")
        return Reading(
            timestamp=normalize_timestamp(
                first_match(raw, ("timestamp", "time")), datetime.now(tz=UTC)
            ),
            temperature=clean_number(first_match(raw, ("temperature", "temp"))),
            humidity=clean_number(first_match(raw, ("humidity", "rh"))),
            co2=clean_number(raw.get("co2")),
            pressure=clean_number(raw.get("pressure")),
            device_id=_optional_str(first_match(raw, ("sensor_id", "device_id"))),
            source=self.source,
        )

    async def fetch_raw_devices(self) -> object:
        return await self.client.get_devices()

    async def fetch_device_readings(
        self, device_id: str, options: FetchOptions | None = None
    ) -> list[Reading]:
        raw = await self.client.get_readings(device_id)
        return self.normalize_readings(raw)

    async def fetch_historical_data(
        self, device_id: str, start: str, end: str, options: FetchOptions | None = None
    ) -> list[Reading]:
        raw = await self.client.get_history(device_id, start, end)
        return self.normalize_readings(raw)

    async def is_available(self) -> bool:
        return await self.client.is_available()
