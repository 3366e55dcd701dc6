from datetime import datetime

from pydantic import BaseModel, ConfigDict

from iot_data.models.enums import AirQuality, DeviceStatus, Source


class Alert(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    type: str = "info"
    message: str = "Alert information not available"
    severity: str = "low"
    timestamp: datetime | None = None
    device_id: str | None = None


class HourlyAverages(BaseModel):
    model_config = ConfigDict(frozen=True)

    temperature: float | None = None
    humidity: float | None = None
    co2: float | None = None


class DeviceStats(BaseModel):
    """Aggregates computed by the local server."""

    model_config = ConfigDict(frozen=True)

    min_temperature: float | None = None
    max_temperature: float | None = None
    avg_temperature: float | None = None
    readings_count: int | None = None
    last_hour_avg: HourlyAverages | None = None


class Device(BaseModel):
    """Normalized device snapshot. Each fetch produces a new instance."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = "Unknown Device"
    temperature: float | None = None
    humidity: float | None = None
    co2: float | None = None
    pressure: float | None = None
    air_quality: AirQuality | None = None
    last_seen: datetime | None = None
    last_update: datetime | None = None
    status: DeviceStatus = DeviceStatus.UNKNOWN
    room: str = "Unknown"
    stats: DeviceStats | None = None
    alerts: list[Alert] = []
    source: Source | None = None
