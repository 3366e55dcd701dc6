from datetime import datetime

from pydantic import BaseModel, ConfigDict

from iot_data.models.device import Device
from iot_data.models.enums import Source


class Reading(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    temperature: float | None = None
    humidity: float | None = None
    co2: float | None = None
    pressure: float | None = None
    device_id: str | None = None
    source: Source | None = None


class MetricStats(BaseModel):
    min: float | None = None
    max: float | None = None
    avg: float | None = None
    current: float | None = None


class DeviceStatistics(BaseModel):
    device_id: str
    temperature_stats: MetricStats = MetricStats()
    humidity_stats: MetricStats = MetricStats()
    reading_count: int = 0
    last_updated: datetime | None = None


class DeviceReadings(BaseModel):
    """A device snapshot together with its recent readings."""

    device: Device | None = None
    readings: list[Reading] = []
