from iot_data.models.device import Alert, Device, DeviceStats, HourlyAverages
from iot_data.models.enums import (
    AirQuality,
    AlertSeverity,
    DeviceStatus,
    Source,
    SourceSelection,
)
from iot_data.models.options import FetchOptions
from iot_data.models.reading import DeviceReadings, DeviceStatistics, MetricStats, Reading

__all__ = [
    "AirQuality",
    "Alert",
    "AlertSeverity",
    "Device",
    "DeviceReadings",
    "DeviceStatistics",
    "DeviceStats",
    "DeviceStatus",
    "FetchOptions",
    "HourlyAverages",
    "MetricStats",
    "Reading",
    "Source",
    "SourceSelection",
]
