from enum import StrEnum


class Source(StrEnum):
    FIREBASE = "firebase"
    LOCAL = "local"


class SourceSelection(StrEnum):
    AUTO = "auto"
    FIREBASE = "firebase"
    LOCAL = "local"


class DeviceStatus(StrEnum):
    ACTIVE = "active"
    WARNING = "warning"
    INACTIVE = "inactive"
    ERROR = "error"
    UNKNOWN = "unknown"


class AirQuality(StrEnum):
    EXCELLENT = "excellent"
    GOOD = "good"
    MODERATE = "moderate"
    POOR = "poor"
    HAZARDOUS = "hazardous"


class AlertSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
