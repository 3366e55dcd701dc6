"""Adapter interface and the normalization helpers shared by every source."""

import logging
import math
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

from pydantic import ValidationError

from iot_data.errors import NormalizationError
from iot_data.models.device import Device
from iot_data.models.enums import AirQuality, Source
from iot_data.models.options import FetchOptions
from iot_data.models.reading import Reading

logger = logging.getLogger(__name__)

_NULL_STRINGS = {"", "nan", "n/a", "null", "undefined", "none"}
_NUMERIC_RE = re.compile(r"^-?\d*\.?\d+$")

# Epoch values below this are seconds, above it milliseconds
_EPOCH_MS_THRESHOLD = 10_000_000_000


def clean_value(value: object, default: object = None) -> object:
    """Map empty/placeholder values to *default* and numeric strings to floats."""
    if value is None:
        return default
    if isinstance(value, float) and math.isnan(value):
        return default
    if isinstance(value, str):
        stripped = value.strip()
        if stripped.lower() in _NULL_STRINGS:
            return default
        if _NUMERIC_RE.match(stripped):
            return float(stripped)
    return value


def clean_number(value: object) -> float | None:
    """Like :func:`clean_value` but returns None for anything non-numeric."""
    cleaned = clean_value(value)
    if isinstance(cleaned, bool) or not isinstance(cleaned, (int, float)):
        return None
    return float(cleaned)


def first_match(raw: Mapping, keys: Iterable[str], default: object = None) -> object:
    """Return the first value among *keys* that is present and not None."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def normalize_timestamp(value: object, default: datetime | None = None) -> datetime | None:
    """Convert ISO strings, epoch seconds/milliseconds, Firestore ``{_seconds}``
    objects and datetimes to an aware UTC datetime.

    Returns *default* when *value* is empty or unparseable.
    """
    if value is None or value == "":
        return default
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, Mapping):
        seconds = first_match(value, ("_seconds", "seconds"))
        return normalize_timestamp(seconds, default) if seconds is not None else default
    if isinstance(value, str) and _NUMERIC_RE.match(value.strip()):
        value = float(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if value >= _EPOCH_MS_THRESHOLD else value
        try:
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return default
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            logger.debug("Unparseable timestamp %r", value)
            return default
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return default


def air_quality_for(co2: float | None) -> AirQuality | None:
    """Classify a CO2 concentration in ppm."""
    if not co2:
        return None
    if co2 < 400:
        return AirQuality.EXCELLENT
    if co2 < 1000:
        return AirQuality.GOOD
    if co2 < 2000:
        return AirQuality.MODERATE
    if co2 < 5000:
        return AirQuality.POOR
    return AirQuality.HAZARDOUS


def as_records(raw: object, envelope_keys: Iterable[str] = ()) -> list:
    """Unwrap an envelope (``{"data": [...]}``) and turn an id-keyed object into a list."""
    if isinstance(raw, Mapping):
        for key in envelope_keys:
            if key in raw:
                return as_records(raw[key])
        return list(raw.values())
    if isinstance(raw, list):
        return raw
    return []


def require_mapping(raw: object, what: str) -> Mapping:
    """Return *raw* if it is an object, else raise NormalizationError."""
    if not isinstance(raw, Mapping):
        raise NormalizationError(f"{what} is a {type(raw).__name__}, not an object")
    return raw


class SourceAdapter(ABC):
    """Fetches one backend's payloads and maps them to canonical records.

    Subclasses set :attr:`source` and implement the ``normalize_*`` and
    ``fetch_*`` hooks; collection handling and record dropping live here.
    """

    source: Source

    @abstractmethod
    def normalize_device(self, raw: Mapping | None) -> Device | None:
        """Map one raw device. Returns None for empty input.

        Raises:
            NormalizationError: The record cannot be identified.
        """

    @abstractmethod
    def normalize_reading(self, raw: Mapping | None) -> Reading | None:
        """Map one raw reading. Returns None for empty input."""

    @abstractmethod
    async def fetch_raw_devices(self) -> object:
        """Return the backend's raw device collection."""

    @abstractmethod
    async def fetch_device_readings(
        self, device_id: str, options: FetchOptions | None = None
    ) -> list[Reading]: ...

    @abstractmethod
    async def fetch_historical_data(
        self, device_id: str, start: str, end: str, options: FetchOptions | None = None
    ) -> list[Reading]: ...

    @abstractmethod
    async def is_available(self) -> bool: ...

    def device_records(self, raw: object) -> list:
        """Split a raw device payload into individual records."""
        return as_records(raw, ("data", "devices"))

    def reading_records(self, raw: object) -> list:
        return as_records(raw, ("data", "readings"))

    def normalize_devices(self, raw: object) -> list[Device]:
        """Normalize a collection, dropping records that fail validation."""
        devices: list[Device] = []
        for record in self.device_records(raw):
            try:
                device = self.normalize_device(record)
            except (NormalizationError, ValidationError) as exc:
                logger.warning("Dropping %s device record: %s", self.source, exc)
                continue
            if device is not None:
                devices.append(device)
        return devices

    def normalize_readings(self, raw: object) -> list[Reading]:
        readings: list[Reading] = []
        for record in self.reading_records(raw):
            try:
                reading = self.normalize_reading(record)
            except (NormalizationError, ValidationError) as exc:
                logger.warning("Dropping %s reading: %s", self.source, exc)
                continue
            if reading is not None:
                readings.append(reading)
        return readings
