"""Client for the Firebase Cloud Functions that front the real-time store."""

import logging

import httpx

from iot_data.clients.http import get_json
from iot_data.clients.resilience import (
    CircuitBreaker,
    validate_collection_payload,
    validate_health_payload,
)

logger = logging.getLogger(__name__)


class FirebaseClient:
    """Async client for the ``getSystemHealth`` and ``getReadings`` functions.

    Args:
        base_url: Cloud Functions root, e.g. ``https://<region>-<project>.cloudfunctions.net``.
        timeout: Seconds per data request.
        probe_timeout: Seconds for the availability check.
        breaker: Circuit breaker shared by all data requests.
    """

    HEALTH_PATH = "/getSystemHealth"
    READINGS_PATH = "/getReadings"

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        probe_timeout: float = 3.0,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.breaker = breaker or CircuitBreaker("firebase", fail_max=5, reset_timeout=60.0)

    @property
    def health_url(self) -> str:
        return f"{self.base_url}{self.HEALTH_PATH}"

    async def is_available(self) -> bool:
        """Health check. Uses GET because HEAD is not routed by the functions."""
        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                response = await client.get(
                    self.health_url,
                    headers={"Accept": "application/json", "x-purpose": "availability-check"},
                )
        except httpx.HTTPError as exc:
            logger.warning("Firebase functions are not reachable: %s", exc)
            return False
        return response.is_success

    async def get_system_health(self) -> dict:
        data = await self.breaker.call_async(get_json(self.health_url, timeout=self.timeout))
        return validate_health_payload(data)

    async def get_devices(self) -> list | dict:
        """Return the raw ``devices`` block of the system-health document."""
        health = await self.get_system_health()
        devices = health.get("devices") or []
        logger.debug("Firebase health document lists %d devices", len(devices))
        return devices

    async def get_readings(
        self,
        start: str | None = None,
        end: str | None = None,
        room_id: str | None = None,
    ) -> list | dict:
        """Return raw reading documents, optionally bounded by ISO dates."""
        params: dict = {}
        if start:
            params["startDate"] = start
        if end:
            params["endDate"] = end
        if room_id:
            params["room_id"] = room_id
        data = await self.breaker.call_async(
            get_json(f"{self.base_url}{self.READINGS_PATH}", params=params, timeout=self.timeout)
        )
        return validate_collection_payload(data, "firebase readings")
