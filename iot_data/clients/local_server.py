"""Client for the sensor server running on the local network."""

import logging

from iot_data.clients.http import get_json, is_url_accessible
from iot_data.clients.resilience import (
    CircuitBreaker,
    validate_collection_payload,
    validate_health_payload,
)

logger = logging.getLogger(__name__)


class LocalServerClient:
    """Async client for the local REST API.

    Args:
        base_url: Server root, e.g. ``http://raspberrypi.local:8080``.
        timeout: Seconds per data request.
        probe_timeout: Seconds for the reachability probe.
        breaker: Circuit breaker shared by all data requests.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        probe_timeout: float = 2.0,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.probe_timeout = probe_timeout
        self.breaker = breaker or CircuitBreaker("local", fail_max=3, reset_timeout=30.0)

    @property
    def health_url(self) -> str:
        return f"{self.base_url}/health"

    async def is_available(self) -> bool:
        return await is_url_accessible(self.health_url, timeout=self.probe_timeout)

    async def _get(self, path: str, params: dict | None = None) -> object:
        return await self.breaker.call_async(
            get_json(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        )

    async def get_system_health(self) -> dict:
        return validate_health_payload(await self._get("/api/system/health"))

    async def get_devices(self) -> list | dict:
        return validate_collection_payload(await self._get("/api/devices"), "local devices")

    async def get_readings(self, device_id: str, limit: int | None = None) -> list | dict:
        params = {"limit": limit} if limit else None
        data = await self._get(f"/api/devices/{device_id}/readings", params)
        return validate_collection_payload(data, "local readings")

    async def get_history(self, device_id: str, start: str, end: str) -> list | dict:
        data = await self._get(
            f"/api/devices/{device_id}/history", {"start": start, "end": end}
        )
        return validate_collection_payload(data, "local history")
