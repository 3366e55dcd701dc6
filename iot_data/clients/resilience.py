"""Resilience primitives: transport exceptions, retry, circuit breaker, payload validation."""

import logging
import time
from enum import StrEnum

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)


# ── Exception Hierarchy ──────────────────────────────────────────────────────


class APIError(Exception):
    """Base class for all backend transport errors."""


class TransientAPIError(APIError):
    """Retriable errors (429, 5xx, connection failures)."""


class PermanentAPIError(APIError):
    """Non-retriable errors (403, 404, etc.)."""


class MalformedPayloadError(PermanentAPIError):
    """Backend response shape changed unexpectedly."""


class SourceTimeoutError(APIError):
    """A backend did not answer within its timeout. Not retried."""


class CircuitOpenError(APIError):
    """Circuit breaker is open; calls are being shed."""


TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}


# ── Response Classification ──────────────────────────────────────────────────


def classify_response(response: object) -> None:
    """Raise an appropriate error based on HTTP status code.

    Args:
        response: An object with a ``status_code`` attribute (e.g. httpx.Response).

    Raises:
        PermanentAPIError: On 4xx other than 429.
        TransientAPIError: On 429, 5xx.
    """
    status = getattr(response, "status_code", None)
    if status is None or 200 <= status < 400:
        return

    if status in TRANSIENT_STATUS_CODES:
        raise TransientAPIError(f"Transient error (HTTP {status})")
    if 400 <= status < 500:
        raise PermanentAPIError(f"Client error (HTTP {status})")
    raise TransientAPIError(f"Server error (HTTP {status})")


# ── Retry ─────────────────────────────────────────────────────────────────


def log_retry_attempt(retry_state: RetryCallState) -> None:
    """Tenacity ``before_sleep`` callback that logs each retry."""
    attempt = retry_state.attempt_number
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning("Retry attempt %d after error: %s", attempt, exc)


resilient_request = retry(
    retry=retry_if_exception_type(TransientAPIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    before_sleep=log_retry_attempt,
    reraise=True,
)
"""Tenacity decorator for retrying on ``TransientAPIError``."""


# ── Circuit Breaker ──────────────────────────────────────────────────────────


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Lightweight async circuit breaker.

    Args:
        name: Human-readable name for logging.
        fail_max: Consecutive failures before opening.
        reset_timeout: Seconds to wait before trying again (half-open).
    """

    def __init__(
        self, name: str, fail_max: int = 5, reset_timeout: float = 60.0
    ) -> None:
        self.name = name
        self.fail_max = fail_max
        self.reset_timeout = reset_timeout

        self._state = CircuitState.CLOSED
        self._fail_count = 0
        self._last_failure_time: float = 0.0

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if time.monotonic() - self._last_failure_time >= self.reset_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._state = CircuitState.CLOSED
        self._fail_count = 0

    async def call_async(self, coro):  # type: ignore[no-untyped-def]
        """Execute *coro*, applying circuit-breaker logic.

        Raises:
            CircuitOpenError: If the circuit is OPEN.
        """
        current = self.state
        if current == CircuitState.OPEN:
            coro.close()
            raise CircuitOpenError(f"Circuit '{self.name}' is open")

        try:
            result = await coro
        except Exception:
            self._fail_count += 1
            self._last_failure_time = time.monotonic()
            if self._fail_count >= self.fail_max:
                self._state = CircuitState.OPEN
                logger.warning("Circuit '%s' opened after %d failures", self.name, self._fail_count)
            elif current == CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                logger.warning("Circuit '%s' re-opened on half-open failure", self.name)
            raise

        self._fail_count = 0
        self._state = CircuitState.CLOSED
        return result


# ── Payload Validation ───────────────────────────────────────────────────────


def validate_health_payload(data: object) -> dict:
    """Validate a system-health response and return it.

    Raises:
        MalformedPayloadError: If the payload is not an object or ``devices``
            is neither a list nor an object.
    """
    if not isinstance(data, dict):
        raise MalformedPayloadError("Expected object for system health response")
    devices = data.get("devices")
    if devices is not None and not isinstance(devices, (list, dict)):
        raise MalformedPayloadError(
            f"Unexpected type for 'devices' in health response: {type(devices).__name__}"
        )
    return data


def validate_collection_payload(data: object, what: str = "collection") -> list | dict:
    """Validate that a collection endpoint returned a list or an object.

    Raises:
        MalformedPayloadError: On any other JSON type.
    """
    if not isinstance(data, (list, dict)):
        raise MalformedPayloadError(f"Expected list or object for {what}, got {type(data).__name__}")
    return data
