"""User-friendly error messages and safe tool wrapper."""

import logging

from iot_data.clients.resilience import (
    CircuitOpenError,
    MalformedPayloadError,
    PermanentAPIError,
    SourceTimeoutError,
    TransientAPIError,
)
from iot_data.errors import AllSourcesFailedError, DataAccessError

logger = logging.getLogger(__name__)


def _cause_chain(error: BaseException) -> list[BaseException]:
    chain = [error]
    while chain[-1].__cause__ is not None:
        chain.append(chain[-1].__cause__)
    return chain


def get_user_message(error: Exception, context: dict | None = None) -> str:
    """Map an exception to a user-friendly message.

    Wrapped data-layer errors are unwound to the transport error that caused
    them, so a refresh that timed out reads as a timeout.

    Args:
        error: The exception to translate.
        context: Optional dict with extra info (e.g. {"device": "sensor-1"}).

    Returns:
        A human-readable error message.
    """
    device = (context or {}).get("device", "the device")
    chain = _cause_chain(error)
    cause = chain[-1]

    if isinstance(cause, CircuitOpenError):
        return (
            "The sensor backend is temporarily unavailable after repeated failures. "
            "Please try again in a minute."
        )
    if isinstance(cause, SourceTimeoutError):
        return f"The sensor backend did not answer in time for {device}. Please try again."
    if isinstance(cause, MalformedPayloadError):
        return (
            "The sensor backend returned data in an unexpected format. "
            "Please check the backend version."
        )
    if isinstance(cause, TransientAPIError):
        return "There was a temporary issue reaching the sensor backends. Please try again shortly."
    if isinstance(cause, PermanentAPIError):
        return f"Could not complete the request for {device}. {cause}"
    if any(isinstance(exc, AllSourcesFailedError) for exc in chain):
        return "No data source is reachable and nothing is cached yet. Please try again later."
    if isinstance(error, DataAccessError):
        return str(error)
    return "Something went wrong. Please try again or check the server logs."


async def safe_tool_wrapper(
    func,  # type: ignore[no-untyped-def]
    *args: object,
    context: dict | None = None,
    **kwargs: object,
) -> str:
    """Call an async function, catching errors and returning friendly messages.

    Args:
        func: Async callable to invoke.
        *args: Positional arguments for *func*.
        context: Optional context dict for error messages.
        **kwargs: Keyword arguments for *func*.

    Returns:
        The function's return value on success, or a user-friendly error string.
    """
    try:
        return await func(*args, **kwargs)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Tool error in %s", func.__name__)
        return get_user_message(exc, context)
