"""Shared HTTP helpers: JSON GET with timeout and retry, reachability probe."""

import logging

import httpx

from iot_data.clients.resilience import (
    MalformedPayloadError,
    SourceTimeoutError,
    TransientAPIError,
    classify_response,
    resilient_request,
)

logger = logging.getLogger(__name__)


@resilient_request
async def get_json(
    url: str,
    params: dict | None = None,
    timeout: float = 5.0,
    headers: dict | None = None,
) -> object:
    """GET *url* and decode the JSON body.

    Transient failures (5xx, 429, connection errors) are retried; timeouts are not.

    Raises:
        SourceTimeoutError: The request exceeded *timeout* seconds.
        TransientAPIError: Still failing after the final retry.
        PermanentAPIError: 4xx response.
        MalformedPayloadError: Body is not JSON.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.get(
                url,
                params=params,
                headers={"Accept": "application/json", **(headers or {})},
            )
    except httpx.TimeoutException as exc:
        logger.warning("Request to %s timed out after %.1fs", url, timeout)
        raise SourceTimeoutError(f"Request timeout after {timeout}s: {url}") from exc
    except httpx.TransportError as exc:
        raise TransientAPIError(f"Could not reach {url}: {exc}") from exc

    classify_response(response)
    try:
        return response.json()
    except ValueError as exc:
        raise MalformedPayloadError(f"Invalid JSON from {url}") from exc


async def is_url_accessible(url: str, timeout: float = 2.0, method: str = "HEAD") -> bool:
    """Return True if *url* answers with a 2xx status within *timeout* seconds."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.request(method, url)
    except httpx.HTTPError as exc:
        logger.warning("URL %s is not accessible: %s", url, exc)
        return False
    return response.is_success
