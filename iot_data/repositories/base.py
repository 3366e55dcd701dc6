"""Shared repository protocol: try each configured adapter in order, cache the result."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from pydantic import TypeAdapter, ValidationError

from iot_data.adapters.base import SourceAdapter
from iot_data.cache.store import CacheStore
from iot_data.errors import AllSourcesFailedError, NotConfiguredError
from iot_data.models.enums import Source

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BaseRepository:
    """Owns an ordered list of source adapters and an optional shared cache.

    Args:
        adapters: Adapters in priority order. Must not be empty.
        cache: Cache shared with other repositories; each repository uses
            its own key prefixes.
        fallback_enabled: Whether reads may move on to another source.
    """

    def __init__(
        self,
        adapters: Sequence[SourceAdapter],
        cache: CacheStore | None = None,
        fallback_enabled: bool = True,
    ) -> None:
        if not adapters:
            raise NotConfiguredError(f"{type(self).__name__} requires at least one adapter")
        self.adapters = list(adapters)
        self.cache = cache
        self.fallback_enabled = fallback_enabled

    def get_adapter(self, source: Source | str) -> SourceAdapter | None:
        """Return the adapter serving *source*, or None when it is not configured."""
        for adapter in self.adapters:
            if adapter.source == source:
                return adapter
        return None

    async def fetch_from_adapters(
        self,
        operation: Callable[[SourceAdapter], Awaitable[T]],
        adapters: Sequence[SourceAdapter] | None = None,
        error_message: str = "Failed to fetch data",
    ) -> T:
        """Run *operation* against each adapter in turn and return the first success.

        Raises:
            AllSourcesFailedError: Every adapter raised. Chained to the last failure.
        """
        last_error: Exception | None = None
        for adapter in adapters if adapters is not None else self.adapters:
            try:
                return await operation(adapter)
            except Exception as exc:
                logger.warning("%s: %s source failed: %s", error_message, adapter.source, exc)
                last_error = exc
        raise AllSourcesFailedError(f"{error_message}: {last_error}") from last_error

    async def is_source_available(self, source: Source | str) -> bool:
        """Probe *source*. Unknown sources and probe errors count as unavailable."""
        adapter = self.get_adapter(source)
        if adapter is None:
            return False
        try:
            return bool(await adapter.is_available())
        except Exception as exc:
            logger.debug("Availability probe for %s failed: %s", source, exc)
            return False

    async def clear_cache(self, pattern: str | None = None) -> None:
        if self.cache is not None:
            await self.cache.clear(pattern)

    # ── Cache helpers ─────────────────────────────────────────────────────

    async def _read_cache(self, key: str, schema: TypeAdapter) -> Any | None:
        """Return the cached value for *key* validated against *schema*.

        Values hydrated from a persistent backing come back as plain JSON.
        """
        if self.cache is None:
            return None
        cached = await self.cache.get(key)
        if cached is None:
            return None
        try:
            return schema.validate_python(cached)
        except ValidationError as exc:
            logger.warning("Ignoring unreadable cache entry '%s': %s", key, exc)
            await self.cache.invalidate(key)
            return None

    async def _write_cache(self, key: str, value: object, ttl: float | None = None) -> None:
        if self.cache is None:
            return
        if ttl is None:
            await self.cache.set(key, value)
        else:
            await self.cache.set(key, value, ttl)

    async def _cached_fetch(
        self,
        key: str,
        schema: TypeAdapter,
        operation: Callable[[SourceAdapter], Awaitable[T]],
        error_message: str,
        force_refresh: bool = False,
        ttl: float | None = None,
        adapters: Sequence[SourceAdapter] | None = None,
    ) -> T:
        """Cache-aside read through :meth:`fetch_from_adapters`.

        When every adapter fails the last good cached value is served, even
        on a forced refresh; without one the failure propagates.
        """
        if not force_refresh:
            cached = await self._read_cache(key, schema)
            if cached is not None:
                logger.debug("Cache hit for '%s'", key)
                return cached

        try:
            result = await self.fetch_from_adapters(operation, adapters, error_message)
        except AllSourcesFailedError:
            cached = await self._read_cache(key, schema)
            if cached is not None:
                logger.warning("Serving cached '%s' after all sources failed", key)
                return cached
            raise

        await self._write_cache(key, result, ttl)
        return result
