"""Namespaced TTL cache with LRU eviction, optional write-through backing and metrics."""

import asyncio
import contextlib
import json
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from iot_data.storage.cache_backing import CacheBacking

logger = logging.getLogger(__name__)

_USE_DEFAULT: Any = object()


@dataclass(slots=True)
class CacheEntry:
    value: object
    expires_at: float | None  # None = never expires

    def is_live(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at

    def is_stale(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at < now


class CacheMetrics:
    """Tracks cache hit/miss/eviction counts."""

    def __init__(self) -> None:
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return self.hits / total


class CacheStats(BaseModel):
    size: int
    active: int
    expired: int
    capacity: int
    ttl: float
    namespace: str
    storage: str
    hit_rate: float = 0.0


class CacheStore:
    """TTL-based key/value cache with LRU eviction.

    Entries always live in memory; when a ``backing`` is given every write is
    also persisted as ``{namespace}:{key}`` → ``{"value", "expiresAt"}`` JSON
    and memory misses are looked up there. Backing failures are logged and
    the in-memory path is used instead.

    Args:
        namespace: Prefix for persisted keys and log messages.
        ttl: Default time-to-live in seconds. ``0`` / ``None`` never expire.
        max_size: Maximum number of entries before eviction.
        backing: Optional persistent key/value store.
        cleanup_interval: Seconds between background sweeps.
        auto_cleanup: Whether :meth:`start` launches the sweep task.
        clock: Returns the current wall-clock time in seconds.
    """

    def __init__(
        self,
        namespace: str = "default",
        ttl: float | None = 300.0,
        max_size: int = 50,
        backing: CacheBacking | None = None,
        cleanup_interval: float = 60.0,
        auto_cleanup: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.namespace = namespace
        self.ttl = ttl
        self.max_size = max_size
        self.backing = backing
        self.cleanup_interval = cleanup_interval
        self.auto_cleanup = auto_cleanup
        self.metrics = CacheMetrics()
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        # Ordered by last touch, oldest first
        self._access: dict[str, float] = {}
        self._sweep_task: asyncio.Task | None = None
        self._sweeping = False

    @property
    def storage(self) -> str:
        return "memory" if self.backing is None else "persistent"

    @property
    def size(self) -> int:
        """Number of resident entries, expired ones included."""
        return len(self._entries)

    def _full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _touch(self, key: str, now: float) -> None:
        self._access.pop(key, None)
        self._access[key] = now

    def _forget(self, key: str) -> None:
        self._entries.pop(key, None)
        self._access.pop(key, None)

    # ── Public surface ────────────────────────────────────────────────────

    async def get(self, key: str) -> object | None:
        """Return the value for *key* if present and unexpired.

        A hit counts as a use for LRU purposes. An expired entry is purged.
        """
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None and self.backing is not None:
            entry = await self._load(key)
            if key in self._entries:
                # Written while the backing was read
                entry = self._entries[key]
            elif entry is not None and entry.is_live(now):
                await self._drop_from_backing(self._admit(key, entry, now))

        if entry is None:
            self.metrics.misses += 1
            return None

        if not entry.is_live(now):
            await self._discard(key)
            self.metrics.misses += 1
            return None

        if key in self._entries:
            self._touch(key, now)
        self.metrics.hits += 1
        return entry.value

    async def set(self, key: str, value: object, ttl: float | None = _USE_DEFAULT) -> None:
        """Store *value*, evicting the least recently used entry if at capacity.

        Args:
            key: Cache key.
            value: Any value; must be JSON-serializable when a backing is used.
            ttl: Seconds to live. Defaults to the store TTL; ``0`` or ``None``
                means the entry never expires.
        """
        if ttl is _USE_DEFAULT:
            ttl = self.ttl
        now = self._clock()
        entry = CacheEntry(value, now + ttl if ttl else None)
        evicted = self._admit(key, entry, now)
        if self.backing is not None:
            await self._drop_from_backing(evicted)
            await self._persist(key, entry)

    async def has(self, key: str) -> bool:
        """Return True if *key* is present and unexpired. Does not count as a use."""
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None and self.backing is not None:
            entry = await self._load(key)
        return entry is not None and entry.is_live(now)

    async def invalidate(self, key: str) -> None:
        """Remove *key* if present."""
        await self._discard(key)
        logger.debug("Cache entry '%s' invalidated in '%s'", key, self.namespace)

    async def clear(self, pattern: str | None = None) -> None:
        """Remove every entry, or only those whose key contains *pattern*."""
        if pattern:
            for key in [k for k in self._entries if pattern in k]:
                self._forget(key)
        else:
            self._entries.clear()
            self._access.clear()

        if self.backing is not None:
            prefix = self._full_key("")
            for full_key in await self._backing_keys():
                if pattern and pattern not in full_key[len(prefix):]:
                    continue
                await self._backing_delete(full_key)

        if pattern:
            logger.info("Cache '%s' cleared for pattern '%s'", self.namespace, pattern)
        else:
            logger.info("Cache '%s' cleared completely", self.namespace)

    async def remove_expired_entries(self) -> int:
        """Purge every entry whose deadline has passed. Returns the number removed."""
        now = self._clock()
        removed: set[str] = set()
        for key in [k for k, e in self._entries.items() if e.is_stale(now)]:
            self._forget(key)
            removed.add(key)

        if self.backing is not None:
            prefix = self._full_key("")
            for full_key in await self._backing_keys():
                key = full_key[len(prefix):]
                entry = await self._load(key)
                if entry is not None and entry.is_stale(now):
                    await self._backing_delete(full_key)
                    removed.add(key)

        if removed:
            logger.debug("Removed %d expired entries from '%s'", len(removed), self.namespace)
        return len(removed)

    def get_stats(self) -> CacheStats:
        """Return counts for resident entries. ``size`` includes unpurged expired ones."""
        now = self._clock()
        size = len(self._entries)
        expired = sum(1 for e in self._entries.values() if e.is_stale(now))
        return CacheStats(
            size=size,
            active=size - expired,
            expired=expired,
            capacity=self.max_size,
            ttl=self.ttl or 0,
            namespace=self.namespace,
            storage=self.storage,
            hit_rate=self.metrics.hit_rate,
        )

    def get_snapshot(self) -> dict[str, object]:
        """Return ``key -> value`` for every resident entry (debugging aid)."""
        return {key: entry.value for key, entry in self._entries.items()}

    async def update_options(
        self, ttl: float | None = _USE_DEFAULT, max_size: int | None = None
    ) -> CacheStats:
        """Change the default TTL and/or capacity, evicting down to the new capacity."""
        if ttl is not _USE_DEFAULT:
            self.ttl = ttl
        if max_size is not None:
            if max_size < 1:
                raise ValueError("max_size must be at least 1")
            self.max_size = max_size
            overflow = len(self._entries) - self.max_size
            if overflow > 0:
                logger.warning(
                    "Enforcing size limit: removing %d entries from '%s'",
                    overflow, self.namespace,
                )
                evicted = [self._evict_lru() for _ in range(overflow)]
                await self._drop_from_backing([k for k in evicted if k is not None])
        return self.get_stats()

    # ── Background sweep ──────────────────────────────────────────────────

    def start(self) -> None:
        """Launch the periodic expiry sweep. Requires a running event loop."""
        if not self.auto_cleanup or self.cleanup_interval <= 0:
            return
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.debug(
                "Sweep for '%s' scheduled every %.1fs", self.namespace, self.cleanup_interval
            )

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def __aenter__(self) -> "CacheStore":
        self.start()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        await self.stop()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Cache sweep for '%s' failed", self.namespace)

    async def sweep(self) -> int:
        """Run one sweep unless another is still in progress."""
        if self._sweeping:
            logger.debug("Sweep for '%s' still running, skipping tick", self.namespace)
            return 0
        self._sweeping = True
        try:
            return await self.remove_expired_entries()
        finally:
            self._sweeping = False

    # ── Internals ─────────────────────────────────────────────────────────

    def _store(self) -> CacheBacking:
        if self.backing is None:
            raise RuntimeError(f"Cache '{self.namespace}' has no backing")
        return self.backing

    def _admit(self, key: str, entry: CacheEntry, now: float) -> list[str]:
        """Insert *entry* in memory and return the keys evicted to make room.

        Never suspends, so concurrent writers cannot overshoot ``max_size``.
        """
        evicted = []
        if key not in self._entries and len(self._entries) >= self.max_size:
            oldest = self._evict_lru()
            if oldest is not None:
                evicted.append(oldest)
        self._entries[key] = entry
        self._touch(key, now)
        return evicted

    def _evict_lru(self) -> str | None:
        if self._access:
            oldest = min(self._access, key=self._access.__getitem__)
        elif self._entries:
            oldest = next(iter(self._entries))
        else:
            return None
        self._forget(oldest)
        self.metrics.evictions += 1
        return oldest

    async def _drop_from_backing(self, keys: list[str]) -> None:
        if self.backing is None:
            return
        for key in keys:
            await self._backing_delete(self._full_key(key))

    async def _discard(self, key: str) -> None:
        self._forget(key)
        if self.backing is not None:
            await self._backing_delete(self._full_key(key))

    async def _load(self, key: str) -> CacheEntry | None:
        try:
            raw = await self._store().get(self._full_key(key))
        except Exception as exc:
            logger.warning("Cache backing read failed for '%s': %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            payload = json.loads(raw)
            return CacheEntry(payload["value"], payload.get("expiresAt"))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable cache entry '%s': %s", key, exc)
            return None

    async def _persist(self, key: str, entry: CacheEntry) -> None:
        try:
            serialized = json.dumps(
                {"value": to_jsonable_python(entry.value), "expiresAt": entry.expires_at}
            )
            await self._store().set(self._full_key(key), serialized)
        except Exception as exc:
            # The entry is already resident in memory
            logger.warning("Cache backing write failed for '%s', kept in memory: %s", key, exc)

    async def _backing_delete(self, full_key: str) -> None:
        try:
            await self._store().delete(full_key)
        except Exception as exc:
            logger.warning("Cache backing delete failed for '%s': %s", full_key, exc)

    async def _backing_keys(self) -> list[str]:
        try:
            return await self._store().keys(self._full_key(""))
        except Exception as exc:
            logger.warning("Cache backing scan failed for '%s': %s", self.namespace, exc)
            return []
