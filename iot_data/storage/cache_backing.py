"""Persistent key/value surface the cache writes through to."""

import logging
from pathlib import Path
from typing import Protocol

import aiosqlite

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


class CacheBacking(Protocol):
    """Serialized key/value storage. Any method may raise."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def keys(self, prefix: str = "") -> list[str]: ...


class SQLiteCacheBacking:
    """Async SQLite implementation of :class:`CacheBacking`.

    Args:
        db_path: Database file, or ``":memory:"``.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = str(db_path)
        self.connection: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        """Open the connection, enable WAL mode and create the table."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.connection = await aiosqlite.connect(self.db_path)
        await self.connection.executescript(_SCHEMA)
        await self.connection.execute("PRAGMA journal_mode=WAL")
        await self.connection.commit()
        logger.info("Cache backing initialized at %s", self.db_path)

    async def close(self) -> None:
        """Close the database connection."""
        if self.connection:
            await self.connection.close()
            self.connection = None

    async def __aenter__(self) -> "SQLiteCacheBacking":
        await self.initialize()
        return self

    async def __aexit__(
        self, exc_type: type | None, exc_val: Exception | None, exc_tb: object
    ) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self.connection is None:
            raise RuntimeError("Cache backing is not initialized")
        return self.connection

    async def get(self, key: str) -> str | None:
        cursor = await self._conn().execute(
            "SELECT value FROM cache_entries WHERE key = ?", (key,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return row[0]

    async def set(self, key: str, value: str) -> None:
        """Store *value* under *key* (upsert)."""
        conn = self._conn()
        await conn.execute(
            "INSERT INTO cache_entries (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "updated_at = CURRENT_TIMESTAMP",
            (key, value),
        )
        await conn.commit()

    async def delete(self, key: str) -> None:
        conn = self._conn()
        await conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
        await conn.commit()

    async def keys(self, prefix: str = "") -> list[str]:
        """Return all stored keys starting with *prefix*."""
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        cursor = await self._conn().execute(
            "SELECT key FROM cache_entries WHERE key LIKE ? ESCAPE '\\' ORDER BY key",
            (f"{escaped}%",),
        )
        rows = await cursor.fetchall()
        return [r[0] for r in rows]
