"""SQLite-backed TTL cache.

An alternative to ``FileCache`` for deployments that prefer a single database
file over one file per entry. Values are stored JSON-encoded together with
the time they were written; the entry's age is ``now - stored_at``.

The connection is injected by the caller, who owns its lifecycle. All
``aiosqlite.Error`` failures are re-raised as ``CacheError`` so the document
pipeline sees the same error taxonomy for every backend.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import Any

import aiosqlite
import structlog

from docpipe.errors import CacheEntryNotFoundError, CacheError, ErrorCode
from docpipe.models.cache import SqliteCacheConfig

log = structlog.get_logger()

_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS {table} (
    cache_key  TEXT PRIMARY KEY,
    value      TEXT NOT NULL,
    stored_at  TEXT NOT NULL
)
"""

_CREATE_INDEX = "CREATE INDEX IF NOT EXISTS idx_{table}_stored ON {table}(stored_at)"


class SqliteCache:
    """SQLite-backed cache implementing CacheProtocol."""

    def __init__(
        self,
        db: aiosqlite.Connection,
        lifetime: float = 0,
        *,
        table: str = "cache_entries",
    ) -> None:
        self._db = db
        self._config = SqliteCacheConfig(lifetime=lifetime, table=table)
        self._table = self._config.table

    def get_config(self) -> SqliteCacheConfig:
        return self._config

    async def init_db(self) -> None:
        """Create the entry table and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_TABLE.format(table=self._table))
        await self._db.execute(_CREATE_INDEX.format(table=self._table))
        await self._db.commit()

    # ------------------------------------------------------------------
    # Cache contract
    # ------------------------------------------------------------------

    async def exists(self, key: str) -> bool:
        row = await self._fetch_row(f"SELECT 1 FROM {self._table} WHERE cache_key = ?", key)
        return row is not None

    async def store(self, key: str, value: Any) -> None:
        try:
            await self._db.execute(
                f"INSERT OR REPLACE INTO {self._table} (cache_key, value, stored_at) "
                "VALUES (?, ?, ?)",
                (key, json.dumps(value), datetime.now(UTC).isoformat(timespec="microseconds")),
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise CacheError(
                ErrorCode.CACHE_WRITE_FAILED,
                f"Could not write cache entry {key!r}: {exc}",
                recoverable=True,
            ) from exc
        log.debug("cache_row_written", key=key, table=self._table)

    async def retrieve(self, key: str) -> Any:
        row = await self._fetch_row(f"SELECT value FROM {self._table} WHERE cache_key = ?", key)
        if row is None:
            raise CacheEntryNotFoundError(key)
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as exc:
            raise CacheError(
                ErrorCode.CACHE_READ_FAILED,
                f"Cache entry {key!r} does not contain valid JSON: {exc}",
            ) from exc

    async def remove(self, key: str) -> None:
        try:
            cursor = await self._db.execute(
                f"DELETE FROM {self._table} WHERE cache_key = ?", (key,)
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise CacheError(
                ErrorCode.CACHE_WRITE_FAILED,
                f"Could not remove cache entry {key!r}: {exc}",
                recoverable=True,
            ) from exc
        if cursor.rowcount == 0:
            raise CacheEntryNotFoundError(key)
        log.debug("cache_row_removed", key=key, table=self._table)

    async def get_remaining_lifetime(self, key: str) -> float:
        row = await self._fetch_row(
            f"SELECT stored_at FROM {self._table} WHERE cache_key = ?", key
        )
        if row is None:
            raise CacheEntryNotFoundError(key)

        age = max(0.0, (datetime.now(UTC) - datetime.fromisoformat(row[0])).total_seconds())
        lifetime = self._config.lifetime
        return 0.0 if age >= lifetime else lifetime - age

    async def is_outdated(self, key: str) -> bool:
        return await self.get_remaining_lifetime(key) == 0

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def cleanup_expired(self) -> int:
        """Delete every outdated entry. Returns the number of rows removed."""
        cutoff = (datetime.now(UTC) - timedelta(seconds=self._config.lifetime)).isoformat(
            timespec="microseconds"
        )
        try:
            cursor = await self._db.execute(
                f"DELETE FROM {self._table} WHERE stored_at <= ?", (cutoff,)
            )
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise CacheError(
                ErrorCode.CACHE_WRITE_FAILED,
                f"Cache cleanup failed: {exc}",
                recoverable=True,
            ) from exc
        deleted = cursor.rowcount
        log.info("cache_cleanup_complete", table=self._table, deleted=deleted)
        return deleted

    async def _fetch_row(self, query: str, key: str) -> tuple | None:
        try:
            cursor = await self._db.execute(query, (key,))
            return await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise CacheError(
                ErrorCode.CACHE_READ_FAILED,
                f"Could not read cache entry {key!r}: {exc}",
                recoverable=True,
            ) from exc
