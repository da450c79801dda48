"""Async SQLite database manager backing the persistent trade cache.

Uses aiosqlite for non-blocking database operations with WAL mode. The
schema is a single key-value table: the cache is one JSON document stored
under one key, so there is nothing relational to model.
"""

import os
from typing import Self

import aiosqlite

from tradecharts.logging import get_logger

logger = get_logger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at INTEGER NOT NULL
);
"""


class CacheDatabase:
    """Async SQLite connection manager for the cache slot.

    Usage:
        async with CacheDatabase("data/trade_cache.db") as db:
            await db.db.execute("SELECT ...")
    """

    def __init__(self, db_path: str = "data/trade_cache.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> None:
        """Open database connection, configure pragmas, and create schema.

        Creates the parent directory if it does not exist.
        """
        db_dir = os.path.dirname(self._db_path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.commit()

        logger.info("cache_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("cache_db_closed", db_path=self._db_path)

    async def get(self, key: str) -> str | None:
        cursor = await self.db.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = await cursor.fetchone()
        return row[0] if row is not None else None

    async def put(self, key: str, value: str, updated_at: int) -> None:
        await self.db.execute(
            "INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "updated_at = excluded.updated_at",
            (key, value, updated_at),
        )
        await self.db.commit()

    async def delete(self, key: str) -> None:
        await self.db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        await self.db.commit()

    async def __aenter__(self) -> Self:
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        """Async context manager exit."""
        await self.close()
