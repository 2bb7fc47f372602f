"""Base repository pattern for database operations."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

import aiosqlite


class BaseRepository:
    """Base repository with common database operations.

    Every helper takes the connection explicitly so callers can compose
    several repository calls inside one ``pool.transaction()`` block.
    """

    @staticmethod
    async def execute(conn: aiosqlite.Connection, query: str, params: Sequence[Any] = ()) -> int:
        """Execute a statement and return the number of affected rows."""
        cursor = await conn.execute(query, params)
        return cursor.rowcount

    @staticmethod
    async def insert(conn: aiosqlite.Connection, query: str, params: Sequence[Any] = ()) -> int:
        """Execute an INSERT and return the new row id."""
        cursor = await conn.execute(query, params)
        return cursor.lastrowid

    @staticmethod
    async def fetch_one(conn: aiosqlite.Connection, query: str, params: Sequence[Any] = ()) -> Optional[aiosqlite.Row]:
        """Fetch a single row."""
        cursor = await conn.execute(query, params)
        return await cursor.fetchone()

    @staticmethod
    async def fetch_all(conn: aiosqlite.Connection, query: str, params: Sequence[Any] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        cursor = await conn.execute(query, params)
        return list(await cursor.fetchall())

    @staticmethod
    async def fetch_value(conn: aiosqlite.Connection, query: str, params: Sequence[Any] = ()) -> Optional[Any]:
        """Fetch a single value from a single row."""
        row = await BaseRepository.fetch_one(conn, query, params)
        return row[0] if row else None

    @staticmethod
    async def fetch_column(conn: aiosqlite.Connection, query: str, params: Sequence[Any] = ()) -> List[Any]:
        """Fetch first column from all rows."""
        rows = await BaseRepository.fetch_all(conn, query, params)
        return [row[0] for row in rows]
