# inkguard/db/helpers.py
"""
Query helpers shared by the repositories.

Each helper borrows a pooled connection unless one is passed in, which lets
the email change service run several statements under one advisory lock.
psycopg errors are re-raised as DatabaseError.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg

from inkguard.db.pool import get_db_connection
from inkguard.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """A query against the service database failed."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


@asynccontextmanager
async def _borrowed(
    connection: psycopg.AsyncConnection | None,
) -> AsyncGenerator[psycopg.AsyncConnection, None]:
    if connection is not None:
        yield connection
        return
    async with await get_db_connection() as conn:
        yield conn


async def _execute(
    operation: str, query: str, params: tuple, connection: psycopg.AsyncConnection | None
) -> Any:
    try:
        async with _borrowed(connection) as conn:
            cursor = await conn.execute(query, params)
            if operation == "fetch_one":
                return await cursor.fetchone()
            if operation == "fetch_all":
                return await cursor.fetchall()
            return cursor.rowcount
    except psycopg.Error as e:
        logger.error(
            "Database query failed",
            operation=operation,
            query=" ".join(query.split())[:100],
            error=str(e),
        )
        raise DatabaseError(f"{operation} failed: {e}", operation=operation) from e


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    return await _execute("fetch_one", query, params, connection)


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    return await _execute("fetch_all", query, params, connection)


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """First column of the first row, or None."""
    row = await fetch_one(query, params, connection=connection)
    return next(iter(row.values())) if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Run a write and return the affected row count."""
    return await _execute("execute", query, params, connection)
