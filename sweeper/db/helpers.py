"""
Query helpers over the shared pool.

Each helper borrows a connection, runs one statement (or one transaction),
and converts psycopg failures into DatabaseError so repositories only ever
see one exception type. The original psycopg error stays on ``__cause__``.
"""

import asyncio
import functools
from typing import Any

import psycopg

from sweeper.db.pool import db_pool
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

LOGGED_QUERY_CHARS = 100


class DatabaseError(Exception):
    """A query or transaction failed."""

    kind = "database"

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


def _wrap(operation: str, query: str, error: psycopg.Error) -> DatabaseError:
    logger.error(
        "Database operation failed",
        operation=operation,
        query=" ".join(query.split())[:LOGGED_QUERY_CHARS],
        error=str(error),
        error_type=type(error).__name__,
    )
    return DatabaseError(f"{operation} failed: {error}", operation=operation)


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """Run ``query`` and return the first row as a dict, or None."""
    try:
        async with db_pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()
    except psycopg.Error as e:
        raise _wrap("fetch_one", query, e) from e


async def fetch_val(query: str, params: tuple = ()) -> Any:
    row = await fetch_one(query, params)
    if not row:
        return None
    return next(iter(row.values()))


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run a single write and return the affected row count."""
    try:
        async with db_pool.connection() as conn:
            cursor = await conn.execute(query, params)
            return cursor.rowcount
    except psycopg.Error as e:
        raise _wrap("execute", query, e) from e


async def execute_many(query: str, params_seq: list[tuple]) -> int:
    """Run one statement per parameter tuple, all or nothing."""
    if not params_seq:
        return 0
    try:
        async with db_pool.transaction() as conn:
            async with conn.cursor() as cur:
                await cur.executemany(query, params_seq)
    except psycopg.Error as e:
        raise _wrap("execute_many", query, e) from e
    return len(params_seq)


async def execute_transaction(statements: list[tuple[str, tuple]]) -> bool:
    """
    Run ``(query, params)`` pairs in order inside one transaction.

    Usage:
        await execute_transaction([
            ("DELETE FROM user_services WHERE user_id = %s", (user_id,)),
            (UPSERT_SERVICE_REPLACE, link_params),
        ])
    """
    query = ""
    try:
        async with db_pool.transaction() as conn:
            for query, params in statements:
                await conn.execute(query, params)
    except psycopg.Error as e:
        raise _wrap("transaction", query, e) from e

    logger.debug("Transaction committed", statement_count=len(statements))
    return True


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Retry a coroutine when it fails with a DatabaseError caused by a
    psycopg OperationalError (lost connection, pool timeout). Anything
    else is re-raised immediately and marked non-recoverable.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except DatabaseError as e:
                    transient = isinstance(e.__cause__, psycopg.OperationalError)
                    if not transient or attempt >= max_retries:
                        if transient:
                            logger.error(
                                "Database retries exhausted",
                                operation=func.__name__,
                                attempts=attempt + 1,
                                error=str(e),
                            )
                        e.recoverable = False
                        raise

                    delay = base_delay * (2**attempt)
                    attempt += 1
                    logger.warning(
                        "Retrying database operation",
                        operation=func.__name__,
                        attempt=attempt,
                        max_retries=max_retries,
                        delay=delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
