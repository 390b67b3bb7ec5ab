"""
Async PostgreSQL pool for the sweep worker.

One process-wide ``db_pool`` is opened by the worker entry points (or the
FastAPI lifespan) and closed on shutdown. Every connection handed out is in
autocommit mode with dict rows; multi-statement writes go through
``db_pool.transaction()``.
"""

import asyncio
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from sweeper.config import settings
from sweeper.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

POOL_CLOSE_TIMEOUT = 30.0  # seconds
STATEMENT_TIMEOUT = "60s"


class PoolNotReadyError(RuntimeError):
    """Raised when a connection is requested before initialize() or after close()."""


class DatabasePoolManager:
    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._state = "new"  # new -> open -> closed

    @property
    def initialized(self) -> bool:
        return self._state == "open"

    async def initialize(self) -> None:
        if self._state == "open":
            logger.warning("Database pool already open")
            return
        if self._state == "closed":
            raise PoolNotReadyError("Database pool was closed and cannot be reopened")
        if not settings.SUPABASE_DB_URL:
            raise PoolNotReadyError("SUPABASE_DB_URL not configured")

        pool_kwargs = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=settings.SUPABASE_DB_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **pool_kwargs,
        )

        try:
            await pool.open(wait=True)
            self.pool = pool
            self._state = "open"
            await self._ping()
        except (psycopg.Error, OSError, TimeoutError) as e:
            logger.error("Database pool failed to open", error=str(e), error_type=type(e).__name__)
            self._state = "new"
            self.pool = None
            await pool.close()
            raise PoolNotReadyError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool open",
            min_size=pool_kwargs["min_size"],
            max_size=pool_kwargs["max_size"],
            timeout=pool_kwargs["timeout"],
        )

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        await conn.execute(
            sql.SQL("SET application_name = {}").format(
                sql.Literal(f"mailbox-sweeper-{settings.environment}")
            )
        )
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )

    async def _ping(self) -> None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise PoolNotReadyError("Database ping returned an unexpected row")

    async def close(self) -> None:
        if self._state != "open":
            return

        logger.info("Closing database pool")
        self._state = "closed"
        try:
            await asyncio.wait_for(self.pool.close(), timeout=POOL_CLOSE_TIMEOUT)
        except TimeoutError:
            logger.warning("Database pool close timed out", timeout=POOL_CLOSE_TIMEOUT)
        else:
            logger.info("Database pool closed")

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[psycopg.AsyncConnection]:
        if self._state != "open":
            raise PoolNotReadyError(f"Database pool is {self._state}; call initialize() first")
        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[psycopg.AsyncConnection]:
        """Commit when the block exits cleanly, roll back on any exception."""
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn

    async def health_check(self) -> dict[str, Any]:
        if self._state != "open":
            return {"healthy": False, "service": "database_pool", "error": f"Pool {self._state}"}

        started = time.perf_counter()
        try:
            await self._ping()
        except (psycopg.Error, PoolNotReadyError) as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "healthy": False,
                "service": "database_pool",
                "error": str(e),
                "error_type": type(e).__name__,
            }

        stats = self.pool.get_stats()
        return {
            "healthy": True,
            "service": "database_pool",
            "ping_ms": round((time.perf_counter() - started) * 1000, 2),
            "pool_size": stats.get("pool_size", 0),
            "pool_available": stats.get("pool_available", 0),
            "requests_waiting": stats.get("requests_waiting", 0),
        }


db_pool = DatabasePoolManager()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
