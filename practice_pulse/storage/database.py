"""
PostgreSQL access through an asyncpg connection pool.

The pool is created at startup and drained at shutdown by the app lifespan.
Single statements borrow any pooled connection. Multi-statement writes go
through `transaction()`, which pins one connection for the whole sequence.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg

logger = logging.getLogger(__name__)


class Tables:
    """Qualified relation names."""

    SCHEMA = "in_kind_tracker"

    USERS = f"{SCHEMA}.user_account"
    ROLES = f"{SCHEMA}.role"
    PERMISSIONS = f"{SCHEMA}.permission"
    ROLE_PERMISSIONS = f"{SCHEMA}.role_permission"
    SESSIONS = f"{SCHEMA}.user_session"
    LOCATIONS = f"{SCHEMA}.location"


class DatabaseNotConnectedError(RuntimeError):
    """Raised when the store is used before `connect()` or after `close()`."""


class Database:
    """
    Store-access component with an explicit lifecycle.

    Usage:
        db = Database(dsn, min_size=1, max_size=10)
        await db.connect()
        rows = await db.fetch(f"SELECT * FROM {Tables.LOCATIONS}")
        async with db.transaction() as conn:
            await conn.execute(...)
            await conn.execute(...)
        await db.close()
    """

    def __init__(
        self,
        dsn: str,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float | None = None,
        safe_dsn: str = "",
    ):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.safe_dsn = safe_dsn
        self._pool: asyncpg.Pool | None = None

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return
        if not self.dsn:
            logger.warning("DATABASE_URL is not set; connecting with libpq defaults")
        logger.info(f"Initializing PG pool with connection string: {self.safe_dsn or '<unset>'}")
        self._pool = await asyncpg.create_pool(
            self.dsn or None,
            min_size=self.min_size,
            max_size=self.max_size,
            command_timeout=self.command_timeout,
        )

    async def verify(self) -> None:
        """
        Check that the store answers.

        Raises whatever the driver raised, after logging the details
        PostgreSQL attached to the error.
        """
        try:
            ok = await self.fetchval("select 1 as ok")
            if ok != 1:
                raise RuntimeError("DB connection test failed")
        except Exception as e:
            details = {
                "message": str(e),
                "code": getattr(e, "sqlstate", None),
                "detail": getattr(e, "detail", None),
                "hint": getattr(e, "hint", None),
                "connection": self.safe_dsn,
            }
            logger.error(f"Connection test failed: {details}")
            raise

    async def close(self) -> None:
        """Drain and close the pool."""
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        logger.info("PG pool closed")

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise DatabaseNotConnectedError("Database pool is not initialized")
        return self._pool

    # ========================================================================
    # Single Statements
    # ========================================================================

    async def fetch(self, sql: str, *args: Any) -> list[asyncpg.Record]:
        return await self.pool.fetch(sql, *args)

    async def fetchrow(self, sql: str, *args: Any) -> asyncpg.Record | None:
        return await self.pool.fetchrow(sql, *args)

    async def fetchval(self, sql: str, *args: Any) -> Any:
        return await self.pool.fetchval(sql, *args)

    async def execute(self, sql: str, *args: Any) -> str:
        """Run a statement; returns the command status tag (e.g. `DELETE 1`)."""
        return await self.pool.execute(sql, *args)

    # ========================================================================
    # Transactions
    # ========================================================================

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """
        Run a block on one dedicated connection inside a transaction.

        Commits when the block exits normally. Any exception, including
        cancellation, rolls back before it propagates. The connection goes
        back to the pool on every path.
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn


def affected_rows(status: str) -> int:
    """Row count from a command status tag such as `UPDATE 3`."""
    try:
        return int(status.rsplit(" ", 1)[-1])
    except (ValueError, AttributeError, IndexError):
        return 0
