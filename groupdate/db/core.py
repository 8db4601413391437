"""Database connection pool management."""

import logging
from contextlib import asynccontextmanager

import psycopg
from psycopg_pool import AsyncConnectionPool

from groupdate.config import PostgresSettings

_logger = logging.getLogger(__name__)


class Database:
    """Owns the psycopg connection pool for one application instance."""

    def __init__(self, settings: PostgresSettings):
        self.settings = settings
        self._pool: AsyncConnectionPool | None = None

    @property
    def pool(self) -> AsyncConnectionPool | None:
        return self._pool

    async def open(self, migrate: bool = True) -> None:
        if self._pool is not None:
            return
        s = self.settings
        self._pool = AsyncConnectionPool(
            s.get_dsn(),
            min_size=s.pool_min_size,
            max_size=s.pool_max_size,
            timeout=s.pool_timeout,
            max_lifetime=s.pool_max_lifetime,
            max_idle=s.pool_max_idle,
            reconnect_timeout=s.pool_reconnect_timeout,
            check=AsyncConnectionPool.check_connection,
            open=False,
        )
        await self._pool.open()
        _logger.info(
            "Database connection pool initialized (min=%d, max=%d, timeout=%ss)",
            s.pool_min_size,
            s.pool_max_size,
            s.pool_timeout,
        )
        if migrate:
            # Import here to avoid circular imports
            from groupdate.db.schema import ensure_schema

            await ensure_schema(self)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            _logger.info("Database connection pool closed")

    @asynccontextmanager
    async def connection(self, autocommit: bool = True):
        if self._pool is not None:
            async with self._pool.connection() as conn:
                if autocommit:
                    await conn.set_autocommit(True)
                yield conn
        else:
            async with await psycopg.AsyncConnection.connect(self.settings.get_dsn(), autocommit=autocommit) as conn:
                yield conn

    def pool_stats(self) -> dict[str, object]:
        """Current pool statistics for monitoring."""
        if self._pool is None:
            return {"status": "not_initialized"}
        stats = self._pool.get_stats()
        return {
            "status": "active",
            "size": stats["pool_size"],
            "available": stats["pool_available"],
            "waiting": stats["requests_waiting"],
            "min_size": stats["pool_min"],
            "max_size": stats["pool_max"],
        }
