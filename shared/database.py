"""PostgreSQL connection pool management.

Supabase connection modes:
  - Session Pooler  (port 5432) : persistent servers, supports prepared statements
  - Transaction Pooler (port 6543) : serverless/edge, no prepared statement support
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import asyncpg

logger = logging.getLogger(__name__)


@dataclass
class PoolConfig:
    """Database pool configuration with sensible defaults."""

    min_size: int = 0
    max_size: int = 10
    timeout: float = 5.0
    command_timeout: float = 15.0
    max_inactive_connection_lifetime: float = 30.0
    ssl: str | None = "require"


class DatabaseManager:
    """Manages the asyncpg pool lifecycle.

    The pooler mode is detected from the port in the URL. Transaction
    Pooler (6543) cannot hold prepared statements, so the statement cache
    is disabled there.
    """

    def __init__(self, database_url: str, config: PoolConfig | None = None):
        self.database_url = database_url
        self.config = config or PoolConfig()
        self._pool: asyncpg.Pool | None = None
        self._pooler_mode: str = "transaction" if ":6543" in database_url else "session"

    def _pool_kwargs(self) -> dict[str, Any]:
        cfg = self.config
        kwargs: dict[str, Any] = {
            "dsn": self.database_url,
            "min_size": cfg.min_size,
            "max_size": cfg.max_size,
            "timeout": cfg.timeout,
            "command_timeout": cfg.command_timeout,
            "max_inactive_connection_lifetime": cfg.max_inactive_connection_lifetime,
        }
        if cfg.ssl:
            kwargs["ssl"] = cfg.ssl
        if self._pooler_mode == "transaction":
            kwargs["min_size"] = 0
            kwargs["statement_cache_size"] = 0
        else:
            kwargs["statement_cache_size"] = 100
        return kwargs

    async def connect(self) -> None:
        """Create the pool and verify it can run a query."""
        if self._pool is not None:
            logger.warning("Database pool already initialized")
            return

        pool_kwargs = self._pool_kwargs()
        logger.info(f"Connecting with {self._pooler_mode} pooler mode")
        try:
            self._pool = await asyncpg.create_pool(**pool_kwargs)
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
        except Exception as e:
            logger.exception(f"Failed to create database pool: {type(e).__name__}: {e}")
            if self._pool is not None:
                await self._pool.close()
                self._pool = None
            raise

        logger.info(
            f"Database pool created (mode={self._pooler_mode}, "
            f"size={pool_kwargs['min_size']}-{self.config.max_size}, "
            f"cache={pool_kwargs['statement_cache_size']})"
        )

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._pool is None:
            return

        try:
            await self._pool.close()
            self._pool = None
            logger.info("Database pool closed")
        except Exception as e:
            logger.exception(f"Error closing database pool: {e}")

    async def check_health(self) -> bool:
        """Test if pool can actually execute a query."""
        if self._pool is None:
            return False
        try:
            async with self._pool.acquire(timeout=2.0) as conn:
                await conn.fetchval("SELECT 1")
            return True
        except Exception:
            return False

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @property
    def pool(self) -> asyncpg.Pool:
        """Get the database connection pool. Raises if not initialized."""
        if self._pool is None:
            raise RuntimeError("Database pool not initialized. Call connect() first.")
        return self._pool
