"""asyncpg connection pool.

Reads run inside a read-only, repeatable-read transaction; writes use the
default read-committed isolation.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("fieldsync.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.database_url,
        min_size=s.database_pool_min,
        max_size=s.database_pool_max,
        command_timeout=s.database_command_timeout,
    )
    logger.info(
        "Database pool initialized (min=%d, max=%d)", s.database_pool_min, s.database_pool_max
    )
    return _pool


async def close_pool() -> None:
    """Drain the pool. Call at app shutdown."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Database pool not initialized, call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(read_only: bool = False) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a pooled connection inside a transaction.

    Usage::

        async with get_connection(read_only=True) as conn:
            rows = await conn.fetch("SELECT id FROM locations WHERE retired = false")
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        isolation = "repeatable_read" if read_only else "read_committed"
        async with conn.transaction(isolation=isolation, readonly=read_only):
            yield conn


async def execute(query: str, *args: Any) -> str:
    """Execute a single statement and return its status."""
    async with get_connection() as conn:
        return await conn.execute(query, *args)


async def fetch(query: str, *args: Any) -> list[asyncpg.Record]:
    async with get_connection(read_only=True) as conn:
        return await conn.fetch(query, *args)


async def fetchrow(query: str, *args: Any) -> asyncpg.Record | None:
    async with get_connection(read_only=True) as conn:
        return await conn.fetchrow(query, *args)


async def fetchval(query: str, *args: Any) -> Any:
    async with get_connection(read_only=True) as conn:
        return await conn.fetchval(query, *args)
