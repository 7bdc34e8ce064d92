"""
Async database connection using asyncpg (NO ORM).

All tally queries are plain parameterised SQL against a shared pool.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from app.core.config import Settings
from app.core.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def init_db_pool(settings: Settings):
    """
    Initialize database connection pool on startup.

    Call this in the FastAPI lifespan event.
    """
    global _pool
    _pool = await asyncpg.create_pool(
        dsn=settings.DATABASE_URL,
        min_size=5,
        max_size=30,
        max_inactive_connection_lifetime=300,  # Close idle connections after 5 minutes
        timeout=30,
        command_timeout=60,
    )
    logger.info(
        f"Database pool initialized: {_pool.get_size()} / {_pool.get_max_size()} connections"
    )


async def close_db_pool():
    """
    Close database connection pool on shutdown.

    Call this in the FastAPI lifespan event.
    """
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database pool closed")


def get_pool() -> asyncpg.Pool | None:
    return _pool


async def get_db() -> AsyncGenerator[asyncpg.Connection, None]:
    """
    FastAPI dependency for database connections.

    Usage in routes:
        @router.get("/results/aggregate")
        async def aggregate(conn: asyncpg.Connection = Depends(get_db)):
            ...
    """
    if not _pool:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")

    async with _pool.acquire() as connection:
        yield connection


@asynccontextmanager
async def read_snapshot(conn: asyncpg.Connection) -> AsyncIterator[asyncpg.Connection]:
    """
    Run a group of reads against one consistent view of the data.

    Multi-step aggregations must not see submissions verified between their
    queries, so they share a REPEATABLE READ read-only transaction.
    """
    async with conn.transaction(isolation="repeatable_read", readonly=True):
        yield conn

