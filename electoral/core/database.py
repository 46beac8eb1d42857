"""
Async database connection using asyncpg (NO ORM).

Every request borrows one connection from the pool; write operations open
their own transaction on it.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import asyncpg

from electoral.core.config import Settings
from electoral.core.exceptions import Conflict, StorageError
from electoral.core.logging_config import get_logger

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
        min_size=settings.DB_POOL_MIN_SIZE,
        max_size=settings.DB_POOL_MAX_SIZE,
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


@asynccontextmanager
async def get_db_connection():
    """
    Get a database connection from the pool.

    Usage:
        async with get_db_connection() as conn:
            nodes = await conn.fetch("SELECT * FROM territorial_nodes")
    """
    if not _pool:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")

    async with _pool.acquire() as connection:
        yield connection


async def get_db() -> AsyncGenerator[asyncpg.Connection, None]:
    """
    FastAPI dependency for database connections.

    Usage in routes:
        @router.get("/grants")
        async def list_grants(conn: asyncpg.Connection = Depends(get_db)):
            ...
    """
    if not _pool:
        raise RuntimeError("Database pool not initialized. Call init_db_pool() first.")

    async with _pool.acquire() as connection:
        yield connection


@asynccontextmanager
async def write_transaction(conn: asyncpg.Connection):
    """
    Run a write inside one transaction, surfacing storage failures as
    domain errors.
    """
    try:
        async with conn.transaction():
            yield conn
    except asyncpg.UniqueViolationError as e:
        logger.warning(f"Uniqueness conflict: {e}")
        raise Conflict("The record was modified concurrently; resubmit the request") from e
    except (asyncpg.PostgresConnectionError, asyncpg.InterfaceError) as e:
        logger.error(f"Storage unavailable during write: {e}", exc_info=True)
        raise StorageError("Storage is unavailable") from e
