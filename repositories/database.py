# ============================================================================
# DATABASE CONNECTION POOL
# ============================================================================
# EPOCH: 1 - ASSET HIERARCHY
# STATUS: Core - Async PostgreSQL connection management
# PURPOSE: Shared psycopg pool and table identifiers for the postgres backend
# CREATED: 08 OCT 2026
# ============================================================================
"""
Database Connection Pool

One data AsyncConnectionPool per process, sized from StorageDefaults,
plus a small autocommit pool for advisory-lock sessions. Only
opened when ASSET_STORE_BACKEND=postgres; the in-memory backend never
touches this module beyond the table identifiers.

Every pooled connection gets a session statement_timeout so a runaway
subtree query cannot pin a connection that a rollup walk is waiting on.

Usage:
    from repositories.database import init_pool

    pool = await init_pool()
    async with pool.connection() as conn:
        await conn.execute("SELECT 1")
"""

import os
import logging
from typing import Optional

from psycopg import AsyncConnection
from psycopg import sql as psycopg_sql
from psycopg_pool import AsyncConnectionPool

from core.config import StorageDefaults, get_defaults

logger = logging.getLogger(__name__)

_pool: Optional[AsyncConnectionPool] = None
_lock_pool: Optional[AsyncConnectionPool] = None


def get_connection_string() -> str:
    """DATABASE_URL if set, else assembled from POSTGRES_* variables."""
    if url := os.environ.get("DATABASE_URL"):
        return url

    return (
        f"postgresql://{os.environ.get('POSTGRES_USER', 'postgres')}"
        f":{os.environ.get('POSTGRES_PASSWORD', '')}"
        f"@{os.environ.get('POSTGRES_HOST', 'localhost')}"
        f":{os.environ.get('POSTGRES_PORT', '5432')}"
        f"/{os.environ.get('POSTGRES_DB', 'postgres')}"
        f"?sslmode={os.environ.get('POSTGRES_SSLMODE', 'prefer')}"
    )


def _redact(conninfo: str) -> str:
    """Host part only, for logs."""
    return conninfo.rsplit("@", 1)[-1] if "@" in conninfo else "<conninfo>"


def _session_setup(statement_timeout_ms: int):
    async def configure(conn: AsyncConnection) -> None:
        await conn.execute(
            psycopg_sql.SQL("SET statement_timeout = {}").format(
                psycopg_sql.Literal(statement_timeout_ms)
            )
        )
        # SET opens a transaction in non-autocommit mode
        await conn.commit()

    return configure


async def init_pool(
    storage: Optional[StorageDefaults] = None,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Open the process-wide pool. Idempotent.

    Args:
        storage: Pool sizing and timeouts (defaults to get_defaults().storage)
        connection_string: Override connection string (defaults to env)
    """
    global _pool

    if _pool is not None:
        return _pool

    storage = storage or get_defaults().storage
    conninfo = connection_string or get_connection_string()

    _pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=storage.pool_min_size,
        max_size=storage.pool_max_size,
        configure=_session_setup(storage.statement_timeout_ms),
        check=AsyncConnectionPool.check_connection,
        open=False,
    )
    await _pool.open()

    logger.info(
        f"Asset store pool open on {_redact(conninfo)} "
        f"(min={storage.pool_min_size}, max={storage.pool_max_size}, "
        f"statement_timeout={storage.statement_timeout_ms}ms)"
    )
    return _pool


async def init_lock_pool(
    storage: Optional[StorageDefaults] = None,
    connection_string: Optional[str] = None,
) -> AsyncConnectionPool:
    """
    Open the autocommit pool that only holds advisory-lock sessions. Idempotent.

    Kept apart from the data pool: a task holding a lock connection still
    needs data connections, and the two must never compete.
    """
    global _lock_pool

    if _lock_pool is not None:
        return _lock_pool

    storage = storage or get_defaults().storage
    conninfo = connection_string or get_connection_string()

    _lock_pool = AsyncConnectionPool(
        conninfo=conninfo,
        min_size=1,
        max_size=storage.lock_pool_max_size,
        kwargs={"autocommit": True},
        check=AsyncConnectionPool.check_connection,
        name="asset-twin-locks",
        open=False,
    )
    await _lock_pool.open()

    logger.info(f"Lock pool open on {_redact(conninfo)} (max={storage.lock_pool_max_size})")
    return _lock_pool


async def get_pool() -> AsyncConnectionPool:
    """The process-wide pool, opened on first use."""
    if _pool is None:
        return await init_pool()
    return _pool


async def close_pool() -> None:
    global _pool, _lock_pool

    if _lock_pool is not None:
        await _lock_pool.close()
        _lock_pool = None
        logger.info("Lock pool closed")
    if _pool is not None:
        await _pool.close()
        _pool = None
        logger.info("Asset store pool closed")


# ============================================================================
# TABLE IDENTIFIERS
# ============================================================================

SCHEMA = get_defaults().storage.schema_name

# For sql.SQL().format() composition
TABLE_ASSETS = psycopg_sql.Identifier(SCHEMA, "assets")
TABLE_ASSET_STATES = psycopg_sql.Identifier(SCHEMA, "asset_states")
TABLE_MAPPINGS = psycopg_sql.Identifier(SCHEMA, "data_point_mappings")
