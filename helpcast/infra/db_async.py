# helpcast/infra/db_async.py
"""
asyncpg connection pool.

Every pooled connection decodes ``json``/``jsonb`` columns to Python
objects and encodes Python objects passed to ``$n::jsonb`` parameters, so
repositories never call ``json.dumps`` for those columns themselves.
"""
from __future__ import annotations

import json

import asyncpg

from helpcast.config import settings
from helpcast.infra.logging_config import get_logger

logger = get_logger(__name__)

_pool: asyncpg.Pool | None = None


async def _init_connection(conn: asyncpg.Connection) -> None:
    for type_name in ("json", "jsonb"):
        await conn.set_type_codec(
            type_name,
            encoder=lambda value: json.dumps(value, default=str),
            decoder=json.loads,
            schema="pg_catalog",
        )


async def init_pool() -> None:
    """Create the pool on startup. Idempotent."""
    global _pool

    if _pool is not None:
        return

    _pool = await asyncpg.create_pool(
        dsn=settings.database_dsn,
        min_size=settings.pg_pool_min,
        max_size=settings.pg_pool_max,
        command_timeout=settings.pg_command_timeout,
        init=_init_connection,
        server_settings={"application_name": "helpcast"},
    )
    logger.info(f"Connection pool created: min={settings.pg_pool_min}, max={settings.pg_pool_max}")


async def close_pool() -> None:
    global _pool

    if _pool is None:
        return

    pool, _pool = _pool, None
    await pool.close()
    logger.info("Connection pool closed")


async def get_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")
    return _pool


def pool_stats() -> dict:
    """Size and idle count of the current pool, for health output."""
    if _pool is None:
        return {"initialized": False}
    return {
        "initialized": True,
        "size": _pool.get_size(),
        "idle": _pool.get_idle_size(),
        "max": _pool.get_max_size(),
    }
