# helpcast/infra/db_resilience_async.py
"""
Retry around transient database failures.

Two levels:
* ``safe_db_conn`` retries only connection acquisition; statements run
  inside the block are never replayed.
* ``retry_on_transient_error`` replays a whole coroutine and must only
  wrap read-only queries.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from typing import Callable, Iterator

import asyncpg

from helpcast.infra.db_async import get_pool
from helpcast.infra.logging_config import get_logger
from helpcast.infra.metrics import inc_counter

logger = get_logger(__name__)

_TRANSIENT_TYPES = (
    asyncpg.PostgresConnectionError,
    asyncpg.TooManyConnectionsError,
    asyncpg.CannotConnectNowError,
    asyncpg.DeadlockDetectedError,
    asyncpg.SerializationError,
    ConnectionError,
    OSError,
)

_TRANSIENT_MESSAGES = (
    "connection",
    "timeout",
    "closed",
    "network",
    "deadlock",
    "too many connections",
)


def is_transient_error(exc: BaseException) -> bool:
    """True for errors worth retrying: lost connections, pool exhaustion, deadlocks."""
    if isinstance(exc, _TRANSIENT_TYPES):
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _TRANSIENT_MESSAGES)


def _backoff(retries: int, initial: float, factor: float, cap: float) -> Iterator[float]:
    delay = initial
    for _ in range(retries):
        yield delay
        delay = min(delay * factor, cap)


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 5.0,
):
    """
    Replay a read-only coroutine on transient errors.

    Example:
        @retry_on_transient_error(max_retries=3)
        async def load_available(...):
            async with safe_db_conn() as conn:
                return await conn.fetch(...)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt, delay in enumerate(_backoff(max_retries, initial_delay, backoff_factor, max_delay), 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc):
                        raise
                    inc_counter("db_retries_total", operation=func.__name__)
                    logger.warning(
                        f"Transient error in {func.__name__} (attempt {attempt}/{max_retries}): {exc}. "
                        f"Retrying in {delay:.2f}s"
                    )
                    await asyncio.sleep(delay)

            # Final attempt propagates whatever it raises
            return await func(*args, **kwargs)

        return wrapper
    return decorator


async def _acquire(pool: asyncpg.Pool, max_retries: int = 3) -> asyncpg.Connection:
    for attempt, delay in enumerate(_backoff(max_retries, 0.1, 2.0, 5.0), 1):
        try:
            return await pool.acquire()
        except Exception as exc:
            if not is_transient_error(exc):
                raise
            inc_counter("db_retries_total", operation="acquire")
            logger.warning(f"Transient error acquiring connection (attempt {attempt}/{max_retries}): {exc}")
            await asyncio.sleep(delay)
    return await pool.acquire()


@asynccontextmanager
async def safe_db_conn(transaction: bool = False):
    """
    Pooled connection, optionally inside a transaction.

    Usage:
        async with safe_db_conn() as conn:
            row = await conn.fetchrow("SELECT id FROM service_requests WHERE id = $1", request_id)
    """
    pool = await get_pool()
    conn = await _acquire(pool)
    try:
        if transaction:
            async with conn.transaction():
                yield conn
        else:
            yield conn
    finally:
        await pool.release(conn)
