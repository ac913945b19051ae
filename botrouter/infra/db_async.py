# botrouter/infra/db_async.py
"""
Async database access using asyncpg.

Pool lifecycle (``init_pool`` / ``close_pool``), a connection context
manager and a retry decorator for transient errors.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from typing import AsyncIterator, Callable

import asyncpg

from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL UNIQUE,
    display_name TEXT,
    level SMALLINT NOT NULL DEFAULT 1,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    banned BOOLEAN NOT NULL DEFAULT FALSE,
    language TEXT NOT NULL DEFAULT 'es',
    points INTEGER NOT NULL DEFAULT 0,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS conversation_contexts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    flow_id TEXT NOT NULL,
    current_step_id TEXT NOT NULL,
    step_data JSONB NOT NULL DEFAULT '{}'::jsonb,
    active BOOLEAN NOT NULL DEFAULT TRUE,
    completed_hook_fired BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL,
    expires_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    CHECK (expires_at > created_at)
);

CREATE INDEX IF NOT EXISTS idx_contexts_active_user
    ON conversation_contexts (user_id) WHERE active;
"""


def _require_pool() -> asyncpg.Pool:
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")
    return _pool


async def init_pool(dsn: str, min_size: int = 1, max_size: int = 10) -> None:
    """Open the pool once and apply the schema. Later calls are no-ops."""
    global _pool
    if _pool is not None:
        return

    pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=min_size,
        max_size=max_size,
        command_timeout=60,
        server_settings={"application_name": "botrouter"},
    )
    async with pool.acquire() as conn:
        await conn.execute(SCHEMA)
    _pool = pool
    logger.info(f"Postgres pool ready ({min_size}..{max_size} connections), schema applied")


async def close_pool() -> None:
    global _pool
    pool, _pool = _pool, None
    if pool is not None:
        await pool.close()
        logger.info("Postgres pool closed")


@asynccontextmanager
async def db_conn() -> AsyncIterator[asyncpg.Connection]:
    """
    Borrow a pooled connection for the duration of the block.

        async with db_conn() as conn:
            row = await conn.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
    """
    async with _require_pool().acquire() as conn:
        yield conn


def is_transient_error(exc: Exception) -> bool:
    """Connection drops, pool exhaustion and deadlocks are worth retrying."""
    if isinstance(exc, (asyncpg.PostgresConnectionError, asyncpg.TooManyConnectionsError,
                        asyncpg.DeadlockDetectedError, ConnectionError, asyncio.TimeoutError)):
        return True
    message = str(exc).lower()
    return any(p in message for p in ("connection reset", "server closed", "too many connections"))


def retry_on_transient_error(
    max_retries: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
    max_delay: float = 2.0,
):
    """
    Re-run an async DB call when it fails with a transient error.

    The wait before retry ``n`` (0-based) is
    ``min(initial_delay * backoff_factor ** n, max_delay)``. Non-transient
    errors and the final failure propagate unchanged.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            retries_left = max_retries
            pause = initial_delay
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if retries_left <= 0 or not is_transient_error(exc):
                        raise
                    retries_left -= 1
                    logger.warning(
                        f"{func.__name__} hit a transient DB error ({exc}); "
                        f"{max_retries - retries_left}/{max_retries} retry in {pause:.2f}s"
                    )
                    await asyncio.sleep(pause)
                    pause = min(pause * backoff_factor, max_delay)
        return wrapper
    return decorator
