"""Supabase Postgres access with RLS context.

Every request gets a connection inside a transaction where the caller's
JWT claims are set via ``set_config(..., true)``, so that Supabase
Row-Level Security policies (``auth.uid()``) see the correct identity.

Uses ``asyncpg`` for direct database access; the Supabase Python client
cannot scope session settings to a transaction.
"""

from __future__ import annotations

import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import asyncpg

from src.config import Settings, get_settings

logger = logging.getLogger("stepper.db")

# Module-level connection pool, initialized once at app startup
_pool: asyncpg.Pool | None = None


async def init_pool(settings: Settings | None = None) -> asyncpg.Pool:
    """Create the asyncpg connection pool. Call once at app startup."""
    global _pool
    s = settings or get_settings()
    _pool = await asyncpg.create_pool(
        s.supabase_db_url,
        min_size=1,
        max_size=10,
        command_timeout=30,
    )
    logger.info("Database pool initialized (min=1, max=10)")
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
        raise RuntimeError("Database pool not initialized; call init_pool() first")
    return _pool


@asynccontextmanager
async def get_connection(
    user_id: uuid.UUID | None = None,
    role: str = "authenticated",
) -> AsyncGenerator[asyncpg.Connection, None]:
    """Acquire a connection with RLS settings applied.

    Usage::

        async with get_connection(user_id=user.user_id) as conn:
            rows = await conn.fetch("SELECT * FROM step_entries WHERE date = $1", today)

    The settings are transaction-local, so they disappear when the
    connection is returned to the pool.
    """
    pool = get_pool()
    async with pool.acquire() as conn:
        async with conn.transaction():
            if user_id:
                claims = json.dumps({"sub": str(user_id), "role": role})
                await conn.execute(
                    "SELECT set_config('request.jwt.claims', $1, true)", claims
                )
                await conn.execute("SELECT set_config('role', $1, true)", role)
            yield conn
