"""Health check endpoint. Public, no auth required.

Reports whether the batch sync endpoint can serve requests: the pool must
be up and the ``step_entries`` table must exist.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.config import get_settings
from src.models.steps import MAX_ENTRIES_PER_REQUEST
from src.services.supabase import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("stepper.health")

STEP_TABLE_CHECK = "SELECT to_regclass('public.step_entries') IS NOT NULL"


@router.get("/health")
async def health_check() -> dict:
    """Returns 200 while the process is up; ``status`` says whether sync works."""
    settings = get_settings()
    db_ok = False
    table_ok = False
    try:
        pool = get_pool()
        async with pool.acquire() as conn:
            db_ok = True
            table_ok = bool(await conn.fetchval(STEP_TABLE_CHECK))
    except Exception as exc:
        logger.warning("Health check failed to query step_entries: %s", exc)

    if not table_ok and db_ok:
        logger.warning("step_entries table is missing; step sync unavailable")

    return {
        "status": "healthy" if table_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": "connected" if db_ok else "unreachable",
        "step_sync": "ready" if table_ok else "unavailable",
        "max_entries_per_sync": MAX_ENTRIES_PER_REQUEST,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
