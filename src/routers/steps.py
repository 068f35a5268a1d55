"""Step sync endpoints: batch upsert and delete-by-source."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Path

from src.dependencies import CurrentUser
from src.models.steps import DeleteBySourceResponse, SyncStepsRequest, SyncStepsResponse
from src.services.step_repository import delete_by_source, upsert_step_entries
from src.services.supabase import get_connection
from src.step_sync.base import MAX_SOURCE_LENGTH

router = APIRouter(prefix="/steps", tags=["steps"])
logger = logging.getLogger("stepper.steps")


@router.post("/sync", response_model=SyncStepsResponse, response_model_by_alias=True)
async def sync_steps(user: CurrentUser, body: SyncStepsRequest) -> Any:
    """Upsert up to 31 day entries keyed on (date, source).

    Replaying the same batch is safe: existing rows are overwritten.
    """
    async with get_connection(user_id=user.user_id) as conn:
        created, updated = await upsert_step_entries(conn, user.user_id, body.entries)

    logger.info(
        "Step sync for %s: %d entries (%d created, %d updated)",
        user.user_id, len(body.entries), created, updated,
    )
    return SyncStepsResponse(created=created, updated=updated, total=len(body.entries))


@router.delete(
    "/source/{source}",
    response_model=DeleteBySourceResponse,
    response_model_by_alias=True,
)
async def delete_steps_by_source(
    user: CurrentUser,
    source: str = Path(max_length=MAX_SOURCE_LENGTH),
) -> Any:
    """Remove every entry the user synced from one source."""
    source = source.strip()
    if not source:
        raise HTTPException(status_code=400, detail="Source cannot be empty")

    async with get_connection(user_id=user.user_id) as conn:
        deleted = await delete_by_source(conn, user.user_id, source)

    logger.info("Deleted %d step entries for %s from source %r", deleted, user.user_id, source)
    return DeleteBySourceResponse(deleted_count=deleted)
