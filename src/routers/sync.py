"""Manual sync trigger and sync status."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException

from src.dependencies import Services
from src.models.base import ErrorDetail
from src.models.sync import SyncResultRead, SyncStatusRead
from src.sync.orchestrator import SyncOutcome

router = APIRouter(prefix="/sync", tags=["sync"])
logger = logging.getLogger("qolmonitor.routers.sync")


@router.post(
    "",
    response_model=SyncResultRead,
    responses={409: {"model": ErrorDetail}, 502: {"model": ErrorDetail}},
)
async def trigger_sync(services: Services) -> Any:
    """Run a sync now.

    A failed sync is still a 200: the body carries ``outcome="failed"`` and a
    readable ``error``.  409 if another sync is already running.
    """
    result = await services.scheduler.trigger_manual()
    if result.outcome is SyncOutcome.SKIPPED:
        raise HTTPException(status_code=409, detail=result.error)
    return result.to_dict()


@router.get("/status", response_model=SyncStatusRead)
async def sync_status(services: Services) -> Any:
    status = services.orchestrator.status()
    request = services.scheduler.next_request
    status["next_run_at"] = request.earliest_begin if request else None
    return status
