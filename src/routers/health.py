"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter

from src.dependencies import AppSettings, Services

router = APIRouter(tags=["system"])
logger = logging.getLogger("qolmonitor.health")


@router.get("/health")
async def health_check(settings: AppSettings, services: Services) -> dict:
    """Liveness probe. Returns 200 if the process is up.

    Also probes the Supabase REST endpoint and reports the last sync.
    """
    remote_ok = await services.remote.ping()
    if not remote_ok:
        logger.warning("Health check: Supabase unreachable")

    cursor = services.state.get_cursor()
    last = services.orchestrator.last_result
    return {
        "status": "healthy" if remote_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "remote": "connected" if remote_ok else "unreachable",
        "last_sync_at": cursor.isoformat() if cursor else None,
        "last_sync_outcome": last.outcome.value if last else None,
        "local_records": services.store.counts(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
