"""QoL Monitor sync service — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.config import get_settings
from src.container import build_container
from src.models.base import ErrorDetail
from src.routers import clinical_events, health, health_samples, locations, screen_time, sync
from src.sync.errors import SyncError

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("qolmonitor")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting %s v%s [%s]",
        settings.app_name,
        settings.app_version,
        settings.environment,
    )
    services = build_container(settings)
    services.scheduler.register_recurring()
    services.scheduler.start()
    app.state.services = services
    yield
    await services.aclose()
    app.state.services = None
    logger.info("%s shut down", settings.app_name)


# ---------- Error handlers ----------

async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    logger.error("Unhandled sync error on %s: %s", request.url.path, exc)
    body = ErrorDetail(detail=exc.message, code=exc.code, extra=exc.to_dict())
    return JSONResponse(status_code=502, content=body.model_dump())


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Incremental, retrying sync of on-device health, location, "
            "screen-time and clinical-event records to Supabase."
        ),
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.add_exception_handler(SyncError, sync_error_handler)

    # ---------- Health check (outside v1 prefix — always at /health) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    v1_prefix = "/api/v1"

    app.include_router(sync.router, prefix=v1_prefix)
    app.include_router(locations.router, prefix=v1_prefix)
    app.include_router(health_samples.router, prefix=v1_prefix)
    app.include_router(screen_time.router, prefix=v1_prefix)
    app.include_router(clinical_events.router, prefix=v1_prefix)

    return app


app = create_app()
