"""Shared FastAPI dependencies injected into route handlers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from src.config import Settings, get_settings
from src.container import ServiceContainer


async def get_services(request: Request) -> ServiceContainer:
    """Return the service container built by the app lifespan."""
    services: ServiceContainer | None = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services


# Annotated shortcuts for route signatures
Services = Annotated[ServiceContainer, Depends(get_services)]
AppSettings = Annotated[Settings, Depends(get_settings)]
