"""Collector writes for HealthKit-style samples."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body

from src.dependencies import Services
from src.models.records import HealthSampleCreate, HealthSamplesWritten
from src.sync.base import HealthSample

router = APIRouter(prefix="/health-samples", tags=["health-samples"])


@router.post("", response_model=HealthSamplesWritten, status_code=201)
async def add_health_samples(
    services: Services,
    body: list[HealthSampleCreate] = Body(min_length=1, max_length=5000),
) -> Any:
    samples = [HealthSample(**item.model_dump(exclude_none=True)) for item in body]
    written = services.store.add_health_samples(samples)
    return {"written": written}
