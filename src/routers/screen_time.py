"""Collector writes for screen-time metrics.

Aggregated metric types are re-aggregated in place by the store, so the
returned ids may belong to rows written by an earlier request.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Body

from src.dependencies import Services
from src.models.records import ScreenTimeMetricCreate, ScreenTimeMetricRead
from src.sync.base import ScreenTimeMetric

router = APIRouter(prefix="/screen-time", tags=["screen-time"])


@router.post("", response_model=list[ScreenTimeMetricRead], status_code=201)
async def record_screen_time(
    services: Services,
    body: list[ScreenTimeMetricCreate] = Body(min_length=1, max_length=1000),
) -> Any:
    stored = []
    for item in body:
        data = item.model_dump()
        data["metric_type"] = item.metric_type.value
        stored.append(asdict(services.store.record_screen_time(ScreenTimeMetric(**data))))
    return stored
