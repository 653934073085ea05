"""Location ingestion and home/work anchors."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Body

from src.dependencies import Services
from src.location.base import LocationFix
from src.location.ingest import IngestResult
from src.models.locations import (
    AnchorRead,
    AnchorsRead,
    AnchorUpdate,
    LocationFixCreate,
    LocationRead,
)
from src.services.state_store import ANCHOR_NAMES

router = APIRouter(prefix="/locations", tags=["locations"])

AnchorName = Literal["home", "work"]


def _to_fix(body: LocationFixCreate) -> LocationFix:
    return LocationFix(
        latitude=body.latitude,
        longitude=body.longitude,
        timestamp=body.timestamp,
        speed=body.speed,
        altitude=body.altitude,
        dwell_seconds=body.dwell_seconds,
    )


def _to_read(result: IngestResult) -> dict[str, Any]:
    return {
        "id": result.row_id,
        "latitude": result.visit.latitude,
        "longitude": result.visit.longitude,
        "timestamp": result.visit.timestamp,
        "category": result.categorized.category.value,
        "place_name": result.categorized.place_name,
        "address": result.categorized.address,
    }


@router.post("", response_model=LocationRead, status_code=201)
async def ingest_location(services: Services, body: LocationFixCreate) -> Any:
    result = await services.ingestor.ingest(_to_fix(body))
    return _to_read(result)


@router.post("/batch", response_model=list[LocationRead], status_code=201)
async def ingest_locations(
    services: Services,
    body: list[LocationFixCreate] = Body(min_length=1, max_length=1000),
) -> Any:
    """Ingest a batch of fixes oldest first, so each sees the ones before it as history."""
    ordered = sorted(body, key=lambda item: item.timestamp)
    return [_to_read(await services.ingestor.ingest(_to_fix(item))) for item in ordered]


@router.get("/anchors", response_model=AnchorsRead)
async def list_anchors(services: Services) -> Any:
    anchors: dict[str, Any] = {}
    for name in ANCHOR_NAMES:
        point = services.state.get_anchor(name)
        anchors[name] = {"latitude": point[0], "longitude": point[1]} if point else None
    return anchors


@router.put("/anchors/{name}", response_model=AnchorRead)
async def set_anchor(services: Services, name: AnchorName, body: AnchorUpdate) -> Any:
    services.state.set_anchor(name, body.latitude, body.longitude)
    return {"latitude": body.latitude, "longitude": body.longitude}


@router.delete("/anchors/{name}", status_code=204)
async def clear_anchor(services: Services, name: AnchorName) -> None:
    services.state.clear_anchor(name)
