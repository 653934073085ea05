"""Patient-reported clinical events."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter

from src.dependencies import Services
from src.models.records import ClinicalEventCreate, ClinicalEventRead
from src.sync.base import ClinicalEvent

router = APIRouter(prefix="/clinical-events", tags=["clinical-events"])


@router.post("", response_model=ClinicalEventRead, status_code=201)
async def add_clinical_event(services: Services, body: ClinicalEventCreate) -> Any:
    event = ClinicalEvent(**body.model_dump())
    services.store.add_clinical_event(event)
    return asdict(event)
