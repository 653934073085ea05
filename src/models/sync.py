"""Pydantic models for the sync trigger and status endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from src.models.base import QolBase


class SyncCounts(QolBase):
    health_sample: int = 0
    location: int = 0
    screen_time: int = 0
    clinical_event: int = 0


class SyncResultRead(QolBase):
    outcome: str  # completed | failed | skipped
    sync_type: str | None = None
    attempt_id: str | None = None
    counts: SyncCounts = Field(default_factory=SyncCounts)
    total: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None


class SyncStatusRead(QolBase):
    is_syncing: bool
    last_sync_at: datetime | None = None
    patient_id: str | None = None
    next_run_at: datetime | None = None
    last_result: SyncResultRead | None = None
