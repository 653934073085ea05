"""Pydantic models for collector writes: health samples, screen time, clinical events."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator, model_validator

from src.models.base import QolBase
from src.sync.base import ScreenTimeMetricType


def _require_timezone(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("timestamps must include a timezone offset")
    return value


# ---------- Health samples ----------

class HealthSampleCreate(QolBase):
    id: str | None = Field(default=None, min_length=1, max_length=64)
    sample_type: str = Field(min_length=1, max_length=100)
    start_date: datetime
    end_date: datetime
    value: float
    unit: str = Field(min_length=1, max_length=30)
    source_name: str | None = Field(default=None, max_length=200)
    source_bundle_id: str | None = Field(default=None, max_length=200)

    @field_validator("start_date", "end_date")
    @classmethod
    def require_timezone(cls, value: datetime) -> datetime:
        return _require_timezone(value)

    @model_validator(mode="after")
    def end_not_before_start(self) -> "HealthSampleCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class HealthSamplesWritten(QolBase):
    written: int


# ---------- Screen time ----------

class ScreenTimeMetricCreate(QolBase):
    date: datetime
    metric_type: ScreenTimeMetricType
    total_screen_time: float | None = Field(default=None, ge=0)
    number_of_pickups: int | None = Field(default=None, ge=0)
    duration: float | None = Field(default=None, ge=0)
    app_bundle_id: str | None = Field(default=None, max_length=200)
    app_name: str | None = Field(default=None, max_length=200)
    category: str | None = Field(default=None, max_length=100)

    @field_validator("date")
    @classmethod
    def require_timezone(cls, value: datetime) -> datetime:
        return _require_timezone(value)


class ScreenTimeMetricRead(QolBase):
    id: str
    date: datetime
    metric_type: str
    total_screen_time: float | None = None
    number_of_pickups: int | None = None
    duration: float | None = None
    app_bundle_id: str | None = None
    app_name: str | None = None
    category: str | None = None


# ---------- Clinical events ----------

class ClinicalEventCreate(QolBase):
    timestamp: datetime
    notes: str | None = Field(default=None, max_length=5000)
    event_source: str = Field(default="patient", min_length=1, max_length=50)

    @field_validator("timestamp")
    @classmethod
    def require_timezone(cls, value: datetime) -> datetime:
        return _require_timezone(value)


class ClinicalEventRead(QolBase):
    id: str
    timestamp: datetime
    notes: str | None = None
    event_source: str
