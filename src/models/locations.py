"""Pydantic models for location ingestion and home/work anchors."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, field_validator

from src.models.base import QolBase


class LocationFixCreate(QolBase):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    timestamp: datetime
    speed: float | None = None
    altitude: float | None = None
    dwell_seconds: float | None = Field(default=None, ge=0)

    @field_validator("timestamp")
    @classmethod
    def require_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("timestamp must include a timezone offset")
        return value


class LocationRead(QolBase):
    id: int
    latitude: float
    longitude: float
    timestamp: datetime
    category: str
    place_name: str | None = None
    address: str | None = None


class AnchorUpdate(QolBase):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class AnchorRead(QolBase):
    latitude: float
    longitude: float


class AnchorsRead(QolBase):
    home: AnchorRead | None = None
    work: AnchorRead | None = None
