"""Shared Pydantic base models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class QolBase(BaseModel):
    """Base model with shared config for all API schemas."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ErrorDetail(BaseModel):
    detail: str
    code: str | None = None
    extra: dict[str, Any] | None = None
