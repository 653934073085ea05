"""Shared fixtures for location categorization tests."""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from src.location.base import LocationFix
from src.location.config_loader import CategorizerConfig, load_categorizer_config

NEW_YORK = ZoneInfo("America/New_York")

HOME = (40.7128, -74.0060)
OFFICE = (40.7580, -73.9855)


@pytest.fixture
def categorizer_config() -> CategorizerConfig:
    """Load the bundled categorizer config for tests."""
    return load_categorizer_config()


def at(year: int, month: int, day: int, hour: int, minute: int = 0) -> datetime:
    """Aware New York local time."""
    return datetime(year, month, day, hour, minute, tzinfo=NEW_YORK)


def fix_at(point: tuple[float, float], when: datetime, speed: float | None = 0.0,
           dwell: float | None = None) -> LocationFix:
    return LocationFix(
        latitude=point[0], longitude=point[1], timestamp=when, speed=speed, dwell_seconds=dwell
    )


def night_history(point: tuple[float, float], nights: int = 5) -> list[LocationFix]:
    """One visit per night between 23:00 and 05:00, 90 minutes each."""
    start = at(2026, 3, 2, 23, 30)
    return [
        fix_at(point, start + timedelta(days=i, hours=i % 3), dwell=90 * 60)
        for i in range(nights)
    ]


def office_history(point: tuple[float, float]) -> list[LocationFix]:
    """Hourly weekday readings from 09:00 to 17:00 (Mon 2 Mar → Fri 6 Mar)."""
    fixes = []
    for day in range(2, 7):
        for hour in range(9, 18):
            fixes.append(fix_at(point, at(2026, 3, day, hour)))
    return fixes
