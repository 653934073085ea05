"""Canonical location types shared by the categorizer, geocoder and ingestor."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

EARTH_RADIUS_M = 6_371_000.0


class LocationCategory(str, Enum):
    HOME = "home"
    WORK = "work"
    HEALTHCARE = "healthcare"
    SHOPPING = "shopping"
    DINING = "dining"
    FITNESS = "fitness"
    LEISURE = "leisure"
    TRANSIT = "transit"
    OUTDOORS = "outdoors"
    OTHER = "other"


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass
class LocationFix:
    """A raw location reading.

    Attributes:
        latitude:      Degrees.
        longitude:     Degrees.
        timestamp:     Aware datetime of the reading.
        speed:         Metres per second; None or negative when unknown.
        altitude:      Metres, if known.
        dwell_seconds: Time spent at this place when the collector knows it
                       (e.g. a visit event); otherwise derived from gaps.
    """

    latitude: float
    longitude: float
    timestamp: datetime
    speed: float | None = None
    altitude: float | None = None
    dwell_seconds: float | None = None

    def is_stationary(self, threshold_mps: float) -> bool:
        return self.speed is not None and 0 <= self.speed < threshold_mps


@dataclass
class Placemark:
    """Reverse-geocoding result.  Every field is optional."""

    name: str | None = None
    thoroughfare: str | None = None
    sub_thoroughfare: str | None = None
    sub_locality: str | None = None
    locality: str | None = None
    administrative_area: str | None = None
    postal_code: str | None = None
    areas_of_interest: list[str] = field(default_factory=list)

    def searchable_text(self) -> str:
        """Lower-cased text the keyword matcher scans."""
        parts = [self.name, self.thoroughfare, *self.areas_of_interest,
                 self.sub_locality, self.locality]
        return " ".join(p for p in parts if p).lower()

    def formatted_address(self) -> str | None:
        parts = [self.sub_thoroughfare, self.thoroughfare, self.locality,
                 self.administrative_area, self.postal_code]
        address = ", ".join(p for p in parts if p)
        return address or None


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CategorizedLocation:
    category: LocationCategory
    place_name: str | None = None
    address: str | None = None


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = phi2 - phi1
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))
