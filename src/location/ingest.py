"""Ingestion-time categorization of raw location fixes.

Each fix is categorized exactly once, when it arrives, and stored with its
category, place name and address so the sync engine ships the annotation
unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timezone, tzinfo

from src.location.base import CategorizedLocation, LocationFix, Placemark, haversine_m
from src.location.categorizer import LocationCategorizer
from src.location.config_loader import CategorizerConfig, get_categorizer_config
from src.location.geocoder import GeocodingError, ReverseGeocoder
from src.services.local_store import SQLiteLocalStore
from src.services.state_store import StateStore
from src.sync.base import LocationVisit

logger = logging.getLogger("qolmonitor.location.ingest")


@dataclass
class IngestResult:
    row_id: int
    visit: LocationVisit
    categorized: CategorizedLocation


class LocationIngestor:
    """Categorize a raw fix against local history and persist it.

    Usage::

        ingestor = LocationIngestor(store, state, geocoder=NominatimGeocoder())
        result = await ingestor.ingest(LocationFix(51.5, -0.12, now, speed=0.0))
    """

    def __init__(
        self,
        store: SQLiteLocalStore,
        state: StateStore,
        geocoder: ReverseGeocoder | None = None,
        tz: tzinfo = timezone.utc,
        config: CategorizerConfig | None = None,
    ) -> None:
        self._store = store
        self._state = state
        self._geocoder = geocoder
        self._tz = tz
        self._config = config or get_categorizer_config()

    def categorizer(self) -> LocationCategorizer:
        """Return a categorizer bound to the user's current anchors."""
        return LocationCategorizer(
            tz=self._tz,
            home=self._state.get_anchor("home"),
            work=self._state.get_anchor("work"),
            config=self._config,
        )

    def history_near(self, fix: LocationFix) -> list[LocationFix]:
        """Return stored fixes within the cluster radius of ``fix``."""
        radius = self._config.thresholds.cluster_radius_m
        return [
            LocationFix(
                latitude=visit.latitude,
                longitude=visit.longitude,
                timestamp=visit.timestamp,
                speed=visit.speed,
                altitude=visit.altitude,
            )
            for visit in self._store.locations_near(fix.latitude, fix.longitude, radius)
            if haversine_m(fix.latitude, fix.longitude, visit.latitude, visit.longitude) < radius
        ]

    async def _placemark(self, fix: LocationFix) -> Placemark | None:
        if self._geocoder is None:
            return None
        try:
            return await self._geocoder.reverse(fix.latitude, fix.longitude)
        except GeocodingError as exc:
            logger.warning("Reverse geocoding unavailable, using behaviour only: %s", exc)
            return None

    async def ingest(self, fix: LocationFix) -> IngestResult:
        """Categorize ``fix`` and write it to the local store."""
        history = self.history_near(fix)
        placemark = await self._placemark(fix)
        categorized = self.categorizer().categorize(fix, history, placemark)

        visit = LocationVisit(
            latitude=fix.latitude,
            longitude=fix.longitude,
            timestamp=fix.timestamp,
            altitude=fix.altitude,
            speed=fix.speed,
            address=categorized.address,
            place_name=categorized.place_name,
            category=categorized.category.value,
        )
        row_id = self._store.add_location(visit)
        logger.info(
            "Stored location %d as %s (%d prior fixes nearby)",
            row_id, categorized.category.value, len(history),
        )
        return IngestResult(row_id=row_id, visit=visit, categorized=categorized)
