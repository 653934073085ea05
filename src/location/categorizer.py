"""Infer a semantic place category for a location fix.

Classification order (first match wins):

1. transit       speed above the transit threshold and not stationary
2. anchors       within the match radius of the user's home or work point
3. keywords      reverse-geocoded text against per-category keyword lists
4. behaviour     visit statistics of prior fixes within the cluster radius
                   frequent + night-dominant + avg dwell > 1 h   → home
                   frequent + work-hours + weekdays + dwell > 30 min → work
                   infrequent: late night + stationary → home,
                               weekday office hours + stationary + dwell → work,
                               weekend daytime → leisure
5. other

``LocationCategorizer.categorize`` is pure: history, anchors and the optional
placemark are all passed in.  Fetching them is ``LocationIngestor``'s job.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Iterable

from src.location.base import (
    CategorizedLocation,
    LocationCategory,
    LocationFix,
    Placemark,
    haversine_m,
)
from src.location.config_loader import CategorizerConfig, HourPattern, get_categorizer_config

logger = logging.getLogger("qolmonitor.location.categorizer")

Anchor = tuple[float, float]


# ---------------------------------------------------------------------------
# Visit statistics
# ---------------------------------------------------------------------------


@dataclass
class LocationContext:
    """Visit statistics for the place a fix falls in.

    Attributes:
        visit_count:    Prior readings within the cluster radius.
        total_dwell:    Seconds spent there across those readings.
        avg_dwell:      ``total_dwell / visit_count`` (0 with no history).
        hour_counts:    Local hour (0–23) → readings.
        weekday_counts: Local weekday (Mon=0 … Sun=6) → readings.
        hour:           Local hour of the fix being classified.
        weekday:        Local weekday of the fix being classified.
        speed:          Fix speed in m/s, negative/unknown clamped to 0.
        stationary:     Fix speed known and below the stationary threshold.
        stay_seconds:   The fix's own reported dwell, 0 when not reported.
    """

    visit_count: int = 0
    total_dwell: float = 0.0
    avg_dwell: float = 0.0
    hour_counts: Counter = field(default_factory=Counter)
    weekday_counts: Counter = field(default_factory=Counter)
    hour: int = 0
    weekday: int = 0
    speed: float = 0.0
    stationary: bool = False
    stay_seconds: float = 0.0

    @property
    def is_weekend(self) -> bool:
        return self.weekday >= 5

    @classmethod
    def build(
        cls,
        fix: LocationFix,
        history: Iterable[LocationFix],
        tz: tzinfo = timezone.utc,
        config: CategorizerConfig | None = None,
    ) -> LocationContext:
        """Compute statistics for ``fix`` from prior fixes at the same place.

        Dwell for a reading is its explicit ``dwell_seconds`` when set,
        otherwise the gap since the previous reading if that gap is shorter
        than the visit gap (longer gaps start a new visit).  The classified
        fix's own ``dwell_seconds`` is kept apart as ``stay_seconds`` so it
        does not skew the per-visit average.
        """
        cfg = config or get_categorizer_config()
        thresholds = cfg.thresholds
        ctx = cls()

        previous: datetime | None = None
        for item in sorted(history, key=lambda f: f.timestamp):
            local = item.timestamp.astimezone(tz)
            ctx.visit_count += 1
            ctx.hour_counts[local.hour] += 1
            ctx.weekday_counts[local.weekday()] += 1

            if item.dwell_seconds is not None:
                ctx.total_dwell += max(item.dwell_seconds, 0.0)
            elif previous is not None:
                gap = (item.timestamp - previous).total_seconds()
                if gap < thresholds.visit_gap_seconds:
                    ctx.total_dwell += gap
            previous = item.timestamp

        if ctx.visit_count:
            ctx.avg_dwell = ctx.total_dwell / ctx.visit_count

        local_fix = fix.timestamp.astimezone(tz)
        ctx.hour = local_fix.hour
        ctx.weekday = local_fix.weekday()
        ctx.speed = fix.speed if fix.speed is not None and fix.speed >= 0 else 0.0
        ctx.stationary = fix.is_stationary(thresholds.stationary_speed_mps)
        if fix.dwell_seconds is not None:
            ctx.stay_seconds = max(fix.dwell_seconds, 0.0)
        return ctx


def _ratio(counts: Counter, keys: Iterable[int]) -> float:
    total = sum(counts.values())
    if not total:
        return 0.0
    return sum(counts.get(k, 0) for k in keys) / total


def _matches_pattern(ctx: LocationContext, pattern: HourPattern) -> bool:
    if _ratio(ctx.hour_counts, pattern.hours) <= pattern.min_ratio:
        return False
    if pattern.min_weekday_ratio and (
        _ratio(ctx.weekday_counts, range(5)) <= pattern.min_weekday_ratio
    ):
        return False
    return True


# ---------------------------------------------------------------------------
# Categorizer
# ---------------------------------------------------------------------------


class LocationCategorizer:
    """Rule-based place classifier.

    Usage::

        categorizer = LocationCategorizer(tz=ZoneInfo("America/Chicago"),
                                          home=(41.88, -87.63))
        result = categorizer.categorize(fix, history, placemark)
    """

    def __init__(
        self,
        tz: tzinfo = timezone.utc,
        home: Anchor | None = None,
        work: Anchor | None = None,
        config: CategorizerConfig | None = None,
    ) -> None:
        self._tz = tz
        self.home = home
        self.work = work
        self._config = config or get_categorizer_config()

    @property
    def config(self) -> CategorizerConfig:
        return self._config

    def categorize(
        self,
        fix: LocationFix,
        history: Iterable[LocationFix],
        placemark: Placemark | None = None,
    ) -> CategorizedLocation:
        """Classify ``fix`` given prior fixes near it and an optional placemark.

        Args:
            fix:       The reading to classify.
            history:   Prior readings within the cluster radius.
            placemark: Reverse-geocoding result, or None when unavailable.

        Returns:
            Category plus the placemark's name and formatted address, if any.
        """
        place_name = placemark.name if placemark else None
        address = placemark.formatted_address() if placemark else None

        def result(category: LocationCategory) -> CategorizedLocation:
            return CategorizedLocation(category=category, place_name=place_name, address=address)

        ctx = LocationContext.build(fix, history, self._tz, self._config)
        thresholds = self._config.thresholds

        if ctx.speed > thresholds.transit_speed_mps and not ctx.stationary:
            return result(LocationCategory.TRANSIT)

        anchored = self._match_anchor(fix)
        if anchored is not None:
            return result(anchored)

        if placemark is not None:
            keyword_category = self.match_keywords(placemark.searchable_text())
            if keyword_category is not None:
                return result(keyword_category)

        return result(self.infer_from_context(ctx))

    def _match_anchor(self, fix: LocationFix) -> LocationCategory | None:
        radius = self._config.thresholds.anchor_match_radius_m
        for category, anchor in (
            (LocationCategory.HOME, self.home),
            (LocationCategory.WORK, self.work),
        ):
            if anchor and haversine_m(fix.latitude, fix.longitude, *anchor) < radius:
                return category
        return None

    def match_keywords(self, text: str) -> LocationCategory | None:
        """Return the first category whose keyword occurs in ``text``."""
        text = text.lower()
        if not text:
            return None
        for category, words in self._config.keywords.items():
            if any(word in text for word in words):
                return category
        return None

    def infer_from_context(self, ctx: LocationContext) -> LocationCategory:
        """Behavioural fallback when no keyword matched."""
        cfg = self._config
        frequent = ctx.visit_count >= cfg.thresholds.frequent_visit_count

        if frequent:
            if ctx.avg_dwell > cfg.night.min_avg_dwell_seconds and _matches_pattern(ctx, cfg.night):
                return LocationCategory.HOME
            if ctx.avg_dwell > cfg.work.min_avg_dwell_seconds and _matches_pattern(ctx, cfg.work):
                return LocationCategory.WORK
            return LocationCategory.OTHER

        rules = cfg.infrequent
        if (ctx.hour >= rules.late_night_start_hour or ctx.hour <= rules.late_night_end_hour) \
                and ctx.stationary:
            return LocationCategory.HOME
        if (
            not ctx.is_weekend
            and rules.work_start_hour <= ctx.hour <= rules.work_end_hour
            and ctx.stationary
            and ctx.total_dwell + ctx.stay_seconds > rules.work_min_dwell_seconds
        ):
            return LocationCategory.WORK
        if ctx.is_weekend and rules.weekend_start_hour <= ctx.hour <= rules.weekend_end_hour:
            return LocationCategory.LEISURE
        return LocationCategory.OTHER
