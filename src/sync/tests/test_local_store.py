"""Tests for the SQLite local store."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from src.services.local_store import SQLiteLocalStore, to_db_timestamp
from src.sync.base import EntityKind, LocationVisit, ScreenTimeMetric
from src.sync.errors import LocalStoreError
from src.sync.tests.conftest import STORE_TIME, FixedClock, make_event, make_samples


class TestQueryRecords:
    def test_all_records_when_no_cursor(self, store: SQLiteLocalStore, base_time) -> None:
        store.add_health_samples(make_samples(base_time, 3))
        records = store.query_records(EntityKind.HEALTH_SAMPLE, None)
        assert len(records) == 3
        assert [r.start_date for r in records] == sorted(r.start_date for r in records)

    def test_strictly_after_cursor(self, store: SQLiteLocalStore, base_time) -> None:
        samples = make_samples(base_time, 3)
        store.add_health_samples(samples)

        records = store.query_records(EntityKind.HEALTH_SAMPLE, samples[1].start_date)

        assert [r.id for r in records] == [samples[2].id]

    def test_round_trips_aware_datetimes(self, store: SQLiteLocalStore, base_time) -> None:
        store.add_clinical_event(make_event(base_time))
        (event,) = store.query_records(EntityKind.CLINICAL_EVENT, None)
        assert event.timestamp == base_time
        assert event.timestamp.tzinfo is not None

    def test_cursor_in_other_timezone(self, store: SQLiteLocalStore, base_time) -> None:
        store.add_location(LocationVisit(latitude=1.0, longitude=2.0, timestamp=base_time))
        plus_two = timezone(timedelta(hours=2))
        # same instant expressed at +02:00
        cursor = base_time.astimezone(plus_two) - timedelta(seconds=1)
        assert len(store.query_records(EntityKind.LOCATION, cursor)) == 1

    def test_read_failure_is_wrapped(self, base_time) -> None:
        local = SQLiteLocalStore(":memory:")
        local.close()
        with pytest.raises(LocalStoreError):
            local.query_records(EntityKind.HEALTH_SAMPLE, None)


class TestScreenTime:
    def test_daily_summary_reaggregated_in_place(self, store: SQLiteLocalStore) -> None:
        day = datetime(2026, 3, 1, tzinfo=timezone.utc)
        first = store.record_screen_time(
            ScreenTimeMetric(date=day, metric_type="dailySummary", total_screen_time=100.0)
        )
        second = store.record_screen_time(
            ScreenTimeMetric(date=day, metric_type="dailySummary", total_screen_time=250.0)
        )

        assert second.id == first.id
        (row,) = store.query_records(EntityKind.SCREEN_TIME, None)
        assert row.total_screen_time == 250.0

    def test_app_usage_keyed_by_app(self, store: SQLiteLocalStore) -> None:
        day = datetime(2026, 3, 1, tzinfo=timezone.utc)
        for bundle in ("com.a", "com.b", "com.a"):
            store.record_screen_time(
                ScreenTimeMetric(date=day, metric_type="appUsage", duration=60.0, app_bundle_id=bundle)
            )
        assert store.counts()["screen_time"] == 2

    def test_pickups_always_append(self, store: SQLiteLocalStore) -> None:
        day = datetime(2026, 3, 1, tzinfo=timezone.utc)
        for _ in range(3):
            store.record_screen_time(ScreenTimeMetric(date=day, metric_type="pickup", number_of_pickups=1))
        assert store.counts()["screen_time"] == 3

    def test_reaggregated_row_returned_after_cursor(
        self, store: SQLiteLocalStore, store_clock: FixedClock
    ) -> None:
        day = datetime(2026, 3, 1, tzinfo=timezone.utc)
        cursor = STORE_TIME + timedelta(hours=1)
        store.record_screen_time(
            ScreenTimeMetric(date=day, metric_type="categoryUsage", category="Social", duration=10.0)
        )
        assert store.query_records(EntityKind.SCREEN_TIME, cursor) == []

        store_clock.now = cursor + timedelta(minutes=5)
        store.record_screen_time(
            ScreenTimeMetric(date=day, metric_type="categoryUsage", category="Social", duration=25.0)
        )

        (row,) = store.query_records(EntityKind.SCREEN_TIME, cursor)
        assert row.duration == 25.0


class TestLocations:
    def test_locations_near_bounding_box(self, store: SQLiteLocalStore, base_time) -> None:
        store.add_location(LocationVisit(latitude=51.5000, longitude=-0.1200, timestamp=base_time))
        store.add_location(LocationVisit(latitude=51.5005, longitude=-0.1200, timestamp=base_time))
        store.add_location(LocationVisit(latitude=51.6000, longitude=-0.1200, timestamp=base_time))

        near = store.locations_near(51.5, -0.12, 100.0)

        assert len(near) == 2

    def test_add_location_returns_row_id(self, store: SQLiteLocalStore, base_time) -> None:
        first = store.add_location(LocationVisit(latitude=1.0, longitude=1.0, timestamp=base_time))
        second = store.add_location(LocationVisit(latitude=1.0, longitude=1.0, timestamp=base_time))
        assert second == first + 1


def test_db_timestamp_is_fixed_width() -> None:
    assert to_db_timestamp(datetime(2026, 3, 1, tzinfo=timezone.utc)) == (
        "2026-03-01T00:00:00.000000+00:00"
    )
