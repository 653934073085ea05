"""On-device record store.

The sync engine only needs one thing from local storage: "give me every
record of kind K whose watermark is newer than T".  ``LocalStore`` is that
interface; ``SQLiteLocalStore`` implements it over SQLite with one table per
entity kind.  The collector-side write helpers live on the same class because
the ingestion path and the tests need them, but the sync core never calls
them.

Timestamps are stored as fixed-width UTC strings
(``YYYY-MM-DDTHH:MM:SS.ffffff+00:00``) so SQL string comparison orders them
chronologically.
"""

from __future__ import annotations

import logging
import math
import sqlite3
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from src.sync.base import (
    ENTITY_SPECS,
    ClinicalEvent,
    EntityKind,
    HealthSample,
    LocationVisit,
    ScreenTimeMetric,
    ScreenTimeMetricType,
    SyncRecord,
    ensure_utc,
    utc_now,
)
from src.sync.errors import LocalStoreError

logger = logging.getLogger("qolmonitor.local_store")

_METERS_PER_DEGREE_LAT = 111_320.0

SCHEMA = {
    "health_samples": """
        CREATE TABLE IF NOT EXISTS health_samples (
            id TEXT PRIMARY KEY,
            sample_type TEXT NOT NULL,
            start_date TEXT NOT NULL,
            end_date TEXT NOT NULL,
            value REAL NOT NULL,
            unit TEXT NOT NULL,
            source_name TEXT,
            source_bundle_id TEXT
        )
    """,
    "locations": """
        CREATE TABLE IF NOT EXISTS locations (
            row_id INTEGER PRIMARY KEY AUTOINCREMENT,
            latitude REAL NOT NULL,
            longitude REAL NOT NULL,
            altitude REAL,
            speed REAL,
            timestamp TEXT NOT NULL,
            address TEXT,
            place_name TEXT,
            category TEXT
        )
    """,
    "screen_time": """
        CREATE TABLE IF NOT EXISTS screen_time (
            id TEXT PRIMARY KEY,
            date TEXT NOT NULL,
            metric_type TEXT NOT NULL,
            total_screen_time REAL,
            number_of_pickups INTEGER,
            duration REAL,
            app_bundle_id TEXT,
            app_name TEXT,
            category TEXT,
            updated_at TEXT NOT NULL
        )
    """,
    "clinical_events": """
        CREATE TABLE IF NOT EXISTS clinical_events (
            id TEXT PRIMARY KEY,
            timestamp TEXT NOT NULL,
            notes TEXT,
            event_source TEXT NOT NULL DEFAULT 'patient'
        )
    """,
}

INDEXES = (
    "CREATE INDEX IF NOT EXISTS idx_health_start ON health_samples(start_date)",
    "CREATE INDEX IF NOT EXISTS idx_locations_ts ON locations(timestamp)",
    "CREATE INDEX IF NOT EXISTS idx_locations_lat ON locations(latitude)",
    "CREATE INDEX IF NOT EXISTS idx_screen_date ON screen_time(date)",
    "CREATE INDEX IF NOT EXISTS idx_screen_updated ON screen_time(updated_at)",
    "CREATE INDEX IF NOT EXISTS idx_events_ts ON clinical_events(timestamp)",
)

# Metric types that are re-aggregated in place during the day.
_AGGREGATED_KEYS: dict[str, str | None] = {
    ScreenTimeMetricType.DAILY_SUMMARY.value: None,
    ScreenTimeMetricType.CATEGORY_USAGE.value: "category",
    ScreenTimeMetricType.APP_USAGE.value: "app_bundle_id",
}


def to_db_timestamp(value: datetime) -> str:
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def from_db_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value)


class LocalStore(ABC):
    """Read access to the four local record collections."""

    @abstractmethod
    def query_records(self, kind: EntityKind, since: datetime | None) -> list[SyncRecord]:
        """Return records of ``kind`` whose watermark is strictly after ``since``.

        Args:
            kind:  Entity kind to read.
            since: Exclusive lower bound, or None for every record.

        Returns:
            Records ordered by watermark ascending.

        Raises:
            LocalStoreError: If the store cannot be read.
        """


class SQLiteLocalStore(LocalStore):
    """SQLite implementation of LocalStore plus collector-side writers."""

    def __init__(
        self,
        db_path: str | Path = ":memory:",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Open (and create if needed) the store.

        Args:
            db_path: SQLite file path, or ``":memory:"``.
            clock:   Returns the current aware UTC time; stamps ``updated_at``.
        """
        self._db_path = str(db_path)
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_schema()
        logger.info("Local store opened at %s", self._db_path)

    def _init_schema(self) -> None:
        with self._lock, self._conn:
            for ddl in SCHEMA.values():
                self._conn.execute(ddl)
            for ddl in INDEXES:
                self._conn.execute(ddl)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _fetch(self, query: str, params: tuple = ()) -> list[sqlite3.Row]:
        try:
            with self._lock:
                return self._conn.execute(query, params).fetchall()
        except sqlite3.Error as exc:
            raise LocalStoreError(
                f"Local store read failed: {exc}", details={"query": query.split()[0:4]}
            ) from exc

    # ------------------------------------------------------------------
    # LocalStore interface
    # ------------------------------------------------------------------

    def query_records(self, kind: EntityKind, since: datetime | None) -> list[SyncRecord]:
        bound = to_db_timestamp(since) if since is not None else None
        table, from_row = _LOCAL_TABLES[kind]
        column = ENTITY_SPECS[kind].watermark_field
        # Re-aggregated screen-time rows keep their old date but get a fresh updated_at.
        rows = self._select(table, column, bound, also_updated=kind is EntityKind.SCREEN_TIME)
        return [from_row(r) for r in rows]

    def _select(
        self, table: str, column: str, bound: str | None, also_updated: bool = False
    ) -> list[sqlite3.Row]:
        if bound is None:
            return self._fetch(f"SELECT * FROM {table} ORDER BY {column}")
        if also_updated:
            return self._fetch(
                f"SELECT * FROM {table} WHERE {column} > ? OR updated_at > ? ORDER BY {column}",
                (bound, bound),
            )
        return self._fetch(
            f"SELECT * FROM {table} WHERE {column} > ? ORDER BY {column}", (bound,)
        )

    # ------------------------------------------------------------------
    # Collector-side writers
    # ------------------------------------------------------------------

    def add_health_samples(self, samples: list[HealthSample]) -> int:
        """Insert samples, replacing any with the same id. Returns the count written."""
        rows = [
            (
                s.id, s.sample_type, to_db_timestamp(s.start_date),
                to_db_timestamp(s.end_date), s.value, s.unit,
                s.source_name, s.source_bundle_id,
            )
            for s in samples
        ]
        with self._lock, self._conn:
            self._conn.executemany(
                "INSERT OR REPLACE INTO health_samples "
                "(id, sample_type, start_date, end_date, value, unit, source_name, source_bundle_id) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                rows,
            )
        return len(rows)

    def add_location(self, visit: LocationVisit) -> int:
        """Insert a location fix and return its local row id."""
        with self._lock, self._conn:
            cur = self._conn.execute(
                "INSERT INTO locations "
                "(latitude, longitude, altitude, speed, timestamp, address, place_name, category) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    visit.latitude, visit.longitude, visit.altitude, visit.speed,
                    to_db_timestamp(visit.timestamp), visit.address,
                    visit.place_name, visit.category,
                ),
            )
            return int(cur.lastrowid)

    def record_screen_time(self, metric: ScreenTimeMetric) -> ScreenTimeMetric:
        """Write a screen-time metric, re-aggregating in place where applicable.

        ``dailySummary`` rows are unique per date, ``categoryUsage`` per
        date+category and ``appUsage`` per date+app.  An existing row keeps
        its id and gets the new values; ``pickup`` rows are always appended.

        Returns:
            The stored metric (carrying the surviving id).
        """
        now = to_db_timestamp(self._clock())
        date_value = to_db_timestamp(metric.date)
        with self._lock, self._conn:
            existing_id = None
            if metric.metric_type in _AGGREGATED_KEYS:
                key_column = _AGGREGATED_KEYS[metric.metric_type]
                query = "SELECT id FROM screen_time WHERE metric_type = ? AND date = ?"
                params: list[Any] = [metric.metric_type, date_value]
                if key_column:
                    query += f" AND {key_column} IS ?"
                    params.append(getattr(metric, key_column))
                row = self._conn.execute(query, params).fetchone()
                existing_id = row["id"] if row else None

            if existing_id:
                self._conn.execute(
                    "UPDATE screen_time SET total_screen_time = ?, number_of_pickups = ?, "
                    "duration = ?, app_name = ?, category = ?, updated_at = ? WHERE id = ?",
                    (
                        metric.total_screen_time, metric.number_of_pickups,
                        metric.duration, metric.app_name, metric.category, now,
                        existing_id,
                    ),
                )
                metric.id = existing_id
                logger.debug("Re-aggregated %s row %s", metric.metric_type, existing_id)
            else:
                self._conn.execute(
                    "INSERT INTO screen_time "
                    "(id, date, metric_type, total_screen_time, number_of_pickups, duration, "
                    "app_bundle_id, app_name, category, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        metric.id, date_value, metric.metric_type,
                        metric.total_screen_time, metric.number_of_pickups,
                        metric.duration, metric.app_bundle_id, metric.app_name,
                        metric.category, now,
                    ),
                )
        return metric

    def add_clinical_event(self, event: ClinicalEvent) -> None:
        with self._lock, self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO clinical_events (id, timestamp, notes, event_source) "
                "VALUES (?, ?, ?, ?)",
                (event.id, to_db_timestamp(event.timestamp), event.notes, event.event_source),
            )

    # ------------------------------------------------------------------
    # Queries used by location categorization
    # ------------------------------------------------------------------

    def locations_near(
        self, latitude: float, longitude: float, radius_m: float
    ) -> list[LocationVisit]:
        """Return stored fixes inside the bounding box of a circle.

        This is a coarse prefilter; callers apply the exact distance test.
        """
        dlat = radius_m / _METERS_PER_DEGREE_LAT
        cos_lat = max(math.cos(math.radians(latitude)), 1e-6)
        dlon = radius_m / (_METERS_PER_DEGREE_LAT * cos_lat)
        rows = self._fetch(
            "SELECT * FROM locations WHERE latitude BETWEEN ? AND ? "
            "AND longitude BETWEEN ? AND ? ORDER BY timestamp",
            (latitude - dlat, latitude + dlat, longitude - dlon, longitude + dlon),
        )
        return [_location_from_row(r) for r in rows]

    def counts(self) -> dict[str, int]:
        """Return the number of stored rows per entity kind."""
        return {
            kind.value: self._fetch(f"SELECT COUNT(*) AS n FROM {table}")[0]["n"]
            for kind, (table, _) in _LOCAL_TABLES.items()
        }


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _health_from_row(row: sqlite3.Row) -> HealthSample:
    return HealthSample(
        id=row["id"],
        sample_type=row["sample_type"],
        start_date=from_db_timestamp(row["start_date"]),
        end_date=from_db_timestamp(row["end_date"]),
        value=row["value"],
        unit=row["unit"],
        source_name=row["source_name"],
        source_bundle_id=row["source_bundle_id"],
    )


def _location_from_row(row: sqlite3.Row) -> LocationVisit:
    return LocationVisit(
        latitude=row["latitude"],
        longitude=row["longitude"],
        timestamp=from_db_timestamp(row["timestamp"]),
        altitude=row["altitude"],
        speed=row["speed"],
        address=row["address"],
        place_name=row["place_name"],
        category=row["category"],
    )


def _screen_time_from_row(row: sqlite3.Row) -> ScreenTimeMetric:
    return ScreenTimeMetric(
        id=row["id"],
        date=from_db_timestamp(row["date"]),
        metric_type=row["metric_type"],
        total_screen_time=row["total_screen_time"],
        number_of_pickups=row["number_of_pickups"],
        duration=row["duration"],
        app_bundle_id=row["app_bundle_id"],
        app_name=row["app_name"],
        category=row["category"],
    )


def _event_from_row(row: sqlite3.Row) -> ClinicalEvent:
    return ClinicalEvent(
        id=row["id"],
        timestamp=from_db_timestamp(row["timestamp"]),
        notes=row["notes"],
        event_source=row["event_source"],
    )


# Local table and row mapper per entity kind.
_LOCAL_TABLES: dict[EntityKind, tuple[str, Callable[[sqlite3.Row], SyncRecord]]] = {
    EntityKind.HEALTH_SAMPLE: ("health_samples", _health_from_row),
    EntityKind.LOCATION: ("locations", _location_from_row),
    EntityKind.SCREEN_TIME: ("screen_time", _screen_time_from_row),
    EntityKind.CLINICAL_EVENT: ("clinical_events", _event_from_row),
}
