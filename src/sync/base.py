"""Entity kinds, record types and wire serialization for the sync engine.

Each of the four synchronized collections has a record dataclass and an
``EntitySpec`` describing where it goes remotely: target table, watermark
field used for incremental selection, conflict resolution directive and
conflict target.  ``serialize_record`` is the single function that turns any
record into its PostgREST JSON row.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Union

logger = logging.getLogger("qolmonitor.sync")


# ---------------------------------------------------------------------------
# Entity kinds and conflict resolution
# ---------------------------------------------------------------------------


class EntityKind(str, Enum):
    """The four synchronized collections, in sync order."""

    HEALTH_SAMPLE = "health_sample"
    LOCATION = "location"
    SCREEN_TIME = "screen_time"
    CLINICAL_EVENT = "clinical_event"


class Resolution(str, Enum):
    """PostgREST ``Prefer: resolution=...`` directive."""

    IGNORE_DUPLICATES = "ignore-duplicates"  # insert-only, dedup by unique key
    MERGE_DUPLICATES = "merge-duplicates"    # upsert


class SyncType(str, Enum):
    INITIAL = "initial"
    INCREMENTAL = "incremental"


class ScreenTimeMetricType(str, Enum):
    DAILY_SUMMARY = "dailySummary"
    CATEGORY_USAGE = "categoryUsage"
    APP_USAGE = "appUsage"
    PICKUP = "pickup"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime (naive values are assumed UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class HealthSample:
    """A HealthKit quantity or category sample.

    Attributes:
        id:               Client-generated UUID; re-synced by id (merge).
        sample_type:      HealthKit type identifier.
        start_date:       Sample start (watermark).
        end_date:         Sample end.
        value:            Numeric value in ``unit``.
        unit:             Unit string.
        source_name:      Name of the producing app/device.
        source_bundle_id: Bundle id of the producing app.
    """

    sample_type: str
    start_date: datetime
    end_date: datetime
    value: float
    unit: str
    source_name: str | None = None
    source_bundle_id: str | None = None
    id: str = field(default_factory=_new_id)


@dataclass
class LocationVisit:
    """A location fix, annotated with its category at ingestion time.

    No client id: the remote dedups on (patient_id, timestamp, latitude,
    longitude).
    """

    latitude: float
    longitude: float
    timestamp: datetime
    altitude: float | None = None
    speed: float | None = None
    address: str | None = None
    place_name: str | None = None
    category: str | None = None


@dataclass
class ScreenTimeMetric:
    """Screen-time measurement.

    ``dailySummary``, ``categoryUsage`` and ``appUsage`` rows are re-aggregated
    locally during the day, so they are upserted by ``id``.
    """

    date: datetime
    metric_type: str
    total_screen_time: float | None = None
    number_of_pickups: int | None = None
    duration: float | None = None
    app_bundle_id: str | None = None
    app_name: str | None = None
    category: str | None = None
    id: str = field(default_factory=_new_id)


@dataclass
class ClinicalEvent:
    """A patient- or clinician-logged clinical event (heart failure episode)."""

    timestamp: datetime
    notes: str | None = None
    event_source: str = "patient"
    id: str = field(default_factory=_new_id)


SyncRecord = Union[HealthSample, LocationVisit, ScreenTimeMetric, ClinicalEvent]


# ---------------------------------------------------------------------------
# Entity specs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntitySpec:
    """How one entity kind maps onto the remote store.

    Attributes:
        kind:            Entity kind.
        record_type:     Record dataclass.
        table:           Remote table name.
        watermark_field: Record field compared against the sync cursor.
        resolution:      Conflict directive for writes.
        on_conflict:     Conflict target columns (None = primary key).
        count_column:    sync_history column holding this kind's count.
    """

    kind: EntityKind
    record_type: type
    table: str
    watermark_field: str
    resolution: Resolution
    on_conflict: str | None
    count_column: str


ENTITY_SPECS: dict[EntityKind, EntitySpec] = {
    EntityKind.HEALTH_SAMPLE: EntitySpec(
        kind=EntityKind.HEALTH_SAMPLE,
        record_type=HealthSample,
        table="health_samples",
        watermark_field="start_date",
        resolution=Resolution.MERGE_DUPLICATES,
        on_conflict=None,
        count_column="health_samples_count",
    ),
    EntityKind.LOCATION: EntitySpec(
        kind=EntityKind.LOCATION,
        record_type=LocationVisit,
        table="locations",
        watermark_field="timestamp",
        resolution=Resolution.IGNORE_DUPLICATES,
        on_conflict="patient_id,timestamp,latitude,longitude",
        count_column="locations_count",
    ),
    EntityKind.SCREEN_TIME: EntitySpec(
        kind=EntityKind.SCREEN_TIME,
        record_type=ScreenTimeMetric,
        table="screen_time",
        watermark_field="date",
        resolution=Resolution.MERGE_DUPLICATES,
        on_conflict=None,
        count_column="screen_time_count",
    ),
    EntityKind.CLINICAL_EVENT: EntitySpec(
        kind=EntityKind.CLINICAL_EVENT,
        record_type=ClinicalEvent,
        table="heart_failure_events",
        watermark_field="timestamp",
        resolution=Resolution.IGNORE_DUPLICATES,
        on_conflict="id",
        count_column="hf_events_count",
    ),
}

# Fixed order in which kinds are synchronized.
SYNC_ORDER: tuple[EntityKind, ...] = (
    EntityKind.HEALTH_SAMPLE,
    EntityKind.LOCATION,
    EntityKind.SCREEN_TIME,
    EntityKind.CLINICAL_EVENT,
)


def spec_for(record: SyncRecord) -> EntitySpec:
    """Return the EntitySpec matching a record instance.

    Raises:
        TypeError: If the record type is not a known entity kind.
    """
    for spec in ENTITY_SPECS.values():
        if isinstance(record, spec.record_type):
            return spec
    raise TypeError(f"Unsupported record type: {type(record).__name__}")


# ---------------------------------------------------------------------------
# Wire serialization
# ---------------------------------------------------------------------------


def _to_wire(value: Any) -> Any:
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


def serialize_record(record: SyncRecord, patient_id: str) -> dict[str, Any]:
    """Serialize a record into its remote row.

    Every field of the record is emitted (None becomes JSON null) so all rows
    of a batch share one key set, which PostgREST bulk inserts require.

    Args:
        record:     Any SyncRecord.
        patient_id: Remote identity owning the record.

    Returns:
        JSON-serializable dict including ``patient_id``.
    """
    spec_for(record)  # rejects unknown types early
    row: dict[str, Any] = {"patient_id": patient_id}
    for f in fields(record):
        row[f.name] = _to_wire(getattr(record, f.name))
    return row


def serialize_batch(records: list[SyncRecord], patient_id: str) -> list[dict[str, Any]]:
    return [serialize_record(r, patient_id) for r in records]


def chunked(rows: list[Any], size: int) -> list[list[Any]]:
    """Split ``rows`` into consecutive chunks of at most ``size`` items."""
    if size < 1:
        raise ValueError("batch size must be positive")
    return [rows[i:i + size] for i in range(0, len(rows), size)]
