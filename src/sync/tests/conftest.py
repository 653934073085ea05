"""Shared fixtures and fakes for sync engine tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from src.services.local_store import SQLiteLocalStore
from src.services.state_store import StateStore
from src.sync.base import (
    ClinicalEvent,
    HealthSample,
    Resolution,
    ScreenTimeMetric,
)
from src.sync.errors import RemoteHTTPError
from src.sync.identity import IdentityResolver
from src.sync.orchestrator import SyncOrchestrator

TEST_PATIENT_ID = "7d3c1f0e-8a4b-4c7e-9f21-5b6a0d2e4c11"
TEST_DEVICE_ID = "0F1E2D3C-4B5A-6978-8796-A5B4C3D2E1F0"
SYNC_START = datetime(2026, 3, 2, 4, 0, 5, tzinfo=timezone.utc)
# Wall time the local store stamps on writes, before SYNC_START.
STORE_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeRemote:
    """In-memory stand-in for SupabaseRestClient that records every call.

    ``fail_tables`` maps a table name to the exception raised when it is
    written; ``fail_create_attempt`` / ``fail_complete_attempt`` make the
    sync_history calls raise.
    """

    def __init__(self, patient_id: str | None = TEST_PATIENT_ID) -> None:
        self.patient_id = patient_id
        self.created_patients: list[str] = []
        self.writes: list[dict[str, Any]] = []
        self.attempts: dict[str, dict[str, Any]] = {}
        self.fail_tables: dict[str, Exception] = {}
        self.fail_create_attempt: Exception | None = None
        self.fail_complete_attempt: Exception | None = None
        self.write_hook = None
        self.online = True

    async def find_patient(self, device_id: str) -> str | None:
        return self.patient_id

    async def create_patient(self, device_id: str) -> str:
        self.created_patients.append(device_id)
        self.patient_id = "created-patient"
        return self.patient_id

    async def write_records(
        self,
        table: str,
        rows: list[dict[str, Any]],
        resolution: Resolution,
        on_conflict: str | None = None,
        batch_size: int = 1000,
    ) -> int:
        if self.write_hook is not None:
            await self.write_hook(table)
        if table in self.fail_tables:
            raise self.fail_tables[table]
        self.writes.append(
            {"table": table, "rows": rows, "resolution": resolution, "on_conflict": on_conflict}
        )
        return 1

    async def create_sync_attempt(
        self, patient_id: str, sync_type: str, started_at: datetime
    ) -> str:
        if self.fail_create_attempt is not None:
            raise self.fail_create_attempt
        attempt_id = f"attempt-{len(self.attempts) + 1}"
        self.attempts[attempt_id] = {
            "patient_id": patient_id,
            "sync_type": sync_type,
            "started_at": started_at,
            "status": "in_progress",
        }
        return attempt_id

    async def complete_sync_attempt(
        self, attempt_id: str, completed_at: datetime, total: int, counts: dict[str, int]
    ) -> None:
        if self.fail_complete_attempt is not None:
            raise self.fail_complete_attempt
        self.attempts[attempt_id].update(
            status="completed", completed_at=completed_at, records_synced=total, **counts
        )

    async def fail_sync_attempt(self, attempt_id: str, completed_at: datetime, error: str) -> None:
        self.attempts[attempt_id].update(
            status="failed", completed_at=completed_at, error_message=error
        )

    async def ping(self) -> bool:
        return self.online

    def tables_written(self) -> list[str]:
        return [w["table"] for w in self.writes]


class StepClock:
    """Clock returning ``start`` then advancing one second per call."""

    def __init__(self, start: datetime = SYNC_START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


class FixedClock:
    """Clock returning ``now`` until a test moves it."""

    def __init__(self, now: datetime = STORE_TIME) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def server_error(status: int = 503) -> RemoteHTTPError:
    return RemoteHTTPError(status, "POST", "https://example.supabase.co/rest/v1/x")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def state() -> StateStore:
    return StateStore()


@pytest.fixture
def store_clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(store_clock: FixedClock) -> SQLiteLocalStore:
    local = SQLiteLocalStore(":memory:", clock=store_clock)
    yield local
    local.close()


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def orchestrator(store, remote, state, clock) -> SyncOrchestrator:
    identity = IdentityResolver(remote, state)
    return SyncOrchestrator(store, remote, identity, state, clock=clock)


@pytest.fixture
def base_time() -> datetime:
    return datetime(2026, 3, 1, 8, 0, tzinfo=timezone.utc)


def make_samples(start: datetime, count: int) -> list[HealthSample]:
    return [
        HealthSample(
            sample_type="HKQuantityTypeIdentifierHeartRate",
            start_date=start + timedelta(minutes=i),
            end_date=start + timedelta(minutes=i, seconds=30),
            value=60.0 + i,
            unit="count/min",
            source_name="Apple Watch",
        )
        for i in range(count)
    ]


def make_screen_time(day: datetime) -> list[ScreenTimeMetric]:
    return [
        ScreenTimeMetric(date=day, metric_type="dailySummary", total_screen_time=5400.0),
        ScreenTimeMetric(
            date=day, metric_type="appUsage", duration=1200.0,
            app_bundle_id="com.apple.mobilesafari", app_name="Safari",
        ),
    ]


def make_event(at: datetime) -> ClinicalEvent:
    return ClinicalEvent(timestamp=at, notes="Shortness of breath at night")
