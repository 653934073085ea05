"""Sync orchestrator: one attempt = identity → history row → four entity kinds.

Algorithm for ``run_sync()``:

1. Resolve the patient id (fatal on failure, nothing else runs).
2. Read the cursor; no cursor means an initial sync.
3. Create an in-progress ``sync_history`` row and keep its id.
4. For health samples, locations, screen time and clinical events, in that
   order: read records newer than the cursor, skip empty kinds, serialize and
   write them in batches of ``batch_size``.  The first failure aborts the
   attempt: the history row is marked failed, the error propagates and the
   cursor stays where it was.  Rows already written are harmless because
   every write is idempotent and the next attempt re-sends the same window.
5. Mark the history row completed with per-kind counts and move the cursor to
   the time this attempt *started*, so records written mid-sync are picked
   up next time.

Single-flight: a call made while an attempt is in flight returns a
``skipped`` result at once instead of queueing.

Cancellation (e.g. the background execution budget expiring) marks the
attempt failed and re-raises; the cursor is not touched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from src.services.local_store import LocalStore
from src.services.state_store import StateStore
from src.services.supabase import DEFAULT_BATCH_SIZE, SupabaseRestClient
from src.sync.base import (
    ENTITY_SPECS,
    SYNC_ORDER,
    EntityKind,
    SyncType,
    serialize_batch,
    utc_now,
)
from src.sync.errors import AttemptRecordingFailed, EntitySyncFailed, SyncError
from src.sync.identity import IdentityResolver

logger = logging.getLogger("qolmonitor.sync.orchestrator")

CANCELLED_MESSAGE = "Sync cancelled before completion"
ALREADY_RUNNING_MESSAGE = "A sync is already in progress"


class SyncOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class SyncAttempt:
    """Local mirror of one ``sync_history`` row.

    Attributes:
        id:           Remote sync_history id.
        sync_type:    Initial or incremental.
        started_at:   UTC time the attempt started (the cursor candidate).
        completed_at: UTC time it was finalized.
        status:       in_progress, completed or failed.
        counts:       Records written per entity kind.
        error:        Error message when failed.
    """

    id: str
    sync_type: SyncType
    started_at: datetime
    completed_at: datetime | None = None
    status: str = "in_progress"
    counts: dict[EntityKind, int] = field(default_factory=dict)
    error: str | None = None

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def history_counts(self) -> dict[str, int]:
        """Return counts keyed by sync_history column, zero-filled."""
        return {
            ENTITY_SPECS[kind].count_column: self.counts.get(kind, 0) for kind in SYNC_ORDER
        }


@dataclass
class SyncResult:
    """Outcome of one ``run_sync()`` call, as reported to callers."""

    outcome: SyncOutcome
    sync_type: SyncType | None = None
    attempt_id: str | None = None
    counts: dict[EntityKind, int] = field(default_factory=dict)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error: str | None = None

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    @property
    def succeeded(self) -> bool:
        return self.outcome is SyncOutcome.COMPLETED

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "sync_type": self.sync_type.value if self.sync_type else None,
            "attempt_id": self.attempt_id,
            "counts": {kind.value: self.counts.get(kind, 0) for kind in SYNC_ORDER},
            "total": self.total,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


class SyncOrchestrator:
    """Drive one sync attempt at a time from the local store to Supabase.

    Usage::

        orchestrator = SyncOrchestrator(store, remote, identity, state)
        result = await orchestrator.run_sync()
    """

    def __init__(
        self,
        store: LocalStore,
        remote: SupabaseRestClient,
        identity: IdentityResolver,
        state: StateStore,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = utc_now,
        finalize_timeout: float = 5.0,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            store:            Local record store (read-only from here).
            remote:           Supabase REST client.
            identity:         Patient id resolver.
            state:            Durable state holding the cursor.
            batch_size:       Maximum rows per POST.
            clock:            Returns the current aware UTC time.
            finalize_timeout: Seconds allowed to mark a cancelled attempt failed.
        """
        self._store = store
        self._remote = remote
        self._identity = identity
        self._state = state
        self._batch_size = batch_size
        self._clock = clock
        self._finalize_timeout = finalize_timeout
        self._in_flight = False
        self._last_result: SyncResult | None = None
        self._attempt: SyncAttempt | None = None

    @property
    def is_syncing(self) -> bool:
        return self._in_flight

    @property
    def last_result(self) -> SyncResult | None:
        return self._last_result

    @property
    def cursor(self) -> datetime | None:
        return self._state.get_cursor()

    async def run_sync(self) -> SyncResult:
        """Run one sync attempt.

        Returns:
            A completed result, or a skipped result if an attempt is
            already in flight.

        Raises:
            SyncError: IdentityResolutionFailed, AttemptRecordingFailed or
                EntitySyncFailed.  The cursor is unchanged in every case.
            asyncio.CancelledError: If the attempt was cancelled.
        """
        if self._in_flight:
            logger.info("Sync requested while another is running; ignoring")
            return SyncResult(outcome=SyncOutcome.SKIPPED, error=ALREADY_RUNNING_MESSAGE)

        self._in_flight = True
        self._attempt = None
        started_at = self._clock()
        try:
            result = await self._run(started_at)
        except asyncio.CancelledError:
            self._last_result = self._failed_result(started_at, CANCELLED_MESSAGE)
            raise
        except SyncError as exc:
            self._last_result = self._failed_result(started_at, exc.message)
            raise
        except Exception as exc:
            self._last_result = self._failed_result(started_at, str(exc))
            raise
        finally:
            self._in_flight = False

        self._last_result = result
        return result

    # ------------------------------------------------------------------
    # Attempt steps
    # ------------------------------------------------------------------

    async def _run(self, started_at: datetime) -> SyncResult:
        logger.info("Starting Supabase sync")
        patient_id = await self._identity.resolve()

        cursor = self._state.get_cursor()
        sync_type = SyncType.INITIAL if cursor is None else SyncType.INCREMENTAL

        try:
            attempt_id = await self._remote.create_sync_attempt(
                patient_id, sync_type.value, started_at
            )
        except Exception as exc:
            logger.error("Could not record sync start: %s", exc)
            raise AttemptRecordingFailed(exc) from exc

        attempt = SyncAttempt(id=attempt_id, sync_type=sync_type, started_at=started_at)
        self._attempt = attempt
        logger.info(
            "Sync attempt %s (%s) since %s",
            attempt_id, sync_type.value, cursor.isoformat() if cursor else "beginning",
        )

        try:
            for kind in SYNC_ORDER:
                attempt.counts[kind] = await self._sync_kind(kind, patient_id, cursor)
        except asyncio.CancelledError:
            await self._record_failure(attempt, CANCELLED_MESSAGE)
            raise
        except EntitySyncFailed as exc:
            await self._record_failure(attempt, exc.message)
            raise

        completed_at = self._clock()
        try:
            await self._remote.complete_sync_attempt(
                attempt.id, completed_at, attempt.total, attempt.history_counts()
            )
        except asyncio.CancelledError:
            await self._record_failure(attempt, CANCELLED_MESSAGE)
            raise
        except Exception as exc:
            logger.error("Could not record sync completion: %s", exc)
            await self._record_failure(attempt, f"Failed to record completion: {exc}")
            raise AttemptRecordingFailed(exc) from exc

        attempt.status = "completed"
        attempt.completed_at = completed_at
        self._advance_cursor(cursor, started_at)

        logger.info(
            "Sync completed: %d records synced (%s)",
            attempt.total,
            ", ".join(f"{k.value}={attempt.counts.get(k, 0)}" for k in SYNC_ORDER),
        )
        return SyncResult(
            outcome=SyncOutcome.COMPLETED,
            sync_type=sync_type,
            attempt_id=attempt.id,
            counts=dict(attempt.counts),
            started_at=started_at,
            completed_at=completed_at,
        )

    async def _sync_kind(
        self, kind: EntityKind, patient_id: str, cursor: datetime | None
    ) -> int:
        spec = ENTITY_SPECS[kind]
        try:
            records = self._store.query_records(kind, cursor)
            if not records:
                logger.debug("No new %s records", kind.value)
                return 0
            rows = serialize_batch(records, patient_id)
            await self._remote.write_records(
                spec.table,
                rows,
                spec.resolution,
                on_conflict=spec.on_conflict,
                batch_size=self._batch_size,
            )
        except Exception as exc:
            logger.error("Syncing %s failed: %s", kind.value, exc)
            raise EntitySyncFailed(kind.value, exc) from exc

        logger.info("Synced %d %s records to %s", len(records), kind.value, spec.table)
        return len(records)

    async def _record_failure(self, attempt: SyncAttempt, message: str) -> None:
        attempt.status = "failed"
        attempt.error = message
        attempt.completed_at = self._clock()
        try:
            await asyncio.wait_for(
                self._remote.fail_sync_attempt(attempt.id, attempt.completed_at, message),
                timeout=self._finalize_timeout,
            )
        except Exception as exc:
            logger.error("Could not mark sync attempt %s failed: %s", attempt.id, exc)

    def _advance_cursor(self, previous: datetime | None, candidate: datetime) -> None:
        if previous is not None and candidate <= previous:
            logger.warning(
                "Not moving sync cursor backwards (%s <= %s)",
                candidate.isoformat(), previous.isoformat(),
            )
            return
        self._state.set_cursor(candidate)

    def _failed_result(self, started_at: datetime, message: str) -> SyncResult:
        attempt = self._attempt
        return SyncResult(
            outcome=SyncOutcome.FAILED,
            sync_type=attempt.sync_type if attempt else None,
            attempt_id=attempt.id if attempt else None,
            counts=dict(attempt.counts) if attempt else {},
            started_at=started_at,
            completed_at=self._clock(),
            error=message,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        """Return the sync state for display."""
        cursor = self._state.get_cursor()
        return {
            "is_syncing": self._in_flight,
            "last_sync_at": cursor.isoformat() if cursor else None,
            "patient_id": self._identity.cached_patient_id,
            "last_result": self._last_result.to_dict() if self._last_result else None,
        }
