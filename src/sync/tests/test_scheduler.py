"""Tests for the daily sync scheduler and manual trigger."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from src.sync.orchestrator import CANCELLED_MESSAGE, SyncOrchestrator, SyncOutcome
from src.sync.scheduler import DEFAULT_TASK_IDENTIFIER, DailySyncScheduler, next_run_at
from src.sync.tests.conftest import FakeRemote, make_samples, server_error

LONDON = ZoneInfo("Europe/London")


def make_scheduler(orchestrator: SyncOrchestrator, remote: FakeRemote, now: datetime, **kwargs):
    return DailySyncScheduler(
        orchestrator,
        tz=now.tzinfo,
        connectivity_probe=remote.ping,
        clock=lambda: now,
        **kwargs,
    )


class TestNextRunAt:
    def test_before_four_is_today(self) -> None:
        now = datetime(2026, 3, 2, 1, 30, tzinfo=LONDON)
        assert next_run_at(now) == datetime(2026, 3, 2, 4, 0, tzinfo=LONDON)

    def test_after_four_is_tomorrow(self) -> None:
        now = datetime(2026, 3, 2, 9, 15, tzinfo=LONDON)
        assert next_run_at(now) == datetime(2026, 3, 3, 4, 0, tzinfo=LONDON)

    def test_exactly_four_is_tomorrow(self) -> None:
        now = datetime(2026, 3, 2, 4, 0, tzinfo=LONDON)
        assert next_run_at(now) == datetime(2026, 3, 3, 4, 0, tzinfo=LONDON)

    def test_month_rollover(self) -> None:
        now = datetime(2026, 3, 31, 23, 0, tzinfo=timezone.utc)
        assert next_run_at(now) == datetime(2026, 4, 1, 4, 0, tzinfo=timezone.utc)

    def test_across_dst_change_keeps_local_hour(self) -> None:
        # UK clocks go forward on 2026-03-29
        now = datetime(2026, 3, 28, 12, 0, tzinfo=LONDON)
        run = next_run_at(now)
        assert run.hour == 4
        assert run.utcoffset() == timedelta(hours=1)


class TestRegistration:
    def test_register_recurring_schedules_next_window(self, orchestrator, remote) -> None:
        now = datetime(2026, 3, 2, 22, 0, tzinfo=LONDON)
        scheduler = make_scheduler(orchestrator, remote, now)

        request = scheduler.register_recurring()

        assert request.identifier == DEFAULT_TASK_IDENTIFIER
        assert request.earliest_begin == datetime(2026, 3, 3, 4, 0, tzinfo=LONDON)
        assert request.requires_network is True
        assert request.requires_external_power is False
        assert scheduler.next_request == request


class TestRunPending:
    @pytest.mark.asyncio
    async def test_not_due_does_nothing(self, orchestrator, remote) -> None:
        now = datetime(2026, 3, 2, 22, 0, tzinfo=LONDON)
        scheduler = make_scheduler(orchestrator, remote, now)
        scheduler.register_recurring()

        assert await scheduler.run_pending(now) == []
        assert remote.attempts == {}

    @pytest.mark.asyncio
    async def test_reschedules_before_running(self, orchestrator, remote) -> None:
        now = datetime(2026, 3, 2, 22, 0, tzinfo=LONDON)
        scheduler = make_scheduler(orchestrator, remote, now)
        scheduler.register_recurring()
        seen = []

        async def handler() -> str:
            seen.append(scheduler.next_request.earliest_begin)
            return "ran"

        scheduler.register_handler(DEFAULT_TASK_IDENTIFIER, handler)
        due = datetime(2026, 3, 3, 4, 0, 30, tzinfo=LONDON)

        assert await scheduler.run_pending(due) == ["ran"]
        assert seen == [datetime(2026, 3, 4, 4, 0, tzinfo=LONDON)]

    @pytest.mark.asyncio
    async def test_offline_keeps_request(self, orchestrator, remote) -> None:
        now = datetime(2026, 3, 2, 22, 0, tzinfo=LONDON)
        scheduler = make_scheduler(orchestrator, remote, now)
        request = scheduler.register_recurring()
        remote.online = False

        assert await scheduler.run_pending(request.earliest_begin + timedelta(minutes=1)) == []
        assert scheduler.next_request == request
        assert remote.attempts == {}

    @pytest.mark.asyncio
    async def test_background_run_syncs(self, orchestrator, store, remote, state) -> None:
        store.add_health_samples(make_samples(datetime(2026, 3, 2, 8, tzinfo=timezone.utc), 2))
        now = datetime(2026, 3, 2, 22, 0, tzinfo=LONDON)
        scheduler = make_scheduler(orchestrator, remote, now)
        request = scheduler.register_recurring()

        results = await scheduler.run_pending(request.earliest_begin)

        assert results[0].outcome is SyncOutcome.COMPLETED
        assert results[0].total == 2
        assert state.get_cursor() is not None

    @pytest.mark.asyncio
    async def test_background_failure_is_logged_not_raised(
        self, orchestrator, store, remote, state
    ) -> None:
        store.add_health_samples(make_samples(datetime(2026, 3, 2, 8, tzinfo=timezone.utc), 1))
        remote.fail_tables["health_samples"] = server_error(400)
        now = datetime(2026, 3, 2, 22, 0, tzinfo=LONDON)
        scheduler = make_scheduler(orchestrator, remote, now)
        request = scheduler.register_recurring()

        assert await scheduler.run_pending(request.earliest_begin) == [None]
        assert state.get_cursor() is None
        assert scheduler.next_request.earliest_begin > request.earliest_begin

    @pytest.mark.asyncio
    async def test_budget_expiry_cancels_and_marks_failed(
        self, orchestrator, store, remote, state
    ) -> None:
        store.add_health_samples(make_samples(datetime(2026, 3, 2, 8, tzinfo=timezone.utc), 1))

        async def hang(table: str) -> None:
            await asyncio.sleep(30)

        remote.write_hook = hang
        now = datetime(2026, 3, 2, 22, 0, tzinfo=LONDON)
        scheduler = make_scheduler(orchestrator, remote, now, execution_budget=0.05)
        request = scheduler.register_recurring()

        assert await scheduler.run_pending(request.earliest_begin) == [None]

        attempt = next(iter(remote.attempts.values()))
        assert attempt["status"] == "failed"
        assert attempt["error_message"] == CANCELLED_MESSAGE
        assert state.get_cursor() is None
        assert not orchestrator.is_syncing


class TestManualTrigger:
    @pytest.mark.asyncio
    async def test_returns_result(self, orchestrator, store, remote) -> None:
        store.add_health_samples(make_samples(datetime(2026, 3, 2, 8, tzinfo=timezone.utc), 3))
        scheduler = make_scheduler(orchestrator, remote, datetime(2026, 3, 2, 12, tzinfo=LONDON))

        result = await scheduler.trigger_manual()

        assert result.outcome is SyncOutcome.COMPLETED
        assert result.total == 3

    @pytest.mark.asyncio
    async def test_failure_becomes_readable_result(self, orchestrator, store, remote) -> None:
        store.add_health_samples(make_samples(datetime(2026, 3, 2, 8, tzinfo=timezone.utc), 1))
        remote.fail_tables["health_samples"] = server_error(400)
        scheduler = make_scheduler(orchestrator, remote, datetime(2026, 3, 2, 12, tzinfo=LONDON))

        result = await scheduler.trigger_manual()

        assert result.outcome is SyncOutcome.FAILED
        assert result.error == "Failed to sync health_sample: HTTP error: 400"

    @pytest.mark.asyncio
    async def test_does_not_touch_schedule(self, orchestrator, remote) -> None:
        scheduler = make_scheduler(orchestrator, remote, datetime(2026, 3, 2, 12, tzinfo=LONDON))
        request = scheduler.register_recurring()

        await scheduler.trigger_manual()

        assert scheduler.next_request == request


class TestLoop:
    @pytest.mark.asyncio
    async def test_start_runs_due_task_once_and_stop(self, orchestrator, remote) -> None:
        now = datetime(2026, 3, 3, 4, 0, 10, tzinfo=LONDON)
        scheduler = make_scheduler(orchestrator, remote, now, poll_interval=0.01)
        scheduler.schedule_next(datetime(2026, 3, 2, 22, 0, tzinfo=LONDON))
        calls = []

        async def handler() -> None:
            calls.append(1)

        scheduler.register_handler(DEFAULT_TASK_IDENTIFIER, handler)
        scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert calls == [1]
        assert scheduler.next_request.earliest_begin == datetime(2026, 3, 4, 4, 0, tzinfo=LONDON)
