"""Daily background sync scheduler plus the manual trigger.

Scheduling model::

    register_recurring()
        └─ schedule_next()  → TaskRequest(earliest_begin = next 04:00 local)
    start()
        └─ poll loop: run_pending()
              ├─ not due yet            → nothing
              ├─ network probe fails    → keep the request, try next poll
              └─ due and online
                    1. schedule_next()   (before running, so a crash mid-sync
                                          never leaves us unscheduled)
                    2. handler() under the execution budget; on expiry the
                       in-flight sync is cancelled and marked failed

    trigger_manual()  → orchestrator.run_sync() right now, result returned
                        to the caller; shares the orchestrator's single-flight
                        guard and leaves the recurring schedule alone.

Handlers are registered by task identifier (``register_handler``) so the
scheduling mechanism is independent of what runs.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, time, timedelta, tzinfo
from typing import Any, Awaitable, Callable

from src.sync.errors import SyncError
from src.sync.orchestrator import SyncOrchestrator, SyncOutcome, SyncResult

logger = logging.getLogger("qolmonitor.sync.scheduler")

DEFAULT_TASK_IDENTIFIER = "com.qualityoflifemonitor.dailysync"
DEFAULT_SYNC_HOUR = 4

TaskHandler = Callable[[], Awaitable[Any]]
ConnectivityProbe = Callable[[], Awaitable[bool]]


@dataclass(frozen=True)
class TaskRequest:
    """A request to run a registered task no earlier than ``earliest_begin``.

    Attributes:
        identifier:              Registered task identifier.
        earliest_begin:          Aware local datetime before which it must not run.
        requires_network:        Only run while the remote is reachable.
        requires_external_power: Only run while charging (never, for sync).
    """

    identifier: str
    earliest_begin: datetime
    requires_network: bool = True
    requires_external_power: bool = False


def next_run_at(now: datetime, hour: int = DEFAULT_SYNC_HOUR, minute: int = 0) -> datetime:
    """Return today at ``hour``:``minute`` if still ahead of ``now``, else tomorrow.

    Args:
        now:    Aware datetime in the user's local timezone.
        hour:   Local hour of the daily run.
        minute: Local minute of the daily run.

    Returns:
        Aware datetime in ``now``'s timezone.
    """
    today = datetime.combine(now.date(), time(hour, minute), tzinfo=now.tzinfo)
    if today > now:
        return today
    tomorrow = now.date() + timedelta(days=1)
    return datetime.combine(tomorrow, time(hour, minute), tzinfo=now.tzinfo)


class DailySyncScheduler:
    """Run the sync once a day in the early morning, and on demand.

    Usage::

        scheduler = DailySyncScheduler(orchestrator, tz=ZoneInfo("Europe/London"),
                                       connectivity_probe=remote.ping)
        scheduler.register_recurring()
        scheduler.start()
        ...
        result = await scheduler.trigger_manual()
        await scheduler.stop()
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        tz: tzinfo,
        task_identifier: str = DEFAULT_TASK_IDENTIFIER,
        hour: int = DEFAULT_SYNC_HOUR,
        execution_budget: float = 600.0,
        poll_interval: float = 60.0,
        connectivity_probe: ConnectivityProbe | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            orchestrator:       The sync orchestrator to drive.
            tz:                 User's local timezone for the daily run.
            task_identifier:    Identifier of the recurring sync task.
            hour:               Local hour of the daily run.
            execution_budget:   Wall-clock seconds a background run may take.
            poll_interval:      Seconds between due-checks in the loop.
            connectivity_probe: Async callable returning True when online.
            clock:              Returns the current aware local time.
        """
        self._orchestrator = orchestrator
        self._tz = tz
        self.task_identifier = task_identifier
        self._hour = hour
        self._budget = execution_budget
        self._poll_interval = poll_interval
        self._probe = connectivity_probe
        self._clock = clock or (lambda: datetime.now(self._tz))
        self._handlers: dict[str, TaskHandler] = {}
        self._pending: dict[str, TaskRequest] = {}
        self._loop_task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_handler(self, task_id: str, handler: TaskHandler) -> None:
        """Register the coroutine function run when ``task_id`` fires."""
        if task_id in self._handlers:
            logger.warning("Replacing handler for task %s", task_id)
        self._handlers[task_id] = handler

    def register_recurring(self) -> TaskRequest:
        """Register the daily sync handler and schedule its first run."""
        self.register_handler(self.task_identifier, self._orchestrator.run_sync)
        return self.schedule_next()

    def schedule_next(self, now: datetime | None = None) -> TaskRequest:
        """Submit the request for the next daily run, replacing any pending one."""
        current = now or self._clock()
        request = TaskRequest(
            identifier=self.task_identifier,
            earliest_begin=next_run_at(current, self._hour),
            requires_network=True,
            requires_external_power=False,
        )
        self._pending[request.identifier] = request
        logger.info("Scheduled next sync for %s", request.earliest_begin.isoformat())
        return request

    @property
    def next_request(self) -> TaskRequest | None:
        return self._pending.get(self.task_identifier)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_pending(self, now: datetime | None = None) -> list[Any]:
        """Run every pending request that is due.

        Returns:
            The handler results of the requests that ran.
        """
        current = now or self._clock()
        results: list[Any] = []
        for request in list(self._pending.values()):
            if current < request.earliest_begin:
                continue
            if request.requires_network and not await self._is_online():
                logger.info("Task %s is due but the network is unavailable", request.identifier)
                continue
            results.append(await self._execute(request, current))
        return results

    async def _execute(self, request: TaskRequest, now: datetime) -> Any:
        handler = self._handlers.get(request.identifier)
        if handler is None:
            logger.error("No handler registered for task %s", request.identifier)
            self._pending.pop(request.identifier, None)
            return None

        # Reschedule first: a crash or kill during the run must not leave us unscheduled.
        if request.identifier == self.task_identifier:
            self.schedule_next(now)
        else:
            self._pending.pop(request.identifier, None)

        try:
            return await asyncio.wait_for(handler(), timeout=self._budget)
        except asyncio.TimeoutError:
            logger.error(
                "Background task %s exceeded its %.0fs budget and was cancelled",
                request.identifier, self._budget,
            )
        except SyncError as exc:
            logger.error("Background sync failed: %s", exc)
        except Exception:
            logger.exception("Background task %s crashed", request.identifier)
        return None

    async def _is_online(self) -> bool:
        if self._probe is None:
            return True
        try:
            return await self._probe()
        except Exception as exc:
            logger.warning("Connectivity probe failed: %s", exc)
            return False

    async def trigger_manual(self) -> SyncResult:
        """Run a sync now and return its result.

        Errors are turned into a failed result with a human-readable message;
        a sync already in flight yields a skipped result.
        """
        logger.info("Manual sync triggered")
        try:
            return await self._orchestrator.run_sync()
        except SyncError as exc:
            last = self._orchestrator.last_result
            if last is not None and last.outcome is SyncOutcome.FAILED:
                return last
            return SyncResult(outcome=SyncOutcome.FAILED, error=exc.message)

    # ------------------------------------------------------------------
    # Background loop
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the polling loop on the running event loop."""
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = asyncio.create_task(self._poll_loop(), name="daily-sync-scheduler")
        logger.info("Sync scheduler started")

    async def stop(self) -> None:
        """Stop the polling loop, cancelling any in-flight background run."""
        task, self._loop_task = self._loop_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Sync scheduler stopped")

    async def _poll_loop(self) -> None:
        while True:
            await self.run_pending()
            await asyncio.sleep(self._poll_interval)
