"""Bounded exponential-backoff retry for remote calls.

Schedule with the defaults (4 attempts, base 2 s, factor 2)::

    attempt 1 ──2s── attempt 2 ──4s── attempt 3 ──8s── attempt 4 → give up

Only network failures and HTTP 500/502/503 are retried.  Every 4xx (bad
request, auth, conflict) and every other 5xx escapes on the first attempt.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from src.sync.errors import NetworkUnavailable, RemoteHTTPError

logger = logging.getLogger("qolmonitor.sync.retry")

T = TypeVar("T")

SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry parameters.

    Attributes:
        max_attempts:       Total attempts including the first one.
        base_delay:         Delay in seconds before the second attempt.
        factor:             Multiplier applied to the delay after each retry.
        retryable_statuses: HTTP statuses treated as transient.
    """

    max_attempts: int = 4
    base_delay: float = 2.0
    factor: float = 2.0
    retryable_statuses: frozenset[int] = field(
        default_factory=lambda: frozenset({500, 502, 503})
    )

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Return the delay after a failed ``attempt`` (1-based)."""
        return self.base_delay * (self.factor ** (attempt - 1))

    def is_retryable(self, exc: BaseException) -> bool:
        if isinstance(exc, NetworkUnavailable):
            return True
        if isinstance(exc, RemoteHTTPError):
            return exc.status_code in self.retryable_statuses
        return False


class RetryExecutor:
    """Run an async callable under a RetryPolicy.

    Usage::

        executor = RetryExecutor(RetryPolicy())
        rows = await executor.execute(lambda: client.get_json(url))

    ``sleep`` is injectable so tests can record the delays instead of waiting.
    """

    def __init__(self, policy: RetryPolicy | None = None, sleep: SleepFn | None = None) -> None:
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or asyncio.sleep

    async def execute(self, call: Callable[[], Awaitable[T]], description: str = "request") -> T:
        """Await ``call()`` until it succeeds or the policy gives up.

        Args:
            call:        Zero-argument factory returning a fresh awaitable per attempt.
            description: Short label used in log lines.

        Returns:
            Whatever ``call()`` returns on the first successful attempt.

        Raises:
            The last error observed, once retries are exhausted, or any
            non-retryable error immediately.
        """
        attempts = self.policy.max_attempts
        for attempt in range(1, attempts + 1):
            try:
                return await call()
            except Exception as exc:
                if not self.policy.is_retryable(exc):
                    raise
                if attempt >= attempts:
                    logger.error(
                        "%s failed after %d attempts: %s", description, attempt, exc
                    )
                    raise
                delay = self.policy.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                    description, attempt, attempts, exc, delay,
                )
                await self._sleep(delay)
        raise RuntimeError("retry loop exited without a result")  # pragma: no cover
