"""Error taxonomy for the sync engine.

Four families:

    Local             — local store read failures.  Fatal to the current
                        attempt, not retried within it.
    Transient-Remote  — network failures and retryable 5xx responses.  Retried
                        by the executor, then escalated.
    Terminal-Remote   — 4xx and non-retryable 5xx responses.  Escalated
                        immediately.
    Protocol          — the remote answered 2xx but with an unexpected shape.

The orchestrator wraps these in attempt-level errors
(``IdentityResolutionFailed``, ``AttemptRecordingFailed``,
``EntitySyncFailed``) so callers can tell which stage broke.
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for every error raised by the sync engine.

    Attributes:
        message:     Human-readable description, safe to show in the UI.
        code:        Machine-readable error code.
        details:     Extra context for logs.
        recoverable: True if a later scheduled run can be expected to succeed.
    """

    code = "SYNC_000"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# ---------------------------------------------------------------------------
# Local
# ---------------------------------------------------------------------------


class LocalStoreError(SyncError):
    """Reading from the on-device store failed."""

    code = "SYNC_LOCAL"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, details=details, recoverable=False)


# ---------------------------------------------------------------------------
# Remote
# ---------------------------------------------------------------------------


class RemoteError(SyncError):
    """Any failure talking to the remote store."""

    code = "SYNC_REMOTE"


class NetworkUnavailable(RemoteError):
    """The request never got an HTTP response (DNS, connect, timeout...)."""

    code = "SYNC_NETWORK"


class RemoteHTTPError(RemoteError):
    """The remote answered with a non-2xx status.

    Whether it is retried is decided by the executor's policy, which owns the
    set of retryable statuses.
    """

    code = "SYNC_HTTP"

    def __init__(self, status_code: int, method: str, url: str, body: str = "") -> None:
        super().__init__(
            f"HTTP error: {status_code}",
            details={"method": method, "url": url, "body": body[:500]},
        )
        self.status_code = status_code

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409


class ProtocolError(RemoteError):
    """A 2xx response whose body did not have the expected shape."""

    code = "SYNC_PROTOCOL"


# ---------------------------------------------------------------------------
# Attempt-level
# ---------------------------------------------------------------------------


class IdentityResolutionFailed(SyncError):
    """The patient record for this device could not be found or created."""

    code = "SYNC_IDENTITY"

    def __init__(self, cause: Exception) -> None:
        super().__init__(
            f"Failed to resolve patient record: {cause}",
            details={"cause": type(cause).__name__},
            recoverable=_recoverable(cause),
        )
        self.cause = cause


class AttemptRecordingFailed(SyncError):
    """The sync_history row for this attempt could not be created or finalized."""

    code = "SYNC_HISTORY"

    def __init__(self, cause: Exception) -> None:
        super().__init__(
            f"Failed to record sync history: {cause}",
            details={"cause": type(cause).__name__},
            recoverable=_recoverable(cause),
        )
        self.cause = cause


class EntitySyncFailed(SyncError):
    """Synchronizing one entity kind failed; the whole attempt is aborted."""

    code = "SYNC_ENTITY"

    def __init__(self, kind: str, cause: Exception) -> None:
        super().__init__(
            f"Failed to sync {kind}: {cause}",
            details={"kind": kind, "cause": type(cause).__name__},
            recoverable=_recoverable(cause),
        )
        self.kind = kind
        self.cause = cause


def _recoverable(cause: Exception) -> bool:
    if isinstance(cause, SyncError):
        return cause.recoverable
    return True
