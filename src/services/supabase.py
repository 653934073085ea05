"""Supabase REST (PostgREST) client used by the sync engine.

Talks to ``{SUPABASE_URL}/rest/v1`` with ``httpx``.  Every request carries the
project's ``apikey`` header and, when the auth layer has one, a bearer access
token.  Token refresh is not this module's job: it just asks the token
provider for whatever is current at request time.

All calls go through a ``RetryExecutor``.  Failures are translated into the
sync error taxonomy:

    httpx.TransportError      → NetworkUnavailable   (retryable)
    non-2xx response          → RemoteHTTPError      (retryable for 500/502/503)
    2xx with unexpected body  → ProtocolError        (terminal)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable

import httpx

from src.sync.base import Resolution, chunked, ensure_utc
from src.sync.errors import NetworkUnavailable, ProtocolError, RemoteHTTPError
from src.sync.retry import RetryExecutor

logger = logging.getLogger("qolmonitor.supabase")

TokenProvider = Callable[[], str | None]

DEFAULT_BATCH_SIZE = 1000


class SupabaseRestClient:
    """Thin async client for the tables the sync engine writes.

    Usage::

        client = SupabaseRestClient(settings.supabase_url, settings.supabase_anon_key)
        patient_id = await client.find_patient(device_id)
        await client.write_records("locations", rows, Resolution.IGNORE_DUPLICATES,
                                   on_conflict="patient_id,timestamp,latitude,longitude")
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        token_provider: TokenProvider | None = None,
        http_client: httpx.AsyncClient | None = None,
        executor: RetryExecutor | None = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            base_url:       Supabase project URL (without ``/rest/v1``).
            api_key:        Project anon/service key sent as ``apikey``.
            token_provider: Returns the current user access token, or None.
            http_client:    Optional pre-configured httpx client (for testing).
            executor:       Retry executor; defaults to the standard policy.
            timeout:        Request timeout for the internally created client.
        """
        self._rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self._api_key = api_key
        self._token_provider = token_provider
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._executor = executor or RetryExecutor()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http_client.aclose()

    # ------------------------------------------------------------------
    # Request plumbing
    # ------------------------------------------------------------------

    def _build_headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Content-Type": "application/json",
        }
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _send(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        url = f"{self._rest_url}/{table}"

        async def attempt() -> httpx.Response:
            # headers are rebuilt per attempt so a refreshed token is picked up
            headers = self._build_headers(prefer)
            try:
                response = await self._http_client.request(
                    method, url, params=params, json=json, headers=headers
                )
            except httpx.TransportError as exc:
                raise NetworkUnavailable(
                    f"Network unavailable: {exc}", details={"url": url}
                ) from exc
            if not response.is_success:
                logger.error(
                    "Supabase API error: %s %s → %d", method, url, response.status_code
                )
                raise RemoteHTTPError(response.status_code, method, url, response.text)
            return response

        return await self._executor.execute(attempt, description=f"{method} {table}")

    @staticmethod
    def _json_rows(response: httpx.Response) -> list[dict[str, Any]]:
        try:
            data = response.json()
        except ValueError as exc:
            raise ProtocolError(f"Response body is not JSON: {exc}") from exc
        if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
            raise ProtocolError(
                "Expected a JSON array of objects", details={"body": str(data)[:200]}
            )
        return data

    @staticmethod
    def _first_id(rows: list[dict[str, Any]]) -> str | None:
        if rows and rows[0].get("id"):
            return str(rows[0]["id"])
        return None

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    async def find_patient(self, device_id: str) -> str | None:
        """Return the patient id registered for ``device_id``, if any."""
        response = await self._send(
            "GET", "patients", params={"device_id": f"eq.{device_id}", "select": "id"}
        )
        return self._first_id(self._json_rows(response))

    async def create_patient(self, device_id: str) -> str:
        """Create the patient row for ``device_id`` and return its id.

        Raises:
            RemoteHTTPError: 409 if another client created it first.
            ProtocolError:   If the created representation carries no id.
        """
        response = await self._send(
            "POST", "patients", json={"device_id": device_id}, prefer="return=representation"
        )
        patient_id = self._first_id(self._json_rows(response))
        if patient_id is None:
            raise ProtocolError("Patient creation returned no id")
        return patient_id

    # ------------------------------------------------------------------
    # Entity writes
    # ------------------------------------------------------------------

    async def write_batch(
        self,
        table: str,
        rows: list[dict[str, Any]],
        resolution: Resolution,
        on_conflict: str | None = None,
    ) -> None:
        """POST one batch of rows with the given conflict resolution."""
        params = {"on_conflict": on_conflict} if on_conflict else None
        await self._send(
            "POST",
            table,
            params=params,
            json=rows,
            prefer=f"resolution={resolution.value},return=minimal",
        )

    async def write_records(
        self,
        table: str,
        rows: list[dict[str, Any]],
        resolution: Resolution,
        on_conflict: str | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        """Write ``rows`` in consecutive batches; stops at the first failing batch.

        Returns:
            Number of batches sent.
        """
        batches = chunked(rows, batch_size)
        for index, batch in enumerate(batches, start=1):
            await self.write_batch(table, batch, resolution, on_conflict)
            logger.debug("%s: batch %d/%d (%d rows) written", table, index, len(batches), len(batch))
        return len(batches)

    # ------------------------------------------------------------------
    # Sync history
    # ------------------------------------------------------------------

    async def create_sync_attempt(
        self, patient_id: str, sync_type: str, started_at: datetime
    ) -> str:
        """Insert an in-progress sync_history row and return its id."""
        response = await self._send(
            "POST",
            "sync_history",
            json={
                "patient_id": patient_id,
                "sync_type": sync_type,
                "started_at": ensure_utc(started_at).isoformat(),
                "status": "in_progress",
            },
            prefer="return=representation",
        )
        attempt_id = self._first_id(self._json_rows(response))
        if attempt_id is None:
            raise ProtocolError("sync_history insert returned no id")
        return attempt_id

    async def complete_sync_attempt(
        self,
        attempt_id: str,
        completed_at: datetime,
        total: int,
        counts: dict[str, int],
    ) -> None:
        """Mark a sync_history row completed with its per-kind counts."""
        body: dict[str, Any] = {
            "completed_at": ensure_utc(completed_at).isoformat(),
            "status": "completed",
            "records_synced": total,
        }
        body.update(counts)
        await self._send(
            "PATCH", "sync_history", params={"id": f"eq.{attempt_id}"}, json=body
        )

    async def fail_sync_attempt(
        self, attempt_id: str, completed_at: datetime, error: str
    ) -> None:
        """Mark a sync_history row failed with an error message."""
        await self._send(
            "PATCH",
            "sync_history",
            params={"id": f"eq.{attempt_id}"},
            json={
                "completed_at": ensure_utc(completed_at).isoformat(),
                "status": "failed",
                "error_message": error,
            },
        )

    # ------------------------------------------------------------------
    # Connectivity
    # ------------------------------------------------------------------

    async def ping(self) -> bool:
        """Return True if the REST endpoint answers at all (no retries)."""
        try:
            response = await self._http_client.get(
                f"{self._rest_url}/", headers=self._build_headers()
            )
        except httpx.HTTPError as exc:
            logger.warning("Supabase connectivity probe failed: %s", exc)
            return False
        return response.status_code < 500
