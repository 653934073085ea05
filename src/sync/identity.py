"""Resolve the remote patient id for this device.

Check-then-create with race tolerance:

1. cached id in the state store → return it, no remote call
2. ``GET patients?device_id=eq.<id>`` → cache and return the match
3. ``POST patients`` → cache and return the new id; a 409 means another
   process (e.g. the app and a background task launched together) won the
   race, so re-query and use its row

The state store is only written here, after a successful resolution.
"""

from __future__ import annotations

import logging
from typing import Protocol

from src.services.state_store import StateStore
from src.sync.errors import IdentityResolutionFailed, ProtocolError, RemoteHTTPError

logger = logging.getLogger("qolmonitor.sync.identity")


class PatientDirectory(Protocol):
    async def find_patient(self, device_id: str) -> str | None: ...

    async def create_patient(self, device_id: str) -> str: ...


class IdentityResolver:
    """Map the stable device id onto its remote patient id."""

    def __init__(self, remote: PatientDirectory, state: StateStore) -> None:
        self._remote = remote
        self._state = state

    @property
    def cached_patient_id(self) -> str | None:
        return self._state.get_patient_id()

    async def resolve(self, device_id: str | None = None) -> str:
        """Return the patient id for ``device_id`` (defaults to this device).

        Raises:
            IdentityResolutionFailed: Wrapping whatever prevented resolution.
        """
        cached = self._state.get_patient_id()
        if cached:
            return cached

        device_id = device_id or self._state.device_id
        try:
            patient_id = await self._lookup_or_create(device_id)
        except Exception as exc:
            logger.error("Patient resolution failed for device %s: %s", device_id, exc)
            raise IdentityResolutionFailed(exc) from exc

        self._state.set_patient_id(patient_id)
        return patient_id

    async def _lookup_or_create(self, device_id: str) -> str:
        existing = await self._remote.find_patient(device_id)
        if existing:
            logger.info("Found existing patient %s for device %s", existing, device_id)
            return existing

        try:
            created = await self._remote.create_patient(device_id)
        except RemoteHTTPError as exc:
            if not exc.is_conflict:
                raise
            logger.info(
                "Patient for device %s created concurrently; re-querying", device_id
            )
            winner = await self._remote.find_patient(device_id)
            if not winner:
                raise ProtocolError(
                    "Patient creation conflicted but no patient row was found"
                ) from exc
            return winner

        logger.info("Created patient %s for device %s", created, device_id)
        return created
