"""Durable key-value state shared by the sync engine.

Holds the handful of process-wide scalars that must survive restarts:

    device_id    — stable identifier of this installation (generated once)
    patient_id   — cached remote identity for ``device_id``
    last_sync_at — the sync cursor (ISO-8601 UTC)
    anchors      — user-defined home/work coordinates

Persisted as a small JSON document, rewritten atomically (temp file +
``os.replace``) on every change.  A file that cannot be parsed is renamed to
``<name>.corrupt`` and the store starts empty.  Passing ``path=None`` keeps the state in
memory only, which is what tests use.
"""

from __future__ import annotations

import json
import logging
import os
import threading
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger("qolmonitor.state")

_DEVICE_ID = "device_id"
_PATIENT_ID = "patient_id"
_LAST_SYNC = "last_sync_at"
_ANCHORS = "anchors"

ANCHOR_NAMES = ("home", "work")


class StateStore:
    """JSON-file backed key-value store."""

    def __init__(self, path: str | Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._data: dict[str, Any] = self._load()

    # ------------------------------------------------------------------
    # Raw access
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value
            self._flush()

    # ------------------------------------------------------------------
    # Typed accessors
    # ------------------------------------------------------------------

    @property
    def device_id(self) -> str:
        """Return the installation's device id, generating it on first use."""
        with self._lock:
            existing = self._data.get(_DEVICE_ID)
            if existing:
                return existing
            new_id = str(uuid.uuid4()).upper()
            self._data[_DEVICE_ID] = new_id
            self._flush()
            logger.info("Generated device id %s", new_id)
            return new_id

    def get_patient_id(self) -> str | None:
        return self.get(_PATIENT_ID)

    def set_patient_id(self, patient_id: str) -> None:
        self.set(_PATIENT_ID, patient_id)

    def get_cursor(self) -> datetime | None:
        """Return the last successful sync start time, or None before the first."""
        raw = self.get(_LAST_SYNC)
        if not raw:
            return None
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            logger.warning("Ignoring unparseable sync cursor %r", raw)
            return None

    def set_cursor(self, value: datetime) -> None:
        self.set(_LAST_SYNC, value.isoformat())

    def get_anchor(self, name: str) -> tuple[float, float] | None:
        """Return the (latitude, longitude) of a user-defined place."""
        anchor = (self.get(_ANCHORS) or {}).get(name)
        if not anchor:
            return None
        try:
            return float(anchor["latitude"]), float(anchor["longitude"])
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed %s anchor: %r", name, anchor)
            return None

    def set_anchor(self, name: str, latitude: float, longitude: float) -> None:
        if name not in ANCHOR_NAMES:
            raise ValueError(f"Unknown anchor '{name}'. Expected one of {ANCHOR_NAMES}")
        with self._lock:
            anchors = dict(self._data.get(_ANCHORS) or {})
            anchors[name] = {"latitude": latitude, "longitude": longitude}
            self._data[_ANCHORS] = anchors
            self._flush()

    def clear_anchor(self, name: str) -> None:
        with self._lock:
            anchors = dict(self._data.get(_ANCHORS) or {})
            if anchors.pop(name, None) is not None:
                self._data[_ANCHORS] = anchors
                self._flush()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _load(self) -> dict[str, Any]:
        if self._path is None or not self._path.exists():
            return {}
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Could not read state file %s: %s", self._path, exc)
            self._quarantine()
            return {}
        if not isinstance(data, dict):
            logger.error("State file %s does not contain an object", self._path)
            self._quarantine()
            return {}
        return data

    def _quarantine(self) -> None:
        # An OSError here propagates: the service does not start over a file it cannot move.
        target = self._path.with_suffix(self._path.suffix + ".corrupt")
        os.replace(self._path, target)
        logger.error("Moved unreadable state file to %s; starting with empty state", target)

    def _flush(self) -> None:
        # caller holds self._lock
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as fh:
            json.dump(self._data, fh, indent=2, sort_keys=True)
        os.replace(tmp, self._path)
