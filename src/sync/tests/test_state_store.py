"""Tests for the JSON-file state store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from src.services.state_store import StateStore
from src.sync.tests.conftest import SYNC_START


class TestStateStore:
    def test_device_id_is_stable(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        first = StateStore(path).device_id
        assert StateStore(path).device_id == first
        assert first == first.upper()

    def test_cursor_round_trip(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        StateStore(path).set_cursor(SYNC_START)
        assert StateStore(path).get_cursor() == SYNC_START

    def test_unparseable_cursor_is_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"last_sync_at": "yesterday"}))
        assert StateStore(path).get_cursor() is None

    def test_corrupt_file_is_moved_aside(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json")

        state = StateStore(path)
        device_id = state.device_id

        assert (tmp_path / "state.json.corrupt").read_text() == "{not json"
        assert state.get_patient_id() is None
        assert json.loads(path.read_text())["device_id"] == device_id

    def test_non_object_file_is_moved_aside(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text('["device_id", "ABC"]')

        StateStore(path)

        assert not path.exists()
        assert (tmp_path / "state.json.corrupt").read_text() == '["device_id", "ABC"]'

    def test_readable_file_is_left_in_place(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text(json.dumps({"device_id": "ABC", "patient_id": "p-1"}))

        state = StateStore(path)

        assert state.device_id == "ABC"
        assert state.get_patient_id() == "p-1"
        assert not (tmp_path / "state.json.corrupt").exists()

    def test_anchors(self) -> None:
        state = StateStore()
        state.set_anchor("home", 51.5, -0.12)
        assert state.get_anchor("home") == (51.5, -0.12)
        assert state.get_anchor("work") is None
        state.clear_anchor("home")
        assert state.get_anchor("home") is None

    def test_unknown_anchor_rejected(self) -> None:
        with pytest.raises(ValueError):
            StateStore().set_anchor("gym", 0.0, 0.0)

    def test_no_temp_file_left_behind(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "state.json"
        StateStore(path).set_patient_id("p1")
        assert [p.name for p in path.parent.iterdir()] == ["state.json"]
