from __future__ import annotations

import json
from pathlib import Path

from shipyard.core.result import Err, Ok
from shipyard.graph.model import ResourceKind, ResourceState
from shipyard.provision.state import ProvisionState, ResourceRecord, load_state, save_state


def test_missing_file_is_empty_state(tmp_path: Path) -> None:
    result = load_state(tmp_path / "state.json")
    assert isinstance(result, Ok)
    assert result.value.records == {}


def test_save_then_load(tmp_path: Path) -> None:
    path = tmp_path / ".shipyard" / "state.json"
    state = ProvisionState()
    state.records["repo"] = ResourceRecord(
        name="repo",
        kind=ResourceKind.REGISTRY,
        state=ResourceState.APPLIED,
        fingerprint="abc",
        outputs={"repository_uri": "localhost:5000/api"},
        updated_at="2026-01-01T00:00:00+00:00",
    )
    assert isinstance(save_state(path, state), Ok)

    loaded = load_state(path)
    assert isinstance(loaded, Ok)
    assert loaded.value.records == state.records
    assert loaded.value.outputs_of("repo") == {"repository_uri": "localhost:5000/api"}
    assert loaded.value.outputs_of("missing") == {}


def test_corrupt_json(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("{not json", encoding="utf-8")
    result = load_state(path)
    assert isinstance(result, Err)
    assert "failed to read state file" in result.error.message


def test_unknown_kind_is_corrupt(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(
        json.dumps({"schema": 1, "resources": {"x": {"kind": "mainframe", "state": "applied"}}}),
        encoding="utf-8",
    )
    result = load_state(path)
    assert isinstance(result, Err)
    assert result.error.message == "corrupt state entry: x"


def test_wrong_document(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text("[]", encoding="utf-8")
    result = load_state(path)
    assert isinstance(result, Err)
    assert result.error.path == path
