"""Provisioned resource state (``.shipyard/state.json``).

The state file is the provisioner's memory of what it last converged: the
fingerprint of the declaration that was applied and the outputs the driver
returned (ids, ARNs, URIs; never secret values).
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from pathlib import Path

from shipyard.core.result import Err, Ok, Result
from shipyard.core.structured import as_str_dict, get_str, get_table
from shipyard.graph.model import ResourceKind, ResourceState
from shipyard.platform.files import read_json, write_json

__all__ = ["ProvisionState", "ResourceRecord", "StateError", "load_state", "now_iso", "save_state"]

_SCHEMA = 1


@dataclass(frozen=True, slots=True)
class StateError:
    message: str
    path: Path | None = None
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class ResourceRecord:
    name: str
    kind: ResourceKind
    state: ResourceState
    fingerprint: str
    outputs: dict[str, str] = field(default_factory=dict)
    updated_at: str = ""

    def with_state(self, state: ResourceState) -> ResourceRecord:
        return replace(self, state=state, updated_at=now_iso())


def now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(slots=True)
class ProvisionState:
    """Mutable, insertion-ordered record set (order = first apply order)."""

    records: dict[str, ResourceRecord] = field(default_factory=dict)

    def outputs_of(self, name: str) -> dict[str, str]:
        record = self.records.get(name)
        return dict(record.outputs) if record else {}


def load_state(path: Path) -> Result[ProvisionState, StateError]:
    try:
        raw = read_json(path)
    except (OSError, json.JSONDecodeError) as e:
        return Err(StateError(f"failed to read state file: {e}", path=path))
    if raw is None:
        return Ok(ProvisionState())

    data = as_str_dict(raw)
    resources = get_table(data, "resources") if data is not None else None
    if data is None or resources is None:
        return Err(StateError("state file is not a shipyard state document", path=path))

    state = ProvisionState()
    for name, obj in resources.items():
        item = as_str_dict(obj)
        if item is None:
            return Err(StateError(f"corrupt state entry: {name}", path=path))
        try:
            kind = ResourceKind(get_str(item, "kind") or "")
            res_state = ResourceState(get_str(item, "state") or "")
        except ValueError:
            return Err(StateError(f"corrupt state entry: {name}", path=path))
        outputs = get_table(item, "outputs") or {}
        state.records[name] = ResourceRecord(
            name=name,
            kind=kind,
            state=res_state,
            fingerprint=get_str(item, "fingerprint") or "",
            outputs={k: str(v) for k, v in outputs.items()},
            updated_at=get_str(item, "updated_at") or "",
        )
    return Ok(state)


def save_state(path: Path, state: ProvisionState) -> Result[None, StateError]:
    payload: dict[str, object] = {
        "schema": _SCHEMA,
        "resources": {
            name: {
                "kind": str(r.kind),
                "state": str(r.state),
                "fingerprint": r.fingerprint,
                "outputs": r.outputs,
                "updated_at": r.updated_at,
            }
            for name, r in state.records.items()
        },
    }
    try:
        write_json(path, payload)
    except OSError as e:
        return Err(StateError(f"failed to write state file: {e}", path=path))
    return Ok(None)
