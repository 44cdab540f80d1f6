"""Provisioner: converge live infrastructure to the declared graph.

Resources are processed one at a time in dependency order; no two
infrastructure mutations run concurrently. ``apply`` halts at the first
failure and leaves already-applied resources alone. Re-running ``apply``
resumes from the recorded state, and a converged graph produces no side
effects at all (no driver calls, no state write).
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from shipyard.core.result import Err, Ok, Result
from shipyard.graph.errors import DependencyNotReady, GraphError, NotFoundError
from shipyard.graph.model import Resource, ResourceKind, ResourceState
from shipyard.graph.store import ResourceGraph
from shipyard.output.console import ConsoleProtocol, Style

from .drivers import DriverError, DriverSet, Outputs
from .state import (
    ProvisionState,
    ResourceRecord,
    StateError,
    load_state,
    now_iso,
    save_state,
)

__all__ = [
    "ApplyReport",
    "DestroyReport",
    "Plan",
    "PlanAction",
    "PlannedChange",
    "ProvisionError",
    "ProvisionFailure",
    "Provisioner",
]


class PlanAction(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    NOOP = "noop"
    DELETE = "delete"


@dataclass(frozen=True, slots=True)
class PlannedChange:
    name: str
    kind: ResourceKind
    action: PlanAction


@dataclass(frozen=True, slots=True)
class Plan:
    changes: tuple[PlannedChange, ...]

    @property
    def has_changes(self) -> bool:
        return any(c.action != PlanAction.NOOP for c in self.changes)

    def count(self, action: PlanAction) -> int:
        return sum(1 for c in self.changes if c.action == action)


@dataclass(frozen=True, slots=True)
class ProvisionFailure:
    """A resource failed to apply or destroy; retry by re-running the command."""

    resource: str
    cause: DriverError | StateError | DependencyNotReady | NotFoundError | str

    @property
    def message(self) -> str:
        cause = self.cause if isinstance(self.cause, str) else self.cause.message
        return f"{self.resource}: {cause}"

    @property
    def hint(self) -> str | None:
        if isinstance(self.cause, DriverError):
            return "fix the cause and re-run; resources applied so far are kept"
        return None


ProvisionError = ProvisionFailure | GraphError | StateError


@dataclass(frozen=True, slots=True)
class ApplyReport:
    applied: tuple[str, ...]
    unchanged: tuple[str, ...]
    pruned: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.applied or self.pruned)


@dataclass(frozen=True, slots=True)
class DestroyReport:
    destroyed: tuple[str, ...]
    skipped: tuple[str, ...]


class Provisioner:
    def __init__(self, *, drivers: DriverSet, state_path: Path, console: ConsoleProtocol) -> None:
        self._drivers = drivers
        self._state_path = state_path
        self._console = console

    def plan(self, graph: ResourceGraph) -> Result[Plan, GraphError | StateError]:
        order = graph.resolve_order()
        if isinstance(order, Err):
            return order
        loaded = load_state(self._state_path)
        if isinstance(loaded, Err):
            return loaded
        state = loaded.value

        changes: list[PlannedChange] = []
        for resource in order.value:
            record = state.records.get(resource.name)
            changes.append(PlannedChange(resource.name, resource.kind, _action_for(resource, record, state)))
        for record in _orphans(graph, state):
            changes.append(PlannedChange(record.name, record.kind, PlanAction.DELETE))
        return Ok(Plan(tuple(changes)))

    def apply(self, graph: ResourceGraph) -> Result[ApplyReport, ProvisionError]:
        order = graph.resolve_order()
        if isinstance(order, Err):
            return order
        loaded = load_state(self._state_path)
        if isinstance(loaded, Err):
            return loaded
        state = loaded.value

        applied: list[str] = []
        unchanged: list[str] = []
        for resource in order.value:
            record = state.records.get(resource.name)
            if _action_for(resource, record, state) == PlanAction.NOOP:
                graph.set_state(resource.name, ResourceState.APPLIED)
                unchanged.append(resource.name)
                continue

            outcome = self._apply_one(graph, state, resource, record)
            if isinstance(outcome, Err):
                return outcome
            applied.append(resource.name)

        pruned = self._prune(graph, state)
        if isinstance(pruned, Err):
            return pruned

        if not applied and not pruned.value:
            self._console.success("infrastructure is up to date")
        return Ok(ApplyReport(tuple(applied), tuple(unchanged), pruned.value))

    def destroy(self, graph: ResourceGraph) -> Result[DestroyReport, ProvisionError]:
        """Tear down in reverse dependency order, halting at the first failure."""
        order = graph.resolve_order()
        if isinstance(order, Err):
            return order
        loaded = load_state(self._state_path)
        if isinstance(loaded, Err):
            return loaded
        state = loaded.value

        destroyed: list[str] = []
        skipped: list[str] = []
        for resource in reversed(order.value):
            record = state.records.get(resource.name)
            if record is None or record.state == ResourceState.DESTROYED:
                skipped.append(resource.name)
                continue

            outcome = self._destroy_one(state, resource, record)
            if isinstance(outcome, Err):
                graph.set_state(resource.name, ResourceState.FAILED)
                return outcome
            graph.set_state(resource.name, ResourceState.DESTROYED)
            destroyed.append(resource.name)

        return Ok(DestroyReport(tuple(destroyed), tuple(skipped)))

    def _apply_one(
        self,
        graph: ResourceGraph,
        state: ProvisionState,
        resource: Resource,
        record: ResourceRecord | None,
    ) -> Result[None, ProvisionError]:
        verb = "creating" if record is None else "updating"
        self._console.print(f"{verb} {resource.kind} {resource.name}", Style.DIM)

        entered = graph.set_state(resource.name, ResourceState.APPLYING)
        if isinstance(entered, Err):
            return Err(ProvisionFailure(resource.name, entered.error))

        driver = self._drivers.get(resource.kind)
        if driver is None:
            graph.set_state(resource.name, ResourceState.FAILED)
            return Err(ProvisionFailure(resource.name, f"no driver for kind {resource.kind}"))

        inputs = _inputs_of(resource, state)
        current: Mapping[str, str] | None = record.outputs if record is not None else None
        result = driver.apply(resource, inputs, current)

        if isinstance(result, Err):
            graph.set_state(resource.name, ResourceState.FAILED)
            # Empty fingerprint: the next apply retries this resource.
            state.records[resource.name] = ResourceRecord(
                name=resource.name,
                kind=resource.kind,
                state=ResourceState.FAILED,
                fingerprint="",
                outputs=dict(current or {}),
                updated_at=now_iso(),
            )
            saved = save_state(self._state_path, state)
            if isinstance(saved, Err):
                return saved
            self._console.error(f"{resource.name}: {result.error.message}")
            return Err(ProvisionFailure(resource.name, result.error))

        graph.set_state(resource.name, ResourceState.APPLIED)
        state.records[resource.name] = ResourceRecord(
            name=resource.name,
            kind=resource.kind,
            state=ResourceState.APPLIED,
            fingerprint=_fingerprint(resource, inputs),
            outputs=result.value,
            updated_at=now_iso(),
        )
        saved = save_state(self._state_path, state)
        if isinstance(saved, Err):
            return Err(ProvisionFailure(resource.name, saved.error))
        self._console.success(f"{resource.name} applied")
        return Ok(None)

    def _destroy_one(
        self, state: ProvisionState, resource: Resource, record: ResourceRecord
    ) -> Result[None, ProvisionError]:
        self._console.print(f"destroying {resource.kind} {resource.name}", Style.DIM)
        driver = self._drivers.get(resource.kind)
        if driver is None:
            return Err(ProvisionFailure(resource.name, f"no driver for kind {resource.kind}"))

        result = driver.destroy(resource, record.outputs)
        if isinstance(result, Err):
            state.records[resource.name] = record.with_state(ResourceState.FAILED)
            saved = save_state(self._state_path, state)
            if isinstance(saved, Err):
                return saved
            self._console.error(f"{resource.name}: {result.error.message}")
            return Err(ProvisionFailure(resource.name, result.error))

        del state.records[resource.name]
        saved = save_state(self._state_path, state)
        if isinstance(saved, Err):
            return Err(ProvisionFailure(resource.name, saved.error))
        self._console.success(f"{resource.name} destroyed")
        return Ok(None)

    def _prune(self, graph: ResourceGraph, state: ProvisionState) -> Result[tuple[str, ...], ProvisionError]:
        """Destroy recorded resources that are no longer declared, newest first."""
        pruned: list[str] = []
        for record in reversed(_orphans(graph, state)):
            orphan = Resource(name=record.name, kind=record.kind)
            outcome = self._destroy_one(state, orphan, record)
            if isinstance(outcome, Err):
                return outcome
            pruned.append(record.name)
        return Ok(tuple(pruned))


def _inputs_of(resource: Resource, state: ProvisionState) -> dict[str, Outputs]:
    return {dep: state.outputs_of(dep) for dep in resource.depends_on}


def _fingerprint(resource: Resource, inputs: Mapping[str, Outputs]) -> str:
    """Declared configuration plus the dependency outputs it was applied with."""
    blob = json.dumps(
        {"resource": resource.fingerprint(), "inputs": inputs}, sort_keys=True, separators=(",", ":")
    )
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


def _action_for(resource: Resource, record: ResourceRecord | None, state: ProvisionState) -> PlanAction:
    if record is None or record.state == ResourceState.DESTROYED:
        return PlanAction.CREATE
    if record.state != ResourceState.APPLIED:
        return PlanAction.UPDATE
    if record.fingerprint == _fingerprint(resource, _inputs_of(resource, state)):
        return PlanAction.NOOP
    return PlanAction.UPDATE


def _orphans(graph: ResourceGraph, state: ProvisionState) -> list[ResourceRecord]:
    return [r for name, r in state.records.items() if name not in graph]
