"""Resource graph store.

Holds declared resources and their dependency edges, and is the only owner
of resource state. Cycles are rejected at declaration time, so a graph that
accepted every ``declare`` call always has a topological order once its
forward references are resolved.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterable, Iterator

from shipyard.core.config import ResourceDecl
from shipyard.core.result import Err, Ok, Result

from .errors import (
    CycleError,
    DependencyNotReady,
    DuplicateResourceError,
    GraphError,
    InvalidResourceError,
    NotFoundError,
)
from .model import Resource, ResourceKind, ResourceState

__all__ = ["ResourceGraph", "graph_from_config"]


class ResourceGraph:
    def __init__(self) -> None:
        # dict preserves insertion order, which is the declaration order.
        self._resources: dict[str, Resource] = {}

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self) -> Iterator[Resource]:
        return iter(tuple(self._resources.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._resources

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(self._resources)

    def declare(self, resource: Resource) -> Result[Resource, GraphError]:
        """Register a resource and its dependency edges.

        Dependencies may name resources declared later. On error the graph
        is unchanged.
        """
        if resource.name in self._resources:
            return Err(DuplicateResourceError(resource.name))

        for dep in resource.depends_on:
            path = self._path_between(dep, resource.name)
            if path is not None:
                return Err(CycleError((resource.name, *path)))

        self._resources[resource.name] = resource
        return Ok(resource)

    def get(self, name: str) -> Result[Resource, NotFoundError]:
        resource = self._resources.get(name)
        if resource is None:
            return Err(NotFoundError(name))
        return Ok(resource)

    def dependents(self, name: str) -> tuple[str, ...]:
        """Names of resources that depend directly on ``name``."""
        return tuple(r.name for r in self._resources.values() if name in r.depends_on)

    def resolve_order(self) -> Result[tuple[Resource, ...], GraphError]:
        """Topological order, leaves first; ties keep declaration order."""
        for resource in self._resources.values():
            for dep in resource.depends_on:
                if dep not in self._resources:
                    return Err(NotFoundError(dep, referenced_by=resource.name))

        names = list(self._resources)
        index = {name: i for i, name in enumerate(names)}
        remaining = {r.name: len(r.depends_on) for r in self._resources.values()}
        children: dict[str, list[str]] = {name: [] for name in names}
        for resource in self._resources.values():
            for dep in resource.depends_on:
                children[dep].append(resource.name)

        ready = [index[name] for name, count in remaining.items() if count == 0]
        heapq.heapify(ready)
        order: list[Resource] = []
        while ready:
            name = names[heapq.heappop(ready)]
            order.append(self._resources[name])
            for child in children[name]:
                remaining[child] -= 1
                if remaining[child] == 0:
                    heapq.heappush(ready, index[child])

        if len(order) != len(names):
            # Unreachable through declare(); kept so a corrupted graph fails loudly.
            stuck = tuple(name for name in names if remaining[name] > 0)
            return Err(CycleError(stuck))
        return Ok(tuple(order))

    def set_state(
        self, name: str, state: ResourceState
    ) -> Result[Resource, NotFoundError | DependencyNotReady]:
        """Transition a resource.

        Entering ``applying`` requires every dependency to be ``applied``.
        """
        current = self._resources.get(name)
        if current is None:
            return Err(NotFoundError(name))

        if state == ResourceState.APPLYING:
            for dep in current.depends_on:
                dep_resource = self._resources.get(dep)
                if dep_resource is None:
                    return Err(NotFoundError(dep, referenced_by=name))
                if dep_resource.state != ResourceState.APPLIED:
                    return Err(DependencyNotReady(name, dep, dep_resource.state))

        updated = current.with_state(state)
        self._resources[name] = updated
        return Ok(updated)

    def _path_between(self, start: str, target: str) -> tuple[str, ...] | None:
        """Dependency path from ``start`` to ``target`` following depends_on edges."""
        stack: list[tuple[str, tuple[str, ...]]] = [(start, (start,))]
        seen: set[str] = set()
        while stack:
            name, path = stack.pop()
            if name == target:
                return path
            if name in seen:
                continue
            seen.add(name)
            resource = self._resources.get(name)
            if resource is None:
                continue
            for dep in resource.depends_on:
                stack.append((dep, (*path, dep)))
        return None


def graph_from_config(decls: Iterable[ResourceDecl]) -> Result[ResourceGraph, GraphError]:
    """Build a graph from ``[[resources]]`` declarations."""
    graph = ResourceGraph()
    for decl in decls:
        try:
            kind = ResourceKind(decl.kind)
        except ValueError:
            allowed = ", ".join(k.value for k in ResourceKind)
            return Err(InvalidResourceError(decl.name, f"unknown kind {decl.kind!r} (expected {allowed})"))

        declared = graph.declare(
            Resource(
                name=decl.name,
                kind=kind,
                depends_on=decl.depends_on,
                attributes=dict(decl.attributes),
            )
        )
        if isinstance(declared, Err):
            return declared
    return Ok(graph)
