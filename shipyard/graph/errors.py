"""Errors raised by the resource graph store.

All of them describe a user-fixable definition bug; the CLI maps them to
exit code 2.
"""

from __future__ import annotations

from dataclasses import dataclass

from .model import ResourceState


@dataclass(frozen=True, slots=True)
class CycleError:
    """Adding an edge would close a dependency cycle.

    ``path`` starts and ends with the same resource name.
    """

    path: tuple[str, ...]

    @property
    def message(self) -> str:
        return "dependency cycle: " + " -> ".join(self.path)


@dataclass(frozen=True, slots=True)
class NotFoundError:
    name: str
    referenced_by: str | None = None

    @property
    def message(self) -> str:
        if self.referenced_by:
            return f"unknown resource {self.name!r} (referenced by {self.referenced_by!r})"
        return f"unknown resource {self.name!r}"


@dataclass(frozen=True, slots=True)
class DuplicateResourceError:
    name: str

    @property
    def message(self) -> str:
        return f"resource {self.name!r} is declared more than once"


@dataclass(frozen=True, slots=True)
class InvalidResourceError:
    name: str
    reason: str

    @property
    def message(self) -> str:
        return f"resource {self.name!r}: {self.reason}"


@dataclass(frozen=True, slots=True)
class DependencyNotReady:
    """A resource tried to enter ``applying`` before a dependency was applied."""

    name: str
    dependency: str
    dependency_state: ResourceState

    @property
    def message(self) -> str:
        return (
            f"resource {self.name!r} cannot be applied: dependency {self.dependency!r} "
            f"is {self.dependency_state}"
        )


GraphError = CycleError | NotFoundError | DuplicateResourceError | InvalidResourceError
