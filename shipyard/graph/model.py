"""Resource model for the infrastructure graph."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum

__all__ = ["Resource", "ResourceKind", "ResourceState"]


class ResourceKind(StrEnum):
    NETWORK = "network"
    REGISTRY = "registry"
    DATABASE = "database"
    COMPUTE_SERVICE = "compute-service"
    SECRET = "secret"


class ResourceState(StrEnum):
    DECLARED = "declared"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"
    DESTROYED = "destroyed"


@dataclass(frozen=True, slots=True)
class Resource:
    """A named infrastructure unit.

    ``attributes`` is the opaque configuration handed to the driver for this
    kind. ``depends_on`` holds resource names, deduplicated in declaration
    order. Secret values never appear here; a compute service references a
    secret resource by name and receives its ARN/ref as a driver input.
    """

    name: str
    kind: ResourceKind
    depends_on: tuple[str, ...] = ()
    attributes: Mapping[str, object] = field(default_factory=dict)
    state: ResourceState = ResourceState.DECLARED

    def __post_init__(self) -> None:
        object.__setattr__(self, "depends_on", tuple(dict.fromkeys(self.depends_on)))

    def fingerprint(self) -> str:
        """Digest of the declared configuration (not the state).

        A resource whose recorded fingerprint matches has converged.
        """
        payload = {
            "kind": str(self.kind),
            "depends_on": sorted(self.depends_on),
            "attributes": self.attributes,
        }
        blob = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(blob.encode("utf-8")).hexdigest()

    def with_state(self, state: ResourceState) -> Resource:
        return replace(self, state=state)
