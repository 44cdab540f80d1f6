"""Resource drivers: the side effects behind each resource kind.

A driver creates or updates one live resource and returns its outputs
(identifiers other resources need). ``inputs`` carries the outputs of the
resource's direct dependencies keyed by dependency name, which is how a
compute service learns the repository URI and the secret refs it mounts
without ever seeing a secret value.
"""

from __future__ import annotations

import json
import secrets as pysecrets
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from shipyard.core.result import Err, Ok, Result
from shipyard.core.structured import as_str_dict
from shipyard.graph.model import Resource, ResourceKind
from shipyard.platform.files import read_json, write_json
from shipyard.secrets.model import SecretNotFoundError
from shipyard.secrets.registry import SecretRegistry

__all__ = [
    "DriverError",
    "DriverSet",
    "LocalResourceDriver",
    "Outputs",
    "ResourceDriver",
    "SecretDriver",
    "local_drivers",
]

Outputs = dict[str, str]


@dataclass(frozen=True, slots=True)
class DriverError:
    resource: str
    message: str
    detail: str | None = None


class ResourceDriver(Protocol):
    def apply(
        self,
        resource: Resource,
        inputs: Mapping[str, Outputs],
        current: Mapping[str, str] | None,
    ) -> Result[Outputs, DriverError]:
        """Create the resource, or update it when ``current`` (last outputs) is given."""
        ...

    def destroy(self, resource: Resource, outputs: Mapping[str, str]) -> Result[None, DriverError]: ...


DriverSet = Mapping[ResourceKind, ResourceDriver]


class SecretDriver:
    """Ensures a secret exists in the registry.

    Attributes:
        secret_name: registry name (defaults to the resource name)
        length: length of the generated initial value (default 32)

    An existing secret is never overwritten: rotation happens out-of-band.
    """

    def __init__(self, registry: SecretRegistry) -> None:
        self._registry = registry

    def apply(
        self,
        resource: Resource,
        inputs: Mapping[str, Outputs],
        current: Mapping[str, str] | None,
    ) -> Result[Outputs, DriverError]:
        name = _secret_name(resource)
        latest = self._registry.latest(name)
        if isinstance(latest, Ok):
            return Ok({"secret_name": name, "secret_ref": str(latest.value)})
        if not isinstance(latest.error, SecretNotFoundError):
            return Err(DriverError(resource.name, latest.error.message))

        length = resource.attributes.get("length", 32)
        if not isinstance(length, int) or isinstance(length, bool) or length < 16:
            return Err(DriverError(resource.name, "length must be an integer >= 16"))

        created = self._registry.put(name, pysecrets.token_urlsafe(length)[:length])
        if isinstance(created, Err):
            return Err(DriverError(resource.name, created.error.message))
        return Ok({"secret_name": name, "secret_ref": str(created.value)})

    def destroy(self, resource: Resource, outputs: Mapping[str, str]) -> Result[None, DriverError]:
        name = outputs.get("secret_name") or _secret_name(resource)
        deleted = self._registry.delete(name)
        if isinstance(deleted, Err):
            if isinstance(deleted.error, SecretNotFoundError):
                return Ok(None)
            return Err(DriverError(resource.name, deleted.error.message))
        return Ok(None)


def _secret_name(resource: Resource) -> str:
    name = resource.attributes.get("secret_name")
    return name if isinstance(name, str) and name else resource.name


class LocalResourceDriver:
    """Simulated infrastructure recorded in a JSON file.

    Used by the ``local`` backend to rehearse graphs end to end. Setting
    ``attributes.fail = true`` makes apply fail, which is handy for
    exercising partial-apply recovery.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def apply(
        self,
        resource: Resource,
        inputs: Mapping[str, Outputs],
        current: Mapping[str, str] | None,
    ) -> Result[Outputs, DriverError]:
        if resource.attributes.get("fail") is True:
            return Err(DriverError(resource.name, "simulated failure (attributes.fail = true)"))

        outputs = _local_outputs(resource, inputs)
        with self._lock:
            loaded = self._load(resource.name)
            if isinstance(loaded, Err):
                return loaded
            data = loaded.value
            data[resource.name] = {
                "kind": str(resource.kind),
                "attributes": dict(resource.attributes),
                "outputs": outputs,
            }
            try:
                write_json(self._path, data)
            except OSError as e:
                return Err(DriverError(resource.name, f"failed to record resource: {e}"))
        return Ok(outputs)

    def destroy(self, resource: Resource, outputs: Mapping[str, str]) -> Result[None, DriverError]:
        if resource.attributes.get("fail_destroy") is True:
            return Err(DriverError(resource.name, "simulated failure (attributes.fail_destroy = true)"))
        with self._lock:
            loaded = self._load(resource.name)
            if isinstance(loaded, Err):
                return loaded
            data = loaded.value
            data.pop(resource.name, None)
            try:
                write_json(self._path, data)
            except OSError as e:
                return Err(DriverError(resource.name, f"failed to record resource: {e}"))
        return Ok(None)

    def _load(self, resource_name: str) -> Result[dict[str, object], DriverError]:
        try:
            raw = read_json(self._path)
        except (OSError, json.JSONDecodeError) as e:
            return Err(DriverError(resource_name, f"failed to read local resources: {e}"))
        if raw is None:
            return Ok({})
        data = as_str_dict(raw)
        if data is None:
            return Err(DriverError(resource_name, "local resources file is corrupt"))
        return Ok(data)


def _local_outputs(resource: Resource, inputs: Mapping[str, Outputs]) -> Outputs:
    attrs = resource.attributes
    outputs: Outputs = {"id": f"local-{resource.kind}-{resource.name}"}
    match resource.kind:
        case ResourceKind.REGISTRY:
            repo = attrs.get("repository", resource.name)
            outputs["repository_uri"] = f"localhost:5000/{repo}"
        case ResourceKind.DATABASE:
            outputs["endpoint"] = f"{resource.name}.local:5432"
        case ResourceKind.COMPUTE_SERVICE:
            refs = sorted(o["secret_ref"] for o in inputs.values() if "secret_ref" in o)
            outputs["service_name"] = str(attrs.get("service", resource.name))
            outputs["secret_refs"] = ",".join(refs)
        case _:
            pass
    return outputs


def local_drivers(path: Path, registry: SecretRegistry) -> dict[ResourceKind, ResourceDriver]:
    local = LocalResourceDriver(path)
    return {
        ResourceKind.NETWORK: local,
        ResourceKind.REGISTRY: local,
        ResourceKind.DATABASE: local,
        ResourceKind.COMPUTE_SERVICE: local,
        ResourceKind.SECRET: SecretDriver(registry),
    }
