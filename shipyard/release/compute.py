"""Compute platform port: roll services to a new revision and report health."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Protocol

from shipyard.core.result import Err, Ok, Result
from shipyard.core.structured import as_str_dict, get_int, get_str
from shipyard.images.model import Artifact
from shipyard.platform.files import read_json, write_json

from .errors import DeployFailure
from .model import HealthSample

__all__ = ["ComputePlatform", "LocalComputePlatform"]


class ComputePlatform(Protocol):
    def update_service(
        self, service: str, artifact: Artifact, desired_count: int
    ) -> Result[None, DeployFailure]:
        """Point ``service`` at ``artifact`` and start a rolling replacement."""
        ...

    def health(self, service: str) -> Result[HealthSample, DeployFailure]:
        """Running and healthy task counts for the service's newest revision."""
        ...


class LocalComputePlatform:
    """Local backend: services are records in a JSON file.

    A service reports healthy immediately after an update, unless its image
    URI is listed in ``unhealthy`` (used to rehearse failed rollouts).
    """

    def __init__(self, path: Path, *, unhealthy: frozenset[str] = frozenset()) -> None:
        self._path = path
        self._unhealthy = unhealthy
        self._lock = threading.Lock()

    def update_service(
        self, service: str, artifact: Artifact, desired_count: int
    ) -> Result[None, DeployFailure]:
        with self._lock:
            loaded = self._load(service)
            if isinstance(loaded, Err):
                return loaded
            data = loaded.value
            data[service] = {"image": artifact.image_uri, "desired": desired_count}
            try:
                write_json(self._path, data)
            except OSError as e:
                return Err(DeployFailure(service, f"failed to record service: {e}"))
        return Ok(None)

    def health(self, service: str) -> Result[HealthSample, DeployFailure]:
        with self._lock:
            loaded = self._load(service)
        if isinstance(loaded, Err):
            return loaded
        entry = as_str_dict(loaded.value.get(service))
        if entry is None:
            return Err(DeployFailure(service, "service is not deployed"))
        desired = get_int(entry, "desired") or 0
        if get_str(entry, "image") in self._unhealthy:
            return Ok(HealthSample(running=desired, healthy=0, desired=desired))
        return Ok(HealthSample(running=desired, healthy=desired, desired=desired))

    def _load(self, service: str) -> Result[dict[str, object], DeployFailure]:
        try:
            raw = read_json(self._path)
        except (OSError, json.JSONDecodeError) as e:
            return Err(DeployFailure(service, f"failed to read local services: {e}"))
        if raw is None:
            return Ok({})
        data = as_str_dict(raw)
        if data is None:
            return Err(DeployFailure(service, "local services file is corrupt"))
        return Ok(data)
