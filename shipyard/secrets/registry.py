"""Secret registry interface and the in-process implementations.

Each ``put`` creates a new version; earlier versions stay resolvable. Writes
are administrative and rare, reads are shared by the provisioner and the
migration runner.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Protocol

from shipyard.core.result import Err, Ok, Result
from shipyard.core.structured import as_obj_list, as_str_dict
from shipyard.platform.files import read_json, write_json

from .model import SecretBackendError, SecretError, SecretNotFoundError, SecretRef, SecretValue

__all__ = ["FileSecretRegistry", "MemorySecretRegistry", "SecretRegistry", "resolve_all"]


class SecretRegistry(Protocol):
    def put(self, name: str, value: str) -> Result[SecretRef, SecretError]: ...

    def resolve(self, ref: SecretRef) -> Result[SecretValue, SecretError]: ...

    def latest(self, name: str) -> Result[SecretRef, SecretError]: ...

    def delete(self, name: str) -> Result[None, SecretError]:
        """Remove a secret and all of its versions."""
        ...


def resolve_all(
    registry: SecretRegistry, refs: dict[str, SecretRef]
) -> Result[dict[str, SecretValue], SecretError]:
    """Resolve a mapping of env var name -> ref, stopping at the first failure."""
    values: dict[str, SecretValue] = {}
    for env_name, ref in refs.items():
        resolved = registry.resolve(ref)
        if isinstance(resolved, Err):
            return resolved
        values[env_name] = resolved.value
    return Ok(values)


class MemorySecretRegistry:
    """Versions are "1", "2", ... per name."""

    def __init__(self) -> None:
        self._versions: dict[str, list[str]] = {}
        self._lock = threading.Lock()

    def put(self, name: str, value: str) -> Result[SecretRef, SecretError]:
        with self._lock:
            versions = self._versions.setdefault(name, [])
            versions.append(value)
            return Ok(SecretRef(name=name, version=str(len(versions))))

    def resolve(self, ref: SecretRef) -> Result[SecretValue, SecretError]:
        with self._lock:
            return _pick(self._versions.get(ref.name), ref)

    def latest(self, name: str) -> Result[SecretRef, SecretError]:
        with self._lock:
            versions = self._versions.get(name)
            if not versions:
                return Err(SecretNotFoundError(SecretRef(name)))
            return Ok(SecretRef(name=name, version=str(len(versions))))

    def delete(self, name: str) -> Result[None, SecretError]:
        with self._lock:
            if self._versions.pop(name, None) is None:
                return Err(SecretNotFoundError(SecretRef(name)))
            return Ok(None)


class FileSecretRegistry:
    """Local-backend registry persisted to a 0600 JSON file.

    Only meant for rehearsing pipelines on a workstation.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    def put(self, name: str, value: str) -> Result[SecretRef, SecretError]:
        with self._lock:
            loaded = self._load()
            if isinstance(loaded, Err):
                return loaded
            data = loaded.value
            data.setdefault(name, []).append(value)
            try:
                write_json(self._path, data, mode=0o600)
            except OSError as e:
                return Err(SecretBackendError(name, f"failed to write secrets file: {e}"))
            return Ok(SecretRef(name=name, version=str(len(data[name]))))

    def resolve(self, ref: SecretRef) -> Result[SecretValue, SecretError]:
        with self._lock:
            loaded = self._load()
            if isinstance(loaded, Err):
                return loaded
            return _pick(loaded.value.get(ref.name), ref)

    def latest(self, name: str) -> Result[SecretRef, SecretError]:
        with self._lock:
            loaded = self._load()
            if isinstance(loaded, Err):
                return loaded
            versions = loaded.value.get(name)
            if not versions:
                return Err(SecretNotFoundError(SecretRef(name)))
            return Ok(SecretRef(name=name, version=str(len(versions))))

    def delete(self, name: str) -> Result[None, SecretError]:
        with self._lock:
            loaded = self._load()
            if isinstance(loaded, Err):
                return loaded
            data = loaded.value
            if data.pop(name, None) is None:
                return Err(SecretNotFoundError(SecretRef(name)))
            try:
                write_json(self._path, data, mode=0o600)
            except OSError as e:
                return Err(SecretBackendError(name, f"failed to write secrets file: {e}"))
            return Ok(None)

    def _load(self) -> Result[dict[str, list[str]], SecretError]:
        try:
            raw = read_json(self._path)
        except (OSError, json.JSONDecodeError) as e:
            return Err(SecretBackendError("*", f"failed to read secrets file: {e}"))
        if raw is None:
            return Ok({})

        table = as_str_dict(raw)
        if table is None:
            return Err(SecretBackendError("*", "secrets file root must be an object"))
        data: dict[str, list[str]] = {}
        for name, versions_obj in table.items():
            versions = as_obj_list(versions_obj)
            if versions is None or not all(isinstance(v, str) for v in versions):
                return Err(SecretBackendError(name, "corrupt secrets file entry"))
            data[name] = [str(v) for v in versions]
        return Ok(data)


def _pick(versions: list[str] | None, ref: SecretRef) -> Result[SecretValue, SecretError]:
    if not versions:
        return Err(SecretNotFoundError(ref))
    if ref.version is None:
        return Ok(SecretValue(versions[-1]))
    if not ref.version.isdigit():
        return Err(SecretNotFoundError(ref))
    idx = int(ref.version)
    if idx < 1 or idx > len(versions):
        return Err(SecretNotFoundError(ref))
    return Ok(SecretValue(versions[idx - 1]))
