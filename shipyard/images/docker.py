"""Docker CLI adapters: image builds and the local registry index."""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Protocol

from shipyard.core.result import Err, Ok, Result
from shipyard.core.structured import as_str_dict
from shipyard.platform.files import read_json, write_json
from shipyard.platform.process import ProcessError, run as run_process

from .model import BuildContext, RegistryError

__all__ = ["DockerBuilder", "ImageBuilder", "LocalImageRegistry", "image_id"]


class ImageBuilder(Protocol):
    def build(self, context: BuildContext, image: str, revision_id: str) -> Result[str, ProcessError]:
        """Build ``image`` from ``context``; Ok carries the build log."""
        ...


class DockerBuilder:
    def __init__(self, *, cwd: Path, timeout: float) -> None:
        self._cwd = cwd
        self._timeout = timeout

    def build(self, context: BuildContext, image: str, revision_id: str) -> Result[str, ProcessError]:
        cmd = [
            "docker",
            "build",
            "--file",
            str(context.path / context.dockerfile),
            "--tag",
            image,
            "--label",
            f"org.opencontainers.image.revision={revision_id}",
        ]
        for key, value in sorted(context.build_args.items()):
            cmd.extend(["--build-arg", f"{key}={value}"])
        cmd.append(str(context.path))
        return run_process(cmd, cwd=self._cwd, timeout=self._timeout)


def image_id(image: str, *, cwd: Path) -> Result[str, ProcessError]:
    """Content id (sha256:...) of a local image."""
    result = run_process(
        ["docker", "image", "inspect", "--format", "{{.Id}}", image], cwd=cwd, timeout=60.0
    )
    return result.map(str.strip)


class LocalImageRegistry:
    """Registry index for the local backend.

    Images stay in the local docker daemon; the index records which
    ``repository:tag`` pairs were published and their content ids.
    """

    def __init__(self, *, path: Path, cwd: Path) -> None:
        self._path = path
        self._cwd = cwd
        self._lock = threading.Lock()

    def find(self, repository: str, tag: str) -> Result[str | None, RegistryError]:
        with self._lock:
            loaded = self._load()
            if isinstance(loaded, Err):
                return loaded
            return Ok(loaded.value.get(f"{repository}:{tag}"))

    def push(self, image: str, repository: str, tag: str) -> Result[str, RegistryError]:
        digest = image_id(image, cwd=self._cwd)
        if isinstance(digest, Err):
            return Err(RegistryError("image not found in local docker daemon", digest.error.output_tail()))

        with self._lock:
            loaded = self._load()
            if isinstance(loaded, Err):
                return loaded
            index = loaded.value
            key = f"{repository}:{tag}"
            existing = index.get(key)
            if existing is not None:
                return Ok(existing)
            index[key] = digest.value
            try:
                write_json(self._path, index)
            except OSError as e:
                return Err(RegistryError(f"failed to write registry index: {e}"))
        return Ok(digest.value)

    def _load(self) -> Result[dict[str, str], RegistryError]:
        try:
            raw = read_json(self._path)
        except (OSError, json.JSONDecodeError) as e:
            return Err(RegistryError(f"failed to read registry index: {e}"))
        if raw is None:
            return Ok({})
        data = as_str_dict(raw)
        if data is None:
            return Err(RegistryError("registry index is corrupt"))
        return Ok({k: str(v) for k, v in data.items()})
