"""Image publisher: build once per (service, revision), push, never overwrite."""

from __future__ import annotations

import hashlib
import threading
from collections.abc import Mapping
from typing import Protocol

from shipyard.core.result import Err, Ok, Result
from shipyard.output.console import ConsoleProtocol, Style

from .docker import ImageBuilder
from .model import Artifact, BuildContext, BuildError, PublishError, PushError, RegistryError

__all__ = ["ImagePublisher", "ImageRegistry", "MemoryImageRegistry"]


class ImageRegistry(Protocol):
    def find(self, repository: str, tag: str) -> Result[str | None, RegistryError]:
        """Digest of ``repository:tag`` if it was already published."""
        ...

    def push(self, image: str, repository: str, tag: str) -> Result[str, RegistryError]:
        """Publish a locally built image; returns its digest."""
        ...


class MemoryImageRegistry:
    def __init__(self) -> None:
        self.images: dict[str, str] = {}
        self._lock = threading.Lock()

    def find(self, repository: str, tag: str) -> Result[str | None, RegistryError]:
        with self._lock:
            return Ok(self.images.get(f"{repository}:{tag}"))

    def push(self, image: str, repository: str, tag: str) -> Result[str, RegistryError]:
        with self._lock:
            key = f"{repository}:{tag}"
            digest = self.images.setdefault(key, "sha256:" + hashlib.sha256(key.encode()).hexdigest())
            return Ok(digest)


class ImagePublisher:
    def __init__(
        self,
        *,
        builder: ImageBuilder,
        registry: ImageRegistry,
        repositories: Mapping[str, str],
        console: ConsoleProtocol,
    ) -> None:
        self._builder = builder
        self._registry = registry
        self._repositories = repositories
        self._console = console

    def publish(
        self, service: str, revision_id: str, context: BuildContext
    ) -> Result[Artifact, PublishError]:
        """Publish ``service`` at ``revision_id``.

        An artifact already in the registry is returned as-is without a build.
        """
        repository = self._repositories.get(service)
        if repository is None:
            return Err(PushError(service, "no repository configured for service"))

        found = self._registry.find(repository, revision_id)
        if isinstance(found, Err):
            return Err(PushError(service, found.error.message, found.error.detail))
        if found.value is not None:
            self._console.print(f"{service}: {repository}:{revision_id} already published", Style.DIM)
            return Ok(Artifact(service, revision_id, repository, found.value))

        image = f"{repository}:{revision_id}"
        self._console.print(f"{service}: building {image}", Style.DIM)
        built = self._builder.build(context, image, revision_id)
        if isinstance(built, Err):
            e = built.error
            return Err(BuildError(service, e.returncode, e.output_tail(), timed_out=e.timed_out))

        pushed = self._registry.push(image, repository, revision_id)
        if isinstance(pushed, Err):
            return Err(PushError(service, pushed.error.message, pushed.error.detail))

        self._console.success(f"{service}: published {image}")
        return Ok(Artifact(service, revision_id, repository, pushed.value))
