"""Artifacts and publish errors."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

__all__ = ["Artifact", "BuildContext", "BuildError", "PublishError", "PushError", "RegistryError"]


@dataclass(frozen=True, slots=True)
class BuildContext:
    path: Path
    dockerfile: str = "Dockerfile"
    build_args: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Artifact:
    """Immutable image identified by (service, revision_id).

    The registry tag is the revision id, so republishing a revision can only
    ever resolve to the same image.
    """

    service: str
    revision_id: str
    repository: str
    digest: str

    @property
    def tag(self) -> str:
        return self.revision_id

    @property
    def image_uri(self) -> str:
        return f"{self.repository}:{self.tag}"


@dataclass(frozen=True, slots=True)
class RegistryError:
    message: str
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class BuildError:
    """The build step exited non-zero; retry means rebuilding."""

    service: str
    returncode: int
    logs: str
    timed_out: bool = False

    @property
    def message(self) -> str:
        if self.timed_out:
            return f"image build for {self.service} timed out"
        return f"image build for {self.service} failed (exit {self.returncode})"


@dataclass(frozen=True, slots=True)
class PushError:
    """The registry rejected the artifact after a good build; retry means re-pushing."""

    service: str
    reason: str
    detail: str | None = None

    @property
    def message(self) -> str:
        return f"push of {self.service} failed: {self.reason}"


PublishError = BuildError | PushError
