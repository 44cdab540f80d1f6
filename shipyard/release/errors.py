"""Error types for the release pipeline.

Two families:
- release-fatal: publish (``BuildError``/``PushError``), ``MigrationFailure``,
  ``ReleaseCancelled`` stop the whole release;
- per-service: ``DeployFailure`` and ``HealthTimeout`` are recorded against
  one service and never halt its siblings.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .model import HealthSample, StageName

__all__ = [
    "DeployFailure",
    "HealthTimeout",
    "InvalidRevision",
    "MigrationFailure",
    "ReleaseCancelled",
    "ReleaseInFlight",
    "ReleaseNotFound",
    "ReleaseOwned",
    "ReleaseResumeError",
    "ReleaseStartError",
    "StoreError",
    "UnknownService",
]


@dataclass(frozen=True, slots=True)
class MigrationFailure:
    logs: str
    exit_code: int | None = None
    timed_out: bool = False

    @property
    def message(self) -> str:
        if self.timed_out:
            return "migration timed out"
        if self.exit_code is None:
            return "migration could not start"
        return f"migration failed (exit {self.exit_code})"


@dataclass(frozen=True, slots=True)
class DeployFailure:
    service: str
    cause: str

    @property
    def message(self) -> str:
        return f"deploy of {self.service} failed: {self.cause}"


@dataclass(frozen=True, slots=True)
class HealthTimeout:
    service: str
    waited_seconds: float
    history: tuple[HealthSample, ...] = ()

    @property
    def message(self) -> str:
        last = f"; last: {self.history[-1]}" if self.history else ""
        return f"{self.service} did not become healthy within {self.waited_seconds:.0f}s{last}"


@dataclass(frozen=True, slots=True)
class ReleaseCancelled:
    before_stage: StageName
    abandoned: bool = False

    @property
    def message(self) -> str:
        if self.abandoned:
            return f"release cancelled during {self.before_stage}; its process is no longer running"
        return f"release cancelled before {self.before_stage}"


@dataclass(frozen=True, slots=True)
class UnknownService:
    name: str
    available: tuple[str, ...]

    @property
    def message(self) -> str:
        if not self.name:
            return "no services selected"
        return f"unknown service: {self.name}"

    @property
    def hint(self) -> str | None:
        if not self.available:
            return "no services are configured in [services]"
        return f"available: {', '.join(self.available)}"


@dataclass(frozen=True, slots=True)
class InvalidRevision:
    value: str
    reason: str

    @property
    def message(self) -> str:
        return f"invalid revision {self.value!r}: {self.reason}"


@dataclass(frozen=True, slots=True)
class ReleaseInFlight:
    release_id: str
    services: tuple[str, ...]

    @property
    def message(self) -> str:
        return f"release {self.release_id} is still in flight for: {', '.join(self.services)}"

    @property
    def hint(self) -> str | None:
        return (
            f"wait for it to finish, or if its process died run: shipyard release resume "
            f"{self.release_id} (or: shipyard release cancel {self.release_id})"
        )


@dataclass(frozen=True, slots=True)
class ReleaseNotFound:
    release_id: str

    @property
    def message(self) -> str:
        return f"release not found: {self.release_id}"


@dataclass(frozen=True, slots=True)
class StoreError:
    message: str
    path: Path | None = None
    hint: str | None = None


ReleaseStartError = UnknownService | InvalidRevision | ReleaseInFlight | StoreError


@dataclass(frozen=True, slots=True)
class ReleaseOwned:
    release_id: str
    owner: str

    @property
    def message(self) -> str:
        return f"release {self.release_id} is still driven by {self.owner}"

    @property
    def hint(self) -> str | None:
        return "pass --force if that process is known to be gone"


ReleaseResumeError = ReleaseNotFound | ReleaseOwned | StoreError
