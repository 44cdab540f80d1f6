"""Release and service revision model.

A ``Release`` is one end-to-end rollout attempt and is owned by the
orchestrator. All instances are immutable; each transition produces a new
value that is persisted before the next stage starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum

from shipyard.images.model import Artifact

__all__ = [
    "FailureRecord",
    "HealthSample",
    "HealthStatus",
    "Release",
    "ReleaseState",
    "ServiceOutcome",
    "ServiceRevision",
    "StageName",
    "StageRecord",
    "StageStatus",
    "TERMINAL_STATES",
    "now_iso",
]


class ReleaseState(StrEnum):
    PENDING = "pending"
    PUBLISHING = "publishing"
    MIGRATING = "migrating"
    DEPLOYING = "deploying"
    VERIFYING = "verifying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATES = frozenset({ReleaseState.SUCCEEDED, ReleaseState.FAILED})


class StageName(StrEnum):
    PUBLISH = "publish"
    MIGRATE = "migrate"
    DEPLOY = "deploy"
    VERIFY = "verify"


class StageStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class HealthStatus(StrEnum):
    PENDING = "pending"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


def now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass(frozen=True, slots=True)
class StageRecord:
    name: StageName
    status: StageStatus = StageStatus.PENDING
    started_at: str | None = None
    finished_at: str | None = None
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class HealthSample:
    running: int
    healthy: int
    desired: int

    def __str__(self) -> str:
        return f"{self.healthy}/{self.desired} healthy ({self.running} running)"


@dataclass(frozen=True, slots=True)
class ServiceOutcome:
    """Per-service deploy/verify result; siblings never affect each other."""

    service: str
    deploy: StageStatus = StageStatus.PENDING
    verify: StageStatus = StageStatus.PENDING
    error: str | None = None
    health_history: tuple[HealthSample, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.deploy == StageStatus.SUCCEEDED and self.verify == StageStatus.SUCCEEDED


@dataclass(frozen=True, slots=True)
class FailureRecord:
    """Serialized failure: which stage stopped the release and why.

    ``detail`` holds captured diagnostics (build log tail, redacted
    migration log); it never contains secret values.
    """

    stage: StageName
    kind: str
    message: str
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class ServiceRevision:
    service: str
    revision_id: str
    task_count: int
    health_status: HealthStatus = HealthStatus.PENDING
    release_id: str | None = None


@dataclass(frozen=True, slots=True)
class Release:
    release_id: str
    revision_id: str
    services: tuple[str, ...]
    state: ReleaseState = ReleaseState.PENDING
    stages: tuple[StageRecord, ...] = field(
        default_factory=lambda: tuple(StageRecord(name) for name in StageName)
    )
    artifacts: tuple[Artifact, ...] = ()
    outcomes: tuple[ServiceOutcome, ...] = ()
    rollback_target: str | None = None
    failure: FailureRecord | None = None
    commit_sha: str | None = None
    owner: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def stage(self, name: StageName) -> StageRecord:
        for record in self.stages:
            if record.name == name:
                return record
        raise KeyError(name)

    def artifact_for(self, service: str) -> Artifact | None:
        for artifact in self.artifacts:
            if artifact.service == service:
                return artifact
        return None

    def outcome_for(self, service: str) -> ServiceOutcome | None:
        for outcome in self.outcomes:
            if outcome.service == service:
                return outcome
        return None

    def with_stage(
        self,
        name: StageName,
        status: StageStatus,
        *,
        detail: str | None = None,
    ) -> Release:
        now = now_iso()
        stages: list[StageRecord] = []
        for record in self.stages:
            if record.name != name:
                stages.append(record)
                continue
            started = now if status == StageStatus.RUNNING else (record.started_at or now)
            finished = None if status == StageStatus.RUNNING else now
            stages.append(
                replace(
                    record,
                    status=status,
                    started_at=started,
                    finished_at=finished,
                    detail=detail if detail is not None else record.detail,
                )
            )
        return replace(self, stages=tuple(stages), updated_at=now)

    def advance(self, state: ReleaseState, **changes: object) -> Release:
        return replace(self, state=state, updated_at=now_iso(), **changes)  # pyright: ignore[reportArgumentType]

    def fail(self, failure: FailureRecord, **changes: object) -> Release:
        return self.advance(ReleaseState.FAILED, failure=failure, **changes)
