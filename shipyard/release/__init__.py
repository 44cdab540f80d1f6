"""Release pipeline: publish images, migrate, deploy and verify services."""

from .compute import ComputePlatform, LocalComputePlatform
from .errors import (
    DeployFailure,
    HealthTimeout,
    InvalidRevision,
    MigrationFailure,
    ReleaseCancelled,
    ReleaseInFlight,
    ReleaseNotFound,
    ReleaseStartError,
    StoreError,
    UnknownService,
)
from .migration import (
    DatabaseCredentials,
    DockerTaskRunner,
    MigrationResult,
    MigrationRunner,
    TaskOutcome,
    TaskRunner,
    TaskSpec,
)
from .model import (
    FailureRecord,
    HealthSample,
    HealthStatus,
    Release,
    ReleaseState,
    ServiceOutcome,
    ServiceRevision,
    StageName,
    StageRecord,
    StageStatus,
)
from .orchestrator import (
    CancelSignal,
    NeverCancel,
    ReleaseOrchestrator,
    ReleaseSettings,
    ReleaseTarget,
    StoreCancelSignal,
    revision_from_commit,
    validate_revision,
)
from .store import ReleaseStore

__all__ = [
    "CancelSignal",
    "ComputePlatform",
    "DatabaseCredentials",
    "DeployFailure",
    "DockerTaskRunner",
    "FailureRecord",
    "HealthSample",
    "HealthStatus",
    "HealthTimeout",
    "InvalidRevision",
    "LocalComputePlatform",
    "MigrationFailure",
    "MigrationResult",
    "MigrationRunner",
    "NeverCancel",
    "Release",
    "ReleaseCancelled",
    "ReleaseInFlight",
    "ReleaseNotFound",
    "ReleaseOrchestrator",
    "ReleaseSettings",
    "ReleaseStartError",
    "ReleaseState",
    "ReleaseStore",
    "ReleaseTarget",
    "ServiceOutcome",
    "ServiceRevision",
    "StageName",
    "StageRecord",
    "StageStatus",
    "StoreCancelSignal",
    "StoreError",
    "TaskOutcome",
    "TaskRunner",
    "TaskSpec",
    "UnknownService",
    "revision_from_commit",
    "validate_revision",
]
