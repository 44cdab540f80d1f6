"""Release orchestrator: publish → migrate → deploy → verify.

The release is driven through ``run_state_machine`` with one handler per
``ReleaseState``. Each handler finishes its stage and either fails the
release or moves it to the next state; the machine persists every advanced
release before the next handler runs, so a crashed or interrupted release
can be resumed from its stored state.
"""

from __future__ import annotations

import re
import time
import uuid
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol, TypeVar

from shipyard.core.config import DEFAULT_VERIFY_INTERVAL_SECONDS, DEFAULT_VERIFY_TIMEOUT_SECONDS
from shipyard.core.result import Err, Ok, Result
from shipyard.images.model import Artifact, BuildContext, BuildError
from shipyard.images.publisher import ImagePublisher
from shipyard.output.console import ConsoleProtocol, Style

from .compute import ComputePlatform
from .errors import (
    InvalidRevision,
    MigrationFailure,
    ReleaseCancelled,
    ReleaseInFlight,
    ReleaseNotFound,
    ReleaseOwned,
    ReleaseResumeError,
    ReleaseStartError,
    StoreError,
    UnknownService,
)
from .fsm import FINISH, StepAdvance, StepFinish, UnknownStep, advance, run_state_machine
from .migration import DatabaseCredentials, MigrationRunner
from .model import (
    FailureRecord,
    HealthStatus,
    Release,
    ReleaseState,
    ServiceOutcome,
    ServiceRevision,
    StageName,
    StageStatus,
)
from .owner import current_owner, owner_alive
from .store import ReleaseStore
from .verify import wait_healthy

__all__ = [
    "CancelSignal",
    "NeverCancel",
    "ReleaseOrchestrator",
    "ReleaseSettings",
    "ReleaseTarget",
    "StoreCancelSignal",
    "cancel_release",
    "revision_from_commit",
    "validate_revision",
]

_COMMIT_RE = re.compile(r"^[0-9a-f]{7,64}$")
_TAG_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}$")
REVISION_LENGTH = 12

T = TypeVar("T")
R = TypeVar("R")

_Step = Result[StepAdvance[Release] | StepFinish, StoreError]


@dataclass(frozen=True, slots=True)
class ReleaseTarget:
    service: str
    context: BuildContext
    desired_count: int = 1


@dataclass(frozen=True, slots=True)
class ReleaseSettings:
    verify_timeout_seconds: float = DEFAULT_VERIFY_TIMEOUT_SECONDS
    verify_interval_seconds: float = DEFAULT_VERIFY_INTERVAL_SECONDS
    max_parallel: int = 4
    migration_service: str | None = None


class CancelSignal(Protocol):
    def requested(self, release_id: str) -> bool: ...


class NeverCancel:
    def requested(self, release_id: str) -> bool:
        return False


class StoreCancelSignal:
    """Cancellation requested through ``shipyard release cancel``."""

    def __init__(self, store: ReleaseStore) -> None:
        self._store = store

    def requested(self, release_id: str) -> bool:
        return self._store.cancel_requested(release_id)


_STAGE_OF_STATE = {
    ReleaseState.PENDING: StageName.PUBLISH,
    ReleaseState.PUBLISHING: StageName.PUBLISH,
    ReleaseState.MIGRATING: StageName.MIGRATE,
    ReleaseState.DEPLOYING: StageName.DEPLOY,
    ReleaseState.VERIFYING: StageName.VERIFY,
}


def cancel_release(
    store: ReleaseStore,
    release_id: str,
    *,
    force: bool = False,
    is_alive: Callable[[str | None], bool] = owner_alive,
) -> Result[Release, ReleaseNotFound | StoreError]:
    """Request cancellation of a release and return its stored state.

    A live owner stops at its next stage boundary. A release nobody drives
    any more (or any release with ``force``) is failed on the spot, so it
    stops blocking new releases of its services.
    """
    loaded = store.load(release_id)
    if isinstance(loaded, Err):
        return loaded
    release = loaded.value
    if release.is_terminal:
        return Ok(release)

    requested = store.request_cancel(release_id)
    if isinstance(requested, Err):
        return requested
    if not force and is_alive(release.owner):
        return Ok(release)

    stage = _STAGE_OF_STATE[release.state]
    cancelled = ReleaseCancelled(stage, abandoned=True)
    if release.stage(stage).status == StageStatus.RUNNING:
        release = release.with_stage(stage, StageStatus.FAILED, detail=cancelled.message)
    return store.save(release.fail(FailureRecord(stage, "cancelled", cancelled.message)))


def revision_from_commit(commit_sha: str) -> Result[str, InvalidRevision]:
    """Revision id for a CI trigger: the first 12 characters of the commit."""
    sha = commit_sha.strip().lower()
    if not _COMMIT_RE.match(sha):
        return Err(InvalidRevision(commit_sha, "expected a hex commit sha of at least 7 characters"))
    return Ok(sha[:REVISION_LENGTH])


def validate_revision(value: str) -> Result[str, InvalidRevision]:
    revision = value.strip()
    if not _TAG_RE.match(revision):
        return Err(
            InvalidRevision(value, "must be 1-128 of [A-Za-z0-9_.-] and not start with '.' or '-'")
        )
    return Ok(revision)


def _new_release_id(revision_id: str) -> str:
    stamp = datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S")
    return f"{stamp}-{revision_id[:REVISION_LENGTH]}-{uuid.uuid4().hex[:4]}"


class ReleaseOrchestrator:
    def __init__(
        self,
        *,
        store: ReleaseStore,
        publisher: ImagePublisher,
        compute: ComputePlatform,
        targets: Mapping[str, ReleaseTarget],
        console: ConsoleProtocol,
        migrations: MigrationRunner | None = None,
        db: DatabaseCredentials | None = None,
        settings: ReleaseSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
        owner: str | None = None,
    ) -> None:
        self._store = store
        self._publisher = publisher
        self._compute = compute
        self._targets = targets
        self._console = console
        self._migrations = migrations
        self._db = db or DatabaseCredentials()
        self._settings = settings or ReleaseSettings()
        self._sleep = sleep
        self._owner = owner or current_owner()

    # Creation

    def create(
        self,
        services: Sequence[str],
        *,
        revision_id: str | None = None,
        commit_sha: str | None = None,
    ) -> Result[Release, ReleaseStartError]:
        """Validate and persist a new ``pending`` release.

        An explicit ``revision_id`` wins; otherwise it is derived from
        ``commit_sha``. Refuses to start while another non-terminal release
        shares a service.
        """
        if revision_id is not None:
            revision = validate_revision(revision_id)
        elif commit_sha is not None:
            revision = revision_from_commit(commit_sha)
        else:
            revision = Err(InvalidRevision("", "a revision or commit sha is required"))
        if isinstance(revision, Err):
            return revision

        selected = tuple(dict.fromkeys(s.strip() for s in services if s.strip()))
        available = tuple(sorted(self._targets))
        if not selected:
            return Err(UnknownService("", available))
        for name in selected:
            if name not in self._targets:
                return Err(UnknownService(name, available))

        in_flight = self._store.in_flight(selected)
        if isinstance(in_flight, Err):
            return in_flight
        if in_flight.value is not None:
            other = in_flight.value
            shared = tuple(s for s in other.services if s in selected)
            return Err(ReleaseInFlight(other.release_id, shared))

        previous = self._store.latest_succeeded(selected)
        if isinstance(previous, Err):
            return previous

        release = Release(
            release_id=_new_release_id(revision.value),
            revision_id=revision.value,
            services=selected,
            rollback_target=None if previous.value is None else previous.value.release_id,
            commit_sha=commit_sha.strip().lower() if commit_sha else None,
            owner=self._owner,
        )
        return self._store.save(release)

    def start(
        self,
        services: Sequence[str],
        *,
        revision_id: str | None = None,
        commit_sha: str | None = None,
        cancel: CancelSignal | None = None,
    ) -> Result[Release, ReleaseStartError | UnknownStep]:
        created = self.create(services, revision_id=revision_id, commit_sha=commit_sha)
        if isinstance(created, Err):
            return created
        return self.run(created.value, cancel=cancel)

    # Execution

    def run(
        self, release: Release, *, cancel: CancelSignal | None = None
    ) -> Result[Release, StoreError | UnknownStep]:
        """Drive ``release`` to a terminal state and return it.

        Release failures are recorded on the returned release; ``Err`` is
        reserved for persistence problems.
        """
        signal = cancel or NeverCancel()
        if not release.is_terminal and release.owner != self._owner:
            claimed = self._store.save(replace(release, owner=self._owner))
            if isinstance(claimed, Err):
                return claimed
            release = claimed.value
        handlers: dict[str, Callable[[Release], _Step]] = {
            ReleaseState.PENDING: lambda r: self._begin(r, signal),
            ReleaseState.PUBLISHING: lambda r: self._publish(r, signal),
            ReleaseState.MIGRATING: lambda r: self._migrate(r, signal),
            ReleaseState.DEPLOYING: lambda r: self._deploy(r, signal),
            ReleaseState.VERIFYING: self._verify,
            ReleaseState.SUCCEEDED: self._finish,
            ReleaseState.FAILED: self._finish,
        }
        self._console.header(f"Release {release.release_id} ({release.revision_id})")
        return run_state_machine(
            initial_state=release,
            get_step=lambda r: str(r.state),
            handlers=handlers,
            save_state=self._store.save,
        )

    def resume(
        self,
        release_id: str,
        *,
        cancel: CancelSignal | None = None,
        force: bool = False,
        is_alive: Callable[[str | None], bool] = owner_alive,
    ) -> Result[Release, ReleaseResumeError | UnknownStep]:
        """Continue a stored release from its current state.

        The handler of the stored state runs again from its start. A
        release whose owner process is still alive is refused unless
        ``force`` is set.
        """
        loaded = self._store.load(release_id)
        if isinstance(loaded, Err):
            return loaded
        release = loaded.value
        if release.is_terminal:
            return Ok(release)
        owner = release.owner
        if owner and owner != self._owner and not force and is_alive(owner):
            return Err(ReleaseOwned(release_id, owner))
        self._console.print(f"resuming {release_id} at {release.state}", Style.INFO)
        return self.run(release, cancel=cancel)

    def _begin(self, release: Release, cancel: CancelSignal) -> _Step:
        return Ok(self._enter(release, ReleaseState.PUBLISHING, StageName.PUBLISH, cancel))

    def _publish(self, release: Release, cancel: CancelSignal) -> _Step:
        artifacts: list[Artifact] = []
        for service in release.services:
            existing = release.artifact_for(service)
            if existing is not None:
                artifacts.append(existing)
                continue
            target = self._targets[service]
            published = self._publisher.publish(service, release.revision_id, target.context)
            if isinstance(published, Err):
                e = published.error
                kind = "build" if isinstance(e, BuildError) else "push"
                detail = e.logs if isinstance(e, BuildError) else e.detail
                self._console.error(e.message)
                failed = release.with_stage(StageName.PUBLISH, StageStatus.FAILED, detail=e.message)
                return Ok(
                    advance(
                        failed.fail(
                            FailureRecord(StageName.PUBLISH, kind, e.message, detail),
                            artifacts=tuple(artifacts),
                        )
                    )
                )
            artifacts.append(published.value)

        done = replace(release, artifacts=tuple(artifacts)).with_stage(
            StageName.PUBLISH, StageStatus.SUCCEEDED
        )
        return Ok(self._enter(done, ReleaseState.MIGRATING, StageName.MIGRATE, cancel))

    def _migrate(self, release: Release, cancel: CancelSignal) -> _Step:
        service = self._settings.migration_service
        if self._migrations is None or service is None:
            done = release.with_stage(
                StageName.MIGRATE, StageStatus.SUCCEEDED, detail="no migration configured"
            )
            return Ok(self._enter(done, ReleaseState.DEPLOYING, StageName.DEPLOY, cancel))

        artifact = release.artifact_for(service)
        if artifact is None:
            done = release.with_stage(
                StageName.MIGRATE,
                StageStatus.SUCCEEDED,
                detail=f"skipped: migration service {service} is not part of this release",
            )
            self._console.warning(f"migration skipped: {service} is not being released")
            return Ok(self._enter(done, ReleaseState.DEPLOYING, StageName.DEPLOY, cancel))

        result = self._migrations.run(artifact, self._db)
        if not result.succeeded:
            failure = MigrationFailure(result.logs, result.exit_code, result.timed_out)
            self._console.error(failure.message)
            failed = release.with_stage(StageName.MIGRATE, StageStatus.FAILED, detail=failure.message)
            return Ok(
                advance(
                    failed.fail(
                        FailureRecord(StageName.MIGRATE, "migration", failure.message, result.logs)
                    )
                )
            )

        self._console.success("migrations applied")
        done = release.with_stage(StageName.MIGRATE, StageStatus.SUCCEEDED, detail=_tail(result.logs))
        return Ok(self._enter(done, ReleaseState.DEPLOYING, StageName.DEPLOY, cancel))

    def _deploy(self, release: Release, cancel: CancelSignal) -> _Step:
        if release.stage(StageName.MIGRATE).status != StageStatus.SUCCEEDED:
            message = "deploy requires a succeeded migrate stage"
            failed = release.with_stage(StageName.DEPLOY, StageStatus.FAILED, detail=message)
            return Ok(advance(failed.fail(FailureRecord(StageName.DEPLOY, "invariant", message))))

        # One unit per service: deploy, then verify.
        shipped = self._fan_out(lambda service: self._ship(release, service), release.services)
        outcomes: list[ServiceOutcome] = []
        for result in shipped:
            if isinstance(result, Err):
                return result
            outcomes.append(result.value)

        deployed = [o for o in outcomes if o.deploy == StageStatus.SUCCEEDED]
        failed_services = [o for o in outcomes if o.deploy == StageStatus.FAILED]
        status = StageStatus.FAILED if failed_services else StageStatus.SUCCEEDED
        detail = _summarize(failed_services) if failed_services else None
        done = replace(release, outcomes=tuple(outcomes)).with_stage(
            StageName.DEPLOY, status, detail=detail
        )
        if not deployed:
            message = "no service was deployed"
            return Ok(advance(done.fail(FailureRecord(StageName.DEPLOY, "deploy", message, detail))))
        return Ok(self._enter(done, ReleaseState.VERIFYING, StageName.VERIFY, cancel))

    def _verify(self, release: Release) -> _Step:
        # Outcomes still pending verification come from a resumed release.
        checked = self._fan_out(
            lambda outcome: self._verify_one(release, outcome), release.outcomes
        )
        outcomes: list[ServiceOutcome] = []
        for result in checked:
            if isinstance(result, Err):
                return result
            outcomes.append(result.value)

        verified = replace(release, outcomes=tuple(outcomes))
        failed = [o for o in outcomes if not o.succeeded]
        if not failed:
            done = verified.with_stage(StageName.VERIFY, StageStatus.SUCCEEDED)
            self._console.success(f"release {release.release_id} succeeded")
            return Ok(advance(done.advance(ReleaseState.SUCCEEDED)))

        unhealthy = [o for o in failed if o.verify == StageStatus.FAILED]
        detail = _summarize(failed)
        names = ", ".join(o.service for o in failed)
        done = verified.with_stage(
            StageName.VERIFY, StageStatus.FAILED if unhealthy else StageStatus.SUCCEEDED, detail=detail
        )
        stage = StageName.VERIFY if unhealthy else StageName.DEPLOY
        kind = "health_timeout" if unhealthy else "deploy"
        message = f"release failed for: {names}"
        return Ok(advance(done.fail(FailureRecord(stage, kind, message, detail))))

    def _finish(self, release: Release) -> _Step:
        return Ok(FINISH)

    # Per-service units

    def _ship(self, release: Release, service: str) -> Result[ServiceOutcome, StoreError]:
        artifact = release.artifact_for(service)
        if artifact is None:
            return Ok(ServiceOutcome(service, StageStatus.FAILED, error="no published artifact"))
        updated = self._compute.update_service(
            service, artifact, self._targets[service].desired_count
        )
        if isinstance(updated, Err):
            self._console.error(updated.error.message)
            return Ok(ServiceOutcome(service, StageStatus.FAILED, error=updated.error.message))
        self._console.print(f"{service}: rolling to {artifact.image_uri}", Style.DIM)

        recorded = self._record_revision(release, service, HealthStatus.PENDING)
        if isinstance(recorded, Err):
            return recorded
        return self._verify_one(release, ServiceOutcome(service, StageStatus.SUCCEEDED))

    def _verify_one(
        self, release: Release, outcome: ServiceOutcome
    ) -> Result[ServiceOutcome, StoreError]:
        if outcome.deploy != StageStatus.SUCCEEDED or outcome.verify != StageStatus.PENDING:
            return Ok(outcome)
        settings = self._settings
        waited = wait_healthy(
            self._compute,
            outcome.service,
            timeout=settings.verify_timeout_seconds,
            interval=settings.verify_interval_seconds,
            sleep=self._sleep,
        )
        if isinstance(waited, Err):
            self._console.error(waited.error.message)
            checked = replace(
                outcome,
                verify=StageStatus.FAILED,
                error=waited.error.message,
                health_history=waited.error.history,
            )
            health = HealthStatus.UNHEALTHY
        else:
            self._console.success(f"{outcome.service}: healthy")
            checked = replace(outcome, verify=StageStatus.SUCCEEDED, health_history=waited.value)
            health = HealthStatus.HEALTHY

        recorded = self._record_revision(release, outcome.service, health)
        if isinstance(recorded, Err):
            return recorded
        return Ok(checked)

    # Helpers

    def _enter(
        self, release: Release, state: ReleaseState, stage: StageName, cancel: CancelSignal
    ) -> StepAdvance[Release]:
        """Cross a stage boundary, honouring a pending cancellation."""
        if cancel.requested(release.release_id):
            cancelled = ReleaseCancelled(stage)
            self._console.warning(cancelled.message)
            return advance(
                release.fail(FailureRecord(stage, "cancelled", cancelled.message))
            )
        self._console.print(f"{stage}...", Style.INFO)
        return advance(release.advance(state).with_stage(stage, StageStatus.RUNNING))

    def _fan_out(self, fn: Callable[[T], R], items: Iterable[T]) -> list[R]:
        work = list(items)
        if not work:
            return []
        workers = max(1, min(self._settings.max_parallel, len(work)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="shipyard") as pool:
            return list(pool.map(fn, work))

    def _record_revision(
        self, release: Release, service: str, health: HealthStatus
    ) -> Result[None, StoreError]:
        return self._store.merge_revisions(
            [
                ServiceRevision(
                    service=service,
                    revision_id=release.revision_id,
                    task_count=self._targets[service].desired_count,
                    health_status=health,
                    release_id=release.release_id,
                )
            ]
        )


def _summarize(outcomes: Iterable[ServiceOutcome]) -> str:
    lines: list[str] = []
    for outcome in outcomes:
        lines.append(f"{outcome.service}: {outcome.error or 'failed'}")
        lines.extend(f"  {sample}" for sample in outcome.health_history)
    return "\n".join(lines)


def _tail(text: str, lines: int = 20) -> str | None:
    tail = "\n".join(text.splitlines()[-lines:])
    return tail or None
