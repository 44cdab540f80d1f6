"""Schema migrations as a one-off, bounded task running the release image."""

from __future__ import annotations

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from shipyard.core.config import DEFAULT_MIGRATION_TIMEOUT_SECONDS
from shipyard.core.result import Err
from shipyard.images.model import Artifact
from shipyard.output.console import ConsoleProtocol, Style
from shipyard.platform.process import run
from shipyard.secrets.model import SecretRef, SecretValue, redact
from shipyard.secrets.registry import SecretRegistry, resolve_all

__all__ = [
    "DatabaseCredentials",
    "DockerTaskRunner",
    "MigrationResult",
    "MigrationRunner",
    "TaskOutcome",
    "TaskRunner",
    "TaskSpec",
]


@dataclass(frozen=True, slots=True)
class DatabaseCredentials:
    """Environment variable name -> secret reference, resolved at run time."""

    refs: Mapping[str, SecretRef] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """One migration task.

    ``environment`` holds the resolved values for runners that inject them
    locally; ``secrets`` holds the same variables as references for runners
    whose platform resolves secrets itself.
    """

    image: str
    command: tuple[str, ...]
    environment: Mapping[str, SecretValue]
    timeout_seconds: float
    service: str = ""
    secrets: Mapping[str, SecretRef] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Exit of a one-off task.

    ``exit_code`` is None when the task never produced one (it could not be
    started or was stopped on timeout).
    """

    exit_code: int | None
    logs: str
    timed_out: bool = False


@dataclass(frozen=True, slots=True)
class MigrationResult:
    succeeded: bool
    logs: str
    exit_code: int | None = None
    timed_out: bool = False


class TaskRunner(Protocol):
    def run(self, spec: TaskSpec) -> TaskOutcome:
        """Run one isolated task to completion or until its timeout."""
        ...


class DockerTaskRunner:
    """Runs the task as ``docker run --rm`` on the local engine.

    Secret values travel through the docker client's environment and are
    forwarded by name (``-e NAME``), so they never appear in argv.
    """

    def __init__(self, *, cwd: Path) -> None:
        self._cwd = cwd

    def run(self, spec: TaskSpec) -> TaskOutcome:
        container = f"shipyard-task-{uuid.uuid4().hex[:12]}"
        cmd = ["docker", "run", "--rm", "--name", container]
        for name in spec.environment:
            cmd += ["-e", name]
        cmd += [spec.image, *spec.command]
        env = {name: value.reveal() for name, value in spec.environment.items()}

        result = run(cmd, cwd=self._cwd, env=env, timeout=spec.timeout_seconds)
        if not isinstance(result, Err):
            return TaskOutcome(exit_code=0, logs=result.value)

        error = result.error
        if error.timed_out:
            run(["docker", "rm", "--force", container], cwd=self._cwd)
            return TaskOutcome(exit_code=None, logs=error.output_tail(200), timed_out=True)
        # docker exits 125 when the container could not be created at all
        exit_code = None if error.returncode in (-1, 125) else error.returncode
        return TaskOutcome(exit_code=exit_code, logs=error.output_tail(200))


class MigrationRunner:
    def __init__(
        self,
        *,
        secrets: SecretRegistry,
        runner: TaskRunner,
        command: tuple[str, ...],
        console: ConsoleProtocol,
        timeout_seconds: float = DEFAULT_MIGRATION_TIMEOUT_SECONDS,
    ) -> None:
        self._secrets = secrets
        self._runner = runner
        self._command = command
        self._console = console
        self._timeout = timeout_seconds

    def run(self, artifact: Artifact, db: DatabaseCredentials) -> MigrationResult:
        """Run migrations once against ``artifact``.

        Credentials that cannot be resolved fail the migration without
        starting a task. Returned logs never contain resolved secret values.
        """
        resolved = resolve_all(self._secrets, dict(db.refs))
        if isinstance(resolved, Err):
            return MigrationResult(
                succeeded=False,
                logs=f"could not resolve database credentials: {resolved.error.message}",
            )
        values = resolved.value

        self._console.print(
            f"migrate: {' '.join(self._command)} ({artifact.image_uri})", Style.DIM
        )
        outcome = self._runner.run(
            TaskSpec(
                image=artifact.image_uri,
                command=self._command,
                environment=values,
                timeout_seconds=self._timeout,
                service=artifact.service,
                secrets=dict(db.refs),
            )
        )
        logs = redact(outcome.logs, values.values())
        return MigrationResult(
            succeeded=outcome.exit_code == 0 and not outcome.timed_out,
            logs=logs,
            exit_code=outcome.exit_code,
            timed_out=outcome.timed_out,
        )
