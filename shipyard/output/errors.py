"""Error presentation utilities.

Centralized error formatting and exit code mapping for consistent UX.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shipyard.core.errors import ErrorCode
from shipyard.graph.errors import (
    CycleError,
    DuplicateResourceError,
    InvalidResourceError,
    NotFoundError,
)
from shipyard.output.console import Style
from shipyard.provision.drivers import DriverError
from shipyard.provision.provisioner import ProvisionError, ProvisionFailure
from shipyard.provision.state import StateError
from shipyard.release.errors import (
    InvalidRevision,
    ReleaseInFlight,
    ReleaseNotFound,
    ReleaseOwned,
    ReleaseResumeError,
    ReleaseStartError,
    StoreError,
    UnknownService,
)
from shipyard.release.fsm import UnknownStep
from shipyard.release.model import Release, ReleaseState

if TYPE_CHECKING:
    from shipyard.output.console import ConsoleProtocol

__all__ = [
    "print_provision_error",
    "print_release_failure",
    "print_resume_error",
    "print_start_error",
    "provision_error_exit_code",
    "release_exit_code",
    "resume_error_exit_code",
    "start_error_exit_code",
]


def print_provision_error(error: ProvisionError, console: ConsoleProtocol) -> None:
    """Print a provisioning error, naming the resource involved."""
    match error:
        case CycleError(path=path):
            console.error(f"dependency cycle: {' -> '.join(path)}")
        case NotFoundError(name=name, referenced_by=referenced_by):
            if referenced_by:
                console.error(f"{referenced_by} depends on undeclared resource {name}")
            else:
                console.error(f"resource not found: {name}")
        case DuplicateResourceError() | InvalidResourceError():
            console.error(error.message)
        case StateError(message=message, path=path, hint=hint):
            console.error(message)
            if path is not None:
                console.print(f"state: {path}", Style.DIM)
            if hint:
                console.print(f"hint: {hint}", Style.DIM)
        case ProvisionFailure(resource=resource, cause=cause):
            console.error(error.message)
            if isinstance(cause, DriverError) and cause.detail:
                console.print(cause.detail, Style.DIM)
            if error.hint:
                console.print(f"hint: {error.hint}", Style.DIM)
            console.print(f"resource: {resource}", Style.DIM)


def provision_error_exit_code(error: ProvisionError) -> int:
    match error:
        case CycleError() | NotFoundError() | DuplicateResourceError() | InvalidResourceError():
            return int(ErrorCode.USAGE)
        case _:
            return int(ErrorCode.FAILURE)


def print_start_error(error: ReleaseStartError, console: ConsoleProtocol) -> None:
    console.error(error.message)
    match error:
        case UnknownService() | ReleaseInFlight():
            if error.hint:
                console.print(f"hint: {error.hint}", Style.DIM)
        case InvalidRevision():
            console.print("hint: pass --revision or a full --commit sha", Style.DIM)
        case StoreError(path=path, hint=hint):
            if path is not None:
                console.print(f"path: {path}", Style.DIM)
            if hint:
                console.print(f"hint: {hint}", Style.DIM)


def start_error_exit_code(error: ReleaseStartError) -> int:
    match error:
        case StoreError():
            return int(ErrorCode.FAILURE)
        case _:
            return int(ErrorCode.USAGE)


def print_resume_error(error: ReleaseResumeError | UnknownStep, console: ConsoleProtocol) -> None:
    console.error(error.message)
    match error:
        case ReleaseOwned(hint=hint):
            console.print(f"hint: {hint}", Style.DIM)
        case StoreError(path=path, hint=hint):
            if path is not None:
                console.print(f"path: {path}", Style.DIM)
            if hint:
                console.print(f"hint: {hint}", Style.DIM)
        case _:
            pass


def resume_error_exit_code(error: ReleaseResumeError | UnknownStep) -> int:
    match error:
        case ReleaseNotFound() | ReleaseOwned():
            return int(ErrorCode.USAGE)
        case _:
            return int(ErrorCode.FAILURE)


def print_release_failure(release: Release, console: ConsoleProtocol) -> None:
    """Print why a release failed: stage, services and captured diagnostics.

    Diagnostics are stored already redacted, so this never prints secrets.
    """
    failure = release.failure
    if failure is None:
        return
    console.error(f"release {release.release_id} failed at {failure.stage}: {failure.message}")
    for outcome in release.outcomes:
        if outcome.succeeded:
            continue
        console.print(f"  {outcome.service}: {outcome.error or 'not verified'}", Style.WARNING)
        for sample in outcome.health_history[-5:]:
            console.print(f"    {sample}", Style.DIM)
    if failure.detail and not release.outcomes:
        console.print(failure.detail, Style.DIM)
    if release.rollback_target:
        console.print(f"last good release: {release.rollback_target}", Style.DIM)


def release_exit_code(release: Release) -> int:
    if release.state == ReleaseState.FAILED:
        return int(ErrorCode.FAILURE)
    return int(ErrorCode.OK)
