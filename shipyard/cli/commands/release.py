from __future__ import annotations

import typer

from shipyard.backend import make_orchestrator, make_release_store
from shipyard.cli.commands._helpers import exit_on_error, exit_with_code, split_csv
from shipyard.cli.context import build_context
from shipyard.core.errors import ErrorCode
from shipyard.core.result import Err
from shipyard.output.console import ConsoleProtocol, Style
from shipyard.output.errors import (
    print_release_failure,
    print_resume_error,
    print_start_error,
    release_exit_code,
    resume_error_exit_code,
    start_error_exit_code,
)
from shipyard.release.errors import ReleaseNotFound
from shipyard.release.model import Release, ReleaseState, StageStatus
from shipyard.release.orchestrator import StoreCancelSignal, cancel_release

release_app = typer.Typer(add_completion=False, no_args_is_help=True)

_STAGE_STYLES = {
    StageStatus.PENDING: Style.DIM,
    StageStatus.RUNNING: Style.INFO,
    StageStatus.SUCCEEDED: Style.SUCCESS,
    StageStatus.FAILED: Style.ERROR,
}


def _print_release(release: Release, console: ConsoleProtocol) -> None:
    console.header(f"Release {release.release_id}")
    console.print(f"revision: {release.revision_id}")
    if release.commit_sha:
        console.print(f"commit: {release.commit_sha}", Style.DIM)
    console.print(f"services: {', '.join(release.services)}")
    console.print(f"state: {release.state}", Style.BOLD)
    for stage in release.stages:
        line = f"  {stage.name}: {stage.status}"
        if stage.detail and stage.status != StageStatus.FAILED:
            line += f" ({stage.detail.splitlines()[-1]})"
        console.print(line, _STAGE_STYLES[stage.status])
    for outcome in release.outcomes:
        console.print(
            f"  {outcome.service}: deploy {outcome.deploy}, verify {outcome.verify}", Style.DIM
        )
    if release.rollback_target:
        console.print(f"rollback target: {release.rollback_target}", Style.DIM)
    if release.owner and not release.is_terminal:
        console.print(f"owner: {release.owner}", Style.DIM)


@release_app.command("start")
def start_cmd(
    services: str = typer.Option(..., "--services", help="Comma separated services (e.g. api,web)"),
    revision: str | None = typer.Option(None, "--revision", help="Revision id (image tag)"),
    commit: str | None = typer.Option(
        None, "--commit", help="Commit sha; the revision defaults to its first 12 characters"
    ),
) -> None:
    """Publish, migrate, deploy and verify SERVICES at one revision."""
    ctx = build_context()
    orchestrator = make_orchestrator(ctx.project, ctx.config, ctx.adapters, ctx.console)

    created = orchestrator.create(split_csv(services), revision_id=revision, commit_sha=commit)
    if isinstance(created, Err):
        print_start_error(created.error, ctx.console)
        exit_with_code(start_error_exit_code(created.error))

    store = make_release_store(ctx.project)
    release = exit_on_error(orchestrator.run(created.value, cancel=StoreCancelSignal(store)), ctx)
    if release.state == ReleaseState.FAILED:
        print_release_failure(release, ctx.console)
    exit_with_code(release_exit_code(release))


@release_app.command("status")
def status_cmd(release_id: str = typer.Argument(..., help="Release id")) -> None:
    """Show the stages and service outcomes of a release."""
    ctx = build_context()
    loaded = make_release_store(ctx.project).load(release_id)
    if isinstance(loaded, Err):
        code = ErrorCode.USAGE if isinstance(loaded.error, ReleaseNotFound) else ErrorCode.FAILURE
        exit_on_error(loaded, ctx, code)
        return
    release = loaded.value
    _print_release(release, ctx.console)
    if release.state == ReleaseState.FAILED:
        print_release_failure(release, ctx.console)
    exit_with_code(release_exit_code(release))


@release_app.command("list")
def list_cmd() -> None:
    """List releases, newest first."""
    ctx = build_context()
    releases = exit_on_error(make_release_store(ctx.project).list_releases(), ctx)
    if not releases:
        ctx.console.print("no releases yet", Style.DIM)
        return
    for release in reversed(releases):
        style = {
            ReleaseState.SUCCEEDED: Style.SUCCESS,
            ReleaseState.FAILED: Style.ERROR,
        }.get(release.state, Style.INFO)
        ctx.console.print(
            f"{release.release_id}  {release.state:<10}  {release.revision_id}  "
            f"{','.join(release.services)}",
            style,
        )


@release_app.command("resume")
def resume_cmd(
    release_id: str = typer.Argument(..., help="Release id"),
    force: bool = typer.Option(
        False, "--force", help="Take over even if the recorded owner process looks alive"
    ),
) -> None:
    """Continue an interrupted release from its last recorded state."""
    ctx = build_context()
    orchestrator = make_orchestrator(ctx.project, ctx.config, ctx.adapters, ctx.console)
    store = make_release_store(ctx.project)

    resumed = orchestrator.resume(release_id, cancel=StoreCancelSignal(store), force=force)
    if isinstance(resumed, Err):
        print_resume_error(resumed.error, ctx.console)
        exit_with_code(resume_error_exit_code(resumed.error))

    release = resumed.value
    if release.state == ReleaseState.FAILED:
        print_release_failure(release, ctx.console)
    elif release.state == ReleaseState.SUCCEEDED:
        ctx.console.success(f"release {release_id} succeeded")
    exit_with_code(release_exit_code(release))


@release_app.command("cancel")
def cancel_cmd(
    release_id: str = typer.Argument(..., help="Release id"),
    force: bool = typer.Option(
        False, "--force", help="Fail the release now even if its owner process looks alive"
    ),
) -> None:
    """Cancel a release.

    A running release stops at its next stage boundary. A release whose
    process is gone is marked failed immediately.
    """
    ctx = build_context()
    store = make_release_store(ctx.project)
    loaded = store.load(release_id)
    if isinstance(loaded, Err):
        code = ErrorCode.USAGE if isinstance(loaded.error, ReleaseNotFound) else ErrorCode.FAILURE
        exit_on_error(loaded, ctx, code)
        return
    if loaded.value.is_terminal:
        ctx.console.warning(f"release {release_id} already {loaded.value.state}")
        return

    release = exit_on_error(cancel_release(store, release_id, force=force), ctx)
    if release.failure is not None:
        ctx.console.success(f"release {release_id} cancelled during {release.failure.stage}")
        return
    ctx.console.success(f"cancellation requested for {release_id}")
    if release.owner:
        ctx.console.print(f"owner: {release.owner}", Style.DIM)
