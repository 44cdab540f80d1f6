from __future__ import annotations

import typer

from shipyard.backend import make_provisioner
from shipyard.cli.commands._helpers import exit_with_code
from shipyard.cli.context import CLIContext, build_context
from shipyard.core.errors import ErrorCode
from shipyard.core.result import Err
from shipyard.graph.store import ResourceGraph, graph_from_config
from shipyard.output.console import Style
from shipyard.output.errors import print_provision_error, provision_error_exit_code
from shipyard.provision.provisioner import PlanAction

provision_app = typer.Typer(add_completion=False, no_args_is_help=True)

_SYMBOLS = {
    PlanAction.CREATE: ("+", Style.SUCCESS),
    PlanAction.UPDATE: ("~", Style.WARNING),
    PlanAction.DELETE: ("-", Style.ERROR),
    PlanAction.NOOP: (" ", Style.DIM),
}


def _graph(ctx: CLIContext) -> ResourceGraph:
    graph = graph_from_config(ctx.config.resources)
    if isinstance(graph, Err):
        print_provision_error(graph.error, ctx.console)
        exit_with_code(provision_error_exit_code(graph.error))
    return graph.value


@provision_app.command("plan")
def plan_cmd() -> None:
    """Show what apply would change."""
    ctx = build_context()
    graph = _graph(ctx)
    result = make_provisioner(ctx.project, ctx.adapters, ctx.console).plan(graph)
    if isinstance(result, Err):
        print_provision_error(result.error, ctx.console)
        exit_with_code(provision_error_exit_code(result.error))

    plan = result.value
    ctx.console.header("Plan")
    for change in plan.changes:
        symbol, style = _SYMBOLS[change.action]
        ctx.console.print(f"{symbol} {change.name} ({change.kind}): {change.action}", style)
    ctx.console.newline()
    ctx.console.print(
        f"{plan.count(PlanAction.CREATE)} to create, {plan.count(PlanAction.UPDATE)} to update, "
        f"{plan.count(PlanAction.DELETE)} to delete",
        Style.BOLD,
    )


@provision_app.command("apply")
def apply_cmd() -> None:
    """Create or update declared resources in dependency order."""
    ctx = build_context()
    graph = _graph(ctx)
    result = make_provisioner(ctx.project, ctx.adapters, ctx.console).apply(graph)
    if isinstance(result, Err):
        print_provision_error(result.error, ctx.console)
        exit_with_code(provision_error_exit_code(result.error))

    report = result.value
    if not report.changed:
        ctx.console.success(f"up to date ({len(report.unchanged)} resources)")
        return
    ctx.console.success(
        f"applied {len(report.applied)}, unchanged {len(report.unchanged)}, pruned {len(report.pruned)}"
    )


@provision_app.command("destroy")
def destroy_cmd(
    yes: bool = typer.Option(False, "--yes", help="Skip the confirmation prompt"),
) -> None:
    """Tear down provisioned resources in reverse dependency order."""
    ctx = build_context()
    graph = _graph(ctx)
    if not yes and not typer.confirm(f"Destroy all resources of {ctx.config.name}?", default=False):
        exit_with_code(int(ErrorCode.USAGE))

    result = make_provisioner(ctx.project, ctx.adapters, ctx.console).destroy(graph)
    if isinstance(result, Err):
        print_provision_error(result.error, ctx.console)
        exit_with_code(provision_error_exit_code(result.error))

    report = result.value
    ctx.console.success(f"destroyed {len(report.destroyed)}, skipped {len(report.skipped)}")
