from __future__ import annotations

import typer

from shipyard.cli.commands._helpers import exit_on_error
from shipyard.cli.context import build_context
from shipyard.core.errors import ErrorCode
from shipyard.core.result import Err
from shipyard.secrets.model import SecretNotFoundError

secrets_app = typer.Typer(add_completion=False, no_args_is_help=True)


@secrets_app.command("put")
def put_cmd(
    name: str = typer.Argument(..., help="Secret name (e.g. app/prod/database-url)"),
    value: str | None = typer.Option(
        None, "--value", help="Secret value (prompted without echo when omitted)"
    ),
) -> None:
    """Store a new version of a secret and print its reference."""
    ctx = build_context()
    if value is None:
        value = typer.prompt("Value", hide_input=True, confirmation_prompt=True)
    if not value:
        ctx.console.error("secret value must not be empty")
        raise typer.Exit(code=int(ErrorCode.USAGE))

    ref = exit_on_error(ctx.adapters.secrets.put(name, value), ctx)
    ctx.console.success(str(ref))


@secrets_app.command("show-ref")
def show_ref_cmd(name: str = typer.Argument(..., help="Secret name")) -> None:
    """Print the reference of the latest version (never the value)."""
    ctx = build_context()
    latest = ctx.adapters.secrets.latest(name)
    if isinstance(latest, Err):
        code = ErrorCode.USAGE if isinstance(latest.error, SecretNotFoundError) else ErrorCode.FAILURE
        exit_on_error(latest, ctx, code)
        return
    ctx.console.print(str(latest.value))
