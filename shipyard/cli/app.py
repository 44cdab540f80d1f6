from __future__ import annotations

import os
from pathlib import Path

import typer

from shipyard import __version__
from shipyard.cli.commands.provision import provision_app
from shipyard.cli.commands.release import release_app
from shipyard.cli.commands.secrets import secrets_app
from shipyard.core.errors import ErrorCode


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Sub-apps
app.add_typer(provision_app, name="provision", help="Plan, apply and destroy infrastructure.")
app.add_typer(release_app, name="release", help="Ship services to a new revision.")
app.add_typer(secrets_app, name="secrets", help="Manage secret versions.")


@app.callback(invoke_without_command=True)
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to shipyard.toml (overrides auto detection)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if config is not None:
        try:
            path = config.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --config: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.USAGE))

        if not path.is_file():
            typer.echo(f"error: --config '{path}' does not exist", err=True)
            raise typer.Exit(code=int(ErrorCode.USAGE))

        os.environ["SHIPYARD_CONFIG"] = str(path)


def main() -> None:
    app()
