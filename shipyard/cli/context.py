from __future__ import annotations

from dataclasses import dataclass

import typer

from shipyard.backend import BackendAdapters, build_adapters
from shipyard.core.config import ProjectConfig, load_config
from shipyard.core.errors import ErrorCode
from shipyard.core.project import Project, find_project
from shipyard.core.result import Err
from shipyard.output.console import ConsoleProtocol, RichConsole, Style


@dataclass(frozen=True, slots=True)
class CLIContext:
    project: Project
    config: ProjectConfig
    adapters: BackendAdapters
    console: ConsoleProtocol


def build_context() -> CLIContext:
    console = RichConsole()

    project_result = find_project()
    if isinstance(project_result, Err):
        console.error(project_result.error.message)
        if project_result.error.hint:
            console.print(f"hint: {project_result.error.hint}", Style.DIM)
        raise typer.Exit(code=int(ErrorCode.USAGE))
    project = project_result.value

    config_result = load_config(project.config_path)
    if isinstance(config_result, Err):
        error = config_result.error
        console.error(f"{error.path}: {error.message}" if error.path else error.message)
        if error.hint:
            console.print(f"hint: {error.hint}", Style.DIM)
        raise typer.Exit(code=int(ErrorCode.USAGE))
    config = config_result.value

    adapters = build_adapters(project, config)
    if isinstance(adapters, Err):
        console.error(adapters.error.message)
        if adapters.error.hint:
            console.print(f"hint: {adapters.error.hint}", Style.DIM)
        raise typer.Exit(code=int(ErrorCode.USAGE))

    return CLIContext(
        project=project,
        config=config,
        adapters=adapters.value,
        console=console,
    )
