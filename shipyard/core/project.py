"""Project detection and state paths.

A project is the directory holding ``shipyard.toml``. Runtime state
(provisioned resources, releases, service revisions) lives under
``<root>/.shipyard/`` and is gitignored.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .result import Err, Ok, Result

__all__ = [
    "CONFIG_FILENAME",
    "Project",
    "ProjectError",
    "find_project",
]

CONFIG_FILENAME = "shipyard.toml"


@dataclass(frozen=True, slots=True)
class ProjectError:
    message: str
    searched_from: Path | None = None
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class Project:
    """A detected project.

    ``config_path`` is usually ``root / shipyard.toml`` but may point at any
    file passed through ``--config``.
    """

    root: Path
    config_path: Path

    @property
    def state_dir(self) -> Path:
        return self.root / ".shipyard"

    @property
    def resource_state_path(self) -> Path:
        """Provisioned resource state (.shipyard/state.json)."""
        return self.state_dir / "state.json"

    @property
    def releases_dir(self) -> Path:
        return self.state_dir / "releases"

    @property
    def revisions_path(self) -> Path:
        return self.state_dir / "revisions.json"

    @property
    def local_dir(self) -> Path:
        """Local backend storage (simulated registry, secrets, services)."""
        return self.state_dir / "local"


def find_project(start: Path | None = None, config: Path | None = None) -> Result[Project, ProjectError]:
    """Locate the project.

    Order: explicit ``config`` path, ``SHIPYARD_CONFIG``, then a walk upward
    from ``start`` (default: cwd) looking for ``shipyard.toml``.
    """
    explicit = config
    if explicit is None:
        env = os.environ.get("SHIPYARD_CONFIG")
        if env:
            explicit = Path(env)

    if explicit is not None:
        path = explicit.expanduser().resolve()
        if not path.is_file():
            return Err(ProjectError(f"config file not found: {path}"))
        return Ok(Project(root=path.parent, config_path=path))

    origin = (start or Path.cwd()).resolve()
    for candidate in (origin, *origin.parents):
        path = candidate / CONFIG_FILENAME
        if path.is_file():
            return Ok(Project(root=candidate, config_path=path))

    return Err(
        ProjectError(
            f"no {CONFIG_FILENAME} found",
            searched_from=origin,
            hint="Run from the project directory or pass --config",
        )
    )
