"""Typed loading of ``shipyard.toml``.

The file declares the project backend, the deployable services, the
migration task, pipeline timeouts, AWS placement and the infrastructure
resources. Everything is parsed into frozen dataclasses up front so the rest
of the code never touches raw TOML.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from .result import Err, Ok, Result
from .structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_float,
    get_int,
    get_list,
    get_str,
    get_str_list,
    get_str_map,
    get_table,
)

__all__ = [
    "AwsConfig",
    "Backend",
    "ConfigError",
    "MigrationConfig",
    "ProjectConfig",
    "ResourceDecl",
    "ServiceConfig",
    "TimeoutsConfig",
    "load_config",
    "DEFAULT_MIGRATION_TIMEOUT_SECONDS",
]

Backend = Literal["local", "aws"]

DEFAULT_MIGRATION_TIMEOUT_SECONDS = 15 * 60.0
DEFAULT_VERIFY_TIMEOUT_SECONDS = 10 * 60.0
DEFAULT_VERIFY_INTERVAL_SECONDS = 10.0
DEFAULT_BUILD_TIMEOUT_SECONDS = 30 * 60.0
DEFAULT_PUSH_TIMEOUT_SECONDS = 15 * 60.0


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when the config cannot be loaded or parsed."""

    message: str
    path: Path | None = None
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """A deployable compute service and how to build its image."""

    name: str
    repository: str
    context: str = "."
    dockerfile: str = "Dockerfile"
    desired_count: int = 1
    build_args: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MigrationConfig:
    """One-off schema migration task.

    ``secrets`` maps environment variable names to secret references
    (``name`` or ``name@version``); values are resolved at run time only.
    """

    service: str
    command: tuple[str, ...]
    secrets: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class TimeoutsConfig:
    migration_seconds: float = DEFAULT_MIGRATION_TIMEOUT_SECONDS
    verify_seconds: float = DEFAULT_VERIFY_TIMEOUT_SECONDS
    verify_interval_seconds: float = DEFAULT_VERIFY_INTERVAL_SECONDS
    build_seconds: float = DEFAULT_BUILD_TIMEOUT_SECONDS
    push_seconds: float = DEFAULT_PUSH_TIMEOUT_SECONDS


@dataclass(frozen=True, slots=True)
class AwsConfig:
    region: str | None = None
    cluster: str | None = None
    subnets: tuple[str, ...] = ()
    security_groups: tuple[str, ...] = ()
    assign_public_ip: bool = False


@dataclass(frozen=True, slots=True)
class ResourceDecl:
    """Raw resource declaration; validated when the graph is built."""

    name: str
    kind: str
    depends_on: tuple[str, ...] = ()
    attributes: dict[str, object] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProjectConfig:
    """Main configuration container."""

    name: str
    backend: Backend = "local"
    services: dict[str, ServiceConfig] = field(default_factory=dict)
    migration: MigrationConfig | None = None
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    aws: AwsConfig = field(default_factory=AwsConfig)
    resources: tuple[ResourceDecl, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> ProjectConfig:
        """Build a config from parsed TOML.

        Raises:
            ValueError: on a structurally invalid document.
        """
        project: StrDict = get_table(data, "project") or {}
        name = get_str(project, "name")
        if name is None:
            raise ValueError("[project] name is required")

        backend = get_str(project, "backend") or "local"
        if backend not in ("local", "aws"):
            raise ValueError(f"[project] backend must be 'local' or 'aws', got {backend!r}")

        services = _parse_services(get_table(data, "services") or {})
        migration = _parse_migration(get_table(data, "migration"))
        if migration is not None and migration.service not in services:
            raise ValueError(f"[migration] service {migration.service!r} is not a declared service")

        return cls(
            name=name,
            backend="aws" if backend == "aws" else "local",
            services=services,
            migration=migration,
            timeouts=_parse_timeouts(get_table(data, "timeouts") or {}),
            aws=_parse_aws(get_table(data, "aws") or {}),
            resources=_parse_resources(get_list(data, "resources") or []),
        )


def _parse_services(table: StrDict) -> dict[str, ServiceConfig]:
    services: dict[str, ServiceConfig] = {}
    for name, raw in table.items():
        svc = as_str_dict(raw)
        if svc is None:
            raise ValueError(f"[services.{name}] must be a table")
        repository = get_str(svc, "repository")
        if repository is None:
            raise ValueError(f"[services.{name}] repository is required")
        desired = get_int(svc, "desired_count")
        if desired is not None and desired < 1:
            raise ValueError(f"[services.{name}] desired_count must be >= 1")
        services[name] = ServiceConfig(
            name=name,
            repository=repository,
            context=get_str(svc, "context") or ".",
            dockerfile=get_str(svc, "dockerfile") or "Dockerfile",
            desired_count=desired or 1,
            build_args=get_str_map(svc, "build_args") or {},
        )
    return services


def _parse_migration(table: StrDict | None) -> MigrationConfig | None:
    if table is None:
        return None
    service = get_str(table, "service")
    command = get_str_list(table, "command")
    if service is None or not command:
        raise ValueError("[migration] requires service and a non-empty command list")
    return MigrationConfig(
        service=service,
        command=command,
        secrets=get_str_map(table, "secrets") or {},
    )


def _parse_timeouts(table: StrDict) -> TimeoutsConfig:
    defaults = TimeoutsConfig()
    values: dict[str, float] = {}
    for key in (
        "migration_seconds",
        "verify_seconds",
        "verify_interval_seconds",
        "build_seconds",
        "push_seconds",
    ):
        value = get_float(table, key)
        if value is None:
            values[key] = getattr(defaults, key)
        elif value <= 0:
            raise ValueError(f"[timeouts] {key} must be positive")
        else:
            values[key] = value
    return TimeoutsConfig(**values)


def _parse_aws(table: StrDict) -> AwsConfig:
    return AwsConfig(
        region=get_str(table, "region"),
        cluster=get_str(table, "cluster"),
        subnets=get_str_list(table, "subnets") or (),
        security_groups=get_str_list(table, "security_groups") or (),
        assign_public_ip=bool(get_bool(table, "assign_public_ip")),
    )


def _parse_resources(items: list[object]) -> tuple[ResourceDecl, ...]:
    decls: list[ResourceDecl] = []
    for i, raw in enumerate(items):
        item = as_str_dict(raw)
        if item is None:
            raise ValueError(f"[[resources]] entry {i} must be a table")
        name = get_str(item, "name")
        kind = get_str(item, "kind")
        if name is None or kind is None:
            raise ValueError(f"[[resources]] entry {i} requires name and kind")
        depends_on = get_str_list(item, "depends_on")
        if depends_on is None and "depends_on" in item:
            raise ValueError(f"resource {name!r}: depends_on must be a list of names")
        decls.append(
            ResourceDecl(
                name=name,
                kind=kind,
                depends_on=depends_on or (),
                attributes=dict(get_table(item, "attributes") or {}),
            )
        )
    return tuple(decls)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    import tomllib

    try:
        data_obj: object = tomllib.loads(path.read_bytes().decode("utf-8"))
    except FileNotFoundError:
        return Err(ConfigError(f"config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"error reading config: {e}", path=path))

    data = as_str_dict(data_obj)
    if data is None:
        return Err(ConfigError("config root must be a TOML table", path=path))
    return Ok(data)


def load_config(path: Path) -> Result[ProjectConfig, ConfigError]:
    """Load and validate ``shipyard.toml``."""
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        return Ok(ProjectConfig.from_dict(result.value))
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"invalid config: {e}", path=path))
