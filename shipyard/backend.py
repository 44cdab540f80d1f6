"""Wiring: build the adapters for the configured backend.

``local`` keeps everything under ``.shipyard/local`` and the local docker
engine; ``aws`` talks to ECR, ECS, RDS, EC2, Secrets Manager and CloudWatch
Logs through one boto3 session.
"""

from __future__ import annotations

from dataclasses import dataclass

from shipyard.aws import (
    AwsClients,
    AwsSecretRegistry,
    EcrImageRegistry,
    EcsComputePlatform,
    EcsTaskDefinitions,
    EcsTaskRunner,
    aws_drivers,
)
from shipyard.core.config import ConfigError, ProjectConfig
from shipyard.core.project import Project
from shipyard.core.result import Err, Ok, Result
from shipyard.images.docker import DockerBuilder, ImageBuilder, LocalImageRegistry
from shipyard.images.model import BuildContext
from shipyard.images.publisher import ImagePublisher, ImageRegistry
from shipyard.output.console import ConsoleProtocol
from shipyard.provision.drivers import DriverSet, local_drivers
from shipyard.provision.provisioner import Provisioner
from shipyard.release.compute import ComputePlatform, LocalComputePlatform
from shipyard.release.migration import DatabaseCredentials, DockerTaskRunner, MigrationRunner, TaskRunner
from shipyard.release.orchestrator import ReleaseOrchestrator, ReleaseSettings, ReleaseTarget
from shipyard.release.store import ReleaseStore
from shipyard.secrets.model import parse_ref
from shipyard.secrets.registry import FileSecretRegistry, SecretRegistry

__all__ = [
    "BackendAdapters",
    "build_adapters",
    "make_orchestrator",
    "make_provisioner",
    "make_release_store",
]


@dataclass(frozen=True, slots=True)
class BackendAdapters:
    secrets: SecretRegistry
    drivers: DriverSet
    builder: ImageBuilder
    registry: ImageRegistry
    compute: ComputePlatform
    tasks: TaskRunner


def build_adapters(project: Project, config: ProjectConfig) -> Result[BackendAdapters, ConfigError]:
    builder = DockerBuilder(cwd=project.root, timeout=config.timeouts.build_seconds)

    if config.backend == "local":
        local = project.local_dir
        secrets = FileSecretRegistry(local / "secrets.json")
        return Ok(
            BackendAdapters(
                secrets=secrets,
                drivers=local_drivers(local / "resources.json", secrets),
                builder=builder,
                registry=LocalImageRegistry(path=local / "images.json", cwd=project.root),
                compute=LocalComputePlatform(local / "services.json"),
                tasks=DockerTaskRunner(cwd=project.root),
            )
        )

    aws = config.aws
    if not aws.region or not aws.cluster:
        return Err(
            ConfigError(
                "aws backend requires [aws] region and cluster",
                path=project.config_path,
                hint='add: [aws]\nregion = "eu-west-1"\ncluster = "my-cluster"',
            )
        )

    clients = AwsClients(region=aws.region)
    aws_secrets = AwsSecretRegistry(clients.client("secretsmanager"))
    definitions = EcsTaskDefinitions(clients.client("ecs"), cluster=aws.cluster)
    return Ok(
        BackendAdapters(
            secrets=aws_secrets,
            drivers=aws_drivers(clients, aws, aws_secrets),
            builder=builder,
            registry=EcrImageRegistry(
                clients.client("ecr"), cwd=project.root, push_timeout=config.timeouts.push_seconds
            ),
            compute=EcsComputePlatform(clients.client("ecs"), definitions=definitions),
            tasks=EcsTaskRunner(
                clients.client("ecs"),
                clients.client("logs"),
                definitions=definitions,
                value_from=aws_secrets.value_from,
                subnets=aws.subnets,
                security_groups=aws.security_groups,
                assign_public_ip=aws.assign_public_ip,
            ),
        )
    )


def make_provisioner(
    project: Project, adapters: BackendAdapters, console: ConsoleProtocol
) -> Provisioner:
    return Provisioner(
        drivers=adapters.drivers, state_path=project.resource_state_path, console=console
    )


def make_release_store(project: Project) -> ReleaseStore:
    return ReleaseStore(releases_dir=project.releases_dir, revisions_path=project.revisions_path)


def make_orchestrator(
    project: Project,
    config: ProjectConfig,
    adapters: BackendAdapters,
    console: ConsoleProtocol,
) -> ReleaseOrchestrator:
    targets = {
        name: ReleaseTarget(
            service=name,
            context=BuildContext(
                path=project.root / svc.context,
                dockerfile=svc.dockerfile,
                build_args=svc.build_args,
            ),
            desired_count=svc.desired_count,
        )
        for name, svc in config.services.items()
    }
    publisher = ImagePublisher(
        builder=adapters.builder,
        registry=adapters.registry,
        repositories={name: svc.repository for name, svc in config.services.items()},
        console=console,
    )

    migrations: MigrationRunner | None = None
    db = DatabaseCredentials()
    migration = config.migration
    if migration is not None:
        migrations = MigrationRunner(
            secrets=adapters.secrets,
            runner=adapters.tasks,
            command=migration.command,
            console=console,
            timeout_seconds=config.timeouts.migration_seconds,
        )
        db = DatabaseCredentials(
            refs={env: parse_ref(ref) for env, ref in migration.secrets.items()}
        )

    return ReleaseOrchestrator(
        store=make_release_store(project),
        publisher=publisher,
        compute=adapters.compute,
        targets=targets,
        console=console,
        migrations=migrations,
        db=db,
        settings=ReleaseSettings(
            verify_timeout_seconds=config.timeouts.verify_seconds,
            verify_interval_seconds=config.timeouts.verify_interval_seconds,
            migration_service=None if migration is None else migration.service,
        ),
    )
