"""ECS adapters: service rollouts, health, and one-off migration tasks.

A rollout registers a new revision of the service's current task definition
with only the container image swapped, then points the service at it.
Migration tasks run that same revision with a command override, so the
migration always executes the image being released.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from shipyard.core.result import Err, Ok, Result
from shipyard.images.model import Artifact
from shipyard.release.errors import DeployFailure
from shipyard.release.migration import TaskOutcome, TaskSpec
from shipyard.release.model import HealthSample
from shipyard.secrets.model import SecretError, SecretRef

from .clients import describe_error

__all__ = ["EcsComputePlatform", "EcsTaskDefinitions", "EcsTaskRunner", "TaskDefinitionRef"]

# Keys of describe_task_definition output accepted by register_task_definition.
_REGISTER_KEYS = (
    "family",
    "taskRoleArn",
    "executionRoleArn",
    "networkMode",
    "containerDefinitions",
    "volumes",
    "placementConstraints",
    "requiresCompatibilities",
    "cpu",
    "memory",
    "pidMode",
    "ipcMode",
    "proxyConfiguration",
    "inferenceAccelerators",
    "ephemeralStorage",
    "runtimePlatform",
)


@dataclass(frozen=True, slots=True)
class TaskDefinitionRef:
    arn: str
    container: str
    log_group: str | None = None
    log_stream_prefix: str | None = None


class EcsTaskDefinitions:
    """Registers (and remembers) one task definition revision per service image."""

    def __init__(self, client: Any, *, cluster: str) -> None:
        self._client = client
        self._cluster = cluster
        self._cache: dict[tuple[str, str, tuple[tuple[str, str], ...]], TaskDefinitionRef] = {}
        self._lock = threading.Lock()

    @property
    def cluster(self) -> str:
        return self._cluster

    def describe_service(self, service: str) -> Result[dict[str, Any], str]:
        try:
            response = self._client.describe_services(cluster=self._cluster, services=[service])
        except (ClientError, BotoCoreError) as e:
            return Err(describe_error(e))
        for entry in response.get("services", []):
            if entry.get("status") == "ACTIVE":
                return Ok(entry)
        return Err(f"service {service} not found in cluster {self._cluster}")

    def for_image(
        self, service: str, image: str, secrets: Sequence[Mapping[str, str]] = ()
    ) -> Result[TaskDefinitionRef, str]:
        """Task definition revision running ``image``.

        ``secrets`` entries (``name``/``valueFrom``) replace same-named
        entries of the container.
        """
        key = (service, image, tuple((s["name"], s["valueFrom"]) for s in secrets))
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return Ok(cached)

        current = self.describe_service(service)
        if isinstance(current, Err):
            return current
        try:
            described = self._client.describe_task_definition(
                taskDefinition=current.value["taskDefinition"]
            )
        except (ClientError, BotoCoreError) as e:
            return Err(describe_error(e))

        definition = described["taskDefinition"]
        containers = [dict(c) for c in definition.get("containerDefinitions", [])]
        target = _target_container(containers, service)
        if target is None:
            return Err(f"cannot tell which container of {definition.get('family')} runs {service}")
        target["image"] = image
        if secrets:
            overridden = {s["name"] for s in secrets}
            kept = [s for s in target.get("secrets", []) if s.get("name") not in overridden]
            target["secrets"] = [*kept, *(dict(s) for s in secrets)]

        params = {k: definition[k] for k in _REGISTER_KEYS if k in definition}
        params["containerDefinitions"] = containers
        try:
            registered = self._client.register_task_definition(**params)
        except (ClientError, BotoCoreError) as e:
            return Err(describe_error(e))

        options = target.get("logConfiguration", {}).get("options", {})
        ref = TaskDefinitionRef(
            arn=registered["taskDefinition"]["taskDefinitionArn"],
            container=str(target["name"]),
            log_group=options.get("awslogs-group"),
            log_stream_prefix=options.get("awslogs-stream-prefix"),
        )
        with self._lock:
            self._cache[key] = ref
        return Ok(ref)


def _target_container(containers: list[dict[str, Any]], service: str) -> dict[str, Any] | None:
    if len(containers) == 1:
        return containers[0]
    for container in containers:
        if container.get("name") == service:
            return container
    essential = [c for c in containers if c.get("essential", True)]
    return essential[0] if len(essential) == 1 else None


class EcsComputePlatform:
    def __init__(self, client: Any, *, definitions: EcsTaskDefinitions) -> None:
        self._client = client
        self._definitions = definitions

    def update_service(
        self, service: str, artifact: Artifact, desired_count: int
    ) -> Result[None, DeployFailure]:
        ref = self._definitions.for_image(service, artifact.image_uri)
        if isinstance(ref, Err):
            return Err(DeployFailure(service, ref.error))
        try:
            self._client.update_service(
                cluster=self._definitions.cluster,
                service=service,
                taskDefinition=ref.value.arn,
                desiredCount=desired_count,
            )
        except (ClientError, BotoCoreError) as e:
            return Err(DeployFailure(service, describe_error(e)))
        return Ok(None)

    def health(self, service: str) -> Result[HealthSample, DeployFailure]:
        described = self._definitions.describe_service(service)
        if isinstance(described, Err):
            return Err(DeployFailure(service, described.error))

        primary = next(
            (d for d in described.value.get("deployments", []) if d.get("status") == "PRIMARY"),
            None,
        )
        if primary is None:
            return Err(DeployFailure(service, "service has no primary deployment"))

        running = int(primary.get("runningCount", 0))
        desired = int(primary.get("desiredCount", 0))
        if primary.get("rolloutState") == "COMPLETED":
            return Ok(HealthSample(running=running, healthy=running, desired=desired))

        healthy = self._healthy_tasks(service, str(primary.get("taskDefinition", "")))
        if isinstance(healthy, Err):
            return healthy
        return Ok(HealthSample(running=running, healthy=healthy.value, desired=desired))

    def _healthy_tasks(self, service: str, task_definition: str) -> Result[int, DeployFailure]:
        cluster = self._definitions.cluster
        try:
            listed = self._client.list_tasks(
                cluster=cluster, serviceName=service, desiredStatus="RUNNING"
            )
            arns = listed.get("taskArns", [])
            if not arns:
                return Ok(0)
            tasks = self._client.describe_tasks(cluster=cluster, tasks=arns).get("tasks", [])
        except (ClientError, BotoCoreError) as e:
            return Err(DeployFailure(service, describe_error(e)))
        return Ok(
            sum(
                1
                for t in tasks
                if t.get("taskDefinitionArn") == task_definition
                and t.get("lastStatus") == "RUNNING"
                and t.get("healthStatus") == "HEALTHY"
            )
        )


class EcsTaskRunner:
    """Runs a migration as a Fargate task and collects its CloudWatch logs.

    Credentials reach the task as ``secrets`` of its task definition, so
    ECS resolves them; no value is sent through the API.
    """

    def __init__(
        self,
        client: Any,
        logs_client: Any,
        *,
        definitions: EcsTaskDefinitions,
        value_from: Callable[[SecretRef], Result[str, SecretError]],
        subnets: tuple[str, ...],
        security_groups: tuple[str, ...],
        assign_public_ip: bool = False,
        poll_interval: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._logs = logs_client
        self._definitions = definitions
        self._value_from = value_from
        self._subnets = subnets
        self._security_groups = security_groups
        self._assign_public_ip = assign_public_ip
        self._poll_interval = poll_interval
        self._sleep = sleep

    def run(self, spec: TaskSpec) -> TaskOutcome:
        mounts: list[dict[str, str]] = []
        for env_name, secret in sorted(spec.secrets.items()):
            value_from = self._value_from(secret)
            if isinstance(value_from, Err):
                return TaskOutcome(
                    exit_code=None, logs=f"cannot reference secret {secret}: {value_from.error.message}"
                )
            mounts.append({"name": env_name, "valueFrom": value_from.value})

        ref = self._definitions.for_image(spec.service, spec.image, mounts)
        if isinstance(ref, Err):
            return TaskOutcome(exit_code=None, logs=f"cannot prepare task definition: {ref.error}")
        definition = ref.value
        cluster = self._definitions.cluster

        try:
            started = self._client.run_task(
                cluster=cluster,
                taskDefinition=definition.arn,
                launchType="FARGATE",
                count=1,
                startedBy="shipyard-migrate",
                networkConfiguration={
                    "awsvpcConfiguration": {
                        "subnets": list(self._subnets),
                        "securityGroups": list(self._security_groups),
                        "assignPublicIp": "ENABLED" if self._assign_public_ip else "DISABLED",
                    }
                },
                overrides={
                    "containerOverrides": [
                        {
                            "name": definition.container,
                            "command": list(spec.command),
                        }
                    ]
                },
            )
        except (ClientError, BotoCoreError) as e:
            return TaskOutcome(exit_code=None, logs=f"run_task failed: {describe_error(e)}")

        tasks = started.get("tasks", [])
        if not tasks:
            reasons = "; ".join(str(f.get("reason")) for f in started.get("failures", []))
            return TaskOutcome(exit_code=None, logs=f"run_task started no task: {reasons}")
        task_arn = str(tasks[0]["taskArn"])

        attempts = max(1, int(spec.timeout_seconds // self._poll_interval) + 1)
        for attempt in range(attempts):
            if attempt:
                self._sleep(self._poll_interval)
            try:
                described = self._client.describe_tasks(cluster=cluster, tasks=[task_arn])
            except (ClientError, BotoCoreError) as e:
                return TaskOutcome(exit_code=None, logs=f"describe_tasks failed: {describe_error(e)}")
            task = next(iter(described.get("tasks", [])), {})
            if task.get("lastStatus") == "STOPPED":
                exit_code = _exit_code(task, definition.container)
                logs = self._fetch_logs(definition, task_arn)
                if exit_code is None:
                    logs = "\n".join(p for p in (logs, str(task.get("stoppedReason", ""))) if p)
                return TaskOutcome(exit_code=exit_code, logs=logs)

        try:
            self._client.stop_task(
                cluster=cluster, task=task_arn, reason="shipyard: migration timed out"
            )
        except (ClientError, BotoCoreError) as e:
            logs = self._fetch_logs(definition, task_arn)
            return TaskOutcome(
                exit_code=None,
                logs=f"{logs}\nstop_task failed: {describe_error(e)}".strip(),
                timed_out=True,
            )
        return TaskOutcome(exit_code=None, logs=self._fetch_logs(definition, task_arn), timed_out=True)

    def _fetch_logs(self, definition: TaskDefinitionRef, task_arn: str) -> str:
        if definition.log_group is None or definition.log_stream_prefix is None:
            return ""
        task_id = task_arn.rsplit("/", 1)[-1]
        stream = f"{definition.log_stream_prefix}/{definition.container}/{task_id}"
        try:
            response = self._logs.get_log_events(
                logGroupName=definition.log_group,
                logStreamName=stream,
                startFromHead=True,
            )
        except (ClientError, BotoCoreError) as e:
            return f"(logs unavailable: {describe_error(e)})"
        return "\n".join(str(event.get("message", "")) for event in response.get("events", []))


def _exit_code(task: Mapping[str, Any], container: str) -> int | None:
    for entry in task.get("containers", []):
        if entry.get("name") == container and "exitCode" in entry:
            return int(entry["exitCode"])
    return None
