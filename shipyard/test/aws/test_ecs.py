"""ECS adapters against stubbed API responses."""

from __future__ import annotations

from typing import Any

import boto3
import pytest
from botocore.stub import ANY, Stubber

from shipyard.aws.ecs import EcsComputePlatform, EcsTaskDefinitions, EcsTaskRunner
from shipyard.core.result import Err, Ok, Result
from shipyard.images.model import Artifact
from shipyard.release.migration import TaskOutcome, TaskSpec
from shipyard.release.model import HealthSample
from shipyard.secrets.model import SecretError, SecretNotFoundError, SecretRef, SecretValue

CLUSTER = "app"
OLD_TD = "arn:aws:ecs:us-east-1:123456789012:task-definition/api:7"
NEW_TD = "arn:aws:ecs:us-east-1:123456789012:task-definition/api:8"
TASK = "arn:aws:ecs:us-east-1:123456789012:task/app/0f1e2d3c4b5a"
IMAGE = "123456789012.dkr.ecr.us-east-1.amazonaws.com/api:abc123"


@pytest.fixture
def ecs() -> Any:
    return boto3.client("ecs", region_name="us-east-1")


@pytest.fixture
def logs() -> Any:
    return boto3.client("logs", region_name="us-east-1")


def _service(deployment: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "services": [
            {
                "serviceName": "api",
                "status": "ACTIVE",
                "taskDefinition": OLD_TD,
                "deployments": [deployment] if deployment else [],
            }
        ]
    }


_CONTAINER = {
    "name": "api",
    "image": "123456789012.dkr.ecr.us-east-1.amazonaws.com/api:old",
    "essential": True,
    "logConfiguration": {
        "logDriver": "awslogs",
        "options": {"awslogs-group": "/shipyard/api", "awslogs-stream-prefix": "shipyard"},
    },
}


def _stub_register(stubber: Stubber, secrets: list[dict[str, str]] | None = None) -> None:
    container: dict[str, Any] = {**_CONTAINER, "image": IMAGE}
    if secrets is not None:
        container["secrets"] = secrets
    stubber.add_response(
        "describe_services", _service(), {"cluster": CLUSTER, "services": ["api"]}
    )
    stubber.add_response(
        "describe_task_definition",
        {
            "taskDefinition": {
                "taskDefinitionArn": OLD_TD,
                "family": "api",
                "networkMode": "awsvpc",
                "requiresCompatibilities": ["FARGATE"],
                "cpu": "256",
                "memory": "512",
                "revision": 7,
                "status": "ACTIVE",
                "containerDefinitions": [_CONTAINER],
            }
        },
        {"taskDefinition": OLD_TD},
    )
    stubber.add_response(
        "register_task_definition",
        {"taskDefinition": {"taskDefinitionArn": NEW_TD}},
        {
            "family": "api",
            "networkMode": "awsvpc",
            "requiresCompatibilities": ["FARGATE"],
            "cpu": "256",
            "memory": "512",
            "containerDefinitions": [container],
        },
    )


class TestComputePlatform:
    def test_update_registers_new_revision_once(self, ecs: Any) -> None:
        artifact = Artifact("api", "abc123", IMAGE.rsplit(":", 1)[0], "sha256:a")
        update = {"cluster": CLUSTER, "service": "api", "taskDefinition": NEW_TD, "desiredCount": 2}
        with Stubber(ecs) as stubber:
            _stub_register(stubber)
            stubber.add_response("update_service", {}, update)
            stubber.add_response("update_service", {}, update)
            platform = EcsComputePlatform(ecs, definitions=EcsTaskDefinitions(ecs, cluster=CLUSTER))

            assert platform.update_service("api", artifact, 2) == Ok(None)
            assert platform.update_service("api", artifact, 2) == Ok(None)
            stubber.assert_no_pending_responses()

    def test_update_failure(self, ecs: Any) -> None:
        artifact = Artifact("api", "abc123", IMAGE.rsplit(":", 1)[0], "sha256:a")
        with Stubber(ecs) as stubber:
            _stub_register(stubber)
            stubber.add_client_error("update_service", "AccessDeniedException", "no ecs:UpdateService")
            platform = EcsComputePlatform(ecs, definitions=EcsTaskDefinitions(ecs, cluster=CLUSTER))

            result = platform.update_service("api", artifact, 1)

        assert isinstance(result, Err)
        assert result.error.message == "deploy of api failed: AccessDeniedException: no ecs:UpdateService"

    def test_health_completed_rollout(self, ecs: Any) -> None:
        deployment = {
            "status": "PRIMARY",
            "taskDefinition": NEW_TD,
            "desiredCount": 2,
            "runningCount": 2,
            "rolloutState": "COMPLETED",
        }
        with Stubber(ecs) as stubber:
            stubber.add_response("describe_services", _service(deployment))
            platform = EcsComputePlatform(ecs, definitions=EcsTaskDefinitions(ecs, cluster=CLUSTER))
            assert platform.health("api") == Ok(HealthSample(running=2, healthy=2, desired=2))

    def test_health_counts_healthy_new_tasks(self, ecs: Any) -> None:
        deployment = {
            "status": "PRIMARY",
            "taskDefinition": NEW_TD,
            "desiredCount": 2,
            "runningCount": 2,
            "rolloutState": "IN_PROGRESS",
        }
        with Stubber(ecs) as stubber:
            stubber.add_response("describe_services", _service(deployment))
            stubber.add_response(
                "list_tasks",
                {"taskArns": ["t1", "t2", "t3"]},
                {"cluster": CLUSTER, "serviceName": "api", "desiredStatus": "RUNNING"},
            )
            stubber.add_response(
                "describe_tasks",
                {
                    "tasks": [
                        {"taskArn": "t1", "taskDefinitionArn": NEW_TD, "lastStatus": "RUNNING", "healthStatus": "HEALTHY"},
                        {"taskArn": "t2", "taskDefinitionArn": NEW_TD, "lastStatus": "RUNNING", "healthStatus": "UNKNOWN"},
                        {"taskArn": "t3", "taskDefinitionArn": OLD_TD, "lastStatus": "RUNNING", "healthStatus": "HEALTHY"},
                    ]
                },
                {"cluster": CLUSTER, "tasks": ["t1", "t2", "t3"]},
            )
            platform = EcsComputePlatform(ecs, definitions=EcsTaskDefinitions(ecs, cluster=CLUSTER))
            assert platform.health("api") == Ok(HealthSample(running=2, healthy=1, desired=2))

    def test_health_without_service(self, ecs: Any) -> None:
        with Stubber(ecs) as stubber:
            stubber.add_response("describe_services", {"services": [], "failures": [{"reason": "MISSING"}]})
            platform = EcsComputePlatform(ecs, definitions=EcsTaskDefinitions(ecs, cluster=CLUSTER))
            result = platform.health("api")
        assert isinstance(result, Err)
        assert "not found in cluster app" in result.error.message


def _spec(timeout: float = 60) -> TaskSpec:
    return TaskSpec(
        image=IMAGE,
        command=("alembic", "upgrade", "head"),
        environment={"DB_PASSWORD": SecretValue("s3cret")},
        timeout_seconds=timeout,
        service="api",
        secrets={"DB_PASSWORD": SecretRef("app/db-password")},
    )


SECRET_ARN = "arn:aws:secretsmanager:us-east-1:123456789012:secret:app/db-password-AbCdEf"
MOUNTS = [{"name": "DB_PASSWORD", "valueFrom": SECRET_ARN}]


def _value_from(ref: SecretRef) -> Result[str, SecretError]:
    return Ok(SECRET_ARN)


def _runner(ecs: Any, logs: Any, sleeps: list[float]) -> EcsTaskRunner:
    return EcsTaskRunner(
        ecs,
        logs,
        definitions=EcsTaskDefinitions(ecs, cluster=CLUSTER),
        value_from=_value_from,
        subnets=("subnet-1",),
        security_groups=("sg-1",),
        poll_interval=5,
        sleep=sleeps.append,
    )


def _stub_run_task(stubber: Stubber) -> None:
    stubber.add_response(
        "run_task",
        {"tasks": [{"taskArn": TASK, "lastStatus": "PROVISIONING"}], "failures": []},
        {
            "cluster": CLUSTER,
            "taskDefinition": NEW_TD,
            "launchType": "FARGATE",
            "count": 1,
            "startedBy": "shipyard-migrate",
            "networkConfiguration": {
                "awsvpcConfiguration": {
                    "subnets": ["subnet-1"],
                    "securityGroups": ["sg-1"],
                    "assignPublicIp": "DISABLED",
                }
            },
            "overrides": {
                "containerOverrides": [
                    {
                        "name": "api",
                        "command": ["alembic", "upgrade", "head"],
                    }
                ]
            },
        },
    )


def _task(status: str, exit_code: int | None = None) -> dict[str, Any]:
    container: dict[str, Any] = {"name": "api"}
    if exit_code is not None:
        container["exitCode"] = exit_code
    return {"tasks": [{"taskArn": TASK, "lastStatus": status, "containers": [container]}]}


class TestTaskRunner:
    def test_runs_to_completion_and_reads_logs(self, ecs: Any, logs: Any) -> None:
        sleeps: list[float] = []
        with Stubber(ecs) as stubber, Stubber(logs) as log_stubber:
            _stub_register(stubber, MOUNTS)
            _stub_run_task(stubber)
            stubber.add_response("describe_tasks", _task("RUNNING"), {"cluster": CLUSTER, "tasks": [TASK]})
            stubber.add_response("describe_tasks", _task("STOPPED", 0), {"cluster": CLUSTER, "tasks": [TASK]})
            log_stubber.add_response(
                "get_log_events",
                {"events": [{"timestamp": 1, "message": "INFO upgrade"}, {"timestamp": 2, "message": "done"}]},
                {
                    "logGroupName": "/shipyard/api",
                    "logStreamName": "shipyard/api/0f1e2d3c4b5a",
                    "startFromHead": True,
                },
            )

            outcome = _runner(ecs, logs, sleeps).run(_spec())

        assert outcome == TaskOutcome(exit_code=0, logs="INFO upgrade\ndone")
        assert sleeps == [5]

    def test_timeout_stops_task(self, ecs: Any, logs: Any) -> None:
        sleeps: list[float] = []
        with Stubber(ecs) as stubber, Stubber(logs) as log_stubber:
            _stub_register(stubber, MOUNTS)
            _stub_run_task(stubber)
            for _ in range(3):
                stubber.add_response("describe_tasks", _task("RUNNING"))
            stubber.add_response(
                "stop_task",
                {"task": {"taskArn": TASK}},
                {"cluster": CLUSTER, "task": TASK, "reason": ANY},
            )
            log_stubber.add_response("get_log_events", {"events": []})

            outcome = _runner(ecs, logs, sleeps).run(_spec(timeout=10))

        assert outcome.timed_out
        assert outcome.exit_code is None
        assert sleeps == [5, 5]

    def test_run_task_without_capacity(self, ecs: Any, logs: Any) -> None:
        with Stubber(ecs) as stubber:
            _stub_register(stubber, MOUNTS)
            stubber.add_response(
                "run_task", {"tasks": [], "failures": [{"arn": "x", "reason": "RESOURCE:ENI"}]}
            )
            outcome = _runner(ecs, logs, []).run(_spec())

        assert outcome.exit_code is None
        assert outcome.logs == "run_task started no task: RESOURCE:ENI"

    def test_secret_values_never_reach_the_ecs_api(self, ecs: Any, logs: Any) -> None:
        sent: list[dict[str, Any]] = []

        def record(params: dict[str, Any], **kwargs: Any) -> None:
            sent.append(params)

        ecs.meta.events.register("provide-client-params.ecs", record)
        with Stubber(ecs) as stubber, Stubber(logs) as log_stubber:
            _stub_register(stubber, MOUNTS)
            _stub_run_task(stubber)
            stubber.add_response("describe_tasks", _task("STOPPED", 0))
            log_stubber.add_response("get_log_events", {"events": []})

            outcome = _runner(ecs, logs, []).run(_spec())

        assert outcome.exit_code == 0
        assert len(sent) == 5
        assert all("s3cret" not in repr(params) for params in sent)
        assert SECRET_ARN in repr(sent)

    def test_unreferenceable_secret_starts_no_task(self, ecs: Any, logs: Any) -> None:
        def missing(ref: SecretRef) -> Result[str, SecretError]:
            return Err(SecretNotFoundError(ref))

        runner = EcsTaskRunner(
            ecs,
            logs,
            definitions=EcsTaskDefinitions(ecs, cluster=CLUSTER),
            value_from=missing,
            subnets=("subnet-1",),
            security_groups=("sg-1",),
        )
        with Stubber(ecs) as stubber:
            outcome = runner.run(_spec())
            stubber.assert_no_pending_responses()

        assert outcome.exit_code is None
        assert outcome.logs.startswith("cannot reference secret app/db-password")
