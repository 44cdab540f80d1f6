"""AWS resource drivers for the provisioner.

network -> VPC with subnets and a security group (EC2)
registry -> ECR repository with immutable tags
database -> RDS instance with a Secrets Manager managed master password
secret -> Secrets Manager secret (through ``SecretDriver``)
compute-service -> Fargate ECS service

Every driver maps botocore failures to ``DriverError``; none of them ever
reads a secret value.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from shipyard.core.config import AwsConfig
from shipyard.core.result import Err, Ok, Result
from shipyard.graph.model import Resource, ResourceKind
from shipyard.provision.drivers import DriverError, Outputs, ResourceDriver, SecretDriver
from shipyard.secrets.registry import SecretRegistry

from .clients import AwsClients, describe_error, error_code

__all__ = [
    "EcrRepositoryDriver",
    "EcsServiceDriver",
    "RdsDatabaseDriver",
    "VpcDriver",
    "aws_drivers",
]

_DB_WAIT = {"Delay": 30, "MaxAttempts": 80}


def _attr_str(resource: Resource, key: str, default: str) -> str:
    value = resource.attributes.get(key, default)
    return value if isinstance(value, str) and value else default


def _attr_int(resource: Resource, key: str, default: int) -> int:
    value = resource.attributes.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        return default
    return value


def _attr_list(resource: Resource, key: str) -> list[str]:
    value = resource.attributes.get(key, [])
    if not isinstance(value, list):
        return []
    return [str(v) for v in value]


def _tags(resource: Resource) -> list[dict[str, str]]:
    return [
        {"Key": "Name", "Value": resource.name},
        {"Key": "ManagedBy", "Value": "shipyard"},
    ]


def _fail(resource: Resource, action: str, error: ClientError | BotoCoreError) -> Err[DriverError]:
    return Err(DriverError(resource.name, f"{action} failed", describe_error(error)))


class VpcDriver:
    """Attributes: ``cidr`` (default 10.0.0.0/16), ``subnets`` (list of CIDRs)."""

    def __init__(self, client: Any) -> None:
        self._ec2 = client

    def apply(
        self,
        resource: Resource,
        inputs: Mapping[str, Outputs],
        current: Mapping[str, str] | None,
    ) -> Result[Outputs, DriverError]:
        if current is not None and current.get("vpc_id"):
            try:
                self._ec2.describe_vpcs(VpcIds=[current["vpc_id"]])
            except ClientError as e:
                if error_code(e) != "InvalidVpcID.NotFound":
                    return _fail(resource, "describe_vpcs", e)
            except BotoCoreError as e:
                return _fail(resource, "describe_vpcs", e)
            else:
                return Ok(dict(current))

        try:
            vpc = self._ec2.create_vpc(
                CidrBlock=_attr_str(resource, "cidr", "10.0.0.0/16"),
                TagSpecifications=[{"ResourceType": "vpc", "Tags": _tags(resource)}],
            )
            vpc_id = vpc["Vpc"]["VpcId"]
            self._ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsHostnames={"Value": True})

            subnet_ids: list[str] = []
            for cidr in _attr_list(resource, "subnets"):
                subnet = self._ec2.create_subnet(
                    VpcId=vpc_id,
                    CidrBlock=cidr,
                    TagSpecifications=[{"ResourceType": "subnet", "Tags": _tags(resource)}],
                )
                subnet_ids.append(subnet["Subnet"]["SubnetId"])

            group = self._ec2.create_security_group(
                GroupName=f"{resource.name}-services",
                Description=f"shipyard services in {resource.name}",
                VpcId=vpc_id,
            )
        except (ClientError, BotoCoreError) as e:
            return _fail(resource, "create network", e)

        return Ok(
            {
                "vpc_id": vpc_id,
                "subnet_ids": ",".join(subnet_ids),
                "security_group_id": group["GroupId"],
            }
        )

    def destroy(self, resource: Resource, outputs: Mapping[str, str]) -> Result[None, DriverError]:
        vpc_id = outputs.get("vpc_id")
        if not vpc_id:
            return Ok(None)
        try:
            for subnet_id in filter(None, outputs.get("subnet_ids", "").split(",")):
                self._ec2.delete_subnet(SubnetId=subnet_id)
            if outputs.get("security_group_id"):
                self._ec2.delete_security_group(GroupId=outputs["security_group_id"])
            self._ec2.delete_vpc(VpcId=vpc_id)
        except ClientError as e:
            if error_code(e) == "InvalidVpcID.NotFound":
                return Ok(None)
            return _fail(resource, "delete network", e)
        except BotoCoreError as e:
            return _fail(resource, "delete network", e)
        return Ok(None)


class EcrRepositoryDriver:
    """Attributes: ``repository`` (default: resource name), ``force_delete``.

    Tags are immutable, so a published revision can never be overwritten.
    """

    def __init__(self, client: Any) -> None:
        self._ecr = client

    def apply(
        self,
        resource: Resource,
        inputs: Mapping[str, Outputs],
        current: Mapping[str, str] | None,
    ) -> Result[Outputs, DriverError]:
        name = _attr_str(resource, "repository", resource.name)
        try:
            created = self._ecr.create_repository(
                repositoryName=name,
                imageTagMutability="IMMUTABLE",
                tags=[{"Key": t["Key"], "Value": t["Value"]} for t in _tags(resource)],
            )
            repo = created["repository"]
        except ClientError as e:
            if error_code(e) != "RepositoryAlreadyExistsException":
                return _fail(resource, "create_repository", e)
            try:
                described = self._ecr.describe_repositories(repositoryNames=[name])
            except (ClientError, BotoCoreError) as describe_err:
                return _fail(resource, "describe_repositories", describe_err)
            repo = described["repositories"][0]
        except BotoCoreError as e:
            return _fail(resource, "create_repository", e)

        return Ok(
            {
                "repository_name": name,
                "repository_uri": repo["repositoryUri"],
                "repository_arn": repo["repositoryArn"],
            }
        )

    def destroy(self, resource: Resource, outputs: Mapping[str, str]) -> Result[None, DriverError]:
        name = outputs.get("repository_name") or _attr_str(resource, "repository", resource.name)
        try:
            self._ecr.delete_repository(
                repositoryName=name, force=resource.attributes.get("force_delete") is True
            )
        except ClientError as e:
            if error_code(e) == "RepositoryNotFoundException":
                return Ok(None)
            return _fail(resource, "delete_repository", e)
        except BotoCoreError as e:
            return _fail(resource, "delete_repository", e)
        return Ok(None)


class RdsDatabaseDriver:
    """Attributes: ``engine``, ``instance_class``, ``storage_gb``, ``username``,
    ``subnet_group``, ``skip_final_snapshot``.

    The master password is generated and rotated by RDS inside Secrets
    Manager; only its ARN is exported.
    """

    def __init__(self, client: Any) -> None:
        self._rds = client

    def apply(
        self,
        resource: Resource,
        inputs: Mapping[str, Outputs],
        current: Mapping[str, str] | None,
    ) -> Result[Outputs, DriverError]:
        instance_class = _attr_str(resource, "instance_class", "db.t4g.micro")
        storage = _attr_int(resource, "storage_gb", 20)
        try:
            if current is not None:
                self._rds.modify_db_instance(
                    DBInstanceIdentifier=resource.name,
                    DBInstanceClass=instance_class,
                    AllocatedStorage=storage,
                    ApplyImmediately=True,
                )
            else:
                params: dict[str, Any] = {
                    "DBInstanceIdentifier": resource.name,
                    "Engine": _attr_str(resource, "engine", "postgres"),
                    "DBInstanceClass": instance_class,
                    "AllocatedStorage": storage,
                    "MasterUsername": _attr_str(resource, "username", "app"),
                    "ManageMasterUserPassword": True,
                    "PubliclyAccessible": False,
                    "Tags": _tags(resource),
                }
                groups = [o["security_group_id"] for o in inputs.values() if o.get("security_group_id")]
                if groups:
                    params["VpcSecurityGroupIds"] = groups
                if "subnet_group" in resource.attributes:
                    params["DBSubnetGroupName"] = _attr_str(resource, "subnet_group", "")
                try:
                    self._rds.create_db_instance(**params)
                except ClientError as e:
                    if error_code(e) != "DBInstanceAlreadyExists":
                        raise

            self._rds.get_waiter("db_instance_available").wait(
                DBInstanceIdentifier=resource.name, WaiterConfig=_DB_WAIT
            )
            described = self._rds.describe_db_instances(DBInstanceIdentifier=resource.name)
        except (ClientError, BotoCoreError) as e:
            return _fail(resource, "provision database", e)

        instance = described["DBInstances"][0]
        endpoint = instance.get("Endpoint", {})
        outputs: Outputs = {
            "instance_id": resource.name,
            "endpoint": f"{endpoint.get('Address', '')}:{endpoint.get('Port', '')}",
        }
        secret = instance.get("MasterUserSecret", {})
        if secret.get("SecretArn"):
            outputs["secret_arn"] = secret["SecretArn"]
        return Ok(outputs)

    def destroy(self, resource: Resource, outputs: Mapping[str, str]) -> Result[None, DriverError]:
        params: dict[str, Any] = {"DBInstanceIdentifier": resource.name}
        if resource.attributes.get("skip_final_snapshot") is True:
            params["SkipFinalSnapshot"] = True
        else:
            params["FinalDBSnapshotIdentifier"] = f"{resource.name}-final"
        try:
            self._rds.delete_db_instance(**params)
            self._rds.get_waiter("db_instance_deleted").wait(
                DBInstanceIdentifier=resource.name, WaiterConfig=_DB_WAIT
            )
        except ClientError as e:
            if error_code(e) == "DBInstanceNotFound":
                return Ok(None)
            return _fail(resource, "delete database", e)
        except BotoCoreError as e:
            return _fail(resource, "delete database", e)
        return Ok(None)


class EcsServiceDriver:
    """Attributes: ``service`` (default: resource name), ``cpu``, ``memory``,
    ``port``, ``execution_role_arn``, ``task_role_arn``, ``secrets``
    (ENV name -> secret or database resource name).

    The service starts at desired count 0; releases set the real count and
    image. An update keeps the image that is currently running.
    """

    def __init__(self, client: Any, config: AwsConfig) -> None:
        self._ecs = client
        self._config = config

    def _cluster(self) -> str:
        return self._config.cluster or "default"

    def apply(
        self,
        resource: Resource,
        inputs: Mapping[str, Outputs],
        current: Mapping[str, str] | None,
    ) -> Result[Outputs, DriverError]:
        service = _attr_str(resource, "service", resource.name)
        secrets = _secret_mounts(resource, inputs)
        if isinstance(secrets, Err):
            return secrets

        try:
            existing = self._active_service(service)
            image = self._running_image(existing, service) if existing else None
            if image is None:
                repo = next((o["repository_uri"] for o in inputs.values() if "repository_uri" in o), None)
                if repo is None:
                    return Err(DriverError(resource.name, "compute-service must depend on a registry"))
                image = f"{repo}:bootstrap"

            container: dict[str, Any] = {
                "name": service,
                "image": image,
                "essential": True,
                "secrets": secrets.value,
                "logConfiguration": {
                    "logDriver": "awslogs",
                    "options": {
                        "awslogs-group": f"/shipyard/{service}",
                        "awslogs-region": self._ecs.meta.region_name,
                        "awslogs-stream-prefix": "shipyard",
                        "awslogs-create-group": "true",
                    },
                },
            }
            if "port" in resource.attributes:
                container["portMappings"] = [{"containerPort": _attr_int(resource, "port", 8000)}]

            definition: dict[str, Any] = {
                "family": service,
                "networkMode": "awsvpc",
                "requiresCompatibilities": ["FARGATE"],
                "cpu": _attr_str(resource, "cpu", "256"),
                "memory": _attr_str(resource, "memory", "512"),
                "containerDefinitions": [container],
            }
            for attr, key in (("execution_role_arn", "executionRoleArn"), ("task_role_arn", "taskRoleArn")):
                if attr in resource.attributes:
                    definition[key] = _attr_str(resource, attr, "")
            registered = self._ecs.register_task_definition(**definition)
            task_definition = registered["taskDefinition"]["taskDefinitionArn"]

            if existing:
                response = self._ecs.update_service(
                    cluster=self._cluster(), service=service, taskDefinition=task_definition
                )
            else:
                response = self._ecs.create_service(
                    cluster=self._cluster(),
                    serviceName=service,
                    taskDefinition=task_definition,
                    desiredCount=0,
                    launchType="FARGATE",
                    networkConfiguration=self._network(inputs),
                    deploymentConfiguration={
                        "deploymentCircuitBreaker": {"enable": True, "rollback": False}
                    },
                )
        except (ClientError, BotoCoreError) as e:
            return _fail(resource, "provision ecs service", e)

        return Ok(
            {
                "service_name": service,
                "service_arn": response["service"]["serviceArn"],
                "task_definition_arn": task_definition,
                "secret_refs": ",".join(sorted(s["valueFrom"] for s in secrets.value)),
            }
        )

    def destroy(self, resource: Resource, outputs: Mapping[str, str]) -> Result[None, DriverError]:
        service = outputs.get("service_name") or _attr_str(resource, "service", resource.name)
        try:
            self._ecs.update_service(cluster=self._cluster(), service=service, desiredCount=0)
            self._ecs.delete_service(cluster=self._cluster(), service=service, force=True)
        except ClientError as e:
            if error_code(e) in {"ServiceNotFoundException", "ServiceNotActiveException"}:
                return Ok(None)
            return _fail(resource, "delete ecs service", e)
        except BotoCoreError as e:
            return _fail(resource, "delete ecs service", e)
        return Ok(None)

    def _active_service(self, service: str) -> dict[str, Any] | None:
        response = self._ecs.describe_services(cluster=self._cluster(), services=[service])
        for entry in response.get("services", []):
            if entry.get("status") == "ACTIVE":
                return entry
        return None

    def _running_image(self, existing: Mapping[str, Any], service: str) -> str | None:
        described = self._ecs.describe_task_definition(taskDefinition=existing["taskDefinition"])
        for container in described["taskDefinition"].get("containerDefinitions", []):
            if container.get("name") == service:
                return str(container["image"])
        return None

    def _network(self, inputs: Mapping[str, Outputs]) -> dict[str, Any]:
        subnets = list(self._config.subnets)
        groups = list(self._config.security_groups)
        for outputs in inputs.values():
            subnets += [s for s in outputs.get("subnet_ids", "").split(",") if s]
            if outputs.get("security_group_id"):
                groups.append(outputs["security_group_id"])
        return {
            "awsvpcConfiguration": {
                "subnets": subnets,
                "securityGroups": groups,
                "assignPublicIp": "ENABLED" if self._config.assign_public_ip else "DISABLED",
            }
        }


def _secret_mounts(
    resource: Resource, inputs: Mapping[str, Outputs]
) -> Result[list[dict[str, str]], DriverError]:
    """ECS ``secrets`` entries: the task receives ARNs/names, never values."""
    declared = resource.attributes.get("secrets", {})
    if not isinstance(declared, Mapping):
        return Err(DriverError(resource.name, "secrets must be a table of ENV = resource"))
    mounts: list[dict[str, str]] = []
    for env_name, source in sorted(declared.items()):
        outputs = inputs.get(str(source))
        if outputs is None:
            return Err(DriverError(resource.name, f"secret {env_name} references {source}, which is not a dependency"))
        value_from = outputs.get("secret_arn") or outputs.get("secret_name")
        if not value_from:
            return Err(DriverError(resource.name, f"{source} does not export a secret"))
        mounts.append({"name": str(env_name), "valueFrom": value_from})
    return Ok(mounts)


def aws_drivers(
    clients: AwsClients, config: AwsConfig, registry: SecretRegistry
) -> dict[ResourceKind, ResourceDriver]:
    return {
        ResourceKind.NETWORK: VpcDriver(clients.client("ec2")),
        ResourceKind.REGISTRY: EcrRepositoryDriver(clients.client("ecr")),
        ResourceKind.DATABASE: RdsDatabaseDriver(clients.client("rds")),
        ResourceKind.COMPUTE_SERVICE: EcsServiceDriver(clients.client("ecs"), config),
        ResourceKind.SECRET: SecretDriver(registry),
    }
