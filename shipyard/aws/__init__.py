"""AWS backend adapters (boto3)."""

from .clients import AwsClients
from .drivers import EcrRepositoryDriver, EcsServiceDriver, RdsDatabaseDriver, VpcDriver, aws_drivers
from .ecr import EcrImageRegistry
from .ecs import EcsComputePlatform, EcsTaskDefinitions, EcsTaskRunner
from .secrets import AwsSecretRegistry

__all__ = [
    "AwsClients",
    "AwsSecretRegistry",
    "EcrImageRegistry",
    "EcrRepositoryDriver",
    "EcsComputePlatform",
    "EcsServiceDriver",
    "EcsTaskDefinitions",
    "EcsTaskRunner",
    "RdsDatabaseDriver",
    "VpcDriver",
    "aws_drivers",
]
