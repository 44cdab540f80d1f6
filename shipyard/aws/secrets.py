"""Secrets Manager backed ``SecretRegistry``."""

from __future__ import annotations

from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from shipyard.core.result import Err, Ok, Result
from shipyard.secrets.model import (
    SecretBackendError,
    SecretError,
    SecretNotFoundError,
    SecretRef,
    SecretValue,
)

from .clients import describe_error, error_code

__all__ = ["AwsSecretRegistry"]

_NOT_FOUND = {"ResourceNotFoundException"}
_BAD_VERSION = {"InvalidParameterException", "ValidationException", "InvalidRequestException"}


class AwsSecretRegistry:
    """Secret versions are Secrets Manager ``VersionId`` values."""

    def __init__(self, client: Any) -> None:
        self._client = client

    def put(self, name: str, value: str) -> Result[SecretRef, SecretError]:
        try:
            response = self._client.put_secret_value(SecretId=name, SecretString=value)
        except ClientError as e:
            if error_code(e) not in _NOT_FOUND:
                return Err(_backend_error(name, e))
            try:
                response = self._client.create_secret(Name=name, SecretString=value)
            except (ClientError, BotoCoreError) as create_error:
                return Err(_backend_error(name, create_error))
        except BotoCoreError as e:
            return Err(_backend_error(name, e))
        return Ok(SecretRef(name=name, version=str(response["VersionId"])))

    def resolve(self, ref: SecretRef) -> Result[SecretValue, SecretError]:
        params: dict[str, str] = {"SecretId": ref.name}
        if ref.version is not None:
            params["VersionId"] = ref.version
        try:
            response = self._client.get_secret_value(**params)
        except ClientError as e:
            code = error_code(e)
            if code in _NOT_FOUND or (ref.version is not None and code in _BAD_VERSION):
                return Err(SecretNotFoundError(ref))
            return Err(_backend_error(ref.name, e))
        except BotoCoreError as e:
            return Err(_backend_error(ref.name, e))

        value = response.get("SecretString")
        if not isinstance(value, str):
            return Err(SecretBackendError(ref.name, "binary secrets are not supported"))
        return Ok(SecretValue(value))

    def latest(self, name: str) -> Result[SecretRef, SecretError]:
        try:
            response = self._client.describe_secret(SecretId=name)
        except ClientError as e:
            if error_code(e) in _NOT_FOUND:
                return Err(SecretNotFoundError(SecretRef(name)))
            return Err(_backend_error(name, e))
        except BotoCoreError as e:
            return Err(_backend_error(name, e))

        for version_id, stages in response.get("VersionIdsToStages", {}).items():
            if "AWSCURRENT" in stages:
                return Ok(SecretRef(name=name, version=str(version_id)))
        return Err(SecretNotFoundError(SecretRef(name)))

    def value_from(self, ref: SecretRef) -> Result[str, SecretError]:
        """ECS ``valueFrom`` for ``ref``: the secret name, or its ARN pinned to the version."""
        if ref.version is None:
            return Ok(ref.name)
        try:
            response = self._client.describe_secret(SecretId=ref.name)
        except ClientError as e:
            if error_code(e) in _NOT_FOUND:
                return Err(SecretNotFoundError(ref))
            return Err(_backend_error(ref.name, e))
        except BotoCoreError as e:
            return Err(_backend_error(ref.name, e))
        if ref.version not in response.get("VersionIdsToStages", {}):
            return Err(SecretNotFoundError(ref))
        # arn:...:secret:<name>:<json-key>:<version-stage>:<version-id>
        return Ok(f"{response['ARN']}:::{ref.version}")

    def delete(self, name: str) -> Result[None, SecretError]:
        # Without a recovery window so a destroyed project can be re-provisioned.
        try:
            self._client.delete_secret(SecretId=name, ForceDeleteWithoutRecovery=True)
        except ClientError as e:
            if error_code(e) in _NOT_FOUND:
                return Err(SecretNotFoundError(SecretRef(name)))
            return Err(_backend_error(name, e))
        except BotoCoreError as e:
            return Err(_backend_error(name, e))
        return Ok(None)


def _backend_error(name: str, error: ClientError | BotoCoreError) -> SecretBackendError:
    return SecretBackendError(
        name,
        f"secrets manager: {describe_error(error)}",
        hint="check AWS credentials and the secretsmanager permissions of the caller",
    )
