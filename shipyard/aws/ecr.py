"""ECR backed ``ImageRegistry``: lookups through the API, pushes through docker."""

from __future__ import annotations

import base64
from pathlib import Path
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from shipyard.core.result import Err, Ok, Result
from shipyard.images.model import RegistryError
from shipyard.platform.process import run

from .clients import describe_error, error_code

__all__ = ["EcrImageRegistry", "repository_name"]


def repository_name(repository: str) -> str:
    """``<account>.dkr.ecr.<region>.amazonaws.com/app/api`` -> ``app/api``."""
    _, sep, name = repository.partition("/")
    return name if sep else repository


class EcrImageRegistry:
    def __init__(self, client: Any, *, cwd: Path, push_timeout: float | None = None) -> None:
        self._client = client
        self._cwd = cwd
        self._push_timeout = push_timeout

    def find(self, repository: str, tag: str) -> Result[str | None, RegistryError]:
        try:
            response = self._client.describe_images(
                repositoryName=repository_name(repository),
                imageIds=[{"imageTag": tag}],
            )
        except ClientError as e:
            if error_code(e) == "ImageNotFoundException":
                return Ok(None)
            return Err(RegistryError(f"ecr: {describe_error(e)}"))
        except BotoCoreError as e:
            return Err(RegistryError(f"ecr: {describe_error(e)}"))

        details = response.get("imageDetails", [])
        if not details:
            return Ok(None)
        return Ok(str(details[0]["imageDigest"]))

    def push(self, image: str, repository: str, tag: str) -> Result[str, RegistryError]:
        existing = self.find(repository, tag)
        if isinstance(existing, Err):
            return existing
        if existing.value is not None:
            return Ok(existing.value)

        login = self._login()
        if isinstance(login, Err):
            return login

        pushed = run(["docker", "push", image], cwd=self._cwd, timeout=self._push_timeout)
        if isinstance(pushed, Err):
            return Err(RegistryError(str(pushed.error), pushed.error.output_tail()))

        found = self.find(repository, tag)
        if isinstance(found, Err):
            return found
        if found.value is None:
            return Err(RegistryError(f"{repository}:{tag} not visible after push"))
        return Ok(found.value)

    def _login(self) -> Result[None, RegistryError]:
        try:
            response = self._client.get_authorization_token()
        except (ClientError, BotoCoreError) as e:
            return Err(RegistryError(f"ecr: {describe_error(e)}"))

        data = response["authorizationData"][0]
        username, _, password = base64.b64decode(data["authorizationToken"]).decode().partition(":")
        result = run(
            ["docker", "login", "--username", username, "--password-stdin", data["proxyEndpoint"]],
            cwd=self._cwd,
            input_text=password,
        )
        if isinstance(result, Err):
            return Err(RegistryError("docker login to ECR failed", result.error.output_tail()))
        return Ok(None)
