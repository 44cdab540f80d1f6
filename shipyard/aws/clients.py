"""boto3 session and per-service client cache."""

from __future__ import annotations

import threading
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

__all__ = ["AwsClients", "describe_error", "error_code"]


class AwsClients:
    """Clients for one account/region, created lazily and shared by adapters.

    boto3 clients are thread-safe; the session is not, so client creation is
    serialized.
    """

    def __init__(self, *, region: str | None = None, session: boto3.Session | None = None) -> None:
        self._session = session or boto3.Session(region_name=region)
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()

    @property
    def region(self) -> str | None:
        return self._session.region_name

    def client(self, service: str) -> Any:
        with self._lock:
            if service not in self._clients:
                self._clients[service] = self._session.client(service)
            return self._clients[service]

    def register(self, service: str, client: Any) -> None:
        """Use a pre-built client (e.g. one wrapped in a botocore Stubber)."""
        with self._lock:
            self._clients[service] = client


def error_code(error: ClientError | BotoCoreError) -> str:
    if isinstance(error, ClientError):
        return str(error.response.get("Error", {}).get("Code", ""))
    return ""


def describe_error(error: ClientError | BotoCoreError) -> str:
    if isinstance(error, ClientError):
        info = error.response.get("Error", {})
        code = info.get("Code", "ClientError")
        message = info.get("Message", "")
        return f"{code}: {message}" if message else str(code)
    return str(error)
