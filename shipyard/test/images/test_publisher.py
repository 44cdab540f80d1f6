"""Tests for ImagePublisher."""

from __future__ import annotations

from pathlib import Path

import pytest

from shipyard.core.result import Err, Ok, Result
from shipyard.images.model import BuildContext, BuildError, PushError, RegistryError
from shipyard.images.publisher import ImagePublisher, MemoryImageRegistry
from shipyard.output.console import MockConsole
from shipyard.platform.process import ProcessError

REPO = "registry.example.com/api"


class FakeBuilder:
    def __init__(self, *, fail: ProcessError | None = None) -> None:
        self.fail = fail
        self.builds: list[str] = []

    def build(self, context: BuildContext, image: str, revision_id: str) -> Result[str, ProcessError]:
        self.builds.append(image)
        if self.fail is not None:
            return Err(self.fail)
        return Ok("built")


class RejectingRegistry(MemoryImageRegistry):
    def push(self, image: str, repository: str, tag: str) -> Result[str, RegistryError]:
        return Err(RegistryError("denied: not authorized", "401"))


@pytest.fixture
def context(tmp_path: Path) -> BuildContext:
    return BuildContext(path=tmp_path)


def _publisher(builder: FakeBuilder, registry: MemoryImageRegistry) -> ImagePublisher:
    return ImagePublisher(
        builder=builder, registry=registry, repositories={"api": REPO}, console=MockConsole()
    )


def test_publish_builds_and_pushes(context: BuildContext) -> None:
    builder = FakeBuilder()
    registry = MemoryImageRegistry()

    result = _publisher(builder, registry).publish("api", "abc123", context)

    assert isinstance(result, Ok)
    artifact = result.value
    assert artifact.image_uri == f"{REPO}:abc123"
    assert artifact.digest.startswith("sha256:")
    assert builder.builds == [f"{REPO}:abc123"]
    assert registry.images[f"{REPO}:abc123"] == artifact.digest


def test_republish_reuses_artifact(context: BuildContext) -> None:
    builder = FakeBuilder()
    publisher = _publisher(builder, MemoryImageRegistry())

    first = publisher.publish("api", "abc123", context)
    second = publisher.publish("api", "abc123", context)

    assert first == second
    assert len(builder.builds) == 1


def test_build_failure(context: BuildContext) -> None:
    failure = ProcessError(("docker", "build"), 1, "step 3/7", "no such file: requirements.txt")
    registry = MemoryImageRegistry()

    result = _publisher(FakeBuilder(fail=failure), registry).publish("api", "abc123", context)

    assert isinstance(result, Err)
    assert isinstance(result.error, BuildError)
    assert result.error.returncode == 1
    assert "requirements.txt" in result.error.logs
    assert registry.images == {}


def test_build_timeout(context: BuildContext) -> None:
    failure = ProcessError(("docker", "build"), -1, "", "timed out", timed_out=True)
    result = _publisher(FakeBuilder(fail=failure), MemoryImageRegistry()).publish(
        "api", "abc123", context
    )
    assert isinstance(result, Err)
    assert result.error.message == "image build for api timed out"


def test_push_failure_is_distinct(context: BuildContext) -> None:
    result = _publisher(FakeBuilder(), RejectingRegistry()).publish("api", "abc123", context)

    assert isinstance(result, Err)
    assert isinstance(result.error, PushError)
    assert result.error.message == "push of api failed: denied: not authorized"


def test_unknown_repository(context: BuildContext) -> None:
    builder = FakeBuilder()
    result = _publisher(builder, MemoryImageRegistry()).publish("web", "abc123", context)
    assert isinstance(result, Err)
    assert builder.builds == []
