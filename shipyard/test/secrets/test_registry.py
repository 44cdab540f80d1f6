from __future__ import annotations

import stat
from pathlib import Path

import pytest

from shipyard.core.result import Err, Ok
from shipyard.secrets.model import SecretNotFoundError, SecretRef
from shipyard.secrets.registry import (
    FileSecretRegistry,
    MemorySecretRegistry,
    SecretRegistry,
    resolve_all,
)


@pytest.fixture(params=["memory", "file"])
def registry(request: pytest.FixtureRequest, tmp_path: Path) -> SecretRegistry:
    if request.param == "memory":
        return MemorySecretRegistry()
    return FileSecretRegistry(tmp_path / "secrets.json")


def _reveal(registry: SecretRegistry, ref: SecretRef) -> str:
    result = registry.resolve(ref)
    assert isinstance(result, Ok)
    return result.value.reveal()


def test_versions_stay_resolvable(registry: SecretRegistry) -> None:
    first = registry.put("app/db", "one")
    second = registry.put("app/db", "two")

    assert first == Ok(SecretRef("app/db", "1"))
    assert second == Ok(SecretRef("app/db", "2"))
    assert _reveal(registry, SecretRef("app/db", "1")) == "one"
    assert _reveal(registry, SecretRef("app/db")) == "two"
    assert registry.latest("app/db") == Ok(SecretRef("app/db", "2"))


@pytest.mark.parametrize("version", ["0", "3", "latest"])
def test_unknown_version(registry: SecretRegistry, version: str) -> None:
    registry.put("app/db", "one")
    registry.put("app/db", "two")
    result = registry.resolve(SecretRef("app/db", version))
    assert isinstance(result, Err)
    assert isinstance(result.error, SecretNotFoundError)


def test_unknown_name(registry: SecretRegistry) -> None:
    assert isinstance(registry.latest("nope"), Err)
    assert isinstance(registry.resolve(SecretRef("nope")), Err)


def test_delete(registry: SecretRegistry) -> None:
    registry.put("app/db", "one")
    assert registry.delete("app/db") == Ok(None)
    assert isinstance(registry.latest("app/db"), Err)
    deleted_again = registry.delete("app/db")
    assert isinstance(deleted_again, Err)
    assert isinstance(deleted_again.error, SecretNotFoundError)


def test_resolve_all_stops_at_first_missing(registry: SecretRegistry) -> None:
    registry.put("app/db", "one")
    ok = resolve_all(registry, {"DATABASE_URL": SecretRef("app/db")})
    assert isinstance(ok, Ok)
    assert ok.value["DATABASE_URL"].reveal() == "one"

    missing = resolve_all(
        registry, {"DATABASE_URL": SecretRef("app/db"), "API_KEY": SecretRef("app/key")}
    )
    assert isinstance(missing, Err)
    assert missing.error == SecretNotFoundError(SecretRef("app/key"))


def test_file_registry_is_private(tmp_path: Path) -> None:
    path = tmp_path / "secrets.json"
    FileSecretRegistry(path).put("app/db", "one")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_file_registry_corrupt(tmp_path: Path) -> None:
    path = tmp_path / "secrets.json"
    path.write_text('{"app/db": "not-a-list"}', encoding="utf-8")
    result = FileSecretRegistry(path).resolve(SecretRef("app/db"))
    assert isinstance(result, Err)
    assert "corrupt" in result.error.message
