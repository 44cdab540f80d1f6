from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from shipyard import __version__
from shipyard.cli.app import app

runner = CliRunner()


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch: pytest.MonkeyPatch) -> None:
    # --config writes SHIPYARD_CONFIG; an empty value is treated as unset.
    monkeypatch.setenv("SHIPYARD_CONFIG", "")


def test_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.strip() == __version__


def test_missing_config_is_usage_error(tmp_path: Path) -> None:
    result = runner.invoke(app, ["--config", str(tmp_path / "nope.toml"), "release", "list"])
    assert result.exit_code == 2


def test_no_project_found(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    result = runner.invoke(app, ["release", "list"])
    assert result.exit_code == 2
    assert "no shipyard.toml found" in result.output


def test_release_list_with_config(tmp_path: Path) -> None:
    config = tmp_path / "shipyard.toml"
    config.write_text('[project]\nname = "shop"\n', encoding="utf-8")

    result = runner.invoke(app, ["--config", str(config), "release", "list"])

    assert result.exit_code == 0
    assert "no releases yet" in result.output


def test_invalid_config_is_usage_error(tmp_path: Path) -> None:
    config = tmp_path / "shipyard.toml"
    config.write_text('[project]\nname = "shop"\nbackend = "gcp"\n', encoding="utf-8")

    result = runner.invoke(app, ["--config", str(config), "provision", "plan"])

    assert result.exit_code == 2
    assert "backend must be 'local' or 'aws'" in " ".join(result.output.split())
