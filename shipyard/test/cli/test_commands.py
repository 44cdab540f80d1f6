from __future__ import annotations

import socket
from dataclasses import replace
from pathlib import Path

import pytest
import typer

from shipyard.backend import build_adapters, make_release_store
from shipyard.cli.context import CLIContext
from shipyard.core.config import load_config
from shipyard.core.errors import ErrorCode
from shipyard.core.project import Project
from shipyard.core.result import Ok, Result
from shipyard.images.model import BuildContext
from shipyard.images.publisher import MemoryImageRegistry
from shipyard.output.console import MockConsole
from shipyard.platform.process import ProcessError
from shipyard.release.model import Release, ReleaseState, StageName, StageStatus

CONFIG = """
[project]
name = "shop"
backend = "local"

[services.api]
repository = "localhost:5000/shop-api"
context = "api"

[services.web]
repository = "localhost:5000/shop-web"
context = "web"

[timeouts]
verify_seconds = 1
verify_interval_seconds = 1

[[resources]]
name = "net"
kind = "network"

[[resources]]
name = "repo"
kind = "registry"
depends_on = ["net"]
attributes = { repository = "shop-api" }
"""


class FakeBuilder:
    def build(self, context: BuildContext, image: str, revision_id: str) -> Result[str, ProcessError]:
        return Ok("")


def _ctx(tmp_path: Path, config: str = CONFIG) -> CLIContext:
    path = tmp_path / "shipyard.toml"
    path.write_text(config, encoding="utf-8")
    project = Project(root=tmp_path, config_path=path)
    loaded = load_config(path)
    assert isinstance(loaded, Ok)
    adapters = build_adapters(project, loaded.value)
    assert isinstance(adapters, Ok)
    return CLIContext(
        project=project,
        config=loaded.value,
        adapters=replace(adapters.value, builder=FakeBuilder(), registry=MemoryImageRegistry()),
        console=MockConsole(),
    )


def _use(monkeypatch: pytest.MonkeyPatch, module: object, ctx: CLIContext) -> MockConsole:
    monkeypatch.setattr(module, "build_context", lambda: ctx)
    assert isinstance(ctx.console, MockConsole)
    return ctx.console


class TestSecrets:
    def test_put_and_show_ref(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.secrets as secrets_cmd

        console = _use(monkeypatch, secrets_cmd, _ctx(tmp_path))

        secrets_cmd.put_cmd(name="shop/db-url", value="postgres://u:pw@db/shop")
        secrets_cmd.put_cmd(name="shop/db-url", value="postgres://u:pw2@db/shop")
        secrets_cmd.show_ref_cmd(name="shop/db-url")

        assert console.messages == ["OK shop/db-url@1", "OK shop/db-url@2", "shop/db-url@2"]
        assert "pw2" not in console.text

    def test_show_ref_unknown(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.secrets as secrets_cmd

        console = _use(monkeypatch, secrets_cmd, _ctx(tmp_path))

        with pytest.raises(typer.Exit) as exc:
            secrets_cmd.show_ref_cmd(name="shop/nope")

        assert exc.value.exit_code == int(ErrorCode.USAGE)
        assert console.has_error()

    def test_put_empty_value(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.secrets as secrets_cmd

        _use(monkeypatch, secrets_cmd, _ctx(tmp_path))

        with pytest.raises(typer.Exit) as exc:
            secrets_cmd.put_cmd(name="shop/db-url", value="")

        assert exc.value.exit_code == int(ErrorCode.USAGE)


class TestProvision:
    def test_plan_apply_destroy(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.provision as provision_cmd

        console = _use(monkeypatch, provision_cmd, _ctx(tmp_path))

        provision_cmd.plan_cmd()
        assert "+ net (network): create" in console.messages
        assert "2 to create, 0 to update, 0 to delete" in console.messages

        console.clear()
        provision_cmd.apply_cmd()
        assert "OK applied 2, unchanged 0, pruned 0" in console.messages

        console.clear()
        provision_cmd.apply_cmd()
        assert "OK up to date (2 resources)" in console.messages

        console.clear()
        provision_cmd.destroy_cmd(yes=True)
        assert "OK destroyed 2, skipped 0" in console.messages

    def test_apply_failure_exits_1(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.provision as provision_cmd

        failing = CONFIG.replace('attributes = { repository = "shop-api" }', "attributes = { fail = true }")
        console = _use(monkeypatch, provision_cmd, _ctx(tmp_path, failing))

        with pytest.raises(typer.Exit) as exc:
            provision_cmd.apply_cmd()

        assert exc.value.exit_code == int(ErrorCode.FAILURE)
        assert console.find("resource: repo")

    def test_cycle_exits_2(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.provision as provision_cmd

        cyclic = CONFIG.replace('name = "net"\nkind = "network"', 'name = "net"\nkind = "network"\ndepends_on = ["repo"]')
        _use(monkeypatch, provision_cmd, _ctx(tmp_path, cyclic))

        with pytest.raises(typer.Exit) as exc:
            provision_cmd.plan_cmd()

        assert exc.value.exit_code == int(ErrorCode.USAGE)


class TestRelease:
    def test_start_then_status(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.release as release_cmd

        console = _use(monkeypatch, release_cmd, _ctx(tmp_path))

        with pytest.raises(typer.Exit) as exc:
            release_cmd.start_cmd(services="api,web", revision="abc123", commit=None)
        assert exc.value.exit_code == int(ErrorCode.OK)

        releases = list((tmp_path / ".shipyard" / "releases").glob("*.json"))
        assert len(releases) == 1
        release_id = releases[0].stem

        console.clear()
        with pytest.raises(typer.Exit) as exc:
            release_cmd.status_cmd(release_id=release_id)
        assert exc.value.exit_code == int(ErrorCode.OK)
        assert "state: succeeded" in console.messages
        assert "  api: deploy succeeded, verify succeeded" in console.messages

        console.clear()
        release_cmd.list_cmd()
        assert len(console.find(release_id)) == 1

    def test_start_unknown_service(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.release as release_cmd

        console = _use(monkeypatch, release_cmd, _ctx(tmp_path))

        with pytest.raises(typer.Exit) as exc:
            release_cmd.start_cmd(services="api,db", revision="abc123", commit=None)

        assert exc.value.exit_code == int(ErrorCode.USAGE)
        assert console.find("unknown service: db")

    def test_status_unknown_release(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.release as release_cmd

        _use(monkeypatch, release_cmd, _ctx(tmp_path))

        with pytest.raises(typer.Exit) as exc:
            release_cmd.status_cmd(release_id="20260101000000-abc123-ffff")

        assert exc.value.exit_code == int(ErrorCode.USAGE)

    def test_cancel_finished_release_warns(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.release as release_cmd

        console = _use(monkeypatch, release_cmd, _ctx(tmp_path))
        with pytest.raises(typer.Exit):
            release_cmd.start_cmd(services="api", revision="abc123", commit=None)
        release_id = next((tmp_path / ".shipyard" / "releases").glob("*.json")).stem

        release_cmd.cancel_cmd(release_id=release_id)

        assert console.find(f"warning: release {release_id} already succeeded")
        assert not (tmp_path / ".shipyard" / "releases" / f"{release_id}.cancel").exists()


def _abandoned(ctx: CLIContext, monkeypatch: pytest.MonkeyPatch) -> str:
    """Store a release left in ``publishing`` by a process that no longer exists."""

    def gone(pid: int, sig: int) -> None:
        raise ProcessLookupError(pid)

    monkeypatch.setattr("shipyard.release.owner.os.kill", gone)
    release = replace(
        Release("20260101000000-aaa111-0001", "aaa111", ("api",))
        .advance(ReleaseState.PUBLISHING)
        .with_stage(StageName.PUBLISH, StageStatus.RUNNING),
        owner=f"{socket.gethostname()}:999999",
    )
    assert isinstance(make_release_store(ctx.project).save(release), Ok)
    return release.release_id


class TestInterruptedRelease:
    def test_cancel_settles_abandoned_release(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.release as release_cmd

        ctx = _ctx(tmp_path)
        console = _use(monkeypatch, release_cmd, ctx)
        release_id = _abandoned(ctx, monkeypatch)

        with pytest.raises(typer.Exit) as exc:
            release_cmd.start_cmd(services="api", revision="bbb222", commit=None)
        assert exc.value.exit_code == int(ErrorCode.USAGE)
        assert console.find(f"shipyard release resume {release_id}")

        console.clear()
        release_cmd.cancel_cmd(release_id=release_id, force=False)
        assert console.find(f"release {release_id} cancelled during publish")

        stored = make_release_store(ctx.project).load(release_id)
        assert isinstance(stored, Ok)
        assert stored.value.state == ReleaseState.FAILED
        assert stored.value.failure is not None
        assert stored.value.failure.kind == "cancelled"

        with pytest.raises(typer.Exit) as exc:
            release_cmd.start_cmd(services="api", revision="bbb222", commit=None)
        assert exc.value.exit_code == int(ErrorCode.OK)

    def test_resume_finishes_abandoned_release(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.release as release_cmd

        ctx = _ctx(tmp_path)
        console = _use(monkeypatch, release_cmd, ctx)
        release_id = _abandoned(ctx, monkeypatch)

        with pytest.raises(typer.Exit) as exc:
            release_cmd.resume_cmd(release_id=release_id, force=False)

        assert exc.value.exit_code == int(ErrorCode.OK)
        assert console.find(f"release {release_id} succeeded")
        stored = make_release_store(ctx.project).load(release_id)
        assert isinstance(stored, Ok)
        assert stored.value.state == ReleaseState.SUCCEEDED

    def test_resume_unknown_release(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        import shipyard.cli.commands.release as release_cmd

        _use(monkeypatch, release_cmd, _ctx(tmp_path))

        with pytest.raises(typer.Exit) as exc:
            release_cmd.resume_cmd(release_id="20260101000000-abc123-ffff", force=False)

        assert exc.value.exit_code == int(ErrorCode.USAGE)
