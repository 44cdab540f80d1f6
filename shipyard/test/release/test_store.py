"""Tests for release persistence."""

from __future__ import annotations

import time
from pathlib import Path

import pytest

from shipyard.core.result import Err, Ok
from shipyard.images.model import Artifact
from shipyard.release.errors import ReleaseNotFound
from shipyard.release.model import (
    FailureRecord,
    HealthSample,
    HealthStatus,
    Release,
    ReleaseState,
    ServiceOutcome,
    ServiceRevision,
    StageName,
    StageStatus,
)
from shipyard.release.store import ReleaseStore


@pytest.fixture
def store(tmp_path: Path) -> ReleaseStore:
    return ReleaseStore(releases_dir=tmp_path / "releases", revisions_path=tmp_path / "revisions.json")


def _release(release_id: str, services: tuple[str, ...], state: ReleaseState) -> Release:
    return Release(release_id=release_id, revision_id="abc123", services=services, state=state)


def test_failed_release_round_trip(store: ReleaseStore) -> None:
    release = (
        Release(
            release_id="20260101000000-abc123-0001",
            revision_id="abc123",
            services=("api", "web"),
            commit_sha="abc123def456",
            owner="ci-runner:4242",
            artifacts=(
                Artifact("api", "abc123", "r/api", "sha256:a"),
                Artifact("web", "abc123", "r/web", "sha256:w"),
            ),
            outcomes=(
                ServiceOutcome("api", StageStatus.SUCCEEDED, StageStatus.SUCCEEDED),
                ServiceOutcome(
                    "web",
                    StageStatus.SUCCEEDED,
                    StageStatus.FAILED,
                    error="web did not become healthy within 10s",
                    health_history=(HealthSample(running=1, healthy=0, desired=1),),
                ),
            ),
            rollback_target="20251231000000-0ff1ce-0001",
        )
        .with_stage(StageName.PUBLISH, StageStatus.SUCCEEDED)
        .with_stage(StageName.VERIFY, StageStatus.FAILED, detail="web: timeout\n  0/1 healthy")
        .fail(FailureRecord(StageName.VERIFY, "health_timeout", "release failed for: web", "  indented\nlog"))
    )

    assert store.save(release) == Ok(release)
    assert store.load(release.release_id) == Ok(release)


def test_load_missing(store: ReleaseStore) -> None:
    result = store.load("nope")
    assert result == Err(ReleaseNotFound("nope"))


def test_load_corrupt(store: ReleaseStore, tmp_path: Path) -> None:
    (tmp_path / "releases").mkdir()
    (tmp_path / "releases" / "bad.json").write_text('{"release_id": "bad"}', encoding="utf-8")
    result = store.load("bad")
    assert isinstance(result, Err)
    assert "corrupt release document" in result.error.message


def test_in_flight_and_latest_succeeded(store: ReleaseStore) -> None:
    done = _release("r1", ("api",), ReleaseState.SUCCEEDED)
    store.save(done)
    time.sleep(0.001)
    running = _release("r2", ("web",), ReleaseState.DEPLOYING)
    store.save(running)

    assert store.in_flight(["api"]) == Ok(None)
    in_flight = store.in_flight(["web", "worker"])
    assert isinstance(in_flight, Ok)
    assert in_flight.value is not None and in_flight.value.release_id == "r2"

    latest = store.latest_succeeded(["api", "web"])
    assert isinstance(latest, Ok)
    assert latest.value is not None and latest.value.release_id == "r1"
    assert store.latest_succeeded(["web"]) == Ok(None)


def test_list_releases_oldest_first(store: ReleaseStore) -> None:
    assert store.list_releases() == Ok(())
    first = _release("b-first", ("api",), ReleaseState.SUCCEEDED)
    store.save(first)
    time.sleep(0.001)
    second = _release("a-second", ("api",), ReleaseState.FAILED)
    store.save(second)

    listed = store.list_releases()
    assert isinstance(listed, Ok)
    assert [r.release_id for r in listed.value] == ["b-first", "a-second"]


def test_cancel_marker(store: ReleaseStore) -> None:
    assert not store.cancel_requested("r1")
    assert store.request_cancel("r1") == Ok(None)
    assert store.cancel_requested("r1")


def test_revisions(store: ReleaseStore) -> None:
    assert store.load_revisions() == Ok({})
    revisions = {
        "api": ServiceRevision("api", "abc123", 2, HealthStatus.HEALTHY, "r1"),
        "web": ServiceRevision("web", "abc123", 1, HealthStatus.UNHEALTHY, "r1"),
    }
    assert store.save_revisions(revisions) == Ok(None)
    assert store.load_revisions() == Ok(revisions)


def test_merge_revisions_keeps_other_services(store: ReleaseStore) -> None:
    api = ServiceRevision("api", "aaa111", 2, HealthStatus.HEALTHY)
    assert store.save_revisions({"api": api}) == Ok(None)

    web = ServiceRevision("web", "bbb222", 1, HealthStatus.PENDING, release_id="r2")
    assert store.merge_revisions([web]) == Ok(None)

    assert store.load_revisions() == Ok({"api": api, "web": web})
