"""Release and service revision persistence.

Layout under ``.shipyard/``:
- ``releases/<release_id>.json``: one document per release, rewritten on
  every transition so ``release status`` reflects live progress;
- ``releases/<release_id>.cancel``: operator cancellation marker;
- ``revisions.json``: the active ``ServiceRevision`` per service.
"""

from __future__ import annotations

import json
import threading
from collections.abc import Iterable, Mapping
from pathlib import Path

from shipyard.core.result import Err, Ok, Result
from shipyard.core.structured import StrDict, as_obj_list, as_str_dict, get_int, get_str, get_table
from shipyard.images.model import Artifact
from shipyard.platform.files import atomic_write_text, read_json, write_json

from .errors import ReleaseNotFound, StoreError
from .model import (
    FailureRecord,
    HealthSample,
    HealthStatus,
    Release,
    ReleaseState,
    ServiceOutcome,
    ServiceRevision,
    StageName,
    StageRecord,
    StageStatus,
)

__all__ = ["ReleaseStore", "release_from_dict", "release_to_dict"]

_SCHEMA = 1


class ReleaseStore:
    def __init__(self, *, releases_dir: Path, revisions_path: Path) -> None:
        self._releases_dir = releases_dir
        self._revisions_path = revisions_path
        self._lock = threading.Lock()
        self._merge_lock = threading.Lock()

    def _release_path(self, release_id: str) -> Path:
        return self._releases_dir / f"{release_id}.json"

    def _cancel_path(self, release_id: str) -> Path:
        return self._releases_dir / f"{release_id}.cancel"

    # Releases

    def save(self, release: Release) -> Result[Release, StoreError]:
        path = self._release_path(release.release_id)
        try:
            write_json(path, release_to_dict(release))
        except OSError as e:
            return Err(StoreError(f"failed to write release: {e}", path=path))
        return Ok(release)

    def load(self, release_id: str) -> Result[Release, ReleaseNotFound | StoreError]:
        path = self._release_path(release_id)
        try:
            raw = read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            return Err(StoreError(f"failed to read release: {e}", path=path))
        if raw is None:
            return Err(ReleaseNotFound(release_id))
        data = as_str_dict(raw)
        if data is None:
            return Err(StoreError("release document is not an object", path=path))
        try:
            return Ok(release_from_dict(data))
        except (KeyError, TypeError, ValueError) as e:
            return Err(StoreError(f"corrupt release document: {e}", path=path))

    def list_releases(self) -> Result[tuple[Release, ...], StoreError]:
        """All stored releases, oldest first."""
        if not self._releases_dir.is_dir():
            return Ok(())
        releases: list[Release] = []
        for path in sorted(self._releases_dir.glob("*.json")):
            loaded = self.load(path.stem)
            if isinstance(loaded, Err):
                if isinstance(loaded.error, ReleaseNotFound):
                    continue
                return Err(loaded.error)
            releases.append(loaded.value)
        releases.sort(key=lambda r: r.created_at)
        return Ok(tuple(releases))

    def latest_succeeded(self, services: Iterable[str]) -> Result[Release | None, StoreError]:
        """Most recent succeeded release touching any of ``services``."""
        wanted = set(services)
        listed = self.list_releases()
        if isinstance(listed, Err):
            return listed
        for release in reversed(listed.value):
            if release.state == ReleaseState.SUCCEEDED and wanted.intersection(release.services):
                return Ok(release)
        return Ok(None)

    def in_flight(self, services: Iterable[str]) -> Result[Release | None, StoreError]:
        """A non-terminal release sharing a service with ``services``."""
        wanted = set(services)
        listed = self.list_releases()
        if isinstance(listed, Err):
            return listed
        for release in listed.value:
            if not release.is_terminal and wanted.intersection(release.services):
                return Ok(release)
        return Ok(None)

    # Cancellation

    def request_cancel(self, release_id: str) -> Result[None, StoreError]:
        path = self._cancel_path(release_id)
        try:
            atomic_write_text(path, "cancel\n")
        except OSError as e:
            return Err(StoreError(f"failed to write cancel marker: {e}", path=path))
        return Ok(None)

    def cancel_requested(self, release_id: str) -> bool:
        return self._cancel_path(release_id).exists()

    # Service revisions

    def load_revisions(self) -> Result[dict[str, ServiceRevision], StoreError]:
        path = self._revisions_path
        try:
            raw = read_json(path)
        except (OSError, json.JSONDecodeError) as e:
            return Err(StoreError(f"failed to read revisions: {e}", path=path))
        if raw is None:
            return Ok({})
        data = as_str_dict(raw)
        if data is None:
            return Err(StoreError("revisions file is not an object", path=path))
        try:
            return Ok({name: _revision_from_dict(name, obj) for name, obj in data.items()})
        except (KeyError, TypeError, ValueError) as e:
            return Err(StoreError(f"corrupt revisions file: {e}", path=path))

    def save_revisions(self, revisions: Mapping[str, ServiceRevision]) -> Result[None, StoreError]:
        path = self._revisions_path
        payload = {
            name: {
                "revision_id": rev.revision_id,
                "task_count": rev.task_count,
                "health_status": str(rev.health_status),
                "release_id": rev.release_id,
            }
            for name, rev in sorted(revisions.items())
        }
        with self._lock:
            try:
                write_json(path, payload)
            except OSError as e:
                return Err(StoreError(f"failed to write revisions: {e}", path=path))
        return Ok(None)

    def merge_revisions(self, revisions: Iterable[ServiceRevision]) -> Result[None, StoreError]:
        """Replace the stored entries of the given services, keeping the rest."""
        with self._merge_lock:
            loaded = self.load_revisions()
            if isinstance(loaded, Err):
                return loaded
            merged = loaded.value
            for revision in revisions:
                merged[revision.service] = revision
            return self.save_revisions(merged)


def release_to_dict(release: Release) -> dict[str, object]:
    return {
        "schema": _SCHEMA,
        "release_id": release.release_id,
        "revision_id": release.revision_id,
        "commit_sha": release.commit_sha,
        "owner": release.owner,
        "services": list(release.services),
        "state": str(release.state),
        "stages": [
            {
                "name": str(s.name),
                "status": str(s.status),
                "started_at": s.started_at,
                "finished_at": s.finished_at,
                "detail": s.detail,
            }
            for s in release.stages
        ],
        "artifacts": [
            {
                "service": a.service,
                "revision_id": a.revision_id,
                "repository": a.repository,
                "digest": a.digest,
            }
            for a in release.artifacts
        ],
        "outcomes": [
            {
                "service": o.service,
                "deploy": str(o.deploy),
                "verify": str(o.verify),
                "error": o.error,
                "health_history": [
                    {"running": h.running, "healthy": h.healthy, "desired": h.desired}
                    for h in o.health_history
                ],
            }
            for o in release.outcomes
        ],
        "rollback_target": release.rollback_target,
        "failure": (
            None
            if release.failure is None
            else {
                "stage": str(release.failure.stage),
                "kind": release.failure.kind,
                "message": release.failure.message,
                "detail": release.failure.detail,
            }
        ),
        "created_at": release.created_at,
        "updated_at": release.updated_at,
    }


def release_from_dict(data: StrDict) -> Release:
    """Parse a stored release.

    Raises:
        KeyError, TypeError, ValueError: on a malformed document.
    """
    release_id = _req_str(data, "release_id")
    services = tuple(str(s) for s in _items(data, "services"))

    stages = tuple(
        StageRecord(
            name=StageName(_req_str(s, "name")),
            status=StageStatus(_req_str(s, "status")),
            started_at=get_str(s, "started_at"),
            finished_at=get_str(s, "finished_at"),
            detail=_opt_text(s, "detail"),
        )
        for s in _tables(data, "stages")
    )
    artifacts = tuple(
        Artifact(
            service=_req_str(a, "service"),
            revision_id=_req_str(a, "revision_id"),
            repository=_req_str(a, "repository"),
            digest=_req_str(a, "digest"),
        )
        for a in _tables(data, "artifacts")
    )
    outcomes = tuple(
        ServiceOutcome(
            service=_req_str(o, "service"),
            deploy=StageStatus(_req_str(o, "deploy")),
            verify=StageStatus(_req_str(o, "verify")),
            error=_opt_text(o, "error"),
            health_history=tuple(
                HealthSample(
                    running=get_int(h, "running") or 0,
                    healthy=get_int(h, "healthy") or 0,
                    desired=get_int(h, "desired") or 0,
                )
                for h in _tables(o, "health_history")
            ),
        )
        for o in _tables(data, "outcomes")
    )

    failure: FailureRecord | None = None
    failure_table = get_table(data, "failure")
    if failure_table is not None:
        failure = FailureRecord(
            stage=StageName(_req_str(failure_table, "stage")),
            kind=_req_str(failure_table, "kind"),
            message=_req_str(failure_table, "message"),
            detail=_opt_text(failure_table, "detail"),
        )

    return Release(
        release_id=release_id,
        revision_id=_req_str(data, "revision_id"),
        services=services,
        state=ReleaseState(_req_str(data, "state")),
        stages=stages or Release(release_id, "", ()).stages,
        artifacts=artifacts,
        outcomes=outcomes,
        rollback_target=get_str(data, "rollback_target"),
        failure=failure,
        commit_sha=get_str(data, "commit_sha"),
        owner=get_str(data, "owner"),
        created_at=_req_str(data, "created_at"),
        updated_at=get_str(data, "updated_at") or _req_str(data, "created_at"),
    )


def _revision_from_dict(service: str, obj: object) -> ServiceRevision:
    data = as_str_dict(obj)
    if data is None:
        raise ValueError(f"revision entry for {service} is not an object")
    task_count = get_int(data, "task_count")
    if task_count is None:
        raise ValueError(f"revision entry for {service} has no task_count")
    return ServiceRevision(
        service=service,
        revision_id=_req_str(data, "revision_id"),
        task_count=task_count,
        health_status=HealthStatus(get_str(data, "health_status") or "pending"),
        release_id=get_str(data, "release_id"),
    )


def _req_str(data: Mapping[str, object], key: str) -> str:
    value = get_str(data, key)
    if value is None:
        raise ValueError(f"missing {key}")
    return value


def _opt_text(data: Mapping[str, object], key: str) -> str | None:
    # Unlike get_str, keeps log formatting intact.
    value = data.get(key)
    return value if isinstance(value, str) else None


def _items(data: Mapping[str, object], key: str) -> list[object]:
    items = as_obj_list(data.get(key))
    if items is None:
        raise ValueError(f"{key} must be a list")
    return items


def _tables(data: Mapping[str, object], key: str) -> list[StrDict]:
    out: list[StrDict] = []
    for item in as_obj_list(data.get(key)) or []:
        table = as_str_dict(item)
        if table is None:
            raise ValueError(f"{key} entries must be objects")
        out.append(table)
    return out
