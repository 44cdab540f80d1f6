"""Filesystem helpers for the JSON state files under ``.shipyard/``."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

__all__ = ["atomic_write_text", "read_json", "write_json"]


def atomic_write_text(
    path: Path, content: str, *, encoding: str = "utf-8", mode: int | None = None
) -> None:
    """Write text to path atomically using temp file + replace.

    ``mode`` restricts permissions before the file becomes visible.
    """
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.",
        suffix=".tmp",
        dir=str(path.parent),
    )
    tmp_path = Path(tmp_name)

    try:
        if mode is not None:
            os.chmod(tmp_path, mode)
        with os.fdopen(fd, "w", encoding=encoding, newline="") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def read_json(path: Path) -> object | None:
    """Read a JSON file; None if it does not exist.

    Raises:
        OSError, json.JSONDecodeError: unreadable or corrupt file.
    """
    if not path.exists():
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def write_json(path: Path, payload: object, *, mode: int | None = None) -> None:
    atomic_write_text(path, json.dumps(payload, indent=2) + "\n", mode=mode)
