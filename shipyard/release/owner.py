"""Which process drives a release.

A running ``ReleaseOrchestrator.run`` stamps the release with
``<hostname>:<pid>``. A stamp whose process is gone marks an abandoned
release that ``release cancel`` may settle and ``release resume`` may adopt.
"""

from __future__ import annotations

import os
import socket

__all__ = ["current_owner", "owner_alive"]


def current_owner() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def owner_alive(owner: str | None) -> bool:
    """True when ``owner`` may still be driving its release.

    Processes on another host cannot be checked and count as alive.
    """
    if not owner:
        return False
    host, sep, pid_text = owner.rpartition(":")
    if not sep or not pid_text.isdigit():
        return False
    if host != socket.gethostname():
        return True
    pid = int(pid_text)
    if pid == os.getpid():
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
