from __future__ import annotations

import time
from collections.abc import Callable

from shipyard.core.result import Err, Ok, Result

from .compute import ComputePlatform
from .errors import HealthTimeout
from .model import HealthSample

__all__ = ["wait_healthy"]


def wait_healthy(
    platform: ComputePlatform,
    service: str,
    *,
    timeout: float,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
) -> Result[tuple[HealthSample, ...], HealthTimeout]:
    """Poll ``service`` until its healthy count reaches the desired count.

    The budget is spent as a bounded number of polls spaced by ``interval``.
    Platform errors while polling count as an unhealthy sample.
    """
    attempts = max(1, int(timeout // interval) + 1) if interval > 0 else 1
    history: list[HealthSample] = []

    for attempt in range(attempts):
        if attempt:
            sleep(interval)
        sample = platform.health(service)
        if isinstance(sample, Err):
            continue
        history.append(sample.value)
        if sample.value.healthy >= sample.value.desired:
            return Ok(tuple(history))

    return Err(HealthTimeout(service, waited_seconds=timeout, history=tuple(history)))
