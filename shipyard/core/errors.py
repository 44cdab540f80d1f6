"""Exit codes for CLI commands.

Automation (CI jobs, wrapper scripts) relies on these values, so they must
stay stable:
- 0: Success
- 1: Failure of a stage, a resource or a service
- 2: Invalid invocation (bad config, cyclic graph, unknown service or id)
"""

from enum import IntEnum

__all__ = ["ErrorCode"]


class ErrorCode(IntEnum):
    """Process exit codes."""

    OK = 0
    FAILURE = 1
    USAGE = 2

    def __str__(self) -> str:
        return self.name.lower()

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK
