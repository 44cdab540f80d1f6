"""Process and filesystem adapters."""

from .files import atomic_write_text, read_json, write_json
from .process import ProcessError, run

__all__ = [
    "ProcessError",
    "atomic_write_text",
    "read_json",
    "run",
    "write_json",
]
