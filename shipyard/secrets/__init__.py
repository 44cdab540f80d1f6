"""Secret registry: versioned sensitive configuration addressed by reference."""

from .model import (
    SecretBackendError,
    SecretError,
    SecretNotFoundError,
    SecretRef,
    SecretValue,
    parse_ref,
    redact,
)
from .registry import FileSecretRegistry, MemorySecretRegistry, SecretRegistry, resolve_all

__all__ = [
    "FileSecretRegistry",
    "MemorySecretRegistry",
    "SecretBackendError",
    "SecretError",
    "SecretNotFoundError",
    "SecretRef",
    "SecretRegistry",
    "SecretValue",
    "parse_ref",
    "redact",
    "resolve_all",
]
