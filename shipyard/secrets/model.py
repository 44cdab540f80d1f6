"""Secret references and masked values."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

__all__ = [
    "SecretBackendError",
    "SecretError",
    "SecretNotFoundError",
    "SecretRef",
    "SecretValue",
    "parse_ref",
    "redact",
]

REDACTED = "****"


@dataclass(frozen=True, slots=True)
class SecretRef:
    """Opaque, non-sensitive handle to one version of a secret.

    ``version`` None means "latest at resolve time".
    """

    name: str
    version: str | None = None

    def __str__(self) -> str:
        if self.version is None:
            return self.name
        return f"{self.name}@{self.version}"


def parse_ref(text: str) -> SecretRef:
    """Parse ``name`` or ``name@version``."""
    name, sep, version = text.strip().rpartition("@")
    if not sep:
        return SecretRef(name=version)
    return SecretRef(name=name, version=version or None)


class SecretValue:
    """Plaintext secret that refuses to render itself."""

    __slots__ = ("_value",)

    def __init__(self, value: str) -> None:
        self._value = value

    def reveal(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return f"SecretValue({REDACTED})"

    def __str__(self) -> str:
        return REDACTED

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SecretValue):
            return NotImplemented
        return self._value == other._value

    def __hash__(self) -> int:
        return hash(self._value)


def redact(text: str, secrets: Iterable[SecretValue]) -> str:
    """Replace every occurrence of the given secret values in ``text``."""
    # Longest first so a value containing another is masked whole.
    for value in sorted({s.reveal() for s in secrets}, key=len, reverse=True):
        if value:
            text = text.replace(value, REDACTED)
    return text


@dataclass(frozen=True, slots=True)
class SecretNotFoundError:
    ref: SecretRef

    @property
    def message(self) -> str:
        return f"secret not found: {self.ref}"


@dataclass(frozen=True, slots=True)
class SecretBackendError:
    name: str
    message: str
    hint: str | None = None


SecretError = SecretNotFoundError | SecretBackendError
