from __future__ import annotations

import pytest

from shipyard.secrets.model import SecretRef, SecretValue, parse_ref, redact


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("app/db", SecretRef("app/db")),
        ("app/db@3", SecretRef("app/db", "3")),
        ("  app/db@3 ", SecretRef("app/db", "3")),
        ("app/db@", SecretRef("app/db")),
        ("user@host@v2", SecretRef("user@host", "v2")),
    ],
)
def test_parse_ref(text: str, expected: SecretRef) -> None:
    assert parse_ref(text) == expected


def test_ref_str() -> None:
    assert str(SecretRef("app/db")) == "app/db"
    assert str(SecretRef("app/db", "3")) == "app/db@3"


def test_value_never_renders() -> None:
    value = SecretValue("hunter2")
    assert "hunter2" not in repr(value)
    assert "hunter2" not in str(value)
    assert "hunter2" not in f"{value}"
    assert "hunter2" not in repr({"DB": value})
    assert value.reveal() == "hunter2"


def test_redact_longest_first() -> None:
    text = "url=postgres://u:pw-long@db pw=pw"
    out = redact(text, [SecretValue("pw"), SecretValue("postgres://u:pw-long@db")])
    assert out == "url=**** ****=****"


def test_redact_ignores_empty_values() -> None:
    assert redact("hello", [SecretValue("")]) == "hello"
