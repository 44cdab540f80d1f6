from __future__ import annotations

from shipyard.core.structured import (
    as_str_dict,
    get_bool,
    get_float,
    get_int,
    get_str,
    get_str_list,
    get_str_map,
)


def test_get_str_strips_and_rejects_blank() -> None:
    table: dict[str, object] = {"a": "  api ", "b": "   ", "c": 3}
    assert get_str(table, "a") == "api"
    assert get_str(table, "b") is None
    assert get_str(table, "c") is None
    assert get_str(table, "missing") is None


def test_get_int_rejects_bool() -> None:
    assert get_int({"n": 3}, "n") == 3
    assert get_int({"n": True}, "n") is None
    assert get_int({"n": 3.5}, "n") is None


def test_get_float_accepts_int() -> None:
    assert get_float({"t": 10}, "t") == 10.0
    assert get_float({"t": False}, "t") is None


def test_get_bool() -> None:
    assert get_bool({"x": False}, "x") is False
    assert get_bool({"x": 0}, "x") is None


def test_get_str_list_requires_all_strings() -> None:
    assert get_str_list({"l": ["a", "b"]}, "l") == ("a", "b")
    assert get_str_list({"l": ["a", 1]}, "l") is None
    assert get_str_list({"l": "a"}, "l") is None


def test_get_str_map() -> None:
    assert get_str_map({"m": {"K": "v"}}, "m") == {"K": "v"}
    assert get_str_map({"m": {"K": 1}}, "m") is None


def test_as_str_dict_rejects_non_string_keys() -> None:
    assert as_str_dict({1: "x"}) is None
    assert as_str_dict([]) is None
    assert as_str_dict({"a": 1}) == {"a": 1}
