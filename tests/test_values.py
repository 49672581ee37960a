"""Tests for chart value documents."""

import pytest

from cluster_lifecycle.exceptions import ValuesException
from cluster_lifecycle.values import (
    deep_merge,
    dump_values,
    get_path,
    merge_patch,
    merge_values,
    parse_path,
    parse_values,
    set_path,
)


def test_parse_values_empty() -> None:
    assert parse_values("") == {}
    assert parse_values("---\n") == {}


def test_parse_values_invalid() -> None:
    """Test malformed documents raise a values error."""
    with pytest.raises(ValuesException, match="Unable to parse chart values"):
        parse_values("a: [b", "chart values")
    with pytest.raises(ValuesException, match="to be a yaml mapping"):
        parse_values("- a\n- b\n")


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("password", ["password"]),
        ("$.a.b.c", ["a", "b", "c"]),
        ("annotations.example\\.com/name", ["annotations", "example.com/name"]),
    ],
)
def test_parse_path(path: str, expected: list[str]) -> None:
    assert parse_path(path) == expected


def test_parse_path_empty() -> None:
    with pytest.raises(ValuesException):
        parse_path("$.")


def test_get_and_set_path() -> None:
    """Test reading and writing nested values."""
    values = {"a": {"b": 1}}
    assert get_path(values, ["a", "b"]) == (True, 1)
    assert get_path(values, ["a", "c"]) == (False, None)
    assert get_path(values, ["a", "b", "c"]) == (False, None)

    set_path(values, ["x", "y", "z"], "new")
    assert values == {"a": {"b": 1}, "x": {"y": {"z": "new"}}}

    with pytest.raises(ValuesException, match="to be a dict at 'b'"):
        set_path(values, ["a", "b", "c"], 2)


def test_deep_merge() -> None:
    """Test mappings merge recursively and lists are replaced."""
    base = {"a": {"b": 1, "c": [1, 2]}, "d": "keep"}
    override = {"a": {"b": 2, "c": [3]}, "e": True}
    assert deep_merge(base, override) == {
        "a": {"b": 2, "c": [3]},
        "d": "keep",
        "e": True,
    }
    assert base == {"a": {"b": 1, "c": [1, 2]}, "d": "keep"}


def test_merge_values_protected() -> None:
    """Test protected values from the previous document survive."""
    old = "password: foo\noverridden: abcxyz\n"
    new = "overridden: newval\n"
    merged = merge_values(old, new, ["password", "overridden"])
    assert parse_values(merged) == {"password": "foo", "overridden": "abcxyz"}


def test_merge_values_nested() -> None:
    """Test nested protected paths are copied and other values come from the new document."""
    old = dump_values(
        {
            "nested": {"protected": "old", "other": "old-other"},
            "list": [1, 2],
            "removed": "gone",
        }
    )
    new = dump_values({"nested": {"protected": "new", "other": "new-other"}})
    merged = merge_values(old, new, ["nested.protected", "list", "missing.path"])
    assert parse_values(merged) == {
        "nested": {"protected": "old", "other": "new-other"},
        "list": [1, 2],
    }


def test_merge_values_idempotent() -> None:
    old = "password: foo\n"
    merged = merge_values(old, "password: bar\n", ["password"])
    assert merge_values(old, merged, ["password"]) == merged


def test_merge_patch() -> None:
    """Test a JSON merge patch replaces, adds and removes keys."""
    target = {"spec": {"version": "1", "values": "a: 1", "timeout": "5m"}, "name": "x"}
    patch = {"spec": {"version": "2", "timeout": None, "order": 3}}
    assert merge_patch(target, patch) == {
        "spec": {"version": "2", "values": "a: 1", "order": 3},
        "name": "x",
    }
    assert target["spec"]["version"] == "1"
