"""Module for working with chart value documents."""

import copy
import logging
import re
from typing import Any

import yaml

from .exceptions import ValuesException

__all__ = [
    "parse_values",
    "dump_values",
    "deep_merge",
    "parse_path",
    "get_path",
    "set_path",
    "merge_values",
    "merge_patch",
]

_LOGGER = logging.getLogger(__name__)


def parse_values(document: str, name: str = "values") -> dict[str, Any]:
    """Parse a YAML value document, an empty document is an empty dict."""
    try:
        obj = yaml.load(document or "", Loader=yaml.SafeLoader)
    except yaml.YAMLError as err:
        raise ValuesException(f"Unable to parse {name} as yaml: {err}") from err
    # Handle empty YAML file case
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ValuesException(
            f"Expected {name} to be a yaml mapping, found {type(obj).__name__}"
        )
    return obj


def dump_values(values: dict[str, Any]) -> str:
    """Serialize a value document with stable key ordering."""
    return yaml.safe_dump(values, sort_keys=True, default_flow_style=False)


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge two dictionaries, similar to how Helm merges values. Lists are replaced entirely (Helm behavior)."""
    result = base.copy()
    for key, override_value in override.items():
        base_value = result.get(key)
        if (
            base_value is not None
            and isinstance(base_value, dict)
            and isinstance(override_value, dict)
        ):
            result[key] = deep_merge(base_value, override_value)
        else:
            result[key] = override_value
    return result


def parse_path(path: str) -> list[str]:
    """Split a dotted value path into its keys.

    A leading `$.` is accepted and ignored. A dot preceded by a backslash is
    part of the key, e.g. `annotations.example\\.com/name`.
    """
    if path.startswith("$."):
        path = path[2:]
    if not path:
        raise ValuesException("Value path may not be empty")
    raw_parts = re.split(r"(?<!\\)\.", path)
    return [re.sub(r"\\(.)", r"\1", raw_part) for raw_part in raw_parts]


def get_path(values: dict[str, Any], parts: list[str]) -> tuple[bool, Any]:
    """Look up a path, returning whether it exists and its value."""
    inner: Any = values
    for part in parts:
        if not isinstance(inner, dict) or part not in inner:
            return False, None
        inner = inner[part]
    return True, inner


def set_path(values: dict[str, Any], parts: list[str], value: Any) -> None:
    """Set the value at a path, creating intermediate mappings as needed."""
    inner_values = values
    for part in parts[:-1]:
        if part not in inner_values or inner_values[part] is None:
            inner_values[part] = {}
        elif not isinstance(inner_values[part], dict):
            raise ValuesException(
                f"Expected field '{'.'.join(parts)}' to be a dict at '{part}', found {type(inner_values[part]).__name__}"
            )
        inner_values = inner_values[part]
    inner_values[parts[-1]] = value


def merge_values(old_values: str, new_values: str, protected: list[str]) -> str:
    """Carry the value at each protected path in `old_values` into `new_values`.

    Paths missing from the old document are skipped. Everything outside the
    protected paths comes from the new document.
    """
    old = parse_values(old_values, "previous values")
    new = parse_values(new_values, "new values")
    for path in protected:
        parts = parse_path(path)
        found, value = get_path(old, parts)
        if not found:
            _LOGGER.debug("Protected path %s not set in previous values", path)
            continue
        set_path(new, parts, copy.deepcopy(value))
    return dump_values(new)


def merge_patch(target: Any, patch: Any) -> Any:
    """Apply a JSON merge patch (RFC 7386) and return the result.

    Null values in the patch remove keys from the target.
    """
    if not isinstance(patch, dict):
        return copy.deepcopy(patch)
    result = copy.deepcopy(target) if isinstance(target, dict) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        else:
            result[key] = merge_patch(result.get(key), value)
    return result
