"""Shape checks shared by the configuration and template parsers.

Pure functions over the plain dict/list values produced by ``tomllib``. Each
helper takes the dotted key path of the value it inspects so that errors point
at the offending entry (``backlogs[0].content[1].sort[0].direction``).
"""

from __future__ import annotations

from typing import Any


class ConfigError(ValueError):
    """Raised when the configuration cannot be used to run an export."""


def _type_name(value: object) -> str:
    return type(value).__name__


def expect_table(value: object, path: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        msg = f"{path}: expected a table, got {_type_name(value)}"
        raise ConfigError(msg)
    return value


def table_list(raw: dict[str, Any], key: str, path: str) -> list[dict[str, Any]]:
    """Return ``raw[key]`` as a list of tables; a missing key is an empty list."""
    value = raw.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        msg = f"{path}.{key}: expected an array of tables, got {_type_name(value)}"
        raise ConfigError(msg)
    return [expect_table(item, f"{path}.{key}[{i}]") for i, item in enumerate(value)]


def get_str(raw: dict[str, Any], key: str, path: str, *, required: bool = True) -> str | None:
    value = raw.get(key)
    if value is None:
        if required:
            msg = f"{path}.{key} is required"
            raise ConfigError(msg)
        return None
    if not isinstance(value, str):
        msg = f"{path}.{key}: expected a string, got {_type_name(value)}"
        raise ConfigError(msg)
    return value


def require_str(raw: dict[str, Any], key: str, path: str) -> str:
    value = raw.get(key)
    if value is None:
        msg = f"{path}.{key} is required"
        raise ConfigError(msg)
    if not isinstance(value, str):
        msg = f"{path}.{key}: expected a string, got {_type_name(value)}"
        raise ConfigError(msg)
    return value


def get_bool(raw: dict[str, Any], key: str, path: str, default: bool | None = False) -> bool | None:
    value = raw.get(key, default)
    if value is not None and not isinstance(value, bool):
        msg = f"{path}.{key}: expected a boolean, got {_type_name(value)}"
        raise ConfigError(msg)
    return value


def get_int(raw: dict[str, Any], key: str, path: str, default: int | None = None) -> int | None:
    value = raw.get(key, default)
    # bool is a subclass of int; reject it explicitly
    if value is not None and (isinstance(value, bool) or not isinstance(value, int)):
        msg = f"{path}.{key}: expected an integer, got {_type_name(value)}"
        raise ConfigError(msg)
    return value


def get_str_list(raw: dict[str, Any], key: str, path: str, *, required: bool = False) -> tuple[str, ...]:
    value = raw.get(key)
    if value is None:
        if required:
            msg = f"{path}.{key} is required"
            raise ConfigError(msg)
        return ()
    if isinstance(value, str):
        return (value,)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        msg = f"{path}.{key}: expected a list of strings"
        raise ConfigError(msg)
    return tuple(value)


def get_choice(raw: dict[str, Any], key: str, path: str, choices: frozenset[str], default: str) -> str:
    value = get_str(raw, key, path, required=False)
    if value is None:
        return default
    if value not in choices:
        allowed = ", ".join(sorted(choices))
        msg = f"{path}.{key}: invalid value '{value}' (must be one of: {allowed})"
        raise ConfigError(msg)
    return value
