"""Environment helpers shared by the general configs."""

from __future__ import annotations

import os
from dataclasses import MISSING, Field
from typing import Any, Callable, Dict

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _coerce(raw: str, type_name: str) -> Any:
    if type_name == "bool":
        return raw.strip().lower() in _TRUE_VALUES
    if type_name == "int":
        return int(raw)
    if type_name == "float":
        return float(raw)
    return raw


def read_env_defaults(
    env_map: Dict[str, str],
    dataclass_fields: Dict[str, Field],
) -> Dict[str, Any]:
    """Build constructor kwargs from environment variables.

    Fields without an env value keep their dataclass default. Values
    are coerced using the field's annotation name.
    """
    values: Dict[str, Any] = {}
    for field_name, env_name in env_map.items():
        raw = os.environ.get(env_name)
        if raw is None or raw == "":
            continue
        dc_field = dataclass_fields[field_name]
        type_name = dc_field.type if isinstance(dc_field.type, str) else dc_field.type.__name__
        values[field_name] = _coerce(raw, type_name)
    for field_name, dc_field in dataclass_fields.items():
        if field_name not in values and dc_field.default is MISSING and dc_field.default_factory is not MISSING:
            values[field_name] = dc_field.default_factory()
    return values


def env_sync(env_name: str) -> Callable[[Any, Any], None]:
    """``apply_change`` hook mirroring a field into ``os.environ``."""

    def _apply(_old: Any, new: Any) -> None:
        if isinstance(new, bool):
            os.environ[env_name] = "true" if new else "false"
        else:
            os.environ[env_name] = str(new)

    return _apply
