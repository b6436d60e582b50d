"""
Configuration base — dataclass configs registered by name.

Each config class declares its fields as dataclass attributes and
builds its default instance from the environment. ``get_config``
returns the cached instance for a registered name.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from logging import getLogger
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar

logger = getLogger(__name__)


class FieldType(str, Enum):
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    PASSWORD = "password"


@dataclass
class ConfigField:
    """UI metadata for a single config field."""

    name: str
    field_type: FieldType
    label: str
    description: str = ""
    default: Any = None
    required: bool = False
    options: List[Dict[str, Any]] = field(default_factory=list)
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    group: str = "general"
    secure: bool = False
    apply_change: Optional[Callable[[Any, Any], None]] = None


class BaseConfig:
    """Base class for dataclass configs."""

    @classmethod
    def get_default_instance(cls) -> "BaseConfig":
        return cls()

    @classmethod
    def get_config_name(cls) -> str:
        raise NotImplementedError

    @classmethod
    def get_display_name(cls) -> str:
        return cls.get_config_name()

    @classmethod
    def get_description(cls) -> str:
        return ""

    @classmethod
    def get_category(cls) -> str:
        return "general"

    @classmethod
    def get_fields_metadata(cls) -> List[ConfigField]:
        return []

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def update(self, **values: Any) -> None:
        """Set field values, firing each field's ``apply_change`` hook."""
        meta = {f.name: f for f in self.get_fields_metadata()}
        for key, value in values.items():
            if not hasattr(self, key):
                raise AttributeError(f"{type(self).__name__} has no field '{key}'")
            old = getattr(self, key)
            setattr(self, key, value)
            hook = meta.get(key).apply_change if key in meta else None
            if hook is not None and old != value:
                hook(old, value)


C = TypeVar("C", bound=Type[BaseConfig])

_registry: Dict[str, Type[BaseConfig]] = {}
_instances: Dict[str, BaseConfig] = {}


def register_config(cls: C) -> C:
    """Class decorator: register a config under its config name."""
    _registry[cls.get_config_name()] = cls
    return cls


def get_config(name: str) -> Any:
    """Return the cached default instance of a registered config."""
    if name not in _instances:
        if name not in _registry:
            raise KeyError(f"Unknown config '{name}'")
        _instances[name] = _registry[name].get_default_instance()
        logger.debug(f"Config '{name}' loaded")
    return _instances[name]


def list_configs() -> List[str]:
    return sorted(_registry)


def reset_configs() -> None:
    """Drop cached instances so the next lookup re-reads the environment."""
    _instances.clear()
