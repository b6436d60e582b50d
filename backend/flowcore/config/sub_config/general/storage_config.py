"""
Storage Configuration.

Directories used by the JSON-file workflow and execution store.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List

from flowcore.config.base import BaseConfig, ConfigField, FieldType, register_config
from flowcore.config.sub_config.general.env_utils import read_env_defaults

_DEFAULT_ROOT = Path(__file__).resolve().parents[4]


@register_config
@dataclass
class StorageConfig(BaseConfig):
    """Workflow and execution storage locations."""

    workflow_dir: str = str(_DEFAULT_ROOT / "workflows")
    execution_dir: str = str(_DEFAULT_ROOT / "executions")

    _ENV_MAP = {
        "workflow_dir": "WORKFLOW_STORAGE_DIR",
        "execution_dir": "EXECUTION_STORAGE_DIR",
    }

    @classmethod
    def get_default_instance(cls) -> "StorageConfig":
        defaults = read_env_defaults(cls._ENV_MAP, cls.__dataclass_fields__)
        return cls(**defaults)

    @classmethod
    def get_config_name(cls) -> str:
        return "storage"

    @classmethod
    def get_fields_metadata(cls) -> List[ConfigField]:
        return [
            ConfigField(
                name="workflow_dir",
                field_type=FieldType.STRING,
                label="Workflow Directory",
                group="storage",
            ),
            ConfigField(
                name="execution_dir",
                field_type=FieldType.STRING,
                label="Execution Directory",
                group="storage",
            ),
        ]
