"""
Execution Configuration.

Controls run budgets, per-level concurrency, starting-node policy,
and short id generation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from flowcore.config.base import BaseConfig, ConfigField, FieldType, register_config
from flowcore.config.sub_config.general.env_utils import env_sync, read_env_defaults


@register_config
@dataclass
class ExecutionConfig(BaseConfig):
    """Workflow execution settings."""

    execution_timeout: float = 0
    node_timeout: float = 0
    max_concurrency: int = 4
    require_single_start: bool = False
    short_id_random_length: int = 8
    short_id_lowercase: bool = False

    _ENV_MAP = {
        "execution_timeout": "EXECUTION_TIMEOUT",
        "node_timeout": "NODE_TIMEOUT",
        "max_concurrency": "MAX_CONCURRENCY",
        "require_single_start": "REQUIRE_SINGLE_START",
        "short_id_random_length": "SHORT_ID_RANDOM_LENGTH",
        "short_id_lowercase": "USE_LOWERCASE",
    }

    @classmethod
    def get_default_instance(cls) -> "ExecutionConfig":
        defaults = read_env_defaults(cls._ENV_MAP, cls.__dataclass_fields__)
        return cls(**defaults)

    @classmethod
    def get_config_name(cls) -> str:
        return "execution"

    @classmethod
    def get_display_name(cls) -> str:
        return "Workflow Execution"

    @classmethod
    def get_description(cls) -> str:
        return "Run time budgets, concurrency, and starting-node policy."

    @property
    def run_timeout(self) -> Optional[float]:
        """Whole-run budget in seconds, or None when disabled."""
        return self.execution_timeout if self.execution_timeout > 0 else None

    @property
    def per_node_timeout(self) -> Optional[float]:
        return self.node_timeout if self.node_timeout > 0 else None

    @classmethod
    def get_fields_metadata(cls) -> List[ConfigField]:
        return [
            ConfigField(
                name="execution_timeout",
                field_type=FieldType.NUMBER,
                label="Execution Timeout",
                description="Wall-clock budget per run in seconds (0 to disable)",
                default=0,
                min_value=0,
                group="budget",
                apply_change=env_sync("EXECUTION_TIMEOUT"),
            ),
            ConfigField(
                name="node_timeout",
                field_type=FieldType.NUMBER,
                label="Node Timeout",
                description="Budget for a single node in seconds (0 to disable)",
                default=0,
                min_value=0,
                group="budget",
                apply_change=env_sync("NODE_TIMEOUT"),
            ),
            ConfigField(
                name="max_concurrency",
                field_type=FieldType.NUMBER,
                label="Max Concurrency",
                description="Independent nodes allowed to run at the same time",
                default=4,
                min_value=1,
                max_value=64,
                group="scheduling",
                apply_change=env_sync("MAX_CONCURRENCY"),
            ),
            ConfigField(
                name="require_single_start",
                field_type=FieldType.BOOLEAN,
                label="Require Single Start",
                description="Reject workflows with more than one trigger or webhook",
                default=False,
                group="scheduling",
                apply_change=env_sync("REQUIRE_SINGLE_START"),
            ),
            ConfigField(
                name="short_id_random_length",
                field_type=FieldType.NUMBER,
                label="Short ID Length",
                description="Length of the random part of workflow/execution ids",
                default=8,
                min_value=4,
                max_value=32,
                group="ids",
                apply_change=env_sync("SHORT_ID_RANDOM_LENGTH"),
            ),
            ConfigField(
                name="short_id_lowercase",
                field_type=FieldType.BOOLEAN,
                label="Lowercase Short IDs",
                description="Include lowercase letters in the random part",
                default=False,
                group="ids",
                apply_change=env_sync("USE_LOWERCASE"),
            ),
        ]
