"""
Configuration — dataclass configs with environment defaults.

Importing this package registers every config under ``sub_config``.
"""

from flowcore.config.base import (
    BaseConfig,
    ConfigField,
    FieldType,
    get_config,
    list_configs,
    register_config,
    reset_configs,
)
from flowcore.config.sub_config.general.execution_config import ExecutionConfig
from flowcore.config.sub_config.general.storage_config import StorageConfig
from flowcore.config.sub_config.general.webhook_config import WebhookConfig

__all__ = [
    "BaseConfig",
    "ConfigField",
    "FieldType",
    "get_config",
    "list_configs",
    "register_config",
    "reset_configs",
    "ExecutionConfig",
    "StorageConfig",
    "WebhookConfig",
]
