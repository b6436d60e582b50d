"""
Webhook Configuration.

Controls the public tunnel URL and default webhook responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

from flowcore.config.base import BaseConfig, ConfigField, FieldType, register_config
from flowcore.config.sub_config.general.env_utils import env_sync, read_env_defaults


@register_config
@dataclass
class WebhookConfig(BaseConfig):
    """Webhook endpoint settings."""

    tunnel_base_url: str = ""
    default_response_code: int = 200
    default_http_method: str = "POST"

    _ENV_MAP = {
        "tunnel_base_url": "TUNNEL_BASE_URL",
        "default_response_code": "WEBHOOK_RESPONSE_CODE",
        "default_http_method": "WEBHOOK_HTTP_METHOD",
    }

    @classmethod
    def get_default_instance(cls) -> "WebhookConfig":
        defaults = read_env_defaults(cls._ENV_MAP, cls.__dataclass_fields__)
        return cls(**defaults)

    @classmethod
    def get_config_name(cls) -> str:
        return "webhook"

    @classmethod
    def get_display_name(cls) -> str:
        return "Webhooks"

    @classmethod
    def get_description(cls) -> str:
        return "Public tunnel URL for third-party webhooks and default responses."

    def full_url(self, endpoint: str) -> str:
        return f"{self.tunnel_base_url}api/v1/webhook/{endpoint}"

    @classmethod
    def get_fields_metadata(cls) -> List[ConfigField]:
        return [
            ConfigField(
                name="tunnel_base_url",
                field_type=FieldType.STRING,
                label="Tunnel Base URL",
                description="Public base URL registered with third-party webhooks",
                group="webhook",
                apply_change=env_sync("TUNNEL_BASE_URL"),
            ),
            ConfigField(
                name="default_response_code",
                field_type=FieldType.NUMBER,
                label="Default Response Code",
                default=200,
                min_value=100,
                max_value=599,
                group="webhook",
                apply_change=env_sync("WEBHOOK_RESPONSE_CODE"),
            ),
            ConfigField(
                name="default_http_method",
                field_type=FieldType.SELECT,
                label="Default HTTP Method",
                default="POST",
                options=[{"value": "GET", "label": "GET"}, {"value": "POST", "label": "POST"}],
                group="webhook",
                apply_change=env_sync("WEBHOOK_HTTP_METHOD"),
            ),
        ]
