import os

import pytest

from flowcore.config import (
    ExecutionConfig,
    StorageConfig,
    WebhookConfig,
    get_config,
    list_configs,
    reset_configs,
)


def test_registered_configs():
    assert list_configs() == ["execution", "storage", "webhook"]
    assert isinstance(get_config("execution"), ExecutionConfig)
    assert get_config("execution") is get_config("execution")
    with pytest.raises(KeyError):
        get_config("nope")


def test_defaults_disable_budgets():
    config = get_config("execution")

    assert config.run_timeout is None
    assert config.per_node_timeout is None
    assert config.max_concurrency == 4
    assert config.require_single_start is False


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("EXECUTION_TIMEOUT", "2.5")
    monkeypatch.setenv("MAX_CONCURRENCY", "1")
    monkeypatch.setenv("REQUIRE_SINGLE_START", "yes")
    monkeypatch.setenv("WEBHOOK_HTTP_METHOD", "GET")
    monkeypatch.setenv("WORKFLOW_STORAGE_DIR", str(tmp_path))
    reset_configs()

    execution: ExecutionConfig = get_config("execution")
    assert execution.run_timeout == 2.5
    assert execution.max_concurrency == 1
    assert execution.require_single_start is True
    webhook: WebhookConfig = get_config("webhook")
    assert webhook.default_http_method == "GET"
    storage: StorageConfig = get_config("storage")
    assert storage.workflow_dir == str(tmp_path)


def test_update_syncs_environment(monkeypatch):
    monkeypatch.delenv("NODE_TIMEOUT", raising=False)
    config = get_config("execution")

    config.update(node_timeout=3)

    assert config.per_node_timeout == 3
    assert os.environ["NODE_TIMEOUT"] == "3"
    monkeypatch.delenv("NODE_TIMEOUT")

    with pytest.raises(AttributeError):
        config.update(unknown=1)
