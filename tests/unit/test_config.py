"""Tests for configuration loading."""

import pytest
from pydantic import ValidationError

from caseflow.config import CaseflowConfig, load_config
from caseflow.transports import get_transport
from caseflow.transports.redis import RedisTransport


def test_defaults_without_file():
    config = load_config()
    assert config == CaseflowConfig()
    assert config.validation.max_steps_per_workflow == 50
    assert config.execution.max_chain_length == 1000
    assert config.events.backend == "none"


def test_load_config_from_env(tmp_path, monkeypatch):
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        """
validation:
  max_name_length: 80
execution:
  action_timeout_seconds: 5
events:
  backend: redis
  redis:
    host: testhost
    port: 1234
max_versions_to_keep: 3
"""
    )
    monkeypatch.setenv("CASEFLOW_CONFIG", str(config_path))

    config = load_config()
    assert config.validation.max_name_length == 80
    assert config.execution.action_timeout_seconds == 5
    assert config.events.redis.host == "testhost"
    assert config.max_versions_to_keep == 3


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://wf.db")
    monkeypatch.setenv("CASEFLOW_LOG_LEVEL", "DEBUG")
    config = load_config()
    assert config.database_url == "sqlite://wf.db"
    assert config.log_level == "DEBUG"


def test_config_is_immutable():
    config = CaseflowConfig()
    with pytest.raises(ValidationError):
        config.max_versions_to_keep = 1


def test_unknown_keys_are_rejected(tmp_path):
    path = tmp_path / "caseflow.yaml"
    path.write_text("execution:\n  unknown_setting: 1\n")
    with pytest.raises(ValidationError):
        load_config(str(path))


def test_get_transport_uses_config(tmp_path):
    path = tmp_path / "caseflow.yaml"
    path.write_text("events:\n  backend: redis\n  redis:\n    host: confighost\n    port: 6380\n")

    transport = get_transport(load_config(str(path)).events)
    assert isinstance(transport, RedisTransport)
    assert transport.host == "confighost"
    assert transport.port == 6380
