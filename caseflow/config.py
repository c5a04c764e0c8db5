from __future__ import annotations

import logging
import os
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class RedisConfig(_Frozen):
    """Configuration for the Redis event stream."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class EventStreamConfig(_Frozen):
    """Where workflow events are published besides the repository."""

    backend: Literal["none", "inmemory", "redis"] = "none"
    topic: str = "workflow-events"
    redis: RedisConfig = RedisConfig()


class ValidationLimits(_Frozen):
    """Size limits applied by the definition validator."""

    max_name_length: int = 255
    max_description_length: int = 1000
    max_steps_per_workflow: int = 50


class ExecutionSettings(_Frozen):
    """Bounds applied by the execution engine."""

    action_timeout_seconds: float = 30.0
    webhook_timeout_seconds: float = 10.0
    automatic_step_timeout_seconds: float = 60.0
    # seconds per configured ``timeoutMinutes`` unit
    timeout_unit_seconds: float = 60.0
    max_chain_length: int = 1000


class CaseflowConfig(_Frozen):
    """Top-level configuration model."""

    validation: ValidationLimits = ValidationLimits()
    execution: ExecutionSettings = ExecutionSettings()
    events: EventStreamConfig = EventStreamConfig()
    database_url: Optional[str] = None
    max_versions_to_keep: int = 10
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> CaseflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to CASEFLOW_CONFIG env
            variable or 'caseflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("CASEFLOW_CONFIG", "caseflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = CaseflowConfig(**data)
    else:
        config = CaseflowConfig()

    overrides: dict[str, str] = {}
    env_db_url = os.getenv("CASEFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        overrides["database_url"] = env_db_url
    env_level = os.getenv("CASEFLOW_LOG_LEVEL")
    if env_level:
        overrides["log_level"] = env_level
    if overrides:
        config = config.model_copy(update=overrides)
    return config


def configure_logging(level: str = "INFO") -> None:
    """Install a basic root handler for command line use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
