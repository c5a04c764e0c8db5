"""Shared fixtures for caseflow tests."""

from pathlib import Path

import pytest
import yaml

import caseflow.persistence as persistence
from caseflow.config import CaseflowConfig, ExecutionSettings
from caseflow.definitions import DefinitionService
from caseflow.engine import WorkflowEngine
from caseflow.persistence import InMemoryWorkflowRepository

FIXTURES = Path(__file__).parent / "fixtures"

MANUAL_CONFIG = {"assigneeType": "role", "assigneeValue": "technician"}


class WorkflowBuilder:
    """Small helpers for writing authoring payloads inline."""

    @staticmethod
    def step(name, type="manual", transitions=None, config=None, x=0, y=0):
        if config is None:
            config = dict(MANUAL_CONFIG) if type == "manual" else {}
        return {
            "name": name,
            "type": type,
            "position": {"x": x, "y": y},
            "config": config,
            "transitions": transitions or [],
        }

    @staticmethod
    def transition(target, name=None, conditions=None, actions=None):
        return {
            "name": name or f"to-{target}",
            "targetStepName": target,
            "conditions": conditions or [],
            "actions": actions or [],
        }

    @staticmethod
    def condition(field, operator, value=None):
        condition = {"field": field, "operator": operator}
        if value is not None:
            condition["value"] = value
        return condition

    @staticmethod
    def definition(steps, name="repair-flow", **extra):
        payload = {
            "name": name,
            "description": "Test workflow",
            "deviceTypes": ["laptop"],
            "serviceTypes": ["repair"],
            "customerTiers": ["standard"],
            "steps": steps,
        }
        payload.update(extra)
        return payload


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    monkeypatch.setattr(persistence, "_repository_instance", None)
    monkeypatch.setattr(persistence, "_repository_url", None)
    for name in ("CASEFLOW_CONFIG", "CASEFLOW_DATABASE_URL", "DATABASE_URL", "CASEFLOW_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def wf():
    return WorkflowBuilder()


@pytest.fixture
def repair_payload():
    return yaml.safe_load((FIXTURES / "repair_workflow.yaml").read_text())


@pytest.fixture
def config():
    return CaseflowConfig(
        execution=ExecutionSettings(
            timeout_unit_seconds=0.01,
            automatic_step_timeout_seconds=1,
            action_timeout_seconds=1,
        )
    )


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def definitions(repository, config):
    return DefinitionService(repository, config=config)


@pytest.fixture
def engine(repository, config):
    return WorkflowEngine(repository, config=config)


@pytest.fixture
def deploy(definitions):
    """Create and activate a definition from an authoring payload."""

    async def _deploy(payload, by="admin"):
        draft = await definitions.create_definition(payload, created_by=by)
        return await definitions.activate_definition(draft.id, activated_by=by)

    return _deploy
