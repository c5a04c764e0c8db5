import asyncio
import json
import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

import caseflow.persistence as persistence
from caseflow.cli import app
from caseflow.models import DefinitionStatus
from caseflow.persistence import InMemoryWorkflowRepository

FIXTURE = Path(__file__).parent.parent / "fixtures" / "repair_workflow.yaml"

runner = CliRunner()


@pytest.fixture
def repo():
    repo = InMemoryWorkflowRepository()
    persistence._repository_instance = repo
    return repo


@pytest.fixture
def definition_file(tmp_path):
    path = tmp_path / "repair.yaml"
    shutil.copy(FIXTURE, path)
    return path


def _invoke(*args):
    result = runner.invoke(app, list(args))
    assert result.exit_code == 0, f"Command failed with exit code {result.exit_code}. Output: {result.stdout}"
    return result.stdout


def _deploy(definition_file) -> str:
    definition_id = _invoke("definition", "create", str(definition_file), "--by", "alice").split("\t")[0]
    _invoke("definition", "activate", definition_id)
    return definition_id


def test_validate_reports_issues(tmp_path, definition_file):
    assert "Definition is valid" in _invoke("definition", "validate", str(definition_file))

    broken = tmp_path / "broken.yaml"
    broken.write_text("name: broken\nsteps:\n  - name: a\n    type: teleport\n")
    result = runner.invoke(app, ["definition", "validate", str(broken)])
    assert result.exit_code == 1
    assert "[INVALID_VALUE] steps[0].type" in result.stdout

    missing = runner.invoke(app, ["definition", "validate", str(tmp_path / "nope.yaml")])
    assert missing.exit_code == 1
    assert "File not found" in missing.stdout


def test_create_and_activate_definition(repo, definition_file):
    definition_id = _deploy(definition_file)

    definition = asyncio.run(repo.get_definition(definition_id))
    assert definition.status == DefinitionStatus.ACTIVE
    assert definition.created_by == "alice"

    output = _invoke("definition", "list", "--status", "active")
    assert definition_id in output
    assert "standard-repair" in output

    duplicate = runner.invoke(app, ["definition", "create", str(definition_file)])
    assert duplicate.exit_code == 1
    assert "DUPLICATE_NAME" in duplicate.stdout


def test_show_and_versions(repo, definition_file):
    definition_id = _deploy(definition_file)

    shown = json.loads(_invoke("definition", "show", definition_id))
    assert shown["name"] == "standard-repair"
    assert shown["status"] == "active"

    assert f"v1\tactive\t{definition_id}" in _invoke("definition", "versions", definition_id)

    missing = runner.invoke(app, ["definition", "show", "missing-id"])
    assert missing.exit_code == 1
    assert "not found" in missing.stdout


def test_instance_start_execute_and_events(repo, definition_file):
    definition_id = _deploy(definition_file)

    output = _invoke(
        "instance", "start", definition_id, "CASE-42", "--context", '{"serialNumber": "SN-1"}'
    )
    instance_id = output.splitlines()[0].split()[1].rstrip(":")
    assert "intake" in output and "active" in output

    instance = asyncio.run(repo.get_instance(instance_id))
    intake = instance.step_instance_by_name("intake")

    output = _invoke(
        "instance", "execute", instance_id, intake.id, "--data", '{"notes": "scratched"}', "--by", "bob"
    )
    assert "diagnosis" in output

    listed = _invoke("instance", "list", "--case-ref", "CASE-42")
    assert instance_id in listed
    assert "diagnosis" in listed

    events = _invoke("events", "show", instance_id, "--type", "step_completed")
    assert "step_completed" in events
    assert "bob" in events

    stats = json.loads(_invoke("events", "stats", instance_id))
    assert stats["totalEvents"] >= 4


def test_invalid_json_option_exits(repo, definition_file):
    definition_id = _deploy(definition_file)
    result = runner.invoke(app, ["instance", "start", definition_id, "CASE-1", "--context", "{bad"])
    assert result.exit_code == 1
    assert "--context is not valid JSON" in result.stdout


def test_suspend_resume_cancel(repo, definition_file):
    definition_id = _deploy(definition_file)
    output = _invoke("instance", "start", definition_id, "CASE-7")
    instance_id = output.splitlines()[0].split()[1].rstrip(":")

    assert "suspended" in _invoke("instance", "suspend", instance_id, "--reason", "waiting on parts")
    assert "running" in _invoke("instance", "resume", instance_id)
    assert "cancelled" in _invoke("instance", "cancel", instance_id, "--reason", "duplicate")

    again = runner.invoke(app, ["instance", "cancel", instance_id])
    assert again.exit_code == 1
    assert "already cancelled" in again.stdout


def test_events_export_to_file(repo, definition_file, tmp_path):
    definition_id = _deploy(definition_file)
    output = _invoke("instance", "start", definition_id, "CASE-9")
    instance_id = output.splitlines()[0].split()[1].rstrip(":")

    target = tmp_path / "export.json"
    assert "Exported" in _invoke("events", "export", instance_id, "--output", str(target))
    export = json.loads(target.read_text())
    assert export["instanceId"] == instance_id
    assert export["events"][0]["eventType"] == "workflow_started"
