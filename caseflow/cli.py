"""Command line interface for managing caseflow definitions and instances."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import typer
import yaml

from .config import CaseflowConfig, configure_logging, load_config
from .definitions import DefinitionService
from .engine import InstanceFilters, WorkflowEngine
from .errors import CaseflowError, ValidationError
from .events import EventFilters, EventLog
from .models import DefinitionStatus, InstanceStatus, Priority
from .persistence import get_repository
from .transports import get_transport
from .validation import DefinitionValidator

app = typer.Typer(help="CLI for caseflow workflows")

# Command groups
definition_app = typer.Typer(help="Commands for managing workflow definitions")
instance_app = typer.Typer(help="Commands for running workflow instances")
events_app = typer.Typer(help="Commands for inspecting the audit trail")

app.add_typer(definition_app, name="definition")
app.add_typer(instance_app, name="instance")
app.add_typer(events_app, name="events")

_state: dict[str, CaseflowConfig] = {}


@app.callback()
def main(
    config_path: Optional[Path] = typer.Option(
        None, "--config", help="Path to a caseflow YAML configuration file"
    ),
) -> None:
    """caseflow CLI entry point."""
    config = load_config(str(config_path) if config_path else None)
    configure_logging(config.log_level)
    _state["config"] = config


def _config() -> CaseflowConfig:
    return _state.get("config") or load_config()


def _definitions() -> DefinitionService:
    config = _config()
    return DefinitionService(get_repository(config=config), config=config)


def _engine() -> WorkflowEngine:
    config = _config()
    repository = get_repository(config=config)
    event_log = EventLog(
        repository, transport=get_transport(config.events), topic=config.events.topic
    )
    return WorkflowEngine(repository, config=config, event_log=event_log)


def _load_document(path: Path) -> dict[str, Any]:
    if not path.exists():
        typer.secho(f"File not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    with open(path) as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        typer.secho("Definition file must contain a mapping", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return data


def _parse_json(raw: Optional[str], option: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as exc:
        typer.secho(f"{option} is not valid JSON: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    if not isinstance(value, dict):
        typer.secho(f"{option} must be a JSON object", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return value


def _run(coro: Any) -> Any:
    """Run a coroutine and turn caseflow errors into a non-zero exit."""
    try:
        return asyncio.run(coro)
    except ValidationError as exc:
        typer.secho(str(exc.args[0]), fg=typer.colors.RED)
        for issue in exc.issues:
            typer.echo(f"  [{issue.code}] {issue.field}: {issue.message}")
        raise typer.Exit(code=1)
    except CaseflowError as exc:
        typer.secho(str(exc), fg=typer.colors.RED)
        raise typer.Exit(code=1)


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


# ----------------------------------------------------------------------
# Definitions


@definition_app.command("validate")
def definition_validate(
    file: Path,
    activation: bool = typer.Option(
        False, "--activation", help="Also apply the checks required for activation"
    ),
) -> None:
    """
    Validate a workflow definition file without storing it.

    Every problem is reported with its code and field path.

    Example:
        caseflow definition validate repair.yaml --activation
    """
    document = _load_document(file)
    validator = DefinitionValidator(_config().validation)
    issues = (
        validator.collect_activation_issues(document)
        if activation
        else validator.collect_issues(document)
    )
    if not issues:
        typer.echo("Definition is valid")
        return
    for issue in issues:
        typer.echo(f"[{issue.code}] {issue.field}: {issue.message}")
    raise typer.Exit(code=1)


@definition_app.command("create")
def definition_create(
    file: Path,
    by: Optional[str] = typer.Option(None, "--by", help="Author of the definition"),
) -> None:
    """Store a definition file as a new draft."""
    definition = _run(_definitions().create_definition(_load_document(file), by))
    typer.echo(f"{definition.id}\t{definition.name}\tv{definition.version}\t{definition.status.value}")


@definition_app.command("activate")
def definition_activate(
    definition_id: str,
    by: Optional[str] = typer.Option(None, "--by"),
) -> None:
    """Activate a definition version, archiving the previously active one."""
    definition = _run(_definitions().activate_definition(definition_id, by))
    typer.echo(f"Activated {definition.name} v{definition.version}")


@definition_app.command("archive")
def definition_archive(
    definition_id: str,
    by: Optional[str] = typer.Option(None, "--by"),
) -> None:
    definition = _run(_definitions().archive_definition(definition_id, by))
    typer.echo(f"Archived {definition.name} v{definition.version}")


@definition_app.command("list")
def definition_list(
    name: Optional[str] = typer.Option(None, "--name"),
    status: Optional[DefinitionStatus] = typer.Option(None, "--status"),
) -> None:
    """List stored definitions."""
    definitions = _run(_definitions().list_definitions(name=name, status=status))
    if not definitions:
        typer.echo("No definitions found")
        return
    for d in definitions:
        typer.echo(f"{d.id}\t{d.name}\tv{d.version}\t{d.status.value}")


@definition_app.command("show")
def definition_show(definition_id: str) -> None:
    definition = _run(_definitions().get_definition(definition_id))
    _echo_json(definition.to_document())


@definition_app.command("versions")
def definition_versions(definition_id: str) -> None:
    """List every version of the definition's name, newest first."""
    for d in _run(_definitions().get_versions(definition_id)):
        typer.echo(f"v{d.version}\t{d.status.value}\t{d.id}")


@definition_app.command("compare")
def definition_compare(first_id: str, second_id: str) -> None:
    result = _run(_definitions().compare_versions(first_id, second_id))
    typer.echo(result["summary"])
    for difference in result["differences"]:
        label = difference.get("property") or difference.get("stepName")
        typer.echo(f"- {difference['type']}: {label}")


# ----------------------------------------------------------------------
# Instances


def _print_instance(instance: Any) -> None:
    typer.echo(f"Instance {instance.id}: {instance.status.value}")
    typer.echo(f"Case: {instance.case_ref}  Priority: {instance.priority.value}")
    if instance.context:
        typer.echo(f"Context: {json.dumps(instance.context, default=str)}")
    for step in instance.step_instances:
        typer.echo(
            f"- {step.step_name} [{step.id}]: {step.status.value}"
            + (f" ({step.error_message})" if step.error_message else "")
        )


@instance_app.command("start")
def instance_start(
    definition_id: str,
    case_ref: str,
    context: Optional[str] = typer.Option(None, "--context", help="Initial context as JSON"),
    by: Optional[str] = typer.Option(None, "--by"),
    priority: Priority = typer.Option(Priority.NORMAL, "--priority"),
) -> None:
    """
    Start a workflow instance for a case.

    Example:
        caseflow instance start <definition-id> CASE-42 --context '{"x": 10}'
    """
    engine = _engine()
    instance = _run(
        engine.start(definition_id, case_ref, _parse_json(context, "--context"), by, priority)
    )
    _print_instance(instance)


@instance_app.command("show")
def instance_show(instance_id: str) -> None:
    _print_instance(_run(_engine().get_instance(instance_id)))


@instance_app.command("list")
def instance_list(
    status: Optional[InstanceStatus] = typer.Option(None, "--status"),
    case_ref: Optional[str] = typer.Option(None, "--case-ref"),
    definition_id: Optional[str] = typer.Option(None, "--definition"),
    page: int = typer.Option(1, "--page"),
    limit: int = typer.Option(20, "--limit"),
) -> None:
    """List instances, newest first."""
    filters = InstanceFilters(
        status=status, case_ref=case_ref, definition_id=definition_id, page=page, limit=limit
    )
    result = _run(_engine().list_instances(filters))
    if not result.instances:
        typer.echo("No instances found")
        return
    for instance in result.instances:
        typer.echo(
            f"{instance.id}\t{instance.case_ref}\t{instance.status.value}\t"
            f"{','.join(instance.current_steps)}"
        )
    typer.echo(f"Page {result.page}/{max(result.total_pages, 1)} ({result.total} total)")


@instance_app.command("execute")
def instance_execute(
    instance_id: str,
    step_instance_id: str,
    action: str = typer.Option("complete", "--action"),
    data: Optional[str] = typer.Option(None, "--data", help="Step data as JSON"),
    by: Optional[str] = typer.Option(None, "--by"),
    comment: Optional[str] = typer.Option(None, "--comment"),
) -> None:
    """Complete an active step and advance the instance."""
    instance = _run(
        _engine().execute_step(
            instance_id, step_instance_id, action, _parse_json(data, "--data"), by, comment
        )
    )
    _print_instance(instance)


@instance_app.command("suspend")
def instance_suspend(
    instance_id: str,
    by: Optional[str] = typer.Option(None, "--by"),
    reason: Optional[str] = typer.Option(None, "--reason"),
) -> None:
    instance = _run(_engine().suspend(instance_id, by, reason))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


@instance_app.command("resume")
def instance_resume(
    instance_id: str,
    by: Optional[str] = typer.Option(None, "--by"),
) -> None:
    instance = _run(_engine().resume(instance_id, by))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


@instance_app.command("cancel")
def instance_cancel(
    instance_id: str,
    by: Optional[str] = typer.Option(None, "--by"),
    reason: Optional[str] = typer.Option(None, "--reason"),
) -> None:
    instance = _run(_engine().cancel(instance_id, by, reason))
    typer.echo(f"Instance {instance.id}: {instance.status.value}")


# ----------------------------------------------------------------------
# Events


def _event_log() -> EventLog:
    return EventLog(get_repository(config=_config()))


@events_app.command("show")
def events_show(
    instance_id: str,
    event_type: Optional[str] = typer.Option(None, "--type"),
    page: int = typer.Option(1, "--page"),
    limit: int = typer.Option(50, "--limit"),
) -> None:
    """List events of an instance, newest first."""
    filters = EventFilters(instance_id=instance_id, event_type=event_type, page=page, limit=limit)
    result = _run(_event_log().get_events(filters))
    if not result.events:
        typer.echo("No events found")
        return
    for event in result.events:
        typer.echo(
            f"{event.created_at.isoformat()}\t{event.event_type}\t{event.actor or '-'}\t"
            f"{json.dumps(event.payload, default=str)}"
        )


@events_app.command("timeline")
def events_timeline(instance_id: str) -> None:
    for day in _run(_event_log().get_timeline(instance_id)):
        typer.echo(f"{day.day.isoformat()} ({day.event_count} events)")
        for event in day.events:
            typer.echo(f"  {event.created_at.time().isoformat()} {event.event_type}")


@events_app.command("stats")
def events_stats(instance_id: str) -> None:
    statistics = _run(_event_log().get_statistics(instance_id))
    _echo_json(statistics.to_document())


@events_app.command("export")
def events_export(
    instance_id: str,
    output: Optional[Path] = typer.Option(None, "--output", help="Write the export to a file"),
) -> None:
    """Export statistics, timeline and events of an instance as JSON."""
    export = _run(_event_log().export_events(instance_id))
    if output is None:
        _echo_json(export)
        return
    output.write_text(json.dumps(export, indent=2, default=str))
    typer.echo(f"Exported {len(export['events'])} events to {output}")


if __name__ == "__main__":
    app()
