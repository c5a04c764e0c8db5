"""Tests for the event log and its audit queries."""

from datetime import datetime, timedelta, timezone

import pytest

from caseflow.events import EventFilters, EventLog
from caseflow.models import EventType, WorkflowEvent
from caseflow.persistence import InMemoryWorkflowRepository
from caseflow.transports import InMemoryTransport


class BrokenRepository(InMemoryWorkflowRepository):
    async def append_event(self, event):
        raise ConnectionError("database unavailable")


def at(day, hour=12):
    return datetime(2024, 3, day, hour, tzinfo=timezone.utc)


async def seed(repository):
    events = [
        ("i-1", "workflow_started", "alice", at(1, 9)),
        ("i-1", "step_activated", None, at(1, 9)),
        ("i-1", "step_completed", "bob", at(2, 10)),
        ("i-1", "step_failed", "system", at(2, 11)),
        ("i-1", "workflow_completed", "system", at(3, 8)),
        ("i-2", "workflow_started", "carol", at(1, 9)),
    ]
    for instance_id, event_type, actor, created_at in events:
        await repository.append_event(
            WorkflowEvent(
                instance_id=instance_id, event_type=event_type, actor=actor, created_at=created_at
            )
        )


@pytest.mark.asyncio
async def test_log_events_store_enum_values():
    repository = InMemoryWorkflowRepository()
    log = EventLog(repository)
    await log.log_workflow_event("i-1", EventType.WORKFLOW_STARTED, {"caseRef": "C-1"}, "alice")
    await log.log_step_event("i-1", "s-1", EventType.STEP_COMPLETED, actor="bob")

    events = await repository.list_events("i-1")
    assert [e.event_type for e in events] == ["workflow_started", "step_completed"]
    assert events[1].step_instance_id == "s-1"
    assert events[0].payload == {"caseRef": "C-1"}


@pytest.mark.asyncio
async def test_write_failures_are_swallowed(caplog):
    log = EventLog(BrokenRepository())
    result = await log.log_workflow_event("i-1", EventType.WORKFLOW_STARTED)
    assert result is None
    assert "database unavailable" in caplog.text


@pytest.mark.asyncio
async def test_events_are_published_to_transport():
    transport = InMemoryTransport()
    log = EventLog(InMemoryWorkflowRepository(), transport=transport, topic="audit")
    await log.log_workflow_event("i-1", EventType.WORKFLOW_CANCELLED, {"reason": "duplicate"})

    async for raw, event in transport.subscribe("audit", lifespan=1):
        await transport.ack(raw)
        assert event.event_type == "workflow_cancelled"
        assert event.payload == {"reason": "duplicate"}
        break
    else:
        pytest.fail("event was not published")


@pytest.mark.asyncio
async def test_get_events_filters_and_pages():
    repository = InMemoryWorkflowRepository()
    await seed(repository)
    log = EventLog(repository)

    page = await log.get_events(EventFilters(instance_id="i-1", limit=2))
    assert page.total == 5
    assert page.total_pages == 3
    assert [e.event_type for e in page.events] == ["workflow_completed", "step_failed"]

    second = await log.get_events(EventFilters(instance_id="i-1", limit=2, page=3))
    assert [e.event_type for e in second.events] == ["workflow_started"]

    by_actor = await log.get_events(EventFilters(actor="system"))
    assert by_actor.total == 2

    ranged = await log.get_events(
        EventFilters(start_date=at(2, 0), end_date=at(2, 0) + timedelta(days=1))
    )
    assert {e.event_type for e in ranged.events} == {"step_completed", "step_failed"}


@pytest.mark.asyncio
async def test_timeline_groups_by_day_newest_first():
    repository = InMemoryWorkflowRepository()
    await seed(repository)
    timeline = await EventLog(repository).get_timeline("i-1")

    assert [day.day.isoformat() for day in timeline] == ["2024-03-03", "2024-03-02", "2024-03-01"]
    assert [day.event_count for day in timeline] == [1, 2, 2]
    assert [e.event_type for e in timeline[1].events] == ["step_completed", "step_failed"]
    assert timeline[0].to_document()["date"] == "2024-03-03"


@pytest.mark.asyncio
async def test_statistics():
    repository = InMemoryWorkflowRepository()
    await seed(repository)
    stats = await EventLog(repository).get_statistics("i-1")

    assert stats.total_events == 5
    assert stats.unique_event_types == 5
    assert stats.unique_actors == 3
    assert stats.error_events == 1
    assert stats.completion_events == 2
    assert stats.first_event == at(1, 9)
    assert stats.last_event == at(3, 8)
    assert stats.event_type_breakdown["step_failed"] == 1

    empty = await EventLog(repository).get_statistics("unknown")
    assert empty.total_events == 0


@pytest.mark.asyncio
async def test_export_bundles_everything():
    repository = InMemoryWorkflowRepository()
    await seed(repository)
    export = await EventLog(repository).export_events("i-2")

    assert export["instanceId"] == "i-2"
    assert export["statistics"]["totalEvents"] == 1
    assert len(export["timeline"]) == 1
    assert export["events"][0]["eventType"] == "workflow_started"
