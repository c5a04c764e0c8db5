"""Append-only audit trail of workflow activity and its read-side queries."""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from pydantic import Field

from .errors import EventLogError
from .models import CamelModel, EventType, WorkflowEvent, utcnow
from .persistence.repository import WorkflowRepository
from .transports.base import BaseTransport

logger = logging.getLogger(__name__)

EventKind = Union[EventType, str]


class EventFilters(CamelModel):
    instance_id: Optional[str] = None
    step_instance_id: Optional[str] = None
    event_type: Optional[str] = None
    actor: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1)

    def matches(self, event: WorkflowEvent) -> bool:
        return (
            (self.instance_id is None or event.instance_id == self.instance_id)
            and (self.step_instance_id is None or event.step_instance_id == self.step_instance_id)
            and (self.event_type is None or event.event_type == self.event_type)
            and (self.actor is None or event.actor == self.actor)
            and (self.start_date is None or event.created_at >= self.start_date)
            and (self.end_date is None or event.created_at <= self.end_date)
        )


class EventPage(CamelModel):
    events: list[WorkflowEvent]
    total: int
    page: int
    limit: int
    total_pages: int


class TimelineDay(CamelModel):
    day: date = Field(alias="date")
    event_count: int
    events: list[WorkflowEvent]


class EventStatistics(CamelModel):
    total_events: int = 0
    unique_event_types: int = 0
    unique_actors: int = 0
    first_event: Optional[datetime] = None
    last_event: Optional[datetime] = None
    error_events: int = 0
    completion_events: int = 0
    event_type_breakdown: dict[str, int] = Field(default_factory=dict)


def _type_value(event_type: EventKind) -> str:
    return event_type.value if isinstance(event_type, Enum) else str(event_type)


def _newest_first(events: list[WorkflowEvent]) -> list[WorkflowEvent]:
    ordered = list(reversed(events))
    ordered.sort(key=lambda e: e.created_at, reverse=True)
    return ordered


class EventLog:
    """Record workflow events and answer audit queries.

    Writes never raise: a failing repository is logged and the event is
    dropped, so auditing can not break the workflow it describes. When a
    transport is configured each stored event is also published to
    ``topic`` for monitoring consumers.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        transport: Optional[BaseTransport] = None,
        topic: str = "workflow-events",
    ) -> None:
        self.repository = repository
        self.transport = transport
        self.topic = topic

    # ------------------------------------------------------------------
    # Writes
    async def log_workflow_event(
        self,
        instance_id: str,
        event_type: EventKind,
        payload: Optional[dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> Optional[WorkflowEvent]:
        event = WorkflowEvent(
            instance_id=instance_id,
            event_type=_type_value(event_type),
            payload=payload or {},
            actor=actor,
        )
        return await self.write(event)

    async def log_step_event(
        self,
        instance_id: str,
        step_instance_id: str,
        event_type: EventKind,
        payload: Optional[dict[str, Any]] = None,
        actor: Optional[str] = None,
    ) -> Optional[WorkflowEvent]:
        event = WorkflowEvent(
            instance_id=instance_id,
            step_instance_id=step_instance_id,
            event_type=_type_value(event_type),
            payload=payload or {},
            actor=actor,
        )
        return await self.write(event)

    async def write(self, event: WorkflowEvent) -> Optional[WorkflowEvent]:
        """Append ``event``; returns ``None`` when it could not be stored."""
        try:
            await self._append(event)
        except EventLogError as exc:
            logger.error(str(exc))
            return None

        if self.transport is not None:
            try:
                await self.transport.publish(self.topic, event)
            except Exception as exc:
                logger.warning(f"Failed to publish event {event.event_type}: {exc}")
        return event

    async def _append(self, event: WorkflowEvent) -> None:
        try:
            await self.repository.append_event(event)
        except Exception as exc:
            raise EventLogError(
                f"Failed to log {event.event_type} for instance {event.instance_id}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Queries
    async def get_events(self, filters: Optional[EventFilters] = None) -> EventPage:
        filters = filters or EventFilters()
        events = await self.repository.list_events(filters.instance_id)
        matched = _newest_first([e for e in events if filters.matches(e)])
        start = (filters.page - 1) * filters.limit
        return EventPage(
            events=matched[start : start + filters.limit],
            total=len(matched),
            page=filters.page,
            limit=filters.limit,
            total_pages=math.ceil(len(matched) / filters.limit),
        )

    async def get_timeline(self, instance_id: str) -> list[TimelineDay]:
        """Events grouped by calendar day, newest day first."""
        events = sorted(
            await self.repository.list_events(instance_id), key=lambda e: e.created_at
        )
        by_day: dict[date, list[WorkflowEvent]] = {}
        for event in events:
            by_day.setdefault(event.created_at.date(), []).append(event)
        return [
            TimelineDay(day=day, event_count=len(day_events), events=day_events)
            for day, day_events in sorted(by_day.items(), key=lambda item: item[0], reverse=True)
        ]

    async def get_statistics(self, instance_id: str) -> EventStatistics:
        events = await self.repository.list_events(instance_id)
        if not events:
            return EventStatistics()

        breakdown = Counter(e.event_type for e in events)
        timestamps = [e.created_at for e in events]
        return EventStatistics(
            total_events=len(events),
            unique_event_types=len(breakdown),
            unique_actors=len({e.actor for e in events if e.actor}),
            first_event=min(timestamps),
            last_event=max(timestamps),
            error_events=sum(n for t, n in breakdown.items() if t.endswith("_failed")),
            completion_events=sum(n for t, n in breakdown.items() if t.endswith("_completed")),
            event_type_breakdown=dict(breakdown),
        )

    async def export_events(self, instance_id: str) -> dict[str, Any]:
        statistics = await self.get_statistics(instance_id)
        timeline = await self.get_timeline(instance_id)
        events = sorted(
            await self.repository.list_events(instance_id), key=lambda e: e.created_at
        )
        return {
            "instanceId": instance_id,
            "exportedAt": utcnow().isoformat(),
            "statistics": statistics.to_document(),
            "timeline": [day.to_document() for day in timeline],
            "events": [event.to_document() for event in events],
        }
