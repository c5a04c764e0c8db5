"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Optional, Protocol

from ..models import DefinitionStatus, WorkflowDefinition, WorkflowEvent, WorkflowInstance


class WorkflowRepository(Protocol):
    """Protocol for workflow persistence backends."""

    async def save_definition(self, definition: WorkflowDefinition) -> None:
        """Insert or replace a definition document."""

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        """Retrieve a definition by id."""

    async def list_definitions(
        self,
        name: Optional[str] = None,
        status: Optional[DefinitionStatus] = None,
    ) -> list[WorkflowDefinition]:
        """Return definitions, optionally filtered by name and status."""

    async def delete_definition(self, definition_id: str) -> bool:
        """Remove a definition; ``False`` when it did not exist."""

    async def save_instance(self, instance: WorkflowInstance) -> None:
        """Persist an instance and all of its step instances atomically."""

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        """Retrieve an instance together with its step instances."""

    async def list_instances(
        self, definition_id: Optional[str] = None
    ) -> list[WorkflowInstance]:
        """Return persisted instances."""

    async def append_event(self, event: WorkflowEvent) -> None:
        """Append an audit event."""

    async def list_events(self, instance_id: Optional[str] = None) -> list[WorkflowEvent]:
        """Return events in insertion order."""
