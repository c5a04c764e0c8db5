"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Dict, Optional

from ..models import DefinitionStatus, WorkflowDefinition, WorkflowEvent, WorkflowInstance
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Stored objects are deep copies so
    callers never share mutable state with the store.
    """

    def __init__(self) -> None:
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._events: list[WorkflowEvent] = []

    # ------------------------------------------------------------------
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        self._definitions[definition.id] = definition.model_copy(deep=True)

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        definition = self._definitions.get(definition_id)
        return definition.model_copy(deep=True) if definition else None

    async def list_definitions(
        self,
        name: Optional[str] = None,
        status: Optional[DefinitionStatus] = None,
    ) -> list[WorkflowDefinition]:
        return [
            d.model_copy(deep=True)
            for d in self._definitions.values()
            if (name is None or d.name == name) and (status is None or d.status == status)
        ]

    async def delete_definition(self, definition_id: str) -> bool:
        return self._definitions.pop(definition_id, None) is not None

    # ------------------------------------------------------------------
    async def save_instance(self, instance: WorkflowInstance) -> None:
        self._instances[instance.id] = instance.model_copy(deep=True)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        instance = self._instances.get(instance_id)
        return instance.model_copy(deep=True) if instance else None

    async def list_instances(
        self, definition_id: Optional[str] = None
    ) -> list[WorkflowInstance]:
        return [
            i.model_copy(deep=True)
            for i in self._instances.values()
            if definition_id is None or i.definition_id == definition_id
        ]

    # ------------------------------------------------------------------
    async def append_event(self, event: WorkflowEvent) -> None:
        self._events.append(event.model_copy(deep=True))

    async def list_events(self, instance_id: Optional[str] = None) -> list[WorkflowEvent]:
        return [
            e.model_copy(deep=True)
            for e in self._events
            if instance_id is None or e.instance_id == instance_id
        ]
