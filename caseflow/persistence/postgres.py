"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from ..models import (
    DefinitionStatus,
    WorkflowDefinition,
    WorkflowEvent,
    WorkflowInstance,
    WorkflowStepInstance,
)
from .repository import WorkflowRepository


def _document(value: Any) -> dict[str, Any]:
    # asyncpg returns JSONB as text unless a codec is registered
    return json.loads(value) if isinstance(value, str) else dict(value)


class PostgresWorkflowRepository(WorkflowRepository):
    """Persist workflow state using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_definitions (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                version INTEGER NOT NULL,
                status TEXT NOT NULL,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_instances (
                id TEXT PRIMARY KEY,
                definition_id TEXT NOT NULL,
                case_ref TEXT NOT NULL,
                status TEXT NOT NULL,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_step_instances (
                id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                status TEXT NOT NULL,
                document JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_events (
                seq BIGSERIAL PRIMARY KEY,
                id TEXT NOT NULL,
                instance_id TEXT NOT NULL,
                event_type TEXT NOT NULL,
                document JSONB NOT NULL
            )
            """
        )

    async def _load_instance(self, conn: asyncpg.Connection, row: Any) -> WorkflowInstance:
        step_rows = await conn.fetch(
            "SELECT document FROM workflow_step_instances WHERE instance_id = $1 ORDER BY position",
            row["id"],
        )
        instance = WorkflowInstance.model_validate(_document(row["document"]))
        instance.step_instances = [
            WorkflowStepInstance.model_validate(_document(r["document"])) for r in step_rows
        ]
        return instance

    # ------------------------------------------------------------------
    # Definitions
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_definitions (id, name, version, status, document)
                VALUES ($1, $2, $3, $4, $5::jsonb)
                ON CONFLICT (id) DO UPDATE SET
                    name = EXCLUDED.name,
                    version = EXCLUDED.version,
                    status = EXCLUDED.status,
                    document = EXCLUDED.document
                """,
                definition.id,
                definition.name,
                definition.version,
                definition.status.value,
                json.dumps(definition.to_document()),
            )
        finally:
            await conn.close()

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT document FROM workflow_definitions WHERE id = $1", definition_id
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowDefinition.model_validate(_document(row["document"]))

    async def list_definitions(
        self,
        name: Optional[str] = None,
        status: Optional[DefinitionStatus] = None,
    ) -> list[WorkflowDefinition]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT document FROM workflow_definitions
                WHERE ($1::text IS NULL OR name = $1)
                  AND ($2::text IS NULL OR status = $2)
                ORDER BY name, version
                """,
                name,
                DefinitionStatus(status).value if status is not None else None,
            )
        finally:
            await conn.close()
        return [WorkflowDefinition.model_validate(_document(r["document"])) for r in rows]

    async def delete_definition(self, definition_id: str) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                "DELETE FROM workflow_definitions WHERE id = $1", definition_id
            )
        finally:
            await conn.close()
        return result.endswith(" 1")

    # ------------------------------------------------------------------
    # Instances
    async def save_instance(self, instance: WorkflowInstance) -> None:
        document = instance.model_dump(mode="json", by_alias=True, exclude={"step_instances"})
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO workflow_instances (id, definition_id, case_ref, status, document)
                    VALUES ($1, $2, $3, $4, $5::jsonb)
                    ON CONFLICT (id) DO UPDATE SET
                        status = EXCLUDED.status,
                        document = EXCLUDED.document
                    """,
                    instance.id,
                    instance.definition_id,
                    instance.case_ref,
                    instance.status.value,
                    json.dumps(document),
                )
                await conn.execute(
                    "DELETE FROM workflow_step_instances WHERE instance_id = $1", instance.id
                )
                await conn.executemany(
                    """
                    INSERT INTO workflow_step_instances (id, instance_id, position, status, document)
                    VALUES ($1, $2, $3, $4, $5::jsonb)
                    """,
                    [
                        (
                            step.id,
                            instance.id,
                            index,
                            step.status.value,
                            json.dumps(step.to_document()),
                        )
                        for index, step in enumerate(instance.step_instances)
                    ],
                )
        finally:
            await conn.close()

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT id, document FROM workflow_instances WHERE id = $1", instance_id
            )
            if not row:
                return None
            return await self._load_instance(conn, row)
        finally:
            await conn.close()

    async def list_instances(
        self, definition_id: Optional[str] = None
    ) -> list[WorkflowInstance]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT id, document FROM workflow_instances
                WHERE ($1::text IS NULL OR definition_id = $1)
                """,
                definition_id,
            )
            return [await self._load_instance(conn, row) for row in rows]
        finally:
            await conn.close()

    # ------------------------------------------------------------------
    # Events
    async def append_event(self, event: WorkflowEvent) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_events (id, instance_id, event_type, document)
                VALUES ($1, $2, $3, $4::jsonb)
                """,
                event.id,
                event.instance_id,
                event.event_type,
                json.dumps(event.to_document()),
            )
        finally:
            await conn.close()

    async def list_events(self, instance_id: Optional[str] = None) -> list[WorkflowEvent]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                """
                SELECT document FROM workflow_events
                WHERE ($1::text IS NULL OR instance_id = $1)
                ORDER BY seq
                """,
                instance_id,
            )
        finally:
            await conn.close()
        return [WorkflowEvent.model_validate(_document(r["document"])) for r in rows]
