"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from ..models import (
    DefinitionStatus,
    WorkflowDefinition,
    WorkflowEvent,
    WorkflowInstance,
    WorkflowStepInstance,
)
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Definitions and events are stored as JSON documents. An instance is
    split into one row plus one row per step instance and always written
    in a single transaction.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        with self._conn:
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_definitions (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    document TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_instances (
                    id TEXT PRIMARY KEY,
                    definition_id TEXT NOT NULL,
                    case_ref TEXT NOT NULL,
                    status TEXT NOT NULL,
                    document TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_step_instances (
                    id TEXT PRIMARY KEY,
                    instance_id TEXT NOT NULL,
                    position INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    document TEXT NOT NULL
                )
                """
            )
            self._conn.execute(
                """
                CREATE TABLE IF NOT EXISTS workflow_events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL,
                    instance_id TEXT NOT NULL,
                    event_type TEXT NOT NULL,
                    document TEXT NOT NULL
                )
                """
            )

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        with self._lock, self._conn:
            return self._conn.execute(query, params).rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(query, params).fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    def _write_instance(self, instance: WorkflowInstance) -> None:
        document = instance.model_dump(mode="json", by_alias=True, exclude={"step_instances"})
        with self._lock, self._conn:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO workflow_instances
                    (id, definition_id, case_ref, status, document)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    instance.id,
                    instance.definition_id,
                    instance.case_ref,
                    instance.status.value,
                    json.dumps(document),
                ),
            )
            self._conn.execute(
                "DELETE FROM workflow_step_instances WHERE instance_id = ?", (instance.id,)
            )
            self._conn.executemany(
                """
                INSERT INTO workflow_step_instances (id, instance_id, position, status, document)
                VALUES (?, ?, ?, ?, ?)
                """,
                [
                    (step.id, instance.id, index, step.status.value, json.dumps(step.to_document()))
                    for index, step in enumerate(instance.step_instances)
                ],
            )

    def _load_instance(self, row: sqlite3.Row) -> WorkflowInstance:
        step_rows = self._fetchall(
            "SELECT document FROM workflow_step_instances WHERE instance_id = ? ORDER BY position",
            row["id"],
        )
        instance = WorkflowInstance.model_validate(json.loads(row["document"]))
        instance.step_instances = [
            WorkflowStepInstance.model_validate(json.loads(r["document"])) for r in step_rows
        ]
        return instance

    # ------------------------------------------------------------------
    # Definitions
    async def save_definition(self, definition: WorkflowDefinition) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT OR REPLACE INTO workflow_definitions (id, name, version, status, document)
            VALUES (?, ?, ?, ?, ?)
            """,
            definition.id,
            definition.name,
            definition.version,
            definition.status.value,
            json.dumps(definition.to_document()),
        )

    async def get_definition(self, definition_id: str) -> WorkflowDefinition | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT document FROM workflow_definitions WHERE id = ?",
            definition_id,
        )
        if not row:
            return None
        return WorkflowDefinition.model_validate(json.loads(row["document"]))

    async def list_definitions(
        self,
        name: Optional[str] = None,
        status: Optional[DefinitionStatus] = None,
    ) -> list[WorkflowDefinition]:
        query = "SELECT document FROM workflow_definitions WHERE 1 = 1"
        params: list[Any] = []
        if name is not None:
            query += " AND name = ?"
            params.append(name)
        if status is not None:
            query += " AND status = ?"
            params.append(DefinitionStatus(status).value)
        rows = await asyncio.to_thread(self._fetchall, query + " ORDER BY name, version", *params)
        return [WorkflowDefinition.model_validate(json.loads(r["document"])) for r in rows]

    async def delete_definition(self, definition_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self._execute, "DELETE FROM workflow_definitions WHERE id = ?", definition_id
        )
        return deleted > 0

    # ------------------------------------------------------------------
    # Instances
    async def save_instance(self, instance: WorkflowInstance) -> None:
        await asyncio.to_thread(self._write_instance, instance)

    async def get_instance(self, instance_id: str) -> WorkflowInstance | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT id, document FROM workflow_instances WHERE id = ?",
            instance_id,
        )
        if not row:
            return None
        return await asyncio.to_thread(self._load_instance, row)

    async def list_instances(
        self, definition_id: Optional[str] = None
    ) -> list[WorkflowInstance]:
        if definition_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT id, document FROM workflow_instances"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT id, document FROM workflow_instances WHERE definition_id = ?",
                definition_id,
            )
        return [await asyncio.to_thread(self._load_instance, row) for row in rows]

    # ------------------------------------------------------------------
    # Events
    async def append_event(self, event: WorkflowEvent) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT INTO workflow_events (id, instance_id, event_type, document) VALUES (?, ?, ?, ?)",
            event.id,
            event.instance_id,
            event.event_type,
            json.dumps(event.to_document()),
        )

    async def list_events(self, instance_id: Optional[str] = None) -> list[WorkflowEvent]:
        if instance_id is None:
            rows = await asyncio.to_thread(
                self._fetchall, "SELECT document FROM workflow_events ORDER BY seq"
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                "SELECT document FROM workflow_events WHERE instance_id = ? ORDER BY seq",
                instance_id,
            )
        return [WorkflowEvent.model_validate(json.loads(r["document"])) for r in rows]
