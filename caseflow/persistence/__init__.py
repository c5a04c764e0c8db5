"""Persistence layer for caseflow definitions, instances and events."""

from __future__ import annotations

import os
from typing import Optional

from ..config import CaseflowConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresWorkflowRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresWorkflowRepository = None  # type: ignore

_repository_instance: WorkflowRepository | None = None
_repository_url: Optional[str] = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[CaseflowConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The backend is selected from ``database_url``, which can be passed
    explicitly, set through ``CASEFLOW_DATABASE_URL`` or ``DATABASE_URL``,
    or come from the loaded configuration. Without a database an in-memory
    repository is returned. Repeated calls resolving to the same URL share
    one repository.
    """

    global _repository_instance, _repository_url
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("CASEFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )
    if _repository_instance is not None and database_url == _repository_url:
        return _repository_instance

    if not database_url:
        repository: WorkflowRepository = InMemoryWorkflowRepository()
    elif database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        repository = SQLiteWorkflowRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresWorkflowRepository is None:
            raise RuntimeError("Postgres support not available")
        repository = PostgresWorkflowRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    _repository_instance, _repository_url = repository, database_url
    return repository


__all__ = [
    "WorkflowRepository",
    "InMemoryWorkflowRepository",
    "SQLiteWorkflowRepository",
    "PostgresWorkflowRepository",
    "get_repository",
]
