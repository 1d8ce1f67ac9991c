"""Persistence layer for finagent workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import FinagentConfig, load_config
from .inmemory import InMemoryWorkflowRepository
from .keys import result_key, step_key, workflow_key
from .repository import WorkflowRepository
from .sqlite import SQLiteWorkflowRepository


def get_repository(
    database_url: Optional[str] = None, config: Optional[FinagentConfig] = None
) -> WorkflowRepository:
    """Factory function to obtain a workflow repository.

    The repository backend is selected based on ``database_url`` which can be
    provided explicitly, via environment variable ``FINAGENT_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("FINAGENT_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        return InMemoryWorkflowRepository()

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteWorkflowRepository(path)
    if database_url.startswith(("postgres://", "postgresql://")):
        from .postgres import PostgresWorkflowRepository

        return PostgresWorkflowRepository(database_url)
    if database_url.startswith(("redis://", "rediss://")):
        from .redis import RedisWorkflowRepository

        return RedisWorkflowRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "WorkflowRepository",
    "InMemoryWorkflowRepository",
    "SQLiteWorkflowRepository",
    "get_repository",
    "workflow_key",
    "step_key",
    "result_key",
]
