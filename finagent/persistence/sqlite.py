"""SQLite implementation of the workflow repository."""

from __future__ import annotations

import asyncio
import sqlite3
from pathlib import Path
from typing import Any

from ..contracts import StepResult, StepState, WorkflowRecord
from .repository import WorkflowRepository


class SQLiteWorkflowRepository(WorkflowRepository):
    """Persist workflow state using SQLite.

    Step records live in ``workflow_steps`` keyed by ``(workflow_id,
    step_index)``; the dispatch and result records of a step are separate
    columns of the same row.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                started_at TEXT NOT NULL,
                record TEXT NOT NULL
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                workflow_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                state TEXT,
                result TEXT,
                PRIMARY KEY (workflow_id, step_index)
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()

    def _execute_many(self, statements: list[tuple[str, tuple[Any, ...]]]) -> None:
        cur = self._conn.cursor()
        try:
            for query, params in statements:
                cur.execute(query, params)
        except sqlite3.Error:
            self._conn.rollback()
            raise
        self._conn.commit()

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    def _upsert_workflow_params(self, record: WorkflowRecord) -> tuple[Any, ...]:
        return (
            record.id,
            record.status.value,
            record.started_at.isoformat(),
            record.model_dump_json(),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_workflow(self, record: WorkflowRecord) -> None:
        await asyncio.to_thread(
            self._execute_many,
            [
                (
                    "DELETE FROM workflow_steps WHERE workflow_id = ?",
                    (record.id,),
                ),
                (
                    "INSERT OR REPLACE INTO workflows (id, status, started_at, record) VALUES (?, ?, ?, ?)",
                    self._upsert_workflow_params(record),
                ),
            ],
        )

    async def save_workflow(self, record: WorkflowRecord) -> None:
        await asyncio.to_thread(
            self._execute,
            "INSERT OR REPLACE INTO workflows (id, status, started_at, record) VALUES (?, ?, ?, ?)",
            *self._upsert_workflow_params(record),
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT record FROM workflows WHERE id = ?",
            workflow_id,
        )
        if not row:
            return None
        return WorkflowRecord.model_validate_json(row["record"])

    async def delete_workflow(self, workflow_id: str) -> None:
        await asyncio.to_thread(
            self._execute_many,
            [
                ("DELETE FROM workflow_steps WHERE workflow_id = ?", (workflow_id,)),
                ("DELETE FROM workflows WHERE id = ?", (workflow_id,)),
            ],
        )

    async def set_step_state(
        self, workflow_id: str, step_index: int, state: StepState
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_steps (workflow_id, step_index, state) VALUES (?, ?, ?)
            ON CONFLICT (workflow_id, step_index) DO UPDATE SET state = excluded.state
            """,
            workflow_id,
            step_index,
            state.model_dump_json(),
        )

    async def get_step_state(
        self, workflow_id: str, step_index: int
    ) -> StepState | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT state FROM workflow_steps WHERE workflow_id = ? AND step_index = ?",
            workflow_id,
            step_index,
        )
        if not row or row["state"] is None:
            return None
        return StepState.model_validate_json(row["state"])

    async def set_step_result(
        self, workflow_id: str, step_index: int, result: StepResult
    ) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            INSERT INTO workflow_steps (workflow_id, step_index, result) VALUES (?, ?, ?)
            ON CONFLICT (workflow_id, step_index) DO UPDATE SET result = excluded.result
            """,
            workflow_id,
            step_index,
            result.model_dump_json(),
        )

    async def get_step_result(
        self, workflow_id: str, step_index: int
    ) -> StepResult | None:
        row = await asyncio.to_thread(
            self._fetchone,
            "SELECT result FROM workflow_steps WHERE workflow_id = ? AND step_index = ?",
            workflow_id,
            step_index,
        )
        if not row or row["result"] is None:
            return None
        return StepResult.model_validate_json(row["result"])

    async def list_workflows(self) -> list[WorkflowRecord]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT record FROM workflows ORDER BY started_at",
        )
        return [WorkflowRecord.model_validate_json(row["record"]) for row in rows]

    def close(self) -> None:
        self._conn.close()
