"""PostgreSQL implementation of the workflow repository."""

from __future__ import annotations

import asyncpg

from ..contracts import StepResult, StepState, WorkflowRecord
from .repository import WorkflowRepository


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
            CREATE TABLE IF NOT EXISTS workflows (
                id TEXT PRIMARY KEY,
                status TEXT NOT NULL,
                started_at TIMESTAMPTZ NOT NULL,
                record JSONB NOT NULL
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                workflow_id TEXT NOT NULL,
                step_index INTEGER NOT NULL,
                state JSONB,
                result JSONB,
                PRIMARY KEY (workflow_id, step_index)
            )
            """
        )

    # ------------------------------------------------------------------
    async def create_workflow(self, record: WorkflowRecord) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM workflow_steps WHERE workflow_id = $1", record.id
                )
                await self._upsert(conn, record)
        finally:
            await conn.close()

    async def save_workflow(self, record: WorkflowRecord) -> None:
        conn = await self._connect()
        try:
            await self._upsert(conn, record)
        finally:
            await conn.close()

    async def _upsert(self, conn: asyncpg.Connection, record: WorkflowRecord) -> None:
        await conn.execute(
            """
            INSERT INTO workflows (id, status, started_at, record) VALUES ($1, $2, $3, $4)
            ON CONFLICT (id) DO UPDATE
            SET status = excluded.status, started_at = excluded.started_at, record = excluded.record
            """,
            record.id,
            record.status.value,
            record.started_at,
            record.model_dump_json(),
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT record::text AS record FROM workflows WHERE id = $1",
                workflow_id,
            )
        finally:
            await conn.close()
        if not row:
            return None
        return WorkflowRecord.model_validate_json(row["record"])

    async def delete_workflow(self, workflow_id: str) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    "DELETE FROM workflow_steps WHERE workflow_id = $1", workflow_id
                )
                await conn.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
        finally:
            await conn.close()

    async def set_step_state(
        self, workflow_id: str, step_index: int, state: StepState
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_steps (workflow_id, step_index, state) VALUES ($1, $2, $3)
                ON CONFLICT (workflow_id, step_index) DO UPDATE SET state = excluded.state
                """,
                workflow_id,
                step_index,
                state.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_step_state(
        self, workflow_id: str, step_index: int
    ) -> StepState | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT state::text AS state FROM workflow_steps WHERE workflow_id = $1 AND step_index = $2",
                workflow_id,
                step_index,
            )
        finally:
            await conn.close()
        if not row or row["state"] is None:
            return None
        return StepState.model_validate_json(row["state"])

    async def set_step_result(
        self, workflow_id: str, step_index: int, result: StepResult
    ) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO workflow_steps (workflow_id, step_index, result) VALUES ($1, $2, $3)
                ON CONFLICT (workflow_id, step_index) DO UPDATE SET result = excluded.result
                """,
                workflow_id,
                step_index,
                result.model_dump_json(),
            )
        finally:
            await conn.close()

    async def get_step_result(
        self, workflow_id: str, step_index: int
    ) -> StepResult | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT result::text AS result FROM workflow_steps WHERE workflow_id = $1 AND step_index = $2",
                workflow_id,
                step_index,
            )
        finally:
            await conn.close()
        if not row or row["result"] is None:
            return None
        return StepResult.model_validate_json(row["result"])

    async def list_workflows(self) -> list[WorkflowRecord]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT record::text AS record FROM workflows ORDER BY started_at"
            )
        finally:
            await conn.close()
        return [WorkflowRecord.model_validate_json(r["record"]) for r in rows]
