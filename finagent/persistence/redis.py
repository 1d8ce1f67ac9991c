"""Redis implementation of the workflow repository."""

from __future__ import annotations

from typing import Any, Optional

import redis.asyncio as redis

from ..contracts import StepResult, StepState, WorkflowRecord
from .keys import NAMESPACE, result_key, step_key, step_prefix, workflow_key
from .repository import WorkflowRepository

INDEX_KEY = f"{NAMESPACE}:index"


class RedisWorkflowRepository(WorkflowRepository):
    """Persist workflow state as JSON strings in Redis.

    Keys follow the shared state-store layout (``workflows/{id}``,
    ``workflows/{id}:step:{i}``, ``workflows/{id}:result:{i}``); a set at
    ``workflows:index`` tracks known workflow ids for listing.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        client: Any = None,
    ) -> None:
        if client is None and url is None:
            raise ValueError("RedisWorkflowRepository requires a url or a client")
        self._url = url
        self._redis: Any = client

    def _client(self) -> Any:
        if self._redis is None:
            self._redis = redis.Redis.from_url(self._url, decode_responses=True)
        return self._redis

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    # ------------------------------------------------------------------
    async def create_workflow(self, record: WorkflowRecord) -> None:
        client = self._client()
        await self._drop_steps(record.id)
        await client.set(workflow_key(record.id), record.model_dump_json())
        await client.sadd(INDEX_KEY, record.id)

    async def save_workflow(self, record: WorkflowRecord) -> None:
        client = self._client()
        await client.set(workflow_key(record.id), record.model_dump_json())
        await client.sadd(INDEX_KEY, record.id)

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        raw = await self._client().get(workflow_key(workflow_id))
        return WorkflowRecord.model_validate_json(raw) if raw else None

    async def delete_workflow(self, workflow_id: str) -> None:
        client = self._client()
        await self._drop_steps(workflow_id)
        await client.delete(workflow_key(workflow_id))
        await client.srem(INDEX_KEY, workflow_id)

    async def set_step_state(
        self, workflow_id: str, step_index: int, state: StepState
    ) -> None:
        await self._client().set(
            step_key(workflow_id, step_index), state.model_dump_json()
        )

    async def get_step_state(
        self, workflow_id: str, step_index: int
    ) -> StepState | None:
        raw = await self._client().get(step_key(workflow_id, step_index))
        return StepState.model_validate_json(raw) if raw else None

    async def set_step_result(
        self, workflow_id: str, step_index: int, result: StepResult
    ) -> None:
        await self._client().set(
            result_key(workflow_id, step_index), result.model_dump_json()
        )

    async def get_step_result(
        self, workflow_id: str, step_index: int
    ) -> StepResult | None:
        raw = await self._client().get(result_key(workflow_id, step_index))
        return StepResult.model_validate_json(raw) if raw else None

    async def list_workflows(self) -> list[WorkflowRecord]:
        client = self._client()
        workflows: list[WorkflowRecord] = []
        for workflow_id in sorted(await client.smembers(INDEX_KEY)):
            raw = await client.get(workflow_key(workflow_id))
            if raw:
                workflows.append(WorkflowRecord.model_validate_json(raw))
        return workflows

    # ------------------------------------------------------------------
    async def _drop_steps(self, workflow_id: str) -> None:
        client = self._client()
        stale = [key async for key in client.scan_iter(match=f"{step_prefix(workflow_id)}*")]
        if stale:
            await client.delete(*stale)
