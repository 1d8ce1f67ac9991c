"""In-memory implementation of the workflow repository."""

from __future__ import annotations

from typing import Any, Dict

from ..contracts import StepResult, StepState, WorkflowRecord
from .keys import result_key, step_key, step_prefix, workflow_key
from .repository import WorkflowRepository


class InMemoryWorkflowRepository(WorkflowRepository):
    """Store workflow state in a local key-value mapping.

    Values are kept as JSON-compatible dicts under the same keys a shared
    state store would use, so callers never share mutable records with the
    store. Useful for tests or when no database is configured. Data is not
    persisted across process restarts.
    """

    def __init__(self) -> None:
        self._state: Dict[str, Dict[str, Any]] = {}

    # ------------------------------------------------------------------
    async def create_workflow(self, record: WorkflowRecord) -> None:
        self._drop_steps(record.id)
        self._state[workflow_key(record.id)] = record.model_dump(mode="json")

    async def save_workflow(self, record: WorkflowRecord) -> None:
        self._state[workflow_key(record.id)] = record.model_dump(mode="json")

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        data = self._state.get(workflow_key(workflow_id))
        return WorkflowRecord.model_validate(data) if data is not None else None

    async def delete_workflow(self, workflow_id: str) -> None:
        self._drop_steps(workflow_id)
        self._state.pop(workflow_key(workflow_id), None)

    async def set_step_state(
        self, workflow_id: str, step_index: int, state: StepState
    ) -> None:
        self._state[step_key(workflow_id, step_index)] = state.model_dump(mode="json")

    async def get_step_state(
        self, workflow_id: str, step_index: int
    ) -> StepState | None:
        data = self._state.get(step_key(workflow_id, step_index))
        return StepState.model_validate(data) if data is not None else None

    async def set_step_result(
        self, workflow_id: str, step_index: int, result: StepResult
    ) -> None:
        self._state[result_key(workflow_id, step_index)] = result.model_dump(
            mode="json"
        )

    async def get_step_result(
        self, workflow_id: str, step_index: int
    ) -> StepResult | None:
        data = self._state.get(result_key(workflow_id, step_index))
        return StepResult.model_validate(data) if data is not None else None

    async def list_workflows(self) -> list[WorkflowRecord]:
        return [
            WorkflowRecord.model_validate(value)
            for key, value in self._state.items()
            if key == workflow_key(value.get("id", ""))
        ]

    # ------------------------------------------------------------------
    def _drop_steps(self, workflow_id: str) -> None:
        prefix = step_prefix(workflow_id)
        for key in [k for k in self._state if k.startswith(prefix)]:
            del self._state[key]

    def keys(self) -> list[str]:
        """Return the raw state-store keys currently held."""
        return list(self._state)
