"""Repository abstraction for workflow state persistence."""

from __future__ import annotations

from typing import Protocol

from ..contracts import StepResult, StepState, WorkflowRecord


class WorkflowRepository(Protocol):
    """Protocol for workflow state persistence backends.

    Records are addressed by workflow id and by ``(workflow id, step index)``.
    Writes are last-write-wins; no backend offers transactions across calls.
    """

    async def create_workflow(self, record: WorkflowRecord) -> None:
        """Persist a new workflow, discarding step records left under the same id."""

    async def save_workflow(self, record: WorkflowRecord) -> None:
        """Overwrite the workflow record."""

    async def get_workflow(self, workflow_id: str) -> WorkflowRecord | None:
        """Retrieve the workflow record by id."""

    async def delete_workflow(self, workflow_id: str) -> None:
        """Remove the workflow record and all of its step records."""

    async def set_step_state(
        self, workflow_id: str, step_index: int, state: StepState
    ) -> None:
        """Write the dispatch record of a step."""

    async def get_step_state(
        self, workflow_id: str, step_index: int
    ) -> StepState | None:
        """Read the dispatch record of a step."""

    async def set_step_result(
        self, workflow_id: str, step_index: int, result: StepResult
    ) -> None:
        """Write the result record of a step."""

    async def get_step_result(
        self, workflow_id: str, step_index: int
    ) -> StepResult | None:
        """Read the result record of a step."""

    async def list_workflows(self) -> list[WorkflowRecord]:
        """Return all persisted workflows."""
