"""Read-only projections of workflow progress for clients."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .contracts import StepStatus, WorkflowRecord, WorkflowStatus
from .persistence import WorkflowRepository


class _View(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StepView(_View):
    index: int
    agent: str
    task: str
    status: StepStatus
    result: Any = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    attempt: Optional[int] = None
    error: Optional[str] = None


class ProgressView(_View):
    completed: int
    total: int
    percentage: int


class StatusView(_View):
    workflow_id: str
    name: Optional[str] = None
    status: WorkflowStatus
    progress: ProgressView
    steps: List[StepView]
    started_at: datetime
    last_updated: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    results: List[Any]


class ResultView(_View):
    workflow_id: str
    workflow_name: Optional[str] = None
    status: WorkflowStatus
    message: str
    results: List[Any]
    combined_response: str
    completed_at: Optional[datetime] = None


def derive_overall_status(completed: int, processing: int, total: int) -> WorkflowStatus:
    """Overall status from step counts; a workflow with no steps is complete."""
    if completed == total:
        return WorkflowStatus.COMPLETED
    if processing > 0 or completed > 0:
        return WorkflowStatus.PROCESSING
    return WorkflowStatus.PENDING


def percentage(completed: int, total: int) -> int:
    if total == 0:
        return 0
    return round(100 * completed / total)


class StatusProjector:
    """Derives client-facing views from persisted workflow and step records.

    Never writes to the store. ``get_status`` performs one read for the
    workflow plus two per step, which suits polling at about one request a
    second per client.
    """

    def __init__(self, repository: WorkflowRepository) -> None:
        self._repository = repository

    async def get_status(self, workflow_id: str) -> StatusView | None:
        """Return the progress view, or ``None`` if the workflow is unknown."""
        record = await self._repository.get_workflow(workflow_id)
        if record is None:
            return None

        steps: List[StepView] = []
        for index, step_spec in enumerate(record.agents):
            state = await self._repository.get_step_state(workflow_id, index)
            result = await self._repository.get_step_result(workflow_id, index)
            if result is not None:
                status = StepStatus.COMPLETED
            elif state is not None:
                status = state.status
            else:
                status = StepStatus.PENDING
            steps.append(
                StepView(
                    index=index,
                    agent=step_spec.agent.value,
                    task=step_spec.task,
                    status=status,
                    result=result.result if result is not None else None,
                    started_at=state.started_at if state is not None else None,
                    completed_at=result.completed_at if result is not None else None,
                    attempt=state.attempt if state is not None else None,
                    error=state.error if state is not None else None,
                )
            )

        total = len(steps)
        completed = sum(1 for s in steps if s.status == StepStatus.COMPLETED)
        processing = sum(1 for s in steps if s.status == StepStatus.PROCESSING)
        overall = derive_overall_status(completed, processing, total)
        if overall != WorkflowStatus.COMPLETED and record.status in (
            WorkflowStatus.FAILED,
            WorkflowStatus.CANCELLED,
        ):
            overall = record.status

        return StatusView(
            workflow_id=record.id,
            name=record.name,
            status=overall,
            progress=ProgressView(
                completed=completed,
                total=total,
                percentage=percentage(completed, total),
            ),
            steps=steps,
            started_at=record.started_at,
            last_updated=record.last_updated,
            completed_at=record.completed_at,
            error=record.error,
            results=[r.model_dump(mode="json") for r in record.results],
        )

    async def get_result(self, workflow_id: str) -> ResultView | None:
        """Return all step results and, once complete, a combined markdown report."""
        record = await self._repository.get_workflow(workflow_id)
        if record is None:
            return None

        is_complete = len(record.results) >= record.total_steps
        status = record.status
        if is_complete:
            status = WorkflowStatus.COMPLETED
        elif status not in (WorkflowStatus.FAILED, WorkflowStatus.CANCELLED):
            status = WorkflowStatus.PROCESSING

        return ResultView(
            workflow_id=record.id,
            workflow_name=record.name,
            status=status,
            message=record.message,
            results=[r.model_dump(mode="json") for r in record.results],
            combined_response=combine_results(record) if is_complete else "",
            completed_at=record.completed_at,
        )


def combine_results(record: WorkflowRecord) -> str:
    """Render every step result as one markdown report, in step order."""
    sections = []
    for result in record.results:
        body = result.result
        if isinstance(body, dict) and "response" in body:
            body = body["response"]
        sections.append(f"## {result.agent.profile.report_heading}\n\n{body}\n")
    return "\n---\n\n".join(sections)
