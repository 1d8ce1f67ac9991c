"""Status projection tests."""

import pytest

from finagent.contracts import (
    StepResult,
    StepSpec,
    StepState,
    StepStatus,
    WorkflowRecord,
    WorkflowStatus,
)
from finagent.persistence import InMemoryWorkflowRepository
from finagent.personas import AgentPersona
from finagent.projector import StatusProjector, combine_results, derive_overall_status, percentage


@pytest.mark.parametrize(
    "completed, processing, total, expected",
    [
        (0, 0, 0, WorkflowStatus.COMPLETED),
        (0, 0, 3, WorkflowStatus.PENDING),
        (0, 1, 3, WorkflowStatus.PROCESSING),
        (2, 0, 3, WorkflowStatus.PROCESSING),
        (3, 0, 3, WorkflowStatus.COMPLETED),
    ],
)
def test_derive_overall_status(completed, processing, total, expected):
    assert derive_overall_status(completed, processing, total) == expected


def test_percentage_rounds_and_never_divides_by_zero():
    assert percentage(0, 0) == 0
    assert percentage(1, 3) == 33
    assert percentage(2, 3) == 67
    assert percentage(3, 3) == 100


async def _seed(repo, agents=("analyst", "trader", "advisor"), status=WorkflowStatus.PROCESSING):
    record = WorkflowRecord(
        id="wf-1",
        message="How is my portfolio?",
        agents=[StepSpec.coerce(a) for a in agents],
        status=status,
    )
    await repo.create_workflow(record)
    return record


@pytest.mark.asyncio
async def test_unknown_workflow_is_not_found_every_time():
    projector = StatusProjector(InMemoryWorkflowRepository())
    assert await projector.get_status("wf-unknown") is None
    assert await projector.get_status("wf-unknown") is None
    assert await projector.get_result("wf-unknown") is None


@pytest.mark.asyncio
async def test_step_status_follows_state_and_result_records():
    repo = InMemoryWorkflowRepository()
    await _seed(repo)
    await repo.set_step_state("wf-1", 0, StepState(agent=AgentPersona.ANALYST, task="a"))
    await repo.set_step_result(
        "wf-1", 0, StepResult(agent=AgentPersona.ANALYST, task="a", result={"response": "up"})
    )
    await repo.set_step_state("wf-1", 1, StepState(agent=AgentPersona.TRADER, task="t"))

    view = await StatusProjector(repo).get_status("wf-1")

    assert [s.status for s in view.steps] == [
        StepStatus.COMPLETED,
        StepStatus.PROCESSING,
        StepStatus.PENDING,
    ]
    assert view.steps[0].result == {"response": "up"}
    assert view.steps[2].started_at is None
    assert view.status == WorkflowStatus.PROCESSING
    assert (view.progress.completed, view.progress.total, view.progress.percentage) == (1, 3, 33)


@pytest.mark.asyncio
async def test_result_without_state_still_counts_as_completed():
    repo = InMemoryWorkflowRepository()
    await _seed(repo, agents=("analyst",))
    await repo.set_step_result(
        "wf-1", 0, StepResult(agent=AgentPersona.ANALYST, task="a", result="done")
    )

    view = await StatusProjector(repo).get_status("wf-1")
    assert view.steps[0].status == StepStatus.COMPLETED
    assert view.status == WorkflowStatus.COMPLETED


@pytest.mark.asyncio
async def test_failed_workflow_overrides_derived_status():
    repo = InMemoryWorkflowRepository()
    await _seed(repo, status=WorkflowStatus.FAILED)
    state = StepState(
        agent=AgentPersona.ANALYST, task="a", status=StepStatus.FAILED, error="timeout"
    )
    await repo.set_step_state("wf-1", 0, state)

    view = await StatusProjector(repo).get_status("wf-1")
    assert view.status == WorkflowStatus.FAILED
    assert view.steps[0].status == StepStatus.FAILED
    assert view.steps[0].error == "timeout"


@pytest.mark.asyncio
async def test_zero_step_workflow_is_complete_at_zero_percent():
    repo = InMemoryWorkflowRepository()
    await _seed(repo, agents=(), status=WorkflowStatus.COMPLETED)

    view = await StatusProjector(repo).get_status("wf-1")
    assert view.status == WorkflowStatus.COMPLETED
    assert (view.progress.completed, view.progress.total, view.progress.percentage) == (0, 0, 0)


@pytest.mark.asyncio
async def test_status_view_serializes_camel_case():
    repo = InMemoryWorkflowRepository()
    await _seed(repo, agents=("analyst",))
    view = await StatusProjector(repo).get_status("wf-1")

    data = view.model_dump(mode="json", by_alias=True)
    assert data["workflowId"] == "wf-1"
    assert data["steps"][0]["startedAt"] is None
    assert data["progress"] == {"completed": 0, "total": 1, "percentage": 0}


@pytest.mark.asyncio
async def test_result_view_combines_reports_once_complete():
    repo = InMemoryWorkflowRepository()
    record = await _seed(repo, agents=("analyst", "riskManager"))
    projector = StatusProjector(repo)

    record.results.append(
        StepResult(agent=AgentPersona.ANALYST, task="a", result={"response": "Strong balance sheet"})
    )
    await repo.save_workflow(record)
    partial = await projector.get_result("wf-1")
    assert partial.status == WorkflowStatus.PROCESSING
    assert partial.combined_response == ""

    record.results.append(
        StepResult(agent=AgentPersona.RISK_MANAGER, task="r", result="Low volatility")
    )
    record.status = WorkflowStatus.COMPLETED
    await repo.save_workflow(record)
    final = await projector.get_result("wf-1")

    assert final.status == WorkflowStatus.COMPLETED
    assert final.combined_response == combine_results(record)
    assert final.combined_response == (
        "## ANALYST Analysis\n\nStrong balance sheet\n"
        "\n---\n\n"
        "## RISK MANAGER Analysis\n\nLow volatility\n"
    )
