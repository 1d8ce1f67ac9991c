"""Shared fakes and fixtures for finagent tests."""

import asyncio
from typing import Dict, List, Optional

import pytest

from finagent.contracts import WorkflowEvent
from finagent.events import EventEmitter
from finagent.orchestrator import WorkflowOrchestrator
from finagent.persistence import InMemoryWorkflowRepository
from finagent.personas import AgentPersona
from finagent.transports import InMemoryTransport

EVENTS_TOPIC = "finagent.workflow.events"


class ScriptedInvoker:
    """Answers every step with a canned response and records the calls.

    ``fail_times`` makes a persona raise that many times before answering;
    personas in ``hang_on`` never answer.
    """

    def __init__(
        self,
        responses: Optional[Dict[AgentPersona, object]] = None,
        fail_times: Optional[Dict[AgentPersona, int]] = None,
        hang_on: tuple = (),
    ) -> None:
        self.responses = responses or {}
        self.fail_times = dict(fail_times or {})
        self.hang_on = set(hang_on)
        self.calls: List[tuple] = []

    async def invoke(self, agent, task, context):
        self.calls.append((context.workflow_id, context.step_index, agent, task))
        await context.report(f"{agent.value} working")
        if self.fail_times.get(agent, 0) > 0:
            self.fail_times[agent] -= 1
            raise RuntimeError(f"{agent.value} unavailable")
        if agent in self.hang_on:
            await asyncio.Event().wait()
        return self.responses.get(agent, {"response": f"{agent.value}: {task}"})


class RecordingRepository(InMemoryWorkflowRepository):
    """In-memory repository that logs every step write in order."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: List[tuple] = []

    async def set_step_state(self, workflow_id, step_index, state):
        self.writes.append(("state", workflow_id, step_index))
        await super().set_step_state(workflow_id, step_index, state)

    async def set_step_result(self, workflow_id, step_index, result):
        self.writes.append(("result", workflow_id, step_index))
        await super().set_step_result(workflow_id, step_index, result)


class FailingRepository(InMemoryWorkflowRepository):
    """In-memory repository whose named methods raise ``ConnectionError``.

    With ``times`` set, each named method fails only that many times.
    """

    def __init__(self, *failing: str, times: Optional[int] = None) -> None:
        super().__init__()
        self.failing = set(failing)
        self.remaining = {name: times for name in failing}

    def _check(self, name: str) -> None:
        if name not in self.failing:
            return
        remaining = self.remaining[name]
        if remaining is not None:
            if remaining <= 0:
                return
            self.remaining[name] = remaining - 1
        raise ConnectionError("state store unavailable")

    async def set_step_state(self, workflow_id, step_index, state):
        self._check("set_step_state")
        await super().set_step_state(workflow_id, step_index, state)

    async def create_workflow(self, record):
        self._check("create_workflow")
        await super().create_workflow(record)

    async def save_workflow(self, record):
        self._check("save_workflow")
        await super().save_workflow(record)


class BrokenTransport(InMemoryTransport):
    """Transport that rejects every publish."""

    async def publish(self, topic, message):
        raise ConnectionError("broker unavailable")


def published_events(transport: InMemoryTransport, topic: str = EVENTS_TOPIC) -> List[WorkflowEvent]:
    """Events waiting on ``topic``, in emission order."""
    return [envelope.event() for envelope in transport.pending(topic)]


@pytest.fixture
def repository():
    return InMemoryWorkflowRepository()


@pytest.fixture
def transport():
    return InMemoryTransport(poll_interval=0.01)


@pytest.fixture
def make_orchestrator(repository, transport):
    def _make(invoker=None, repo=None, **kwargs) -> WorkflowOrchestrator:
        return WorkflowOrchestrator(
            repo or repository,
            EventEmitter(transport, EVENTS_TOPIC),
            invoker=invoker or ScriptedInvoker(),
            transport=transport,
            **kwargs,
        )

    return _make


@pytest.fixture
def events(transport):
    return lambda: published_events(transport)
