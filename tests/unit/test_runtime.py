"""Runtime wiring tests."""

import pytest

from conftest import ScriptedInvoker
from finagent.config import FinagentConfig
from finagent.invokers import SimulatedInvoker
from finagent.persistence import InMemoryWorkflowRepository, SQLiteWorkflowRepository
from finagent.relay import QueueSink, channel_for
from finagent.runtime import FinagentRuntime
from finagent.transports import InMemoryTransport


def test_runtime_builds_components_from_config(tmp_path, monkeypatch):
    for name in ("FINAGENT_DATABASE_URL", "DATABASE_URL", "FINAGENT_TRANSPORT"):
        monkeypatch.delenv(name, raising=False)
    config = FinagentConfig(database_url=f"sqlite://{tmp_path / 'wf.db'}")
    config.orchestrator.execution = "worker"
    config.relay.monitoring_channel = "ops"

    runtime = FinagentRuntime(config)

    assert isinstance(runtime.repository, SQLiteWorkflowRepository)
    assert isinstance(runtime.transport, InMemoryTransport)
    assert isinstance(runtime.invoker, SimulatedInvoker)
    assert runtime.orchestrator.execution == "worker"
    assert runtime.relay.monitoring_channel == "ops"
    assert runtime.emitter.topic == config.transport.events_topic


@pytest.mark.asyncio
async def test_started_runtime_streams_workflow_events():
    runtime = FinagentRuntime(
        FinagentConfig(),
        repository=InMemoryWorkflowRepository(),
        transport=InMemoryTransport(poll_interval=0.01),
        invoker=ScriptedInvoker(),
    )
    per_workflow, monitor = QueueSink(), QueueSink()
    runtime.registry.register(channel_for("wf-rt"), per_workflow)
    runtime.registry.register("workflow", monitor)

    await runtime.start()
    assert runtime.running
    try:
        await runtime.orchestrator.start_workflow("wf-rt", ["analyst"])
        await runtime.orchestrator.drain()
        received = []
        while True:
            payload = await per_workflow.get(timeout=1.0)
            assert payload is not None, f"stream ended early after {received}"
            received.append(payload["eventType"])
            if payload["eventType"] == "workflow.completed":
                break
    finally:
        await runtime.stop()

    assert received == [
        "workflow.started",
        "workflow.agent.started",
        "workflow.agent.progress",
        "workflow.agent.completed",
        "workflow.completed",
    ]
    assert monitor.qsize() == len(received)
    assert not runtime.running
