"""HTTP API tests."""

import time

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedInvoker
from finagent.api import create_app
from finagent.config import FinagentConfig
from finagent.persistence import InMemoryWorkflowRepository
from finagent.personas import AgentPersona
from finagent.runtime import FinagentRuntime
from finagent.transports import InMemoryTransport


def _runtime(invoker=None, **orchestrator_settings) -> FinagentRuntime:
    config = FinagentConfig()
    for key, value in orchestrator_settings.items():
        setattr(config.orchestrator, key, value)
    return FinagentRuntime(
        config,
        repository=InMemoryWorkflowRepository(),
        transport=InMemoryTransport(poll_interval=0.01),
        invoker=invoker or ScriptedInvoker(),
    )


@pytest.fixture
def client():
    with TestClient(create_app(_runtime())) as test_client:
        yield test_client


def _wait_for(client, workflow_id, status, attempts=100):
    body = None
    for _ in range(attempts):
        body = client.get(f"/api/workflow/{workflow_id}/status").json()
        if body["status"] == status:
            return body
        time.sleep(0.02)
    raise AssertionError(f"workflow {workflow_id} never reached {status}: {body}")


def test_start_workflow_runs_to_completion(client):
    response = client.post(
        "/api/workflows",
        json={
            "workflowId": "wf-api",
            "userId": "user-1",
            "message": "Should I buy AAPL?",
            "agents": ["analyst", {"agent": "trader", "task": "Find an entry"}],
            "context": {"symbols": ["AAPL"], "riskTolerance": "moderate"},
        },
    )
    assert response.status_code == 202
    assert response.json() == {
        "workflowId": "wf-api",
        "status": "processing",
        "streamKey": "workflow-wf-api",
    }

    body = _wait_for(client, "wf-api", "completed")
    assert body["workflowId"] == "wf-api"
    assert body["progress"] == {"completed": 2, "total": 2, "percentage": 100}
    assert [s["status"] for s in body["steps"]] == ["completed", "completed"]
    assert body["steps"][1]["task"] == "Find an entry"
    assert len(body["results"]) == 2

    result = client.get("/api/workflow/wf-api/result").json()
    assert result["status"] == "completed"
    assert result["message"] == "Should I buy AAPL?"
    assert "## ANALYST Analysis" in result["combinedResponse"]
    assert "## TRADER Analysis" in result["combinedResponse"]


def test_generated_workflow_id(client):
    response = client.post("/api/workflows", json={"agents": ["general"]})
    assert response.status_code == 202
    assert response.json()["workflowId"].startswith("workflow-")


def test_zero_agent_workflow(client):
    response = client.post("/api/workflows", json={"workflowId": "wf-empty", "agents": []})
    assert response.json()["status"] == "completed"

    body = client.get("/api/workflow/wf-empty/status").json()
    assert body["status"] == "completed"
    assert body["progress"] == {"completed": 0, "total": 0, "percentage": 0}


def test_unknown_workflow_returns_404(client):
    for path in ("status", "result"):
        response = client.get(f"/api/workflow/wf-unknown/{path}")
        assert response.status_code == 404
        assert response.json() == {"error": "Workflow not found", "workflowId": "wf-unknown"}

    response = client.post("/api/workflow/wf-unknown/cancel")
    assert response.status_code == 404


@pytest.mark.parametrize(
    "payload",
    [
        {"agents": "analyst"},
        {"agents": ["soothsayer"]},
        {"agents": ["analyst"], "context": {"riskTolerance": "yolo"}},
        {"message": "no agents at all"},
    ],
)
def test_invalid_requests_return_400(client, payload):
    response = client.post("/api/workflows", json=payload)
    assert response.status_code == 400
    assert "error" in response.json()


def test_trigger_detects_template(client):
    response = client.post(
        "/api/workflow/trigger",
        json={"message": "Please analyze my portfolio", "userId": "user-1"},
    )
    body = response.json()
    assert body["triggered"] is True
    assert body["workflowId"].startswith("portfolioAnalysis-")
    assert body["workflow"]["agents"] == ["analyst", "riskManager", "advisor"]
    assert body["workflow"]["estimatedTime"] == 15

    status = _wait_for(client, body["workflowId"], "completed")
    assert [s["agent"] for s in status["steps"]] == ["analyst", "riskManager", "advisor"]
    assert status["name"] == "Portfolio Analysis"


def test_trigger_without_match_returns_suggestions(client):
    body = client.post("/api/workflow/trigger", json={"message": "hello"}).json()
    assert body["triggered"] is False
    assert len(body["suggestions"]) == 5
    assert body["suggestions"][0]["samplePrompts"]


def test_cancel_then_retry_conflicts():
    invoker = ScriptedInvoker(hang_on=(AgentPersona.ANALYST,))
    with TestClient(create_app(_runtime(invoker))) as client:
        client.post("/api/workflows", json={"workflowId": "wf-hang", "agents": ["analyst"]})

        response = client.post("/api/workflow/wf-hang/cancel")
        assert response.json() == {"workflowId": "wf-hang", "status": "cancelled"}
        assert client.get("/api/workflow/wf-hang/status").json()["status"] == "cancelled"

        response = client.post("/api/workflow/wf-hang/retry")
        assert response.status_code == 409
        assert response.json()["workflowId"] == "wf-hang"


def test_retry_after_failed_invocation():
    invoker = ScriptedInvoker(fail_times={AgentPersona.ANALYST: 1})
    with TestClient(create_app(_runtime(invoker))) as client:
        client.post("/api/workflows", json={"workflowId": "wf-flaky", "agents": ["analyst"]})
        for _ in range(50):
            if invoker.calls:
                break
            time.sleep(0.02)

        retried = client.post("/api/workflow/wf-flaky/retry")
        assert retried.status_code == 200
        assert retried.json()["currentStep"] == 0

        body = _wait_for(client, "wf-flaky", "completed")
        assert body["steps"][0]["attempt"] == 2


def test_fail_stuck_workflow():
    invoker = ScriptedInvoker(hang_on=(AgentPersona.ADVISOR,))
    with TestClient(create_app(_runtime(invoker))) as client:
        client.post("/api/workflows", json={"workflowId": "wf-stuck", "agents": ["advisor"]})

        failed = client.post("/api/workflow/wf-stuck/fail", json={"reason": "Data feed down"})
        assert failed.json() == {
            "workflowId": "wf-stuck",
            "status": "failed",
            "error": "Data feed down",
        }

        body = client.get("/api/workflow/wf-stuck/status").json()
        assert body["status"] == "failed"
        assert body["error"] == "Data feed down"
        assert body["steps"][0]["status"] == "failed"


def test_health_reports_relay(client):
    body = client.get("/api/health").json()
    assert body["status"] == "ok"
    assert body["execution"] == "inline"
    assert body["relayRunning"] is True
