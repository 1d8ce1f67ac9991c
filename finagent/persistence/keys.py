"""State-store key layout for workflow records."""

from __future__ import annotations

NAMESPACE = "workflows"


def workflow_key(workflow_id: str) -> str:
    return f"{NAMESPACE}/{workflow_id}"


def step_key(workflow_id: str, step_index: int) -> str:
    return f"{NAMESPACE}/{workflow_id}:step:{step_index}"


def result_key(workflow_id: str, step_index: int) -> str:
    return f"{NAMESPACE}/{workflow_id}:result:{step_index}"


def step_prefix(workflow_id: str) -> str:
    """Prefix shared by every step and result key of ``workflow_id``."""
    return f"{NAMESPACE}/{workflow_id}:"
