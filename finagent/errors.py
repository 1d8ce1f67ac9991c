"""Exception hierarchy for finagent workflows."""

from __future__ import annotations


class FinagentError(Exception):
    """Base class for all finagent errors."""


class WorkflowNotFound(FinagentError, LookupError):
    """Raised when an operation targets an unknown workflow id."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(f"Workflow not found: {workflow_id}")
        self.workflow_id = workflow_id


class InvalidWorkflowRequest(FinagentError, ValueError):
    """Raised when a workflow request fails validation.

    Always raised before any state is persisted.
    """


class StepOrderError(FinagentError):
    """Raised when a step transition violates sequential execution."""

    def __init__(self, workflow_id: str, step_index: int, reason: str) -> None:
        super().__init__(
            f"Step {step_index} of workflow {workflow_id} rejected: {reason}"
        )
        self.workflow_id = workflow_id
        self.step_index = step_index
        self.reason = reason


class PersistenceError(FinagentError):
    """Raised when the state store rejects a read or write."""


class InvocationError(FinagentError):
    """Raised when an agent invocation fails."""

    def __init__(self, agent: str, message: str) -> None:
        super().__init__(f"Agent {agent} failed: {message}")
        self.agent = agent
