"""Agent invoker protocol and shared prompt construction."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Protocol

from ..contracts import StepResult, WorkflowContext
from ..personas import AgentPersona

ProgressCallback = Callable[[str], Awaitable[None]]


@dataclass
class InvocationContext:
    """Everything an agent sees about the workflow it is serving."""

    workflow_id: str
    step_index: int
    message: str
    context: WorkflowContext
    previous_results: List[StepResult] = field(default_factory=list)
    progress: Optional[ProgressCallback] = None

    async def report(self, status: str) -> None:
        """Forward an intermediate status line to the workflow's listeners."""
        if self.progress is not None:
            await self.progress(status)


class AgentInvoker(Protocol):
    """Performs one unit of agent work and returns its output."""

    async def invoke(
        self, agent: AgentPersona, task: str, context: InvocationContext
    ) -> Any:
        """Run ``task`` as ``agent``; raise on failure."""


def build_prompt(agent: AgentPersona, task: str, context: InvocationContext) -> str:
    """Compose the user prompt for one step.

    Previous agents' outputs are appended so later personas build on them.
    """
    lines = [
        f"Your specific task: {task}",
        "",
        f"User's original request: {context.message}",
    ]
    ctx = context.context
    if ctx.symbols:
        lines.append(f"Symbols: {', '.join(ctx.symbols)}")
    if ctx.timeframe:
        lines.append(f"Timeframe: {ctx.timeframe}")
    if ctx.risk_tolerance:
        lines.append(f"Risk tolerance: {ctx.risk_tolerance}")
    if context.previous_results:
        lines.extend(["", "Previous agent insights:"])
        for previous in context.previous_results:
            lines.append(f"{previous.agent.value}: {_render_output(previous.result)}")
    lines.extend(
        [
            "",
            f"Provide a focused response addressing your specific task from the "
            f"{agent.profile.display_name} perspective.",
        ]
    )
    return "\n".join(lines)


def _render_output(result: Any) -> str:
    if isinstance(result, dict) and "response" in result:
        return str(result["response"])
    return str(result)
