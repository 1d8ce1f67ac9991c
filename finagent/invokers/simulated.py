"""Invoker that produces canned responses without calling a model."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..personas import AgentPersona
from .base import InvocationContext

logger = logging.getLogger(__name__)

PROGRESS_STAGES = (
    "Analyzing task requirements...",
    "Gathering relevant data...",
    "Applying {agent} expertise...",
    "Formulating insights...",
    "Preparing recommendations...",
)


class SimulatedInvoker:
    """Walks through the progress stages and returns a placeholder analysis.

    Used when no language model is configured, and in tests.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self._delay = delay

    async def invoke(
        self, agent: AgentPersona, task: str, context: InvocationContext
    ) -> Any:
        for stage in PROGRESS_STAGES:
            await context.report(stage.format(agent=agent.value))
            if self._delay:
                await asyncio.sleep(self._delay)

        logger.info(
            f"Simulated {agent.value} response for workflow_id={context.workflow_id}"
        )
        symbols = ", ".join(context.context.symbols) or "the requested assets"
        response = (
            f"[{agent.value.upper()} AGENT]\n\n"
            f"Task: {task}\n\n"
            f"Analysis: This is a simulated response from the {agent.profile.display_name} "
            f"covering {symbols}. Configure a language model to get actual insights.\n\n"
            "Key Points:\n"
            f"- Point 1 related to {task}\n"
            f"- Point 2 with {agent.value} perspective\n"
            "- Point 3 with actionable insights"
        )
        return {"response": response, "simulated": True}
