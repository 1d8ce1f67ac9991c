"""Invoker backed by pydantic-ai agents, one per persona."""

from __future__ import annotations

import logging
from typing import Any, Dict, Union

from pydantic_ai import Agent
from pydantic_ai.models import Model

from ..errors import InvocationError
from ..personas import AgentPersona
from .base import InvocationContext, build_prompt

logger = logging.getLogger(__name__)


class PydanticAIInvoker:
    """Runs each step through a pydantic-ai ``Agent`` primed with the persona prompt.

    Agents are created lazily so that constructing the invoker never needs
    model credentials.
    """

    def __init__(self, model: Union[str, Model], **agent_kwargs: Any) -> None:
        self._model = model
        self._agent_kwargs = agent_kwargs
        self._agents: Dict[AgentPersona, Agent] = {}

    def agent_for(self, persona: AgentPersona) -> Agent:
        agent = self._agents.get(persona)
        if agent is None:
            agent = Agent(
                self._model,
                system_prompt=persona.profile.system_prompt,
                name=persona.value,
                **self._agent_kwargs,
            )
            self._agents[persona] = agent
        return agent

    async def invoke(
        self, agent: AgentPersona, task: str, context: InvocationContext
    ) -> Any:
        await context.report(f"Applying {agent.value} expertise...")
        prompt = build_prompt(agent, task, context)
        try:
            result = await self.agent_for(agent).run(prompt)
        except Exception as e:
            raise InvocationError(agent.value, str(e)) from e

        logger.info(
            f"Agent {agent.value} answered for workflow_id={context.workflow_id}"
        )
        return {"response": result.output}
