"""Agent worker executing dispatched workflow steps."""

from __future__ import annotations

import logging
from typing import Optional

from .contracts import Envelope
from .errors import FinagentError
from .orchestrator import WorkflowOrchestrator, agent_topic
from .personas import AgentPersona
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class AgentWorker:
    """Executes steps for one persona by listening to its transport topic.

    Used with an orchestrator in ``worker`` execution mode: each dispatch is
    handed to ``WorkflowOrchestrator.run_step``, which invokes the agent and
    advances the workflow.
    """

    def __init__(
        self,
        transport: BaseTransport,
        orchestrator: WorkflowOrchestrator,
        agent: AgentPersona | str,
    ) -> None:
        self._transport = transport
        self._orchestrator = orchestrator
        self.agent = AgentPersona.parse(agent)
        self.handled = 0

    @property
    def topic(self) -> str:
        return agent_topic(self.agent)

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Start listening for dispatched steps on the agent's topic."""
        logger.info(f"Agent worker for {self.agent.value} listening on {self.topic}")
        async for raw_message, envelope in self._transport.subscribe(
            self.topic, lifespan=lifespan
        ):
            await self._handle(envelope)
            await self._transport.ack(raw_message)

    async def _handle(self, envelope: Envelope) -> None:
        try:
            dispatch = envelope.dispatch()
        except ValueError as e:
            logger.error(f"Ignoring unexpected message {envelope.message_id}: {e}")
            return

        if dispatch.agent != self.agent:
            logger.warning(
                f"Worker for {self.agent.value} received a step for {dispatch.agent.value}; ignoring"
            )
            return

        logger.info(
            f"Received step {dispatch.step_index} (attempt {dispatch.attempt}) "
            f"for workflow_id={dispatch.workflow_id}"
        )
        try:
            await self._orchestrator.run_step(dispatch.workflow_id, dispatch.step_index)
        except FinagentError as e:
            logger.error(
                f"Could not run step {dispatch.step_index} for workflow_id={dispatch.workflow_id}: {e}"
            )
            return
        self.handled += 1
