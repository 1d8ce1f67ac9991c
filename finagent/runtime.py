"""Process-wide component graph built from configuration."""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Optional

from .config import FinagentConfig, load_config
from .events import EventEmitter
from .invokers import AgentInvoker, get_invoker
from .orchestrator import WorkflowOrchestrator
from .persistence import WorkflowRepository, get_repository
from .projector import StatusProjector
from .relay import BroadcastRegistry, RelayConsumer, StreamRelay
from .transports import BaseTransport, get_transport

logger = logging.getLogger(__name__)


class FinagentRuntime:
    """Wires the store, transport, orchestrator, projector and relay together.

    Components not passed in are created from ``config``. The broadcast
    registry belongs to the runtime and lives as long as the process.
    """

    def __init__(
        self,
        config: Optional[FinagentConfig] = None,
        *,
        repository: Optional[WorkflowRepository] = None,
        transport: Optional[BaseTransport] = None,
        invoker: Optional[AgentInvoker] = None,
    ) -> None:
        self.config = config or load_config()
        self.repository = repository or get_repository(config=self.config)
        self.transport = transport or get_transport(config=self.config)
        self.invoker = invoker or get_invoker(self.config)

        events_topic = self.config.transport.events_topic
        self.emitter = EventEmitter(self.transport, events_topic)
        self.orchestrator = WorkflowOrchestrator(
            self.repository,
            self.emitter,
            invoker=self.invoker,
            transport=self.transport,
            execution=self.config.orchestrator.execution,
            step_timeout=self.config.orchestrator.step_timeout,
        )
        self.projector = StatusProjector(self.repository)
        self.registry = BroadcastRegistry()
        self.relay = StreamRelay(self.registry, self.config.relay.monitoring_channel)
        self.consumer = RelayConsumer(self.transport, self.relay, events_topic)
        self._consumer_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._consumer_task is not None and not self._consumer_task.done()

    async def start(self) -> None:
        """Connect the transport and start relaying events to stream clients."""
        if self.running:
            return
        await self.transport.connect()
        self._consumer_task = asyncio.create_task(
            self.consumer.start(), name="finagent:relay"
        )
        logger.info(
            f"Runtime started ({self.config.orchestrator.execution} execution, "
            f"{type(self.transport).__name__}, {type(self.repository).__name__})"
        )

    async def stop(self) -> None:
        """Stop relaying, cancel inline invocations and release connections."""
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            await asyncio.gather(self._consumer_task, return_exceptions=True)
            self._consumer_task = None
        await self.orchestrator.shutdown()
        await self.transport.disconnect()
        close = getattr(self.repository, "close", None)
        if close is not None:
            result = close()
            if inspect.isawaitable(result):
                await result
        logger.info("Runtime stopped")
