"""Best-effort forwarding of workflow events to live clients.

The relay is not a source of truth: events for channels without a
connected client are dropped, and reconnecting clients resynchronise by
polling the workflow status.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .contracts import EventType, WorkflowEvent
from .transports import BaseTransport

logger = logging.getLogger(__name__)

Payload = Dict[str, Any]
Sink = Callable[[Payload], Awaitable[None]]

MONITORING_CHANNEL = "workflow"

# Fields forwarded to clients for each event type, in addition to the
# common envelope (type, eventType, workflowId, timestamp).
EVENT_FIELDS: Dict[EventType, Tuple[str, ...]] = {
    EventType.STARTED: ("user_id", "name", "agents", "message"),
    EventType.AGENT_STARTED: ("step_index", "agent", "task"),
    EventType.AGENT_PROGRESS: ("step_index", "agent", "status"),
    EventType.AGENT_COMPLETED: ("step_index", "agent", "task", "result"),
    EventType.COMPLETED: ("results",),
    EventType.ERROR: ("step_index", "agent", "task", "error", "reason", "status"),
}


def channel_for(workflow_id: str) -> str:
    """Default stream channel of a workflow."""
    return f"workflow-{workflow_id}"


class BroadcastRegistry:
    """Channels of connected client sinks, owned by the running process."""

    def __init__(self) -> None:
        self._channels: Dict[str, List[Sink]] = defaultdict(list)

    def register(self, channel: str, sink: Sink) -> None:
        self._channels[channel].append(sink)
        logger.debug(f"Registered sink on channel {channel}")

    def unregister(self, channel: str, sink: Optional[Sink] = None) -> None:
        """Remove ``sink`` from ``channel``, or every sink when ``sink`` is None."""
        sinks = self._channels.get(channel)
        if sinks is None:
            return
        if sink is None:
            sinks.clear()
        elif sink in sinks:
            sinks.remove(sink)
        if not sinks:
            del self._channels[channel]

    async def publish(self, channel: str, payload: Payload) -> int:
        """Push ``payload`` to every sink on ``channel``; return how many accepted it.

        A sink that raises is treated as a dead client and unregistered.
        """
        delivered = 0
        for sink in list(self._channels.get(channel, ())):
            try:
                await sink(payload)
            except Exception:
                logger.exception(f"Dropping dead sink on channel {channel}")
                self.unregister(channel, sink)
                continue
            delivered += 1
        return delivered

    def subscriber_count(self, channel: Optional[str] = None) -> int:
        if channel is not None:
            return len(self._channels.get(channel, ()))
        return sum(len(sinks) for sinks in self._channels.values())

    def channels(self) -> List[str]:
        return list(self._channels)


class QueueSink:
    """Sink buffering payloads for one streaming client.

    When the buffer is full the oldest payload is discarded.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self._queue: asyncio.Queue[Payload] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    async def __call__(self, payload: Payload) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning("Stream client is lagging; dropped oldest event")
        self._queue.put_nowait(payload)

    async def get(self, timeout: Optional[float] = None) -> Optional[Payload]:
        """Next payload, or ``None`` if nothing arrived within ``timeout`` seconds."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def qsize(self) -> int:
        return self._queue.qsize()


class StreamRelay:
    """Routes each workflow event to its stream channel and the monitoring channel."""

    def __init__(
        self,
        registry: BroadcastRegistry,
        monitoring_channel: str = MONITORING_CHANNEL,
    ) -> None:
        self._registry = registry
        self.monitoring_channel = monitoring_channel

    @staticmethod
    def to_payload(event: WorkflowEvent) -> Payload:
        fields = EVENT_FIELDS[event.type]
        data = event.model_dump(mode="json", by_alias=True, include=set(fields))
        return {
            "type": "workflow_update",
            "eventType": event.type.value,
            "workflowId": event.workflow_id,
            **data,
            "timestamp": event.timestamp.isoformat(),
        }

    async def relay(self, event: WorkflowEvent) -> None:
        """Forward ``event``; delivery errors are logged and never raised."""
        channel = event.stream_key or channel_for(event.workflow_id)
        try:
            payload = self.to_payload(event)
            delivered = await self._registry.publish(channel, payload)
            await self._registry.publish(self.monitoring_channel, payload)
        except Exception:
            logger.exception(
                f"Failed to relay {event.type.value} for workflow_id={event.workflow_id}"
            )
            return
        logger.debug(
            f"Relayed {event.type.value} to {delivered} client(s) on {channel}"
        )


class RelayConsumer:
    """Feeds events from the transport's event topic into a ``StreamRelay``."""

    def __init__(self, transport: BaseTransport, relay: StreamRelay, topic: str) -> None:
        self._transport = transport
        self._relay = relay
        self._topic = topic
        self.relayed = 0

    async def start(self, lifespan: Optional[float] = None) -> None:
        """Consume events in publish order until ``lifespan`` elapses."""
        async for raw_message, envelope in self._transport.subscribe(
            self._topic, lifespan=lifespan
        ):
            try:
                event = envelope.event()
            except ValueError as e:
                logger.error(f"Ignoring unexpected message {envelope.message_id}: {e}")
            else:
                await self._relay.relay(event)
                self.relayed += 1
            await self._transport.ack(raw_message)
