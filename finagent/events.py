"""Fire-and-forget publication of workflow events."""

from __future__ import annotations

import logging

from .contracts import Envelope, WorkflowEvent
from .transports import BaseTransport

logger = logging.getLogger(__name__)


class EventEmitter:
    """Publishes workflow events on a single transport topic.

    All events share one topic so consumers see them in emission order.
    Publication failures are logged and never reach the caller.
    """

    def __init__(self, transport: BaseTransport, topic: str) -> None:
        self._transport = transport
        self.topic = topic

    async def emit(self, event: WorkflowEvent) -> bool:
        """Publish ``event``; return ``False`` if the transport rejected it."""
        try:
            await self._transport.publish(self.topic, Envelope.for_event(event))
        except Exception:
            logger.exception(
                f"Failed to emit {event.type.value} for workflow_id={event.workflow_id}"
            )
            return False
        logger.debug(f"Emitted {event.type.value} for workflow_id={event.workflow_id}")
        return True
