"""Server-Sent Events helpers for workflow streams."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Optional

from .contracts import utcnow
from .relay import BroadcastRegistry, QueueSink

logger = logging.getLogger(__name__)


def sse_frame(payload: Dict[str, Any]) -> str:
    r"""Format ``payload`` as one ``data: {json}\n\n`` frame."""
    return f"data: {json.dumps(payload, default=str)}\n\n"


async def channel_event_stream(
    registry: BroadcastRegistry,
    channel: str,
    *,
    queue_size: int = 100,
    heartbeat: float = 30.0,
    is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
) -> AsyncGenerator[str, None]:
    """Yield SSE frames for every payload published on ``channel``.

    The first frame is a ``connected`` notice; a ``ping`` frame follows every
    ``heartbeat`` seconds without traffic. The client's sink is registered
    while the generator runs and removed when it is closed.
    """
    sink = QueueSink(maxsize=queue_size)
    registry.register(channel, sink)
    logger.info(f"Stream client connected to {channel}")
    try:
        yield sse_frame(
            {"type": "connected", "channel": channel, "timestamp": utcnow().isoformat()}
        )
        while True:
            if is_disconnected is not None and await is_disconnected():
                break
            payload = await sink.get(timeout=heartbeat)
            if payload is None:
                yield sse_frame({"type": "ping", "timestamp": utcnow().isoformat()})
                continue
            yield sse_frame(payload)
    finally:
        registry.unregister(channel, sink)
        logger.info(f"Stream client disconnected from {channel}")
