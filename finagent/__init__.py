"""Finagent: multi-agent financial workflow orchestration."""

from .contracts import (
    EventType,
    StepSpec,
    WorkflowContext,
    WorkflowEvent,
    WorkflowRecord,
    WorkflowStatus,
)
from .events import EventEmitter
from .orchestrator import WorkflowOrchestrator
from .persistence import get_repository
from .personas import AgentPersona
from .projector import StatusProjector
from .relay import BroadcastRegistry, StreamRelay
from .runtime import FinagentRuntime
from .transports import get_transport
from .worker import AgentWorker

__version__ = "0.1.0"
__all__ = [
    "AgentPersona",
    "AgentWorker",
    "BroadcastRegistry",
    "EventEmitter",
    "EventType",
    "FinagentRuntime",
    "StatusProjector",
    "StepSpec",
    "StreamRelay",
    "WorkflowContext",
    "WorkflowEvent",
    "WorkflowOrchestrator",
    "WorkflowRecord",
    "WorkflowStatus",
    "get_repository",
    "get_transport",
]
