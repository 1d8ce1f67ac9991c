"""Core records, events and message contracts for finagent workflows."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .personas import AgentPersona


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)


class StepStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class EventType(str, Enum):
    """Names of the events emitted over a workflow's lifetime."""

    STARTED = "workflow.started"
    AGENT_STARTED = "workflow.agent.started"
    AGENT_PROGRESS = "workflow.agent.progress"
    AGENT_COMPLETED = "workflow.agent.completed"
    COMPLETED = "workflow.completed"
    ERROR = "workflow.error"


class StepSpec(BaseModel):
    """One position in a workflow's agent sequence."""

    agent: AgentPersona
    task: str

    @field_validator("agent", mode="before")
    @classmethod
    def _parse_agent(cls, value: Any) -> AgentPersona:
        return AgentPersona.parse(value)

    @classmethod
    def coerce(cls, value: Any) -> "StepSpec":
        """Build a step from an agent identifier or an ``{agent, task}`` pair.

        Bare identifiers get the persona's default task.
        """
        if isinstance(value, StepSpec):
            return value
        if isinstance(value, str):
            persona = AgentPersona.parse(value)
            return cls(agent=persona, task=persona.profile.default_task)
        if isinstance(value, Mapping):
            if "agent" not in value:
                raise ValueError("Step mapping requires an 'agent' key")
            persona = AgentPersona.parse(value["agent"])
            task = value.get("task") or persona.profile.default_task
            return cls(agent=persona, task=task)
        raise ValueError(f"Unsupported step definition: {value!r}")


class WorkflowContext(BaseModel):
    """Request-scoped data handed to every step of a workflow."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="allow"
    )

    symbols: List[str] = Field(default_factory=list)
    timeframe: Optional[str] = None
    risk_tolerance: Optional[Literal["conservative", "moderate", "aggressive"]] = None

    @field_validator("symbols")
    @classmethod
    def _normalize_symbols(cls, value: List[str]) -> List[str]:
        return [symbol.strip().upper() for symbol in value if symbol.strip()]


class StepState(BaseModel):
    """Dispatch record written when a step's invocation is sent out."""

    agent: AgentPersona
    task: str
    status: StepStatus = StepStatus.PROCESSING
    started_at: datetime = Field(default_factory=utcnow)
    dispatched_at: datetime = Field(default_factory=utcnow)
    attempt: int = 1
    error: Optional[str] = None
    finished_at: Optional[datetime] = None


class StepResult(BaseModel):
    """Result record written once a step's invocation has returned."""

    agent: AgentPersona
    task: str
    result: Any = None
    completed_at: datetime = Field(default_factory=utcnow)


class WorkflowRecord(BaseModel):
    """Persisted state of one multi-agent run."""

    id: str
    user_id: Optional[str] = None
    message: str = ""
    name: Optional[str] = None
    agents: List[StepSpec] = Field(default_factory=list)
    context: WorkflowContext = Field(default_factory=WorkflowContext)
    status: WorkflowStatus = WorkflowStatus.PENDING
    current_step: int = 0
    results: List[StepResult] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utcnow)
    last_updated: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    stream_key: Optional[str] = None

    @property
    def total_steps(self) -> int:
        return len(self.agents)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def step(self, index: int) -> StepSpec:
        return self.agents[index]


class WorkflowEvent(BaseModel):
    """Event published on every workflow transition."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: EventType
    workflow_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    user_id: Optional[str] = None
    stream_key: Optional[str] = None
    name: Optional[str] = None
    step_index: Optional[int] = None
    agent: Optional[str] = None
    task: Optional[str] = None
    agents: Optional[List[str]] = None
    message: Optional[str] = None
    status: Optional[str] = None
    result: Any = None
    results: Optional[List[Any]] = None
    error: Optional[str] = None
    reason: Optional[str] = None


class StepDispatch(BaseModel):
    """Work item sent to agent workers in worker execution mode."""

    workflow_id: str
    step_index: int
    agent: AgentPersona
    task: str
    attempt: int = 1


class Envelope(BaseModel):
    """Message exchanged over a transport, wrapping an event or a dispatch."""

    message_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    correlation_id: str
    timestamp: datetime = Field(default_factory=utcnow)
    kind: Literal["event", "dispatch"]
    body: Dict[str, Any] = Field(default_factory=dict)
    spec_version: str = "1.0"

    @classmethod
    def for_event(cls, event: WorkflowEvent) -> "Envelope":
        return cls(
            correlation_id=event.workflow_id,
            kind="event",
            body=event.model_dump(mode="json"),
        )

    @classmethod
    def for_dispatch(cls, dispatch: StepDispatch) -> "Envelope":
        return cls(
            correlation_id=dispatch.workflow_id,
            kind="dispatch",
            body=dispatch.model_dump(mode="json"),
        )

    def event(self) -> WorkflowEvent:
        if self.kind != "event":
            raise ValueError(f"Envelope {self.message_id} carries a {self.kind}")
        return WorkflowEvent.model_validate(self.body)

    def dispatch(self) -> StepDispatch:
        if self.kind != "dispatch":
            raise ValueError(f"Envelope {self.message_id} carries a {self.kind}")
        return StepDispatch.model_validate(self.body)

    def to_json(self) -> str:
        """Serialize envelope to JSON."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, data: str | bytes) -> "Envelope":
        """Deserialize envelope from JSON."""
        return cls.model_validate_json(data)
