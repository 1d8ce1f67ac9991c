"""Workflow orchestrator driving multi-agent runs one step at a time."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from functools import partial
from typing import Any, AsyncIterator, Dict, List, Literal, Mapping, Optional, Sequence

from .contracts import (
    Envelope,
    EventType,
    StepDispatch,
    StepResult,
    StepSpec,
    StepState,
    StepStatus,
    WorkflowContext,
    WorkflowEvent,
    WorkflowRecord,
    WorkflowStatus,
    utcnow,
)
from .errors import (
    FinagentError,
    InvalidWorkflowRequest,
    PersistenceError,
    StepOrderError,
    WorkflowNotFound,
)
from .events import EventEmitter
from .invokers import AgentInvoker, InvocationContext
from .persistence import WorkflowRepository
from .personas import AgentPersona
from .transports import BaseTransport

logger = logging.getLogger(__name__)

ExecutionMode = Literal["inline", "worker"]


def agent_topic(agent: AgentPersona) -> str:
    """Transport topic on which steps for ``agent`` are dispatched."""
    return f"finagent.agent.{agent.value}"


class WorkflowOrchestrator:
    """Owns the lifecycle of workflows: creation, sequential advancement and termination.

    Steps of one workflow run strictly in order: step ``i + 1`` is dispatched
    only after step ``i``'s result is persisted. State transitions of a
    workflow are serialised by a per-workflow lock; different workflows
    proceed concurrently.

    In ``inline`` execution the orchestrator runs each invocation as an
    asyncio task. In ``worker`` execution it publishes a ``StepDispatch`` to
    the agent's topic and an ``AgentWorker`` calls back into ``run_step``.
    """

    def __init__(
        self,
        repository: WorkflowRepository,
        emitter: EventEmitter,
        invoker: Optional[AgentInvoker] = None,
        transport: Optional[BaseTransport] = None,
        execution: ExecutionMode = "inline",
        step_timeout: Optional[float] = None,
    ) -> None:
        if execution == "inline" and invoker is None:
            raise ValueError("Inline execution requires an agent invoker")
        if execution == "worker" and transport is None:
            raise ValueError("Worker execution requires a transport")
        self._repository = repository
        self._emitter = emitter
        self._invoker = invoker
        self._transport = transport
        self._execution = execution
        self._step_timeout = step_timeout
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)
        self._inflight: Dict[str, asyncio.Task] = {}

    @property
    def execution(self) -> ExecutionMode:
        return self._execution

    # ------------------------------------------------------------------
    # Lifecycle
    async def start_workflow(
        self,
        workflow_id: str,
        agents: Sequence[Any],
        context: Any = None,
        *,
        user_id: Optional[str] = None,
        message: str = "",
        name: Optional[str] = None,
        stream_key: Optional[str] = None,
    ) -> WorkflowRecord:
        """Persist a new workflow and dispatch its first step.

        An empty ``agents`` sequence completes the workflow immediately.

        Raises:
            InvalidWorkflowRequest: If ``agents`` or ``context`` are malformed.
                Nothing is persisted in that case.
            PersistenceError: If the state store rejects the initial writes.
                No partial workflow record is left behind.
        """
        if not workflow_id or not isinstance(workflow_id, str):
            raise InvalidWorkflowRequest("workflow_id must be a non-empty string")
        steps = self._validate_agents(agents)
        workflow_context = self._validate_context(context)

        now = utcnow()
        record = WorkflowRecord(
            id=workflow_id,
            user_id=user_id,
            message=message,
            name=name,
            agents=steps,
            context=workflow_context,
            status=WorkflowStatus.PROCESSING if steps else WorkflowStatus.COMPLETED,
            started_at=now,
            last_updated=now,
            completed_at=None if steps else now,
            stream_key=stream_key,
        )

        async with self._locked(workflow_id):
            try:
                await self._repository.create_workflow(record)
            except Exception as e:
                raise PersistenceError(
                    f"Failed to persist workflow {workflow_id}: {e}"
                ) from e

            state: Optional[StepState] = None
            if steps:
                state = StepState(
                    agent=steps[0].agent,
                    task=steps[0].task,
                    started_at=now,
                    dispatched_at=now,
                )
                try:
                    await self._repository.set_step_state(workflow_id, 0, state)
                except Exception as e:
                    await self._rollback_creation(workflow_id)
                    raise PersistenceError(
                        f"Failed to persist first step of workflow {workflow_id}: {e}"
                    ) from e

            logger.info(
                f"Workflow started for workflow_id={workflow_id} with {len(steps)} agents"
            )
            await self._emit(
                record,
                EventType.STARTED,
                agents=[step.agent.value for step in steps],
                message=message,
            )

            if state is None:
                logger.warning(
                    f"No agents specified; workflow_id={workflow_id} completed immediately"
                )
                await self._emit(record, EventType.COMPLETED, results=[])
                return record

            await self._dispatch(record, 0, state)
        return record

    async def advance_workflow(
        self, workflow_id: str, step_index: int, result: Any
    ) -> WorkflowRecord:
        """Record the result of the in-flight step and move the workflow on.

        A second delivery for a step that already has a result is ignored.
        If the stored result was never applied to the workflow record (the
        record save failed), the workflow resumes from that stored result.

        Raises:
            WorkflowNotFound: If the workflow does not exist.
            StepOrderError: If ``step_index`` is not the in-flight step, or the
                workflow already reached a terminal state.
            PersistenceError: If the result cannot be stored.
        """
        async with self._locked(workflow_id):
            record = await self._load(workflow_id)

            existing: Optional[StepResult] = None
            if 0 <= step_index < record.total_steps:
                existing = await self._read(
                    self._repository.get_step_result(workflow_id, step_index)
                )
            if existing is not None:
                if record.is_terminal or step_index != record.current_step:
                    logger.info(
                        f"Ignoring duplicate result for step {step_index} of workflow_id={workflow_id}"
                    )
                    return record
                logger.warning(
                    f"Resuming workflow_id={workflow_id} from stored result of step {step_index}"
                )
                return await self._apply_result(record, step_index, existing)

            if record.is_terminal:
                raise StepOrderError(
                    workflow_id, step_index, f"workflow is {record.status.value}"
                )
            if step_index != record.current_step:
                raise StepOrderError(
                    workflow_id,
                    step_index,
                    f"step {record.current_step} is in flight",
                )
            state = await self._read(
                self._repository.get_step_state(workflow_id, step_index)
            )
            if state is None:
                raise StepOrderError(workflow_id, step_index, "step was never dispatched")

            step = record.step(step_index)
            step_result = StepResult(
                agent=step.agent, task=step.task, result=result, completed_at=utcnow()
            )
            await self._write(
                self._repository.set_step_result(workflow_id, step_index, step_result)
            )
            return await self._apply_result(record, step_index, step_result)

    async def run_step(self, workflow_id: str, step_index: int) -> None:
        """Invoke the agent for a dispatched step and advance on success.

        Invocation failures are not retried: a ``workflow.error`` event is
        emitted and the step stays ``processing`` until an operator acts.
        Exceeding the step deadline fails the step and the workflow.
        """
        if self._invoker is None:
            raise RuntimeError("No agent invoker configured")

        record = await self._load(workflow_id)
        if record.is_terminal or record.current_step != step_index:
            logger.warning(
                f"Skipping stale dispatch of step {step_index} for workflow_id={workflow_id}"
            )
            return

        step = record.step(step_index)
        context = InvocationContext(
            workflow_id=workflow_id,
            step_index=step_index,
            message=record.message,
            context=record.context,
            previous_results=list(record.results),
            progress=partial(self.report_progress, workflow_id, step_index),
        )
        logger.info(
            f"Invoking {step.agent.value} for step {step_index} of workflow_id={workflow_id}"
        )

        try:
            invocation = self._invoker.invoke(step.agent, step.task, context)
            if self._step_timeout:
                result = await asyncio.wait_for(invocation, timeout=self._step_timeout)
            else:
                result = await invocation
        except asyncio.TimeoutError:
            logger.error(
                f"Agent {step.agent.value} exceeded {self._step_timeout}s for "
                f"step {step_index} of workflow_id={workflow_id}"
            )
            await self._terminate(
                workflow_id,
                step_index=step_index,
                reason="timeout",
                error=f"Agent {step.agent.value} exceeded the {self._step_timeout}s step deadline",
                status=WorkflowStatus.FAILED,
            )
            return
        except Exception as e:
            logger.exception(
                f"Agent {step.agent.value} failed for step {step_index} of "
                f"workflow_id={workflow_id}; step left processing"
            )
            await self._emit(
                record,
                EventType.ERROR,
                step_index=step_index,
                agent=step.agent.value,
                task=step.task,
                error=str(e),
                reason="invocation_failed",
            )
            return

        try:
            await self.advance_workflow(workflow_id, step_index, result)
        except StepOrderError as e:
            logger.warning(f"Discarding result: {e}")
        except FinagentError as e:
            logger.error(f"Failed to advance workflow_id={workflow_id}: {e}")
            await self._emit(
                record,
                EventType.ERROR,
                step_index=step_index,
                agent=step.agent.value,
                task=step.task,
                error=str(e),
                reason="advance_failed",
            )

    async def report_progress(
        self, workflow_id: str, step_index: int, status: str
    ) -> None:
        """Emit an intermediate status line for the in-flight step."""
        record = await self._repository.get_workflow(workflow_id)
        if record is None or record.is_terminal:
            return
        step = record.step(step_index)
        await self._emit(
            record,
            EventType.AGENT_PROGRESS,
            step_index=step_index,
            agent=step.agent.value,
            status=status,
        )

    # ------------------------------------------------------------------
    # Operator actions
    async def cancel_workflow(self, workflow_id: str) -> WorkflowRecord:
        """Stop a workflow at any point; completed step results are kept.

        Cancelling a workflow that already reached a terminal state is a no-op.
        """
        return await self._terminate(
            workflow_id,
            reason="cancelled",
            error="Workflow cancelled",
            status=WorkflowStatus.CANCELLED,
        )

    async def fail_workflow(
        self, workflow_id: str, reason: Optional[str] = None
    ) -> WorkflowRecord:
        """Mark a stuck workflow and its in-flight step as failed."""
        return await self._terminate(
            workflow_id,
            reason="failed",
            error=reason or "Workflow failed by operator",
            status=WorkflowStatus.FAILED,
        )

    async def retry_step(self, workflow_id: str) -> WorkflowRecord:
        """Dispatch the in-flight step of a processing workflow again.

        The step keeps its original ``started_at``; ``attempt`` is incremented.

        Raises:
            WorkflowNotFound: If the workflow does not exist.
            StepOrderError: If the workflow is terminal.
        """
        async with self._locked(workflow_id):
            record = await self._load(workflow_id)
            index = record.current_step
            if record.is_terminal or index >= record.total_steps:
                raise StepOrderError(
                    workflow_id, index, f"workflow is {record.status.value}"
                )

            step = record.step(index)
            now = utcnow()
            state = await self._read(self._repository.get_step_state(workflow_id, index))
            if state is None:
                state = StepState(
                    agent=step.agent, task=step.task, started_at=now, dispatched_at=now
                )
            else:
                state = state.model_copy(
                    update={
                        "status": StepStatus.PROCESSING,
                        "attempt": state.attempt + 1,
                        "dispatched_at": now,
                        "error": None,
                        "finished_at": None,
                    }
                )
            await self._write(self._repository.set_step_state(workflow_id, index, state))

            self._cancel_inflight(workflow_id)
            record.last_updated = now
            await self._write(self._repository.save_workflow(record))

            logger.info(
                f"Retrying step {index} ({step.agent.value}) of workflow_id={workflow_id}, "
                f"attempt {state.attempt}"
            )
            await self._dispatch(record, index, state)
            return record

    async def fail_stalled_workflows(
        self, now: Optional[datetime] = None
    ) -> List[str]:
        """Fail every workflow whose in-flight step outlived the step deadline.

        Covers steps whose dispatch never reached a worker. Returns the ids
        of the workflows that were failed.
        """
        if not self._step_timeout:
            return []
        now = now or utcnow()
        expired: List[str] = []
        for record in await self._read(self._repository.list_workflows()):
            index = record.current_step
            if record.is_terminal or index >= record.total_steps:
                continue
            state = await self._read(self._repository.get_step_state(record.id, index))
            if state is None or state.status != StepStatus.PROCESSING:
                continue
            if (now - state.dispatched_at).total_seconds() <= self._step_timeout:
                continue
            await self._terminate(
                record.id,
                step_index=index,
                reason="timeout",
                error=f"Step {index} ({state.agent.value}) exceeded the {self._step_timeout}s step deadline",
                status=WorkflowStatus.FAILED,
            )
            expired.append(record.id)
        return expired

    async def drain(self) -> None:
        """Wait until no inline invocation is in flight."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight inline invocations; their workflows stay processing."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()

    # ------------------------------------------------------------------
    # Internals
    @asynccontextmanager
    async def _locked(self, workflow_id: str) -> AsyncIterator[None]:
        """Hold the workflow's lock; the lock is dropped once no caller uses it."""
        lock = self._locks.setdefault(workflow_id, asyncio.Lock())
        self._lock_users[workflow_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[workflow_id] -= 1
            if not self._lock_users[workflow_id]:
                del self._lock_users[workflow_id]
                del self._locks[workflow_id]

    async def _apply_result(
        self, record: WorkflowRecord, step_index: int, step_result: StepResult
    ) -> WorkflowRecord:
        """Append a stored step result to the record, then dispatch or complete."""
        workflow_id = record.id
        step = record.step(step_index)
        now = utcnow()
        record.results.append(step_result)
        record.current_step = step_index + 1
        record.last_updated = now
        is_last = record.current_step >= record.total_steps
        if is_last:
            record.status = WorkflowStatus.COMPLETED
            record.completed_at = now
        await self._write(self._repository.save_workflow(record))

        logger.info(
            f"Completed step {step_index} ({step.agent.value}) for workflow_id={workflow_id}"
        )
        await self._emit(
            record,
            EventType.AGENT_COMPLETED,
            step_index=step_index,
            agent=step.agent.value,
            task=step.task,
            result=step_result.result,
        )

        if is_last:
            logger.info(f"Workflow completed for workflow_id={workflow_id}")
            await self._emit(
                record,
                EventType.COMPLETED,
                results=[r.model_dump(mode="json") for r in record.results],
            )
            return record

        next_index = record.current_step
        next_step = record.step(next_index)
        next_state = StepState(
            agent=next_step.agent, task=next_step.task, started_at=now, dispatched_at=now
        )
        await self._write(
            self._repository.set_step_state(workflow_id, next_index, next_state)
        )
        await self._dispatch(record, next_index, next_state)
        return record

    async def _terminate(
        self,
        workflow_id: str,
        *,
        reason: str,
        error: str,
        status: WorkflowStatus,
        step_index: Optional[int] = None,
    ) -> WorkflowRecord:
        async with self._locked(workflow_id):
            record = await self._load(workflow_id)
            if record.is_terminal:
                logger.info(
                    f"Workflow_id={workflow_id} already {record.status.value}; ignoring {reason}"
                )
                return record
            index = record.current_step
            if step_index is not None and step_index != index:
                return record

            now = utcnow()
            step_status = (
                StepStatus.CANCELLED
                if status == WorkflowStatus.CANCELLED
                else StepStatus.FAILED
            )
            state = await self._read(self._repository.get_step_state(workflow_id, index))
            if state is not None:
                state.status = step_status
                state.error = error
                state.finished_at = now
                await self._write(
                    self._repository.set_step_state(workflow_id, index, state)
                )

            record.status = status
            record.error = error
            record.completed_at = now
            record.last_updated = now
            await self._write(self._repository.save_workflow(record))
            self._cancel_inflight(workflow_id)

            logger.warning(
                f"Workflow_id={workflow_id} {status.value} at step {index}: {error}"
            )
            step = record.step(index) if index < record.total_steps else None
            await self._emit(
                record,
                EventType.ERROR,
                step_index=index,
                agent=step.agent.value if step else None,
                task=step.task if step else None,
                error=error,
                reason=reason,
                status=status.value,
            )
        return record

    async def _dispatch(
        self, record: WorkflowRecord, index: int, state: StepState
    ) -> None:
        step = record.step(index)
        await self._emit(
            record,
            EventType.AGENT_STARTED,
            step_index=index,
            agent=step.agent.value,
            task=step.task,
        )

        if self._execution == "inline":
            task = asyncio.create_task(
                self.run_step(record.id, index), name=f"finagent:{record.id}:{index}"
            )
            self._inflight[record.id] = task
            task.add_done_callback(partial(self._forget_task, record.id))
            return

        dispatch = StepDispatch(
            workflow_id=record.id,
            step_index=index,
            agent=step.agent,
            task=step.task,
            attempt=state.attempt,
        )
        try:
            await self._transport.publish(
                agent_topic(step.agent), Envelope.for_dispatch(dispatch)
            )
        except Exception:
            logger.exception(
                f"Failed to dispatch step {index} ({step.agent.value}) for "
                f"workflow_id={record.id}; workflow stays processing until retried or timed out"
            )

    def _forget_task(self, workflow_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(workflow_id) is task:
            del self._inflight[workflow_id]
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                f"Step task for workflow_id={workflow_id} crashed",
                exc_info=task.exception(),
            )

    def _cancel_inflight(self, workflow_id: str) -> None:
        task = self._inflight.pop(workflow_id, None)
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()

    async def _rollback_creation(self, workflow_id: str) -> None:
        try:
            await self._repository.delete_workflow(workflow_id)
        except Exception:
            logger.exception(
                f"Failed to roll back partially created workflow_id={workflow_id}"
            )

    async def _load(self, workflow_id: str) -> WorkflowRecord:
        record = await self._read(self._repository.get_workflow(workflow_id))
        if record is None:
            raise WorkflowNotFound(workflow_id)
        return record

    @staticmethod
    async def _read(operation: Any) -> Any:
        try:
            return await operation
        except Exception as e:
            raise PersistenceError(f"State store read failed: {e}") from e

    @staticmethod
    async def _write(operation: Any) -> None:
        try:
            await operation
        except Exception as e:
            raise PersistenceError(f"State store write failed: {e}") from e

    async def _emit(
        self, record: WorkflowRecord, event_type: EventType, **fields: Any
    ) -> None:
        event = WorkflowEvent(
            type=event_type,
            workflow_id=record.id,
            user_id=record.user_id,
            stream_key=record.stream_key,
            name=record.name,
            **fields,
        )
        await self._emitter.emit(event)

    @staticmethod
    def _validate_agents(agents: Any) -> List[StepSpec]:
        if agents is None or isinstance(agents, (str, bytes, Mapping)) or not isinstance(
            agents, Sequence
        ):
            raise InvalidWorkflowRequest("agents must be a list of agent identifiers")
        steps: List[StepSpec] = []
        for position, entry in enumerate(agents):
            try:
                steps.append(StepSpec.coerce(entry))
            except ValueError as e:
                raise InvalidWorkflowRequest(
                    f"Invalid agent at position {position}: {e}"
                ) from e
        return steps

    @staticmethod
    def _validate_context(context: Any) -> WorkflowContext:
        if context is None:
            return WorkflowContext()
        if isinstance(context, WorkflowContext):
            return context
        if not isinstance(context, Mapping):
            raise InvalidWorkflowRequest("context must be a mapping")
        try:
            return WorkflowContext.model_validate(dict(context))
        except ValueError as e:
            raise InvalidWorkflowRequest(f"Invalid context: {e}") from e
