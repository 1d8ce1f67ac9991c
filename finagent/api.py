"""HTTP surface for triggering, monitoring and streaming workflows."""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from . import catalog
from .errors import (
    FinagentError,
    InvalidWorkflowRequest,
    PersistenceError,
    StepOrderError,
    WorkflowNotFound,
)
from .projector import ResultView, StatusView
from .relay import channel_for
from .runtime import FinagentRuntime
from .sse import channel_event_stream

logger = logging.getLogger(__name__)


class _Request(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StartWorkflowRequest(_Request):
    workflow_id: Optional[str] = None
    user_id: Optional[str] = None
    message: str = ""
    agents: List[Any]
    context: Optional[Dict[str, Any]] = None
    name: Optional[str] = None
    stream_key: Optional[str] = None


class TriggerRequest(_Request):
    message: str
    user_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None
    stream_key: Optional[str] = None


class FailRequest(_Request):
    reason: Optional[str] = None


def get_runtime(request: Request) -> FinagentRuntime:
    return request.app.state.runtime


router = APIRouter(prefix="/api")


@router.get("/health")
async def health(runtime: FinagentRuntime = Depends(get_runtime)) -> Dict[str, Any]:
    return {
        "status": "ok",
        "execution": runtime.orchestrator.execution,
        "relayRunning": runtime.running,
        "streamClients": runtime.registry.subscriber_count(),
    }


@router.post("/workflows", status_code=202)
async def start_workflow(
    body: StartWorkflowRequest, runtime: FinagentRuntime = Depends(get_runtime)
) -> Dict[str, Any]:
    """Start a workflow over an explicit agent sequence."""
    workflow_id = body.workflow_id or f"workflow-{uuid.uuid4().hex}"
    record = await runtime.orchestrator.start_workflow(
        workflow_id,
        body.agents,
        body.context,
        user_id=body.user_id,
        message=body.message,
        name=body.name,
        stream_key=body.stream_key,
    )
    return {
        "workflowId": record.id,
        "status": record.status.value,
        "streamKey": record.stream_key or channel_for(record.id),
    }


@router.post("/workflow/trigger")
async def trigger_workflow(
    body: TriggerRequest, runtime: FinagentRuntime = Depends(get_runtime)
) -> Dict[str, Any]:
    """Start the catalog workflow matching the message, or suggest templates."""
    template = catalog.detect(body.message)
    if template is None:
        return {
            "triggered": False,
            "message": "No workflow detected. Processing as regular chat.",
            "suggestions": [
                s.model_dump(by_alias=True) for s in catalog.suggestions()
            ],
        }

    workflow_id = f"{template.key}-{uuid.uuid4().hex[:12]}"
    logger.info(f"Message triggered {template.key} as workflow_id={workflow_id}")
    record = await runtime.orchestrator.start_workflow(
        workflow_id,
        list(template.steps),
        body.context,
        user_id=body.user_id,
        message=body.message,
        name=template.name,
        stream_key=body.stream_key,
    )
    return {
        "triggered": True,
        "workflowId": record.id,
        "streamKey": record.stream_key or channel_for(record.id),
        "workflow": {
            "id": template.key,
            "name": template.name,
            "description": template.description,
            "agents": template.agents,
            "estimatedTime": template.estimated_seconds,
        },
    }


@router.get(
    "/workflow/{workflow_id}/status",
    response_model=StatusView,
    response_model_by_alias=True,
)
async def workflow_status(
    workflow_id: str, runtime: FinagentRuntime = Depends(get_runtime)
) -> Any:
    view = await runtime.projector.get_status(workflow_id)
    if view is None:
        return _not_found(workflow_id)
    return view


@router.get(
    "/workflow/{workflow_id}/result",
    response_model=ResultView,
    response_model_by_alias=True,
)
async def workflow_result(
    workflow_id: str, runtime: FinagentRuntime = Depends(get_runtime)
) -> Any:
    view = await runtime.projector.get_result(workflow_id)
    if view is None:
        return _not_found(workflow_id)
    return view


@router.post("/workflow/{workflow_id}/cancel")
async def cancel_workflow(
    workflow_id: str, runtime: FinagentRuntime = Depends(get_runtime)
) -> Dict[str, Any]:
    record = await runtime.orchestrator.cancel_workflow(workflow_id)
    return {"workflowId": record.id, "status": record.status.value}


@router.post("/workflow/{workflow_id}/retry")
async def retry_workflow_step(
    workflow_id: str, runtime: FinagentRuntime = Depends(get_runtime)
) -> Dict[str, Any]:
    record = await runtime.orchestrator.retry_step(workflow_id)
    return {
        "workflowId": record.id,
        "status": record.status.value,
        "currentStep": record.current_step,
    }


@router.post("/workflow/{workflow_id}/fail")
async def fail_workflow(
    workflow_id: str,
    body: Optional[FailRequest] = None,
    runtime: FinagentRuntime = Depends(get_runtime),
) -> Dict[str, Any]:
    reason = body.reason if body is not None else None
    record = await runtime.orchestrator.fail_workflow(workflow_id, reason)
    return {"workflowId": record.id, "status": record.status.value, "error": record.error}


@router.get("/workflow/{workflow_id}/stream")
async def stream_workflow(
    workflow_id: str,
    request: Request,
    stream_key: Optional[str] = Query(default=None, alias="streamKey"),
    runtime: FinagentRuntime = Depends(get_runtime),
) -> StreamingResponse:
    """Live events of one workflow as Server-Sent Events."""
    return _event_stream(runtime, request, stream_key or channel_for(workflow_id))


@router.get("/workflows/stream")
async def stream_all_workflows(
    request: Request, runtime: FinagentRuntime = Depends(get_runtime)
) -> StreamingResponse:
    """Live events of every workflow, for monitoring dashboards."""
    return _event_stream(runtime, request, runtime.relay.monitoring_channel)


def _event_stream(
    runtime: FinagentRuntime, request: Request, channel: str
) -> StreamingResponse:
    relay_config = runtime.config.relay
    return StreamingResponse(
        channel_event_stream(
            runtime.registry,
            channel,
            queue_size=relay_config.queue_size,
            heartbeat=relay_config.heartbeat_interval,
            is_disconnected=request.is_disconnected,
        ),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _not_found(workflow_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={"error": "Workflow not found", "workflowId": workflow_id},
    )


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def register_exception_handlers(app: FastAPI) -> None:
    """Map finagent errors onto HTTP status codes."""

    @app.exception_handler(WorkflowNotFound)
    async def _workflow_not_found(request: Request, exc: WorkflowNotFound):
        return _not_found(exc.workflow_id)

    @app.exception_handler(InvalidWorkflowRequest)
    async def _invalid_request(request: Request, exc: InvalidWorkflowRequest):
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        return _error(400, "Invalid request", details=jsonable_encoder(exc.errors()))

    @app.exception_handler(StepOrderError)
    async def _step_order(request: Request, exc: StepOrderError):
        return _error(409, str(exc), workflowId=exc.workflow_id, stepIndex=exc.step_index)

    @app.exception_handler(PersistenceError)
    async def _persistence(request: Request, exc: PersistenceError):
        logger.error(f"State store failure on {request.url.path}: {exc}")
        return _error(500, "Workflow state store unavailable")

    @app.exception_handler(FinagentError)
    async def _finagent_error(request: Request, exc: FinagentError):
        logger.exception(f"Unhandled finagent error on {request.url.path}")
        return _error(500, str(exc))


def create_app(runtime: Optional[FinagentRuntime] = None) -> FastAPI:
    """Build the FastAPI application around ``runtime``.

    The runtime is started and stopped with the application lifespan.
    """
    from . import __version__

    runtime = runtime or FinagentRuntime()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await runtime.start()
        try:
            yield
        finally:
            await runtime.stop()

    app = FastAPI(title="finagent", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime
    app.include_router(router)
    register_exception_handlers(app)
    return app
