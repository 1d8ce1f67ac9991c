"""Command line interface for running and operating finagent workflows."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

import typer

from . import catalog
from .config import FinagentConfig, load_config
from .errors import FinagentError
from .personas import AgentPersona
from .runtime import FinagentRuntime
from .worker import AgentWorker

T = TypeVar("T")

app = typer.Typer(help="CLI for finagent workflows")

# Command groups
agent_app = typer.Typer(help="Commands for running agent workers")
workflow_app = typer.Typer(help="Commands for managing workflows")

app.add_typer(agent_app, name="agent")
app.add_typer(workflow_app, name="workflow")

_state = {"config_path": None}


@app.callback()
def main(
    config: Optional[str] = typer.Option(
        None, "--config", "-c", help="Path to a YAML config file"
    ),
) -> None:
    """Finagent CLI entry point."""
    _state["config_path"] = config


def _load() -> FinagentConfig:
    config = load_config(_state["config_path"])
    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return config


def _run(operation: Callable[[FinagentRuntime], Awaitable[T]]) -> T:
    """Run ``operation`` against a runtime that is closed afterwards."""

    async def _main() -> T:
        runtime = FinagentRuntime(_load())
        try:
            return await operation(runtime)
        finally:
            await runtime.stop()

    try:
        return asyncio.run(_main())
    except FinagentError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)


@app.command("serve")
def serve(
    host: str = "127.0.0.1",
    port: int = 8000,
) -> None:
    """
    Serve the HTTP API and live workflow streams.

    Example:
        finagent serve --port 8080
        finagent --config prod.yaml serve --host 0.0.0.0
    """
    import uvicorn

    from .api import create_app

    config = _load()
    typer.echo(
        f"Serving finagent on {host}:{port} ({config.orchestrator.execution} execution)"
    )
    uvicorn.run(
        create_app(FinagentRuntime(config)),
        host=host,
        port=port,
        log_level=config.log_level.lower(),
    )


@agent_app.command("execute")
def agent_execute(
    agent_name: str,
    lifespan: Optional[float] = None,
) -> None:
    """
    Run a worker process for the specified agent persona.

    The worker listens on the persona's topic for dispatched steps, invokes
    the agent and advances the workflow. Only needed with
    ``orchestrator.execution: worker``.

    Args:
        agent_name: Persona to serve (analyst, trader, advisor, riskManager, economist, general)
        lifespan: Worker timeout in seconds (default: run indefinitely)

    Example:
        finagent agent execute analyst
        finagent agent execute risk-manager --lifespan 300
    """
    try:
        persona = AgentPersona.parse(agent_name)
    except ValueError as e:
        typer.secho(str(e), fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _work(runtime: FinagentRuntime) -> int:
        worker = AgentWorker(runtime.transport, runtime.orchestrator, persona)
        await worker.start(lifespan=lifespan)
        return worker.handled

    typer.echo(f"Starting agent: {persona.value}")
    handled = _run(_work)
    typer.echo(f"Agent {persona.value} handled {handled} steps")


@agent_app.command("list")
def agent_list() -> None:
    """List the available agent personas."""
    for persona in AgentPersona:
        profile = persona.profile
        typer.echo(f"{persona.value}\t{profile.display_name}\t{profile.default_task}")


@workflow_app.command("templates")
def workflow_templates() -> None:
    """List the workflow templates used by message detection."""
    for template in catalog.TEMPLATES.values():
        typer.echo(f"{template.key} - {template.name}: {template.description}")
        typer.echo(f"  Agents: {', '.join(template.agents)}")


@workflow_app.command("list")
def workflow_list() -> None:
    """
    List all workflows with their current status.

    Example:
        finagent workflow list
        # Output: portfolioAnalysis-1f2e3d    processing    1/3
        #         workflow-9a8b7c             completed     2/2
    """

    async def _list(runtime: FinagentRuntime) -> list:
        return await runtime.repository.list_workflows()

    workflows = _run(_list)
    if not workflows:
        typer.echo("No workflows found")
        return
    for wf in workflows:
        typer.echo(f"{wf.id}\t{wf.status.value}\t{len(wf.results)}/{wf.total_steps}")


@workflow_app.command("show")
def workflow_show(workflow_id: str) -> None:
    """
    Show status and per-step progress of a workflow.

    Example:
        finagent workflow show portfolioAnalysis-1f2e3d
        # Output: Workflow portfolioAnalysis-1f2e3d: processing (33%)
        #         - 0 analyst: completed (2024-01-01 10:00 -> 10:01)
        #         - 1 riskManager: processing
        #         - 2 advisor: pending
    """

    async def _show(runtime: FinagentRuntime):
        return await runtime.projector.get_status(workflow_id)

    view = _run(_show)
    if view is None:
        typer.echo("Workflow not found")
        raise typer.Exit(code=1)
    typer.echo(
        f"Workflow {view.workflow_id}: {view.status.value} ({view.progress.percentage}%)"
    )
    if view.error:
        typer.echo(f"Error: {view.error}")
    for step in view.steps:
        typer.echo(
            f"- {step.index} {step.agent}: {step.status.value}"
            + (
                f" ({step.started_at} -> {step.completed_at})"
                if step.started_at or step.completed_at
                else ""
            )
        )


@workflow_app.command("start")
def workflow_start(
    agents: List[str] = typer.Argument(..., help="Agent personas, in execution order"),
    message: str = typer.Option("", "--message", "-m"),
    context: Optional[str] = typer.Option(None, help="JSON object with symbols, timeframe, riskTolerance"),
    user_id: Optional[str] = None,
    workflow_id: Optional[str] = None,
    wait: bool = typer.Option(True, help="Wait for inline execution to finish"),
) -> None:
    """
    Start a workflow over the given agents.

    Example:
        finagent workflow start analyst riskManager advisor -m "Review my portfolio"
        finagent workflow start trader --context '{"symbols": ["AAPL"]}'
    """
    try:
        parsed_context: Any = json.loads(context) if context else None
    except json.JSONDecodeError as e:
        typer.secho(f"Invalid --context JSON: {e}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    async def _start(runtime: FinagentRuntime):
        record = await runtime.orchestrator.start_workflow(
            workflow_id or f"workflow-{uuid.uuid4().hex}",
            agents,
            parsed_context,
            user_id=user_id,
            message=message,
        )
        if wait and runtime.orchestrator.execution == "inline":
            await runtime.orchestrator.drain()
        return await runtime.projector.get_status(record.id)

    view = _run(_start)
    typer.echo(f"Workflow started: {view.workflow_id}")
    typer.echo(f"Status: {view.status.value} ({view.progress.completed}/{view.progress.total})")


@workflow_app.command("cancel")
def workflow_cancel(workflow_id: str) -> None:
    """Cancel a workflow; results of finished steps are kept."""

    async def _cancel(runtime: FinagentRuntime):
        return await runtime.orchestrator.cancel_workflow(workflow_id)

    record = _run(_cancel)
    typer.echo(f"Workflow {record.id}: {record.status.value}")


@workflow_app.command("retry")
def workflow_retry(workflow_id: str) -> None:
    """Dispatch the in-flight step of a stuck workflow again."""

    async def _retry(runtime: FinagentRuntime):
        record = await runtime.orchestrator.retry_step(workflow_id)
        if runtime.orchestrator.execution == "inline":
            await runtime.orchestrator.drain()
        return record

    record = _run(_retry)
    typer.echo(f"Retried step {record.current_step} of workflow {record.id}")


@workflow_app.command("fail")
def workflow_fail(
    workflow_id: str,
    reason: Optional[str] = typer.Option(None, help="Error message stored on the workflow"),
) -> None:
    """Mark a stuck workflow as failed."""

    async def _fail(runtime: FinagentRuntime):
        return await runtime.orchestrator.fail_workflow(workflow_id, reason)

    record = _run(_fail)
    typer.echo(f"Workflow {record.id}: {record.status.value} ({record.error})")


@workflow_app.command("sweep")
def workflow_sweep() -> None:
    """Fail every workflow whose in-flight step outlived the step deadline."""

    async def _sweep(runtime: FinagentRuntime) -> List[str]:
        return await runtime.orchestrator.fail_stalled_workflows()

    expired = _run(_sweep)
    if not expired:
        typer.echo("No stalled workflows")
        return
    for workflow_id in expired:
        typer.echo(f"Failed stalled workflow {workflow_id}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
