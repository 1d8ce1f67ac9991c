"""Agent invokers."""

from __future__ import annotations

from typing import Optional

from ..config import FinagentConfig, load_config
from .base import AgentInvoker, InvocationContext, build_prompt
from .simulated import SimulatedInvoker


def get_invoker(config: Optional[FinagentConfig] = None) -> AgentInvoker:
    """Factory function to get the configured invoker."""

    config = config or load_config()
    backend = config.invoker.backend
    if backend == "simulated":
        return SimulatedInvoker(delay=config.invoker.progress_delay)
    if backend == "pydantic_ai":
        from .llm import PydanticAIInvoker

        return PydanticAIInvoker(config.invoker.model)
    raise ValueError(f"Unsupported invoker backend: {backend}")


__all__ = [
    "AgentInvoker",
    "InvocationContext",
    "SimulatedInvoker",
    "build_prompt",
    "get_invoker",
]
