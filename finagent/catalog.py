"""Named workflow templates and detection of workflows from chat messages."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .contracts import StepSpec
from .personas import AgentPersona

logger = logging.getLogger(__name__)

SECONDS_PER_AGENT = 5


class WorkflowTemplate(BaseModel):
    """A reusable sequence of agent steps with the phrases that trigger it."""

    model_config = ConfigDict(frozen=True)

    key: str
    name: str
    description: str
    triggers: Tuple[str, ...]
    steps: Tuple[StepSpec, ...]

    @property
    def agents(self) -> List[str]:
        return [step.agent.value for step in self.steps]

    @property
    def estimated_seconds(self) -> int:
        return len(self.steps) * SECONDS_PER_AGENT


class TemplateSuggestion(BaseModel):
    id: str
    name: str
    description: str
    sample_prompts: List[str] = Field(serialization_alias="samplePrompts")


def _template(key: str, name: str, description: str, triggers, steps) -> WorkflowTemplate:
    return WorkflowTemplate(
        key=key,
        name=name,
        description=description,
        triggers=tuple(triggers),
        steps=tuple(StepSpec(agent=agent, task=task) for agent, task in steps),
    )


TEMPLATES: Dict[str, WorkflowTemplate] = {
    template.key: template
    for template in (
        _template(
            "portfolioAnalysis",
            "Portfolio Analysis",
            "Comprehensive portfolio review with multiple agent perspectives",
            [
                "analyze my portfolio",
                "review my investments",
                "portfolio performance",
                "how are my investments doing",
                "portfolio health check",
            ],
            [
                (AgentPersona.ANALYST, "Analyze portfolio composition and performance metrics"),
                (AgentPersona.RISK_MANAGER, "Assess portfolio risks and correlations"),
                (AgentPersona.ADVISOR, "Provide recommendations for portfolio optimization"),
            ],
        ),
        _template(
            "marketOpportunity",
            "Market Opportunity Scanner",
            "Identify trading opportunities across markets",
            [
                "find trading opportunities",
                "what should i buy",
                "market opportunities",
                "best stocks to trade",
                "trading ideas",
            ],
            [
                (AgentPersona.ECONOMIST, "Analyze current market conditions and trends"),
                (AgentPersona.ANALYST, "Screen for undervalued or momentum stocks"),
                (AgentPersona.TRADER, "Identify specific entry points and trading setups"),
            ],
        ),
        _template(
            "riskAssessment",
            "Risk Assessment",
            "Comprehensive risk analysis and mitigation strategies",
            [
                "assess my risk",
                "portfolio risk",
                "am i too exposed",
                "hedge my portfolio",
                "protect my investments",
            ],
            [
                (AgentPersona.RISK_MANAGER, "Calculate portfolio risk metrics and stress tests"),
                (AgentPersona.ECONOMIST, "Identify macro risks and market conditions"),
                (AgentPersona.ADVISOR, "Recommend hedging strategies and adjustments"),
            ],
        ),
        _template(
            "investmentResearch",
            "Investment Research",
            "Deep dive research on specific investments",
            [
                "research",
                "tell me about",
                "should i invest in",
                "analyze this stock",
                "deep dive",
            ],
            [
                (AgentPersona.ANALYST, "Perform fundamental analysis and valuation"),
                (AgentPersona.ECONOMIST, "Analyze sector and macro factors"),
                (AgentPersona.TRADER, "Assess technical setup and timing"),
            ],
        ),
        _template(
            "marketDebate",
            "Market Debate",
            "Multi-perspective debate on market direction",
            [
                "market debate",
                "bull vs bear",
                "market outlook",
                "where is the market heading",
                "recession coming",
            ],
            [
                (AgentPersona.ECONOMIST, "Present macro economic view"),
                (AgentPersona.TRADER, "Share technical and sentiment analysis"),
                (AgentPersona.ANALYST, "Provide fundamental market valuation"),
                (AgentPersona.RISK_MANAGER, "Assess systemic risks and tail events"),
            ],
        ),
    )
}

DEFAULT_TEMPLATE = "portfolioAnalysis"
GENERIC_TRIGGERS = ("workflow", "multi-agent")


def detect(message: str) -> Optional[WorkflowTemplate]:
    """Pick the template whose trigger phrase appears in ``message``.

    Templates are checked in catalog order. Messages that only ask for "a
    workflow" in general get the portfolio analysis.
    """
    lowered = message.lower()
    for template in TEMPLATES.values():
        for trigger in template.triggers:
            if trigger in lowered:
                logger.debug(f"Message matched trigger {trigger!r} of {template.key}")
                return template
    if any(trigger in lowered for trigger in GENERIC_TRIGGERS):
        return TEMPLATES[DEFAULT_TEMPLATE]
    return None


def get_template(key: str) -> WorkflowTemplate:
    try:
        return TEMPLATES[key]
    except KeyError:
        raise KeyError(f"Unknown workflow template: {key}") from None


def suggestions(samples: int = 2) -> List[TemplateSuggestion]:
    """Summaries of every template, offered when no workflow was detected."""
    return [
        TemplateSuggestion(
            id=template.key,
            name=template.name,
            description=template.description,
            sample_prompts=list(template.triggers[:samples]),
        )
        for template in TEMPLATES.values()
    ]
