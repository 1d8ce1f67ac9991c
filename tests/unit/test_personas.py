"""Persona lookup tests."""

import pytest

from finagent.personas import PERSONA_PROFILES, AgentPersona


@pytest.mark.parametrize(
    "raw", ["riskManager", "risk-manager", "risk_manager", "RiskManager", " RISKMANAGER "]
)
def test_parse_accepts_common_spellings(raw):
    assert AgentPersona.parse(raw) is AgentPersona.RISK_MANAGER


def test_parse_rejects_unknown_persona():
    with pytest.raises(ValueError, match="Unknown agent persona"):
        AgentPersona.parse("astrologer")


def test_every_persona_has_a_profile():
    assert set(PERSONA_PROFILES) == set(AgentPersona)
    assert AgentPersona.ANALYST.profile.report_heading == "ANALYST Analysis"
    assert AgentPersona.RISK_MANAGER.profile.report_heading == "RISK MANAGER Analysis"
    assert AgentPersona.GENERAL.profile.default_task == "Process request"
