"""Unit tests for counsel.services.argument_service."""

import asyncio

import pytest

from counsel.core.errors import UpstreamError
from counsel.models.schemas import RiskTolerance, StrategyRequest
from counsel.services.argument_service import ArgumentStrategyService
from counsel.services.llm import LLMResponseError


@pytest.fixture
def strategy_request(sample_strategy_payload) -> StrategyRequest:
    return StrategyRequest(**sample_strategy_payload)


def generate(service, request):
    return asyncio.run(service.generate(request))


class TestHeuristicStrategy:
    """Rule-based output when no LLM is configured."""

    def test_all_pillars_present(self, offline_llm, strategy_request):
        response = generate(ArgumentStrategyService(offline_llm), strategy_request)
        assert response.generated_by == "heuristic"
        assert response.legal and response.moral and response.logic
        assert "CA" in response.legal[0]

    def test_opponent_weaknesses_in_logic(self, offline_llm, strategy_request):
        response = generate(ArgumentStrategyService(offline_llm), strategy_request)
        assert any(point.startswith("Opponent statement 2:") for point in response.logic)

    def test_emotional_opponent_triggers_moral_advice(self, offline_llm, strategy_request):
        response = generate(ArgumentStrategyService(offline_llm), strategy_request)
        assert any("calmly" in point for point in response.moral)

    @pytest.mark.parametrize(
        "risk,phrase",
        [
            (RiskTolerance.LOW, "conservative"),
            (RiskTolerance.MEDIUM, "balanced"),
            (RiskTolerance.HIGH, "assertive"),
        ],
    )
    def test_risk_tolerance_shapes_analysis(self, offline_llm, strategy_request, risk, phrase):
        request = strategy_request.model_copy(update={"risk_tolerance": risk})
        response = generate(ArgumentStrategyService(offline_llm), request)
        assert phrase in response.analysis
        assert response.risk_tolerance == risk

    def test_deterministic(self, offline_llm, strategy_request):
        service = ArgumentStrategyService(offline_llm)
        assert generate(service, strategy_request) == generate(service, strategy_request)

    def test_cites_knowledge(self, offline_llm, knowledge_base, strategy_request):
        asyncio.run(knowledge_base.add_file("lease.txt", b"Landlord must repair the heater after notice."))
        response = generate(ArgumentStrategyService(offline_llm, knowledge_base), strategy_request)
        assert response.sources[0].source == "lease.txt"
        assert any(point.startswith("Rely on lease.txt") for point in response.legal)


class TestLLMStrategy:
    """Structured LLM output and fallbacks."""

    def test_uses_llm_points(self, fake_llm_factory, strategy_request):
        llm = fake_llm_factory(
            {
                "legal": ["Cite the implied warranty of habitability."],
                "moral": "The tenant acted in good faith.",
                "logic": ["Notice was given twice.", ""],
                "analysis": "Strong position.",
            }
        )
        response = generate(ArgumentStrategyService(llm), strategy_request)
        assert response.generated_by == "llm"
        assert response.legal == ["Cite the implied warranty of habitability."]
        assert response.moral == ["The tenant acted in good faith."]
        assert response.logic == ["Notice was given twice."]
        assert response.analysis == "Strong position."

    def test_prompt_includes_persona_and_statements(self, fake_llm_factory, strategy_request):
        llm = fake_llm_factory({"legal": ["a"], "moral": ["b"], "logic": ["c"], "analysis": "d"})
        generate(ArgumentStrategyService(llm), strategy_request)
        call = llm.calls[0]
        assert "Argument Strategy Coach" in call["system"]
        assert "Task: Strategy" in call["system"]
        assert "The tenant never gave notice of the defect." in call["user"]
        assert "Risk tolerance: medium" in call["user"]

    def test_missing_pillar_filled_from_heuristic(self, fake_llm_factory, strategy_request):
        llm = fake_llm_factory({"legal": ["Only legal."]})
        response = generate(ArgumentStrategyService(llm), strategy_request)
        assert response.legal == ["Only legal."]
        assert response.moral
        assert response.logic
        assert response.analysis

    def test_llm_failure_falls_back(self, fake_llm_factory, strategy_request):
        llm = fake_llm_factory(error=LLMResponseError("bad json"))
        response = generate(ArgumentStrategyService(llm), strategy_request)
        assert response.generated_by == "heuristic"

    def test_llm_failure_without_fallback(self, fake_llm_factory, strategy_request):
        llm = fake_llm_factory(error=LLMResponseError("bad json"))
        with pytest.raises(UpstreamError):
            generate(ArgumentStrategyService(llm, fallback=False), strategy_request)
