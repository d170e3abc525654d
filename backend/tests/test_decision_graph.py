"""Tests for the decision analysis graph assembly."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from decision.graph import _route_entry, build_analysis_graph
from decision.schemas import DecisionStatus


EXTRACTION = {
    "title": "Hire a senior engineer or two juniors",
    "goal": "Ship the platform rewrite",
    "primary_metric": "Delivery date",
    "time_horizon": "6 months",
    "constraints": ["Budget of $200k"],
    "risk_tolerance": "aggressive",
    "options": [
        {"name": "Senior engineer", "description": "One experienced hire"},
        {"name": "Two juniors", "description": "Two less experienced hires"},
    ],
}

STRESS = {
    "options": [
        {
            "name": "Senior engineer",
            "upside": "Fast delivery.",
            "downside": "Single point of failure.",
            "key_assumptions": ["Hire stays a year", "Salary band holds"],
            "fragility_score": "balanced",
            "success_probability": 72,
            "constraint_violation_risk": 30,
            "assumption_sensitivity": 35,
        },
        {
            "name": "Two juniors",
            "upside": "More capacity.",
            "downside": "Slow ramp-up.",
            "key_assumptions": ["Mentoring time exists", "Juniors ramp in a quarter"],
            "fragility_score": "fragile",
            "success_probability": 55,
            "constraint_violation_risk": 45,
            "assumption_sensitivity": 70,
        },
    ]
}

RECOMMENDATION = {
    "recommended_option_name": "Senior engineer",
    "reasoning": "Holds up even if the timeline slips.",
    "why_not_alternatives": "Juniors depend on mentoring capacity.",
    "execution_plan": "Open the role this week.",
}


def _make_mock_llm(response_data: dict[str, Any]) -> MagicMock:
    """Return a mock LLM whose ainvoke returns the given response data."""
    mock_response = MagicMock()
    mock_response.content = json.dumps(response_data)

    mock_llm = MagicMock()
    mock_llm.ainvoke = AsyncMock(return_value=mock_response)
    return mock_llm


# ---------------------------------------------------------------------------
# Graph compilation tests
# ---------------------------------------------------------------------------


class TestBuildAnalysisGraph:
    """Verify that build_analysis_graph() produces a valid compiled graph."""

    def test_graph_compiles(self):
        graph = build_analysis_graph()
        assert graph is not None

    def test_graph_has_expected_nodes(self):
        graph = build_analysis_graph()
        node_names = set(graph.nodes.keys())
        expected = {
            "extract",
            "persist_understanding",
            "stress_test",
            "persist_stress_tests",
            "recommend",
            "persist_recommendation",
        }
        assert expected.issubset(node_names), (
            f"Missing nodes: {expected - node_names}"
        )


# ---------------------------------------------------------------------------
# Routing function tests
# ---------------------------------------------------------------------------


class TestRouteEntry:
    def test_new_analysis_starts_with_extract(self):
        assert _route_entry({"raw_input": "text", "user_id": "u"}) == "extract"

    def test_reanalysis_starts_with_stress_test(self):
        assert _route_entry({"decision": object(), "options": []}) == "stress_test"


# ---------------------------------------------------------------------------
# End-to-end run with mocked reasoning calls
# ---------------------------------------------------------------------------


class TestAnalysisRun:
    @pytest.mark.asyncio
    @patch("decision.nodes.recommender._get_recommender_llm")
    @patch("decision.nodes.stress_tester._get_stress_tester_llm")
    @patch("decision.nodes.extractor._get_extractor_llm")
    async def test_full_run_persists_every_stage(
        self,
        mock_extractor: MagicMock,
        mock_stress: MagicMock,
        mock_recommender: MagicMock,
        store,
    ):
        mock_extractor.return_value = _make_mock_llm(EXTRACTION)
        mock_stress.return_value = _make_mock_llm(STRESS)
        mock_recommender.return_value = _make_mock_llm(RECOMMENDATION)

        graph = build_analysis_graph()
        result = await graph.ainvoke(
            {"user_id": "u1", "raw_input": "Hiring decision " * 5},
            config={"configurable": {"store": store}},
        )

        decision = result["decision"]
        assert result["phase"] == "ready"
        assert decision.status == DecisionStatus.READY
        assert decision.risk_tolerance.value == "aggressive"

        options = await store.list_options(decision.id)
        assert [o.fragility_score.value for o in options] == ["balanced", "fragile"]
        recommendation = await store.get_recommendation(decision.id)
        assert recommendation.recommended_option_id == options[0].id
        assert recommendation.execution_plan == "Open the role this week."

    @pytest.mark.asyncio
    async def test_missing_store_raises(self, analyzer):
        graph = build_analysis_graph()
        with pytest.raises(RuntimeError, match="store"):
            await graph.ainvoke(
                {"user_id": "u1", "raw_input": "x" * 60},
                config={"configurable": {"analyzer": analyzer}},
            )

    @pytest.mark.asyncio
    async def test_reanalysis_skips_extraction(self, store, analyzer):
        graph = build_analysis_graph()
        config = {"configurable": {"store": store, "analyzer": analyzer}}
        first = await graph.ainvoke({"user_id": "u1", "raw_input": "x" * 60}, config=config)
        analyzer.calls.clear()

        second = await graph.ainvoke(
            {"user_id": "u1", "decision": first["decision"], "options": first["options"]},
            config=config,
        )

        assert analyzer.calls == ["stress_test", "recommend"]
        assert second["decision"].id == first["decision"].id
        assert len(store.decisions) == 1


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
