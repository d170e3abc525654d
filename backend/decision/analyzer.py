"""Reasoning-service interface used by the decision pipeline.

One method per stage need.  ``DecisionAnalyzer`` delegates to the stage
modules in ``decision.nodes``; tests substitute their own implementation.
"""

from __future__ import annotations

from typing import Protocol, Sequence

from decision.nodes.extractor import extract_understanding
from decision.nodes.followup import answer_followup
from decision.nodes.recommender import generate_recommendation
from decision.nodes.stress_tester import run_stress_tests
from decision.schemas import (
    Decision,
    Followup,
    Option,
    RecommendationDraft,
    StressTestResult,
    Understanding,
)


class ReasoningAnalyzer(Protocol):
    """Stage capabilities the state machine depends on."""

    async def extract(self, raw_text: str) -> Understanding:
        """Raises ``ExtractionFailure``."""
        ...

    async def stress_test(
        self, decision: Decision, options: Sequence[Option]
    ) -> list[StressTestResult]:
        """Return one result per option, in input order.

        Raises ``StressTestFailure``.
        """
        ...

    async def recommend(
        self, decision: Decision, options: Sequence[Option]
    ) -> RecommendationDraft:
        """Raises ``RecommendationFailure``."""
        ...

    async def respond(
        self,
        decision: Decision,
        options: Sequence[Option],
        history: Sequence[Followup],
        question: str,
    ) -> str:
        """Raises ``FollowupFailure``."""
        ...


class DecisionAnalyzer:
    """Default analyzer backed by the reasoning service."""

    async def extract(self, raw_text: str) -> Understanding:
        return await extract_understanding(raw_text)

    async def stress_test(
        self, decision: Decision, options: Sequence[Option]
    ) -> list[StressTestResult]:
        return await run_stress_tests(decision, options)

    async def recommend(
        self, decision: Decision, options: Sequence[Option]
    ) -> RecommendationDraft:
        return await generate_recommendation(decision, options)

    async def respond(
        self,
        decision: Decision,
        options: Sequence[Option],
        history: Sequence[Followup],
        question: str,
    ) -> str:
        return await answer_followup(decision, options, history, question)
