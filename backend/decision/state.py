"""LangGraph state definition for the decision analysis pipeline.

AnalysisState is a TypedDict consumed by every graph node.  Nodes hold
the persisted records returned by the store, so each node sees what the
previous stage actually committed.
"""

from __future__ import annotations

from typing import Optional, TypedDict

from decision.schemas import (
    Decision,
    Option,
    Recommendation,
    RecommendationDraft,
    StressTestResult,
    Understanding,
)


class AnalysisState(TypedDict, total=False):
    """Shared state passed through every node of the analysis graph.

    ``total=False`` makes all fields optional so nodes only need to
    write the keys they care about.  A run started with ``decision`` and
    ``options`` already set skips extraction (re-analysis).
    """

    # User input
    user_id: str
    raw_input: str

    # Extractor output
    understanding: Understanding

    # Persisted records
    decision: Decision
    options: list[Option]

    # Stress tester output
    stress_results: list[StressTestResult]

    # Recommender output
    recommendation_draft: RecommendationDraft
    recommendation: Optional[Recommendation]

    # Phase tracking
    phase: str
