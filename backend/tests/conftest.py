import os
import sys
from pathlib import Path


# Ensure backend modules (e.g. decision/) are importable even when running pytest from repo root.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

# Avoid requiring real credentials / services during import-time initialization.
os.environ.setdefault("OPENAI_API_KEY", "test-openai-key")
os.environ.setdefault("USE_IN_MEMORY_STORE", "1")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-that-is-at-least-32-characters")

import pytest  # noqa: E402

from decision.errors import (  # noqa: E402
    ExtractionFailure,
    FollowupFailure,
    RecommendationFailure,
    StressTestFailure,
)
from decision.persistence import InMemoryDecisionStore  # noqa: E402
from decision.schemas import (  # noqa: E402
    RecommendationDraft,
    StressTestResult,
    Understanding,
)


PRICING_TEXT = (
    "I'm deciding whether to raise prices 20% or offer a loyalty discount "
    "to reduce churn over the next 2 quarters. Budget is tight."
)

PRICING_UNDERSTANDING = {
    "title": "Raise prices or offer loyalty discount",
    "goal": "Reduce churn while growing revenue",
    "primary_metric": "MRR",
    "time_horizon": "2 quarters",
    "constraints": ["Tight budget"],
    "risk_tolerance": "balanced",
    "options": [
        {"name": "Raise prices 20%", "description": "Across-the-board increase"},
        {"name": "Loyalty discount", "description": "Discount for annual renewals"},
    ],
}

# Per-position scores: the first option is the robust one
FAKE_SCORES = [
    {
        "fragility_score": "robust",
        "success_probability": 70,
        "constraint_violation_risk": 20,
        "assumption_sensitivity": 30,
    },
    {
        "fragility_score": "fragile",
        "success_probability": 65,
        "constraint_violation_risk": 50,
        "assumption_sensitivity": 60,
    },
]


class FakeAnalyzer:
    """Deterministic stand-in for the reasoning service.

    Set ``fail_stage`` to one of ``extract``, ``stress_test``, ``recommend``
    or ``respond`` to make that stage raise its failure.
    """

    def __init__(self):
        self.understanding = dict(PRICING_UNDERSTANDING)
        self.recommended_name = None
        self.fail_stage = None
        self.calls = []

    async def extract(self, raw_text):
        self.calls.append("extract")
        if self.fail_stage == "extract":
            raise ExtractionFailure()
        return Understanding.model_validate(self.understanding)

    async def stress_test(self, decision, options):
        self.calls.append("stress_test")
        if self.fail_stage == "stress_test":
            raise StressTestFailure()
        return [
            StressTestResult(
                name=option.name,
                upside=f"{option.name} pays off.",
                downside=f"{option.name} backfires.",
                key_assumptions=["Demand holds", "Costs stay flat"],
                **FAKE_SCORES[index % len(FAKE_SCORES)],
            )
            for index, option in enumerate(options)
        ]

    async def recommend(self, decision, options):
        self.calls.append("recommend")
        if self.fail_stage == "recommend":
            raise RecommendationFailure()
        name = self.recommended_name if self.recommended_name is not None else options[0].name
        return RecommendationDraft(
            recommended_option_name=name,
            reasoning=f"{name} stays viable across most scenarios.",
            why_not_alternatives="The alternatives depend on fragile assumptions.",
        )

    async def respond(self, decision, options, history, question):
        self.calls.append("respond")
        if self.fail_stage == "respond":
            raise FollowupFailure()
        return f"Answer #{len(history) // 2 + 1}: {question}"


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def store():
    return InMemoryDecisionStore()


@pytest.fixture
def pricing_text():
    return PRICING_TEXT
