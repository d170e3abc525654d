"""Recommender for the decision pipeline.

Synthesises the per-option stress tests into exactly one recommendation.
The evaluator is told to prefer robustness over raw upside: the option
that stays viable across most scenarios wins, and when success
probabilities are close the option with lower constraint-violation risk
and assumption sensitivity is preferred.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional, Sequence

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from decision.errors import RecommendationFailure
from decision.llm import get_chat_model, parse_json_content, preview
from decision.schemas import Decision, Option, RecommendationDraft

logger = logging.getLogger(__name__)

# Success probabilities within this many points count as "close".
ROBUSTNESS_TIE_BAND = 10.0

RECOMMENDER_SYSTEM_PROMPT = """\
You are a decision advisor prioritizing robustness over upside.  Recommend
the single most robust option based on the stress test results.

Focus on which option stays viable across most scenarios, not just the
best case.  An option with a high best-case payoff but narrow viability
is worse than one that holds up when assumptions are wrong.

Tie-break rule: when success probabilities are close (within 10 points),
prefer the option with the best combination of LOW
constraint_violation_risk and LOW assumption_sensitivity.

Rules:
1. "recommended_option_name" MUST be copied exactly from one of the
   option names provided.
2. "reasoning" is a 2-3 sentence explanation of why this option is the
   most robust across scenarios, not merely the highest expected value.
3. "why_not_alternatives" briefly compares it against every other option.
4. "execution_plan" is optional: a few concrete first steps.

Output ONLY valid JSON matching this schema:
{
  "recommended_option_name": "<exact option name>",
  "reasoning": "<why this is most robust>",
  "why_not_alternatives": "<why not the other options>",
  "execution_plan": "<optional first steps>"
}
"""


def _get_recommender_llm() -> ChatOpenAI:
    """Return the LLM instance used by the recommender."""
    return get_chat_model(temperature=0.3)


def _exposure(option: Option) -> float:
    return (option.constraint_violation_risk or 0.0) + (option.assumption_sensitivity or 0.0)


def rank_by_robustness(
    options: Sequence[Option], tie_band: float = ROBUSTNESS_TIE_BAND
) -> list[Option]:
    """Order options from most to least robust.

    Repeatedly takes the options whose success probability is within
    *tie_band* of the best remaining one and picks the least exposed
    (constraint-violation risk + assumption sensitivity).  Options that
    were never stress-tested go last, in position order.
    """
    remaining = sorted(
        (opt for opt in options if opt.is_stress_tested),
        key=lambda opt: opt.position,
    )
    untested = sorted(
        (opt for opt in options if not opt.is_stress_tested),
        key=lambda opt: opt.position,
    )

    ranked: list[Option] = []
    while remaining:
        top = max(opt.success_probability for opt in remaining)
        contenders = [opt for opt in remaining if top - opt.success_probability <= tie_band]
        best = min(
            contenders,
            key=lambda opt: (_exposure(opt), -opt.success_probability, opt.position),
        )
        ranked.append(best)
        remaining.remove(best)
    return ranked + untested


def resolve_recommended_option(name: str, options: Sequence[Option]) -> Optional[Option]:
    """Return the option whose name exactly equals *name*, else ``None``."""
    for option in options:
        if option.name == name:
            return option
    return None


def _stress_test_payload(options: Sequence[Option]) -> list[dict[str, Any]]:
    return [
        {
            "name": opt.name,
            "description": opt.description,
            "upside": opt.upside,
            "downside": opt.downside,
            "key_assumptions": opt.key_assumptions or [],
            "fragility_score": opt.fragility_score.value if opt.fragility_score else None,
            "success_probability": opt.success_probability,
            "constraint_violation_risk": opt.constraint_violation_risk,
            "assumption_sensitivity": opt.assumption_sensitivity,
        }
        for opt in options
    ]


def _build_messages(decision: Decision, options: Sequence[Option]) -> list[Any]:
    ranking = ", ".join(opt.name for opt in rank_by_robustness(options))
    sections = [
        f"Decision: {decision.title}",
        f"Goal: {decision.goal}",
        f"Primary metric: {decision.primary_metric}",
        f"Risk tolerance: {decision.risk_tolerance.value}",
        "",
        "Stress test results:",
        json.dumps(_stress_test_payload(options), indent=2),
        "",
        f"Robustness ranking by the tie-break rule (most robust first): {ranking}",
    ]
    return [
        SystemMessage(content=RECOMMENDER_SYSTEM_PROMPT),
        HumanMessage(content="\n".join(sections)),
    ]


async def generate_recommendation(
    decision: Decision, options: Sequence[Option]
) -> RecommendationDraft:
    """Pick the most robust option of *decision*.

    *options* must carry their stress-test fields.  The returned draft's
    option name is not guaranteed to match; callers resolve it with
    ``resolve_recommended_option``.  Raises ``RecommendationFailure``.
    """
    llm = _get_recommender_llm()
    try:
        response = await llm.ainvoke(_build_messages(decision, options))
    except Exception as exc:
        logger.exception("Recommendation call failed for decision %s", decision.id)
        raise RecommendationFailure() from exc

    try:
        draft = RecommendationDraft.model_validate(parse_json_content(response.content))
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "Unparseable recommendation output for decision %s: %s",
            decision.id, preview(response.content), exc_info=True,
        )
        raise RecommendationFailure("Recommendation returned an invalid structure") from exc

    logger.info(
        "Recommendation for decision %s: %r", decision.id, draft.recommended_option_name
    )
    return draft
