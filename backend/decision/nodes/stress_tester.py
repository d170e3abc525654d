"""Stress tester for the decision pipeline.

Evaluates every candidate option for resilience, not just best-case
payoff: the evaluator perturbs the stated assumptions by 30-50% and
reports how outcomes degrade.  All options are tested in one batched
call; the results come back in the same order as the input options.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Sequence

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from decision.errors import StressTestFailure
from decision.llm import get_chat_model, parse_json_content, preview
from decision.schemas import Decision, Option, StressTestResult

logger = logging.getLogger(__name__)

STRESS_TESTER_SYSTEM_PROMPT = """\
You are a rigorous decision stress-testing engine.  Analyze every option
under uncertainty: for each one consider the best, likely and worst case.

Perturb the stated assumptions by +/-30-50% to test resilience, and report
how each option's outcome degrades when those assumptions are wrong.

Fragility scoring:
- "fragile": breaks easily if assumptions are off
- "balanced": moderate resilience
- "robust": works across many scenarios

Rules:
1. Return exactly one entry per option, in the order given, using the
   option name exactly as written.
2. "upside" and "downside" are one sentence each.
3. List 2-4 "key_assumptions" the outcome depends on.
4. "success_probability", "constraint_violation_risk" and
   "assumption_sensitivity" are numbers between 0 and 100.

Output ONLY valid JSON matching this schema:
{
  "options": [
    {
      "name": "<option name>",
      "upside": "<best case outcome in 1 sentence>",
      "downside": "<worst case failure in 1 sentence>",
      "key_assumptions": ["<assumption 1>", "<assumption 2>"],
      "fragility_score": "fragile|balanced|robust",
      "success_probability": <0-100>,
      "constraint_violation_risk": <0-100>,
      "assumption_sensitivity": <0-100>
    }
  ]
}
"""


def _get_stress_tester_llm() -> ChatOpenAI:
    """Return the LLM instance used by the stress tester."""
    return get_chat_model(temperature=0.4)


def _describe_decision(decision: Decision) -> str:
    constraints = ", ".join(decision.constraints) if decision.constraints else "None specified"
    return "\n".join(
        [
            f"Decision: {decision.title}",
            f"Goal: {decision.goal}",
            f"Primary metric: {decision.primary_metric}",
            f"Time horizon: {decision.time_horizon}",
            f"Constraints: {constraints}",
            f"Risk tolerance: {decision.risk_tolerance.value}",
        ]
    )


def _build_messages(decision: Decision, options: Sequence[Option]) -> list[Any]:
    option_lines = "\n".join(
        f"{idx + 1}. {opt.name}: {opt.description}" for idx, opt in enumerate(options)
    )
    return [
        SystemMessage(content=STRESS_TESTER_SYSTEM_PROMPT),
        HumanMessage(
            content=f"{_describe_decision(decision)}\n\nOptions to analyze:\n{option_lines}"
        ),
    ]


def align_results(
    options: Sequence[Option], results: list[StressTestResult]
) -> list[StressTestResult]:
    """Order *results* to match *options*.

    Results are matched by exact option name when the names correspond
    one-to-one, otherwise by position.  Raises ``StressTestFailure`` when
    the counts differ.
    """
    if len(results) != len(options):
        raise StressTestFailure(
            f"Stress test returned {len(results)} results for {len(options)} options"
        )

    by_name = {result.name: result for result in results}
    option_names = [opt.name for opt in options]
    if len(by_name) == len(results) and set(by_name) == set(option_names):
        return [by_name[name] for name in option_names]

    logger.warning("Stress test names did not match options; aligning by position")
    return list(results)


async def run_stress_tests(
    decision: Decision, options: Sequence[Option]
) -> list[StressTestResult]:
    """Stress-test every option of *decision* in one batched call.

    Raises ``StressTestFailure`` on call failure, unparseable output, or a
    result count that does not match the options.  Nothing is persisted
    here, so a failure leaves previously stored scores untouched.
    """
    if not options:
        return []

    llm = _get_stress_tester_llm()
    try:
        response = await llm.ainvoke(_build_messages(decision, options))
    except Exception as exc:
        logger.exception("Stress test call failed for decision %s", decision.id)
        raise StressTestFailure() from exc

    try:
        parsed = parse_json_content(response.content)
        raw_results = parsed.get("options")
        if not isinstance(raw_results, list):
            raise ValueError("Missing 'options' list in stress test output")
        results = [StressTestResult.model_validate(item) for item in raw_results]
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "Unparseable stress test output for decision %s: %s",
            decision.id, preview(response.content), exc_info=True,
        )
        raise StressTestFailure("Stress test returned an invalid structure") from exc

    aligned = align_results(options, results)
    logger.info(
        "Stress tests complete for decision %s: %s",
        decision.id,
        json.dumps({r.name or str(i): r.fragility_score.value for i, r in enumerate(aligned)}),
    )
    return aligned
