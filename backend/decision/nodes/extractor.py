"""Understanding extractor for the decision pipeline.

Turns the user's free-text description of a decision into a structured
``Understanding``: title, goal, primary metric, time horizon, constraints,
risk tolerance and the candidate options.  It is the first stage executed
when a decision is created.
"""

from __future__ import annotations

import logging
from typing import Any

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import ValidationError

from decision.errors import ExtractionFailure
from decision.llm import get_chat_model, parse_json_content, preview
from decision.schemas import Understanding

logger = logging.getLogger(__name__)

EXTRACTOR_SYSTEM_PROMPT = """\
You are a precise decision analysis system.  Your job is to analyze the
consequences of a decision under uncertainty, not to reassure the user.

Extract structured information from the user's description of a decision.

Output ONLY valid JSON matching this schema:
{
  "title": "<one sentence decision title>",
  "goal": "<what they want to achieve>",
  "primary_metric": "<what to measure (MRR, time, churn, etc.)>",
  "time_horizon": "<how far ahead, e.g. '6 months', '1 year'>",
  "constraints": ["<constraint 1>", "<constraint 2>"],
  "risk_tolerance": "conservative|balanced|aggressive",
  "options": [
    {"name": "<Option A>", "description": "<brief description>"},
    {"name": "<Option B>", "description": "<brief description>"}
  ]
}

Rules:
- List every option the user is weighing; never return an empty "options" list.
- Option names must be short and distinct from one another.
- Be concise.  If something is unclear, make a reasonable inference.
- Do NOT include any text outside the JSON object.
"""


def _get_extractor_llm() -> ChatOpenAI:
    """Return the LLM instance used by the extractor."""
    return get_chat_model(temperature=0.3)


def _build_messages(raw_text: str) -> list[Any]:
    return [
        SystemMessage(content=EXTRACTOR_SYSTEM_PROMPT),
        HumanMessage(content=f'User\'s input:\n"""\n{raw_text}\n"""'),
    ]


async def extract_understanding(raw_text: str) -> Understanding:
    """Extract a structured understanding from *raw_text*.

    Single attempt.  Raises ``ExtractionFailure`` if the reasoning call
    fails or its output cannot be parsed into an ``Understanding``.
    """
    llm = _get_extractor_llm()
    try:
        response = await llm.ainvoke(_build_messages(raw_text))
    except Exception as exc:
        logger.exception("Extraction call failed")
        raise ExtractionFailure() from exc

    try:
        parsed = parse_json_content(response.content)
        understanding = Understanding.model_validate(parsed)
    except (ValueError, ValidationError) as exc:
        logger.warning(
            "Unparseable extraction output: %s", preview(response.content), exc_info=True
        )
        raise ExtractionFailure("Could not understand the decision description") from exc

    logger.info(
        "Extracted understanding title=%r options=%d",
        understanding.title, len(understanding.options),
    )
    return understanding
