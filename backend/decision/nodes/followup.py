"""Follow-up responder: answers questions grounded in a decision's context."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from decision.errors import FollowupFailure
from decision.llm import content_text, get_chat_model
from decision.schemas import Decision, Followup, Option

logger = logging.getLogger(__name__)

FOLLOWUP_SYSTEM_PROMPT = """\
You are a decision analyst answering follow-up questions about a decision
the user is working through.  Answer briefly and directly.  Focus on
helping them commit to a robust decision.
"""

# Only the most recent exchanges are sent back to the model.
MAX_HISTORY_ENTRIES = 40
MAX_ANSWER_TOKENS = 300


def _get_followup_llm() -> ChatOpenAI:
    """Return the LLM instance used by the follow-up responder."""
    return get_chat_model(temperature=0.5, json_mode=False, max_tokens=MAX_ANSWER_TOKENS)


def _build_context(
    decision: Decision,
    options: Sequence[Option],
    history: Sequence[Followup],
    question: str,
) -> str:
    recent = list(history)[-MAX_HISTORY_ENTRIES:]
    conversation = "\n".join(f"{f.author_type.value}: {f.content}" for f in recent)
    return "\n".join(
        [
            f"Decision: {decision.title}",
            f"Goal: {decision.goal}",
            f"Options: {', '.join(opt.name for opt in options)}",
            "",
            "Previous conversation:",
            conversation or "(none)",
            "",
            f"User question: {question}",
        ]
    )


async def answer_followup(
    decision: Decision,
    options: Sequence[Option],
    history: Sequence[Followup],
    question: str,
) -> str:
    """Answer *question* using the decision and its conversation *history*.

    *history* is ordered oldest-first.  Raises ``FollowupFailure`` if the
    call fails or yields an empty answer.
    """
    messages: list[Any] = [
        SystemMessage(content=FOLLOWUP_SYSTEM_PROMPT),
        HumanMessage(content=_build_context(decision, options, history, question)),
    ]

    llm = _get_followup_llm()
    try:
        response = await llm.ainvoke(messages)
    except Exception as exc:
        logger.exception("Follow-up call failed for decision %s", decision.id)
        raise FollowupFailure() from exc

    answer = content_text(response.content).strip()
    if not answer:
        raise FollowupFailure("Empty answer from reasoning service")
    return answer
