"""Stage invocation primitive: one blocking call to the reasoning service.

Chat clients are constructed lazily and cached per configuration so every
request reuses the same connector.  Calls are independent and stateless
(no session pinning), which makes the shared client safe under concurrent
requests.  Every client carries a bounded timeout and never retries.
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from typing import Any, Optional

from langchain_openai import ChatOpenAI

from config import get_openai_api_key, get_reasoning_model, get_reasoning_timeout

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)```", re.DOTALL)


@lru_cache(maxsize=None)
def get_chat_model(
    temperature: float,
    json_mode: bool = True,
    max_tokens: Optional[int] = None,
) -> ChatOpenAI:
    """Return the shared chat client for the given sampling configuration."""
    kwargs: dict[str, Any] = {
        "model": get_reasoning_model(),
        "temperature": temperature,
        "api_key": get_openai_api_key(),
        "timeout": get_reasoning_timeout(),
        "max_retries": 0,
    }
    if max_tokens is not None:
        kwargs["max_tokens"] = max_tokens
    if json_mode:
        kwargs["model_kwargs"] = {"response_format": {"type": "json_object"}}
    logger.info(
        "Creating reasoning client model=%s temperature=%.2f json=%s",
        kwargs["model"], temperature, json_mode,
    )
    return ChatOpenAI(**kwargs)


def content_text(content: Any) -> str:
    """Flatten a completion's content into plain text.

    Some providers return content as a list of blocks; extract the text
    from each block.
    """
    if isinstance(content, list):
        return " ".join(
            block.get("text", "") if isinstance(block, dict) else str(block)
            for block in content
        )
    return "" if content is None else str(content)


def parse_json_content(content: Any) -> dict[str, Any]:
    """Parse a JSON object out of a completion.

    Raises ``ValueError`` if no JSON object can be recovered.
    """
    text = content_text(content).strip()

    fence_match = _FENCE_RE.search(text)
    if fence_match:
        text = fence_match.group(1).strip()

    if not text.startswith("{"):
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Completion is not valid JSON: {exc}") from exc
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


def preview(content: Any, limit: int = 500) -> str:
    """Short, log-safe rendering of a completion."""
    text = content_text(content)
    return text[:limit] if text else "<empty>"
