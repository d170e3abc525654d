"""LangGraph StateGraph assembly for the decision analysis pipeline.

Wires the stages into a linear graph:

    extract -> persist_understanding -> stress_test -> persist_stress_tests
            -> recommend -> persist_recommendation

The entry router skips extraction when the run starts from an already
persisted decision (re-analysis).  Stage and storage collaborators are
passed per run through ``config["configurable"]`` under the keys
``store`` and ``analyzer``; there is no checkpointer, every stage writes
straight to the store.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, START, StateGraph

from decision.analyzer import DecisionAnalyzer, ReasoningAnalyzer
from decision.nodes.recommender import resolve_recommended_option
from decision.persistence import DecisionStore
from decision.schemas import DecisionStatus
from decision.state import AnalysisState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Collaborator lookup
# ---------------------------------------------------------------------------


def _configurable(config: Optional[RunnableConfig]) -> dict[str, Any]:
    if config and isinstance(config, dict):
        return config.get("configurable") or {}
    return {}


def _resolve_store(config: Optional[RunnableConfig]) -> DecisionStore:
    store = _configurable(config).get("store")
    if store is None:
        raise RuntimeError("Analysis graph requires a 'store' in config['configurable']")
    return store


def _resolve_analyzer(config: Optional[RunnableConfig]) -> ReasoningAnalyzer:
    return _configurable(config).get("analyzer") or DecisionAnalyzer()


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------


async def extract_node(state: AnalysisState, config: RunnableConfig) -> dict[str, Any]:
    """Turn the raw description into an ``Understanding``."""
    analyzer = _resolve_analyzer(config)
    understanding = await analyzer.extract(state["raw_input"])
    logger.info(
        "Extracted understanding %r with %d options",
        understanding.title, len(understanding.options),
    )
    return {"understanding": understanding, "phase": "extracted"}


async def persist_understanding_node(
    state: AnalysisState, config: RunnableConfig
) -> dict[str, Any]:
    """Create the decision in ``analyzing`` together with its options."""
    store = _resolve_store(config)
    decision, options = await store.create_decision(
        state["user_id"], state["raw_input"], state["understanding"]
    )
    logger.info("Created decision %s for user %s", decision.id, decision.user_id)
    return {"decision": decision, "options": options, "phase": "understood"}


async def stress_test_node(state: AnalysisState, config: RunnableConfig) -> dict[str, Any]:
    analyzer = _resolve_analyzer(config)
    decision = state["decision"]
    options = state.get("options", [])
    logger.info("Stress testing %d options for decision %s", len(options), decision.id)
    results = await analyzer.stress_test(decision, options)
    return {"stress_results": results, "phase": "stress_tested"}


async def persist_stress_tests_node(
    state: AnalysisState, config: RunnableConfig
) -> dict[str, Any]:
    """Write every option's scores in one batch, keyed by option id."""
    store = _resolve_store(config)
    decision = state["decision"]
    pairs = [
        (option.id, result)
        for option, result in zip(state.get("options", []), state.get("stress_results", []))
    ]
    options = await store.apply_stress_tests(decision.id, pairs)
    return {"options": options}


async def recommend_node(state: AnalysisState, config: RunnableConfig) -> dict[str, Any]:
    analyzer = _resolve_analyzer(config)
    decision = state["decision"]
    logger.info("Generating recommendation for decision %s", decision.id)
    draft = await analyzer.recommend(decision, state.get("options", []))
    return {"recommendation_draft": draft, "phase": "recommended"}


async def persist_recommendation_node(
    state: AnalysisState, config: RunnableConfig
) -> dict[str, Any]:
    """Replace the recommendation and move the decision to ``ready``.

    An option name that matches nothing is kept as an unset reference.
    """
    store = _resolve_store(config)
    decision = state["decision"]
    draft = state["recommendation_draft"]

    option = resolve_recommended_option(draft.recommended_option_name, state.get("options", []))
    if option is None:
        logger.warning(
            "Recommended option %r not found for decision %s",
            draft.recommended_option_name, decision.id,
        )

    recommendation = await store.replace_recommendation(
        decision.id, draft, option.id if option else None
    )
    decision = await store.set_status(decision.id, DecisionStatus.READY)
    logger.info("Decision %s is ready", decision.id)
    return {"recommendation": recommendation, "decision": decision, "phase": "ready"}


# ---------------------------------------------------------------------------
# Routing helpers
# ---------------------------------------------------------------------------


def _route_entry(state: AnalysisState) -> str:
    """Start at the stress test when a persisted decision is supplied."""
    if state.get("decision") is not None:
        return "stress_test"
    return "extract"


# ---------------------------------------------------------------------------
# Graph builder
# ---------------------------------------------------------------------------


def build_analysis_graph():
    """Assemble and compile the decision analysis StateGraph.

    Returns
    -------
    CompiledGraph
        The compiled LangGraph ready for ``.ainvoke(state, config)`` where
        ``config["configurable"]`` carries ``store`` and optionally
        ``analyzer``.
    """
    builder = StateGraph(AnalysisState)

    # -- Add nodes ------------------------------------------------------------
    builder.add_node("extract", extract_node)
    builder.add_node("persist_understanding", persist_understanding_node)
    builder.add_node("stress_test", stress_test_node)
    builder.add_node("persist_stress_tests", persist_stress_tests_node)
    builder.add_node("recommend", recommend_node)
    builder.add_node("persist_recommendation", persist_recommendation_node)

    # -- Edges ----------------------------------------------------------------

    # Entry -> extract, or straight to the stress test on re-analysis
    builder.add_conditional_edges(
        START,
        _route_entry,
        {"extract": "extract", "stress_test": "stress_test"},
    )

    builder.add_edge("extract", "persist_understanding")
    builder.add_edge("persist_understanding", "stress_test")
    builder.add_edge("stress_test", "persist_stress_tests")
    builder.add_edge("persist_stress_tests", "recommend")
    builder.add_edge("recommend", "persist_recommendation")
    builder.add_edge("persist_recommendation", END)

    return builder.compile()


@lru_cache(maxsize=1)
def get_analysis_graph():
    """Return the process-wide compiled analysis graph."""
    return build_analysis_graph()
