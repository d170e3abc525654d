"""Decision state machine.

``analyzing -> ready -> committed``; ``committed`` is terminal.  The
service validates each transition, drives the analysis graph, and
assembles read models for the API layer.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from decision.analyzer import DecisionAnalyzer, ReasoningAnalyzer
from decision.errors import (
    ConflictActiveDecision,
    InvalidTransition,
    NotFound,
    ValidationFailure,
)
from decision.graph import get_analysis_graph
from decision.persistence import DecisionStore
from decision.schemas import (
    Decision,
    DecisionDetail,
    DecisionStatus,
    Followup,
    LibraryEntry,
    UnderstandingUpdate,
)

logger = logging.getLogger(__name__)

MIN_CONTENT_LENGTH = 50


class DecisionService:
    """Transitions of a user's decisions.

    Args:
        store: Persistence backend
        analyzer: Reasoning stages; defaults to ``DecisionAnalyzer``
        graph: Compiled analysis graph; defaults to the shared one
    """

    def __init__(
        self,
        store: DecisionStore,
        analyzer: Optional[ReasoningAnalyzer] = None,
        graph: Any = None,
    ):
        self.store = store
        self.analyzer = analyzer or DecisionAnalyzer()
        self.graph = graph or get_analysis_graph()

    def _run_config(self) -> dict[str, Any]:
        return {"configurable": {"store": self.store, "analyzer": self.analyzer}}

    async def _get_owned(self, user_id: str, decision_id: str) -> Decision:
        decision = await self.store.get_decision(decision_id, user_id)
        if decision is None:
            raise NotFound()
        return decision

    async def _detail(self, decision: Decision) -> DecisionDetail:
        return DecisionDetail(
            decision=decision,
            options=await self.store.list_options(decision.id),
            recommendation=await self.store.get_recommendation(decision.id),
            followups=await self.store.list_followups(decision.id),
        )

    async def create(self, user_id: str, raw_text: str) -> Decision:
        """Analyze a new decision end to end.

        Raises:
            ValidationFailure: Description shorter than ``MIN_CONTENT_LENGTH``
            ConflictActiveDecision: The user already has an active decision
            StageFailure: A reasoning stage failed; if extraction succeeded
                the decision remains in ``analyzing`` with partial data
        """
        content = (raw_text or "").strip()
        if len(content) < MIN_CONTENT_LENGTH:
            raise ValidationFailure(
                f"Decision description must be at least {MIN_CONTENT_LENGTH} characters"
            )

        # The store's unique constraint still catches a concurrent create
        if await self.store.find_active_decision(user_id) is not None:
            raise ConflictActiveDecision()

        logger.info("Starting analysis for user %s", user_id)
        final_state = await self.graph.ainvoke(
            {"user_id": user_id, "raw_input": content, "phase": "start"},
            config=self._run_config(),
        )
        return final_state["decision"]

    async def get_active(self, user_id: str) -> DecisionDetail:
        decision = await self.store.find_active_decision(user_id)
        if decision is None:
            raise NotFound("No active decision")
        return await self._detail(decision)

    async def reanalyze(
        self, user_id: str, decision_id: str, update: UnderstandingUpdate
    ) -> Decision:
        """Apply confirmed understanding fields and re-run stress test + recommendation.

        The previous recommendation is replaced and option scores are
        overwritten in place.  A decision without options only gets its
        fields updated.
        """
        decision = await self._get_owned(user_id, decision_id)
        if decision.status == DecisionStatus.COMMITTED:
            raise InvalidTransition()

        updated = await self.store.update_understanding(decision_id, user_id, update)
        if updated is None:
            # Committed (or deleted) between the lookup and the update
            raise InvalidTransition()

        options = await self.store.list_options(decision_id)
        if not options:
            logger.info("Decision %s has no options; fields updated only", decision_id)
            return updated

        logger.info("Re-analyzing decision %s", decision_id)
        final_state = await self.graph.ainvoke(
            {"user_id": user_id, "decision": updated, "options": options, "phase": "start"},
            config=self._run_config(),
        )
        return final_state["decision"]

    async def ask_followup(self, user_id: str, decision_id: str, question: str) -> Followup:
        """Answer *question* and append the exchange; returns the system answer."""
        question = (question or "").strip()
        if not question:
            raise ValidationFailure("Question is required")

        decision = await self._get_owned(user_id, decision_id)
        options = await self.store.list_options(decision_id)
        history = await self.store.list_followups(decision_id)

        answer = await self.analyzer.respond(decision, options, history, question)
        _, system_entry = await self.store.append_followup_exchange(
            decision_id, question, answer
        )
        return system_entry

    async def commit(
        self, user_id: str, decision_id: str, note: Optional[str] = None
    ) -> Decision:
        """Commit a decision from ``analyzing`` or ``ready``.

        Raises ``InvalidTransition`` if it is already committed.
        """
        decision = await self._get_owned(user_id, decision_id)
        if decision.status == DecisionStatus.COMMITTED:
            raise InvalidTransition()

        note = note.strip() if note else None
        committed = await self.store.commit_decision(decision_id, user_id, note or None)
        if committed is None:
            raise InvalidTransition()
        logger.info("Decision %s committed by user %s", decision_id, user_id)
        return committed

    async def list_library(self, user_id: str) -> list[LibraryEntry]:
        return await self.store.list_committed(user_id)

    async def get_library_decision(self, user_id: str, decision_id: str) -> DecisionDetail:
        decision = await self._get_owned(user_id, decision_id)
        if decision.status != DecisionStatus.COMMITTED:
            raise NotFound()
        return await self._detail(decision)

    async def delete(self, user_id: str, decision_id: str) -> None:
        if not await self.store.delete_decision(decision_id, user_id):
            raise NotFound()
        logger.info("Deleted decision %s", decision_id)
