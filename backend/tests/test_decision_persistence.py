"""Tests for decision persistence (in-memory store and Postgres helpers)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from decision.errors import ConflictActiveDecision, StorageFailure
from decision.persistence import (
    ACTIVE_DECISION_INDEX,
    PostgresDecisionStore,
    SCHEMA_STATEMENTS,
    _as_uuid,
    _decision_from_row,
    _option_from_row,
    _translate_errors,
    safe_json_parse,
)
from decision.schemas import (
    AuthorType,
    DecisionStatus,
    FragilityScore,
    RecommendationDraft,
    StressTestResult,
    Understanding,
    UnderstandingUpdate,
)


UNDERSTANDING = Understanding(
    title="Buy or lease the van",
    goal="Deliver locally",
    constraints=["Cash under $20k"],
    options=[{"name": "Buy"}, {"name": "Lease"}, {"name": "Rent ad hoc"}],
)


def _scores(name: str, fragility: str) -> StressTestResult:
    return StressTestResult(
        name=name,
        upside="Up.",
        downside="Down.",
        key_assumptions=["Fuel prices stable", "Route volume holds"],
        fragility_score=fragility,
        success_probability=60,
        constraint_violation_risk=30,
        assumption_sensitivity=45,
    )


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class TestInMemoryDecisionStore:
    @pytest.mark.asyncio
    async def test_create_assigns_positions(self, store):
        decision, options = await store.create_decision("u1", "raw", UNDERSTANDING)

        assert decision.status == DecisionStatus.ANALYZING
        assert [(o.name, o.position) for o in options] == [
            ("Buy", 0), ("Lease", 1), ("Rent ad hoc", 2)
        ]
        assert all(o.decision_id == decision.id for o in options)

    @pytest.mark.asyncio
    async def test_one_active_decision_per_user(self, store):
        await store.create_decision("u1", "raw", UNDERSTANDING)

        with pytest.raises(ConflictActiveDecision):
            await store.create_decision("u1", "raw", UNDERSTANDING)
        assert len(store.decisions) == 1

    @pytest.mark.asyncio
    async def test_committed_decision_frees_slot(self, store):
        decision, _ = await store.create_decision("u1", "raw", UNDERSTANDING)
        await store.commit_decision(decision.id, "u1", None)

        second, _ = await store.create_decision("u1", "raw", UNDERSTANDING)
        assert second.id != decision.id

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self, store):
        decision, _ = await store.create_decision("u1", "raw", UNDERSTANDING)
        decision.constraints.append("mutated")

        fresh = await store.get_decision(decision.id, "u1")
        assert fresh.constraints == ["Cash under $20k"]

    @pytest.mark.asyncio
    async def test_get_decision_checks_owner(self, store):
        decision, _ = await store.create_decision("u1", "raw", UNDERSTANDING)
        assert await store.get_decision(decision.id, "u2") is None

    @pytest.mark.asyncio
    async def test_apply_stress_tests_overwrites_in_place(self, store):
        decision, options = await store.create_decision("u1", "raw", UNDERSTANDING)
        pairs = [(o.id, _scores(o.name, "fragile")) for o in options]
        await store.apply_stress_tests(decision.id, pairs)

        pairs = [(o.id, _scores(o.name, "robust")) for o in options]
        updated = await store.apply_stress_tests(decision.id, pairs)

        assert len(store.options) == 3
        assert [o.id for o in updated] == [o.id for o in options]
        assert all(o.fragility_score == FragilityScore.ROBUST for o in updated)

    @pytest.mark.asyncio
    async def test_apply_stress_tests_ignores_foreign_options(self, store):
        first, first_options = await store.create_decision("u1", "raw", UNDERSTANDING)
        second, _ = await store.create_decision("u2", "raw", UNDERSTANDING)

        await store.apply_stress_tests(second.id, [(first_options[0].id, _scores("Buy", "robust"))])
        assert (await store.list_options(first.id))[0].fragility_score is None

    @pytest.mark.asyncio
    async def test_replace_recommendation_keeps_one(self, store):
        decision, options = await store.create_decision("u1", "raw", UNDERSTANDING)
        draft = RecommendationDraft(recommended_option_name="Buy", reasoning="r1")

        first = await store.replace_recommendation(decision.id, draft, options[0].id)
        second = await store.replace_recommendation(decision.id, draft, None)

        current = await store.get_recommendation(decision.id)
        assert current.id == second.id != first.id
        assert current.recommended_option_id is None

    @pytest.mark.asyncio
    async def test_update_understanding_refuses_committed(self, store):
        decision, _ = await store.create_decision("u1", "raw", UNDERSTANDING)
        await store.commit_decision(decision.id, "u1", None)

        result = await store.update_understanding(
            decision.id, "u1", UnderstandingUpdate(goal="new")
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_update_understanding_applies_only_supplied_fields(self, store):
        decision, _ = await store.create_decision("u1", "raw", UNDERSTANDING)

        updated = await store.update_understanding(
            decision.id, "u1", UnderstandingUpdate(time_horizon="6 months")
        )

        assert updated.time_horizon == "6 months"
        assert updated.goal == "Deliver locally"
        assert updated.constraints == ["Cash under $20k"]

    @pytest.mark.asyncio
    async def test_set_status_never_reopens_committed(self, store):
        decision, _ = await store.create_decision("u1", "raw", UNDERSTANDING)
        await store.commit_decision(decision.id, "u1", None)

        result = await store.set_status(decision.id, DecisionStatus.READY)
        assert result.status == DecisionStatus.COMMITTED

    @pytest.mark.asyncio
    async def test_set_status_missing_raises(self, store):
        with pytest.raises(StorageFailure):
            await store.set_status("missing", DecisionStatus.READY)

    @pytest.mark.asyncio
    async def test_commit_is_one_shot(self, store):
        decision, options = await store.create_decision("u1", "raw", UNDERSTANDING)
        draft = RecommendationDraft(recommended_option_name="Buy", reasoning="r")
        await store.replace_recommendation(decision.id, draft, options[0].id)

        committed = await store.commit_decision(decision.id, "u1", "note")
        assert committed.committed_at is not None
        assert await store.commit_decision(decision.id, "u1", "other") is None

        recommendation = await store.get_recommendation(decision.id)
        assert recommendation.user_committed is True
        assert recommendation.user_note == "note"

    @pytest.mark.asyncio
    async def test_followups_appended_in_pairs(self, store):
        decision, _ = await store.create_decision("u1", "raw", UNDERSTANDING)
        question, answer = await store.append_followup_exchange(decision.id, "Q?", "A.")

        assert question.author_type == AuthorType.USER
        assert answer.author_type == AuthorType.SYSTEM
        history = await store.list_followups(decision.id)
        assert [f.content for f in history] == ["Q?", "A."]

    @pytest.mark.asyncio
    async def test_delete_checks_owner(self, store):
        decision, _ = await store.create_decision("u1", "raw", UNDERSTANDING)

        assert await store.delete_decision(decision.id, "u2") is False
        assert await store.delete_decision(decision.id, "u1") is True
        assert await store.delete_decision(decision.id, "u1") is False


# ---------------------------------------------------------------------------
# Postgres helpers
# ---------------------------------------------------------------------------


class TestPostgresHelpers:
    def test_safe_json_parse(self):
        assert safe_json_parse('["a", "b"]') == ["a", "b"]
        assert safe_json_parse(["a"]) == ["a"]
        assert safe_json_parse(None, []) == []
        assert safe_json_parse("{not json", []) == []

    def test_as_uuid(self):
        value = uuid.uuid4()
        assert _as_uuid(str(value)) == value
        assert _as_uuid("not-a-uuid") is None

    def test_decision_from_row(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        row_id = uuid.uuid4()
        decision = _decision_from_row(
            {
                "id": row_id,
                "user_id": "u1",
                "title": "T",
                "raw_input": "raw",
                "goal": "",
                "primary_metric": "",
                "time_horizon": "",
                "constraints": '["Budget"]',
                "risk_tolerance": "aggressive",
                "status": "ready",
                "created_at": now,
                "updated_at": now,
                "committed_at": None,
            }
        )
        assert decision.id == str(row_id)
        assert decision.constraints == ["Budget"]
        assert decision.status == DecisionStatus.READY

    def test_option_from_row_without_scores(self):
        option = _option_from_row(
            {
                "id": uuid.uuid4(),
                "decision_id": uuid.uuid4(),
                "name": "Buy",
                "description": "",
                "position": 0,
                "upside": None,
                "downside": None,
                "key_assumptions": None,
                "fragility_score": None,
                "success_probability": None,
                "constraint_violation_risk": None,
                "assumption_sensitivity": None,
            }
        )
        assert option.key_assumptions is None
        assert not option.is_stress_tested

    def test_active_index_violation_maps_to_conflict(self):
        exc = asyncpg.UniqueViolationError("duplicate key")
        exc.constraint_name = ACTIVE_DECISION_INDEX

        with pytest.raises(ConflictActiveDecision):
            with _translate_errors("create_decision"):
                raise exc

    def test_other_unique_violation_maps_to_storage_failure(self):
        exc = asyncpg.UniqueViolationError("duplicate key")
        exc.constraint_name = "decision_recommendations_decision_id_key"

        with pytest.raises(StorageFailure):
            with _translate_errors("replace_recommendation"):
                raise exc

    def test_connection_error_maps_to_storage_failure(self):
        with pytest.raises(StorageFailure) as exc_info:
            with _translate_errors("list_options"):
                raise ConnectionRefusedError("db down")
        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)

    @pytest.mark.asyncio
    async def test_update_understanding_passes_null_for_unsent_fields(self):
        conn = MagicMock()
        conn.fetchrow = AsyncMock(return_value=None)
        pool = MagicMock()
        pool.acquire.return_value.__aenter__.return_value = conn
        store = PostgresDecisionStore("postgresql://unused")
        store._pool = pool

        await store.update_understanding(
            str(uuid.uuid4()), "u1", UnderstandingUpdate(goal="New goal")
        )

        query, *args = conn.fetchrow.await_args.args
        assert "COALESCE($6::jsonb, constraints)" in query
        assert args[2:] == ["New goal", None, None, None, None]

    def test_schema_has_partial_unique_index(self):
        ddl = "\n".join(SCHEMA_STATEMENTS)
        assert f"UNIQUE INDEX IF NOT EXISTS {ACTIVE_DECISION_INDEX}" in ddl
        assert "WHERE status IN ('analyzing', 'ready')" in ddl
        assert "ON DELETE CASCADE" in ddl


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
