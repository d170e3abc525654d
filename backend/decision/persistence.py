"""Persistence layer for decisions and everything they own.

Each pipeline stage commits its own writes; there is no transaction
spanning stages, so a later-stage failure leaves earlier writes intact.
Within a stage, multi-row writes (options, stress-test scores,
recommendation replacement, follow-up exchanges) are atomic.

The "one active decision per user" rule is enforced by the storage layer
itself (a unique partial index in Postgres, a guarded check in memory),
so two concurrent creates cannot both succeed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional, Protocol, Sequence

import asyncpg

from decision.errors import ConflictActiveDecision, DecisionError, StorageFailure
from decision.schemas import (
    AuthorType,
    Decision,
    DecisionStatus,
    Followup,
    LibraryEntry,
    Option,
    Recommendation,
    RecommendationDraft,
    StressTestResult,
    Understanding,
    UnderstandingUpdate,
)

logger = logging.getLogger(__name__)

ACTIVE_DECISION_INDEX = "uq_decisions_one_active_per_user"


class DecisionStore(Protocol):
    """Storage interface for the decision state machine.

    Lookups taking a ``user_id`` only match decisions owned by that user;
    a decision owned by someone else is indistinguishable from a missing one.
    """

    async def find_active_decision(self, user_id: str) -> Optional[Decision]:
        """Return the user's decision in ``analyzing`` or ``ready``, if any."""
        ...

    async def create_decision(
        self, user_id: str, raw_input: str, understanding: Understanding
    ) -> tuple[Decision, list[Option]]:
        """Insert a decision in ``analyzing`` together with its options.

        Raises:
            ConflictActiveDecision: If the user already has an active decision
        """
        ...

    async def get_decision(self, decision_id: str, user_id: str) -> Optional[Decision]:
        ...

    async def list_options(self, decision_id: str) -> list[Option]:
        """Return options ordered by position."""
        ...

    async def apply_stress_tests(
        self, decision_id: str, results: Sequence[tuple[str, StressTestResult]]
    ) -> list[Option]:
        """Overwrite stress-test fields of the given options in one batch.

        Args:
            decision_id: Owning decision
            results: ``(option_id, result)`` pairs

        Returns:
            All options of the decision, ordered by position
        """
        ...

    async def replace_recommendation(
        self,
        decision_id: str,
        draft: RecommendationDraft,
        recommended_option_id: Optional[str],
    ) -> Recommendation:
        """Delete any existing recommendation and insert *draft* in its place."""
        ...

    async def get_recommendation(self, decision_id: str) -> Optional[Recommendation]:
        ...

    async def update_understanding(
        self, decision_id: str, user_id: str, update: UnderstandingUpdate
    ) -> Optional[Decision]:
        """Apply the supplied understanding fields to a non-committed decision.

        Fields absent from *update* keep their stored values.

        Returns ``None`` if the decision is missing, not owned, or committed.
        """
        ...

    async def set_status(self, decision_id: str, status: DecisionStatus) -> Decision:
        """Set *status* on a non-committed decision.

        A committed decision is returned unchanged; commitment is terminal.
        """
        ...

    async def commit_decision(
        self, decision_id: str, user_id: str, note: Optional[str]
    ) -> Optional[Decision]:
        """Move a non-committed decision to ``committed``.

        Also stamps the recommendation (if any) with the commitment and
        *note*.  Returns ``None`` if the decision is missing, not owned, or
        already committed.
        """
        ...

    async def append_followup_exchange(
        self, decision_id: str, question: str, answer: str
    ) -> tuple[Followup, Followup]:
        """Append a user question and the system answer, atomically, in that order."""
        ...

    async def list_followups(self, decision_id: str) -> list[Followup]:
        """Return followups oldest-first."""
        ...

    async def list_committed(self, user_id: str) -> list[LibraryEntry]:
        """Return committed decisions, most recently committed first."""
        ...

    async def delete_decision(self, decision_id: str, user_id: str) -> bool:
        """Delete a decision and its children.  Returns ``False`` if not found."""
        ...

    async def close(self) -> None:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def safe_json_parse(value: Any, default: Any = None) -> Any:
    """Safely parse JSON data that might be a string or already parsed.

    asyncpg returns JSONB as a raw string unless a codec is registered.
    """
    if value is None:
        return default
    if isinstance(value, str):
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Failed to parse JSON column: %s", value[:100])
            return default
    return value


# ============================================================================
# PostgreSQL
# ============================================================================


SCHEMA_STATEMENTS: tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS decisions (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        raw_input TEXT NOT NULL,
        goal TEXT NOT NULL DEFAULT '',
        primary_metric TEXT NOT NULL DEFAULT '',
        time_horizon TEXT NOT NULL DEFAULT '',
        constraints JSONB NOT NULL DEFAULT '[]',
        risk_tolerance TEXT NOT NULL DEFAULT 'balanced'
            CHECK (risk_tolerance IN ('conservative', 'balanced', 'aggressive')),
        status TEXT NOT NULL DEFAULT 'analyzing'
            CHECK (status IN ('analyzing', 'ready', 'committed')),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        committed_at TIMESTAMPTZ
    )
    """,
    f"""
    CREATE UNIQUE INDEX IF NOT EXISTS {ACTIVE_DECISION_INDEX}
        ON decisions(user_id) WHERE status IN ('analyzing', 'ready')
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_decisions_user_status ON decisions(user_id, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS decision_options (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        decision_id UUID NOT NULL REFERENCES decisions(id) ON DELETE CASCADE,
        name TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        position INT NOT NULL,
        upside TEXT,
        downside TEXT,
        key_assumptions JSONB,
        fragility_score TEXT CHECK (fragility_score IN ('fragile', 'balanced', 'robust')),
        success_probability DOUBLE PRECISION
            CHECK (success_probability BETWEEN 0 AND 100),
        constraint_violation_risk DOUBLE PRECISION
            CHECK (constraint_violation_risk BETWEEN 0 AND 100),
        assumption_sensitivity DOUBLE PRECISION
            CHECK (assumption_sensitivity BETWEEN 0 AND 100),
        UNIQUE (decision_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS decision_recommendations (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        decision_id UUID NOT NULL UNIQUE REFERENCES decisions(id) ON DELETE CASCADE,
        recommended_option_id UUID REFERENCES decision_options(id) ON DELETE SET NULL,
        reasoning TEXT NOT NULL,
        why_not_alternatives TEXT NOT NULL DEFAULT '',
        execution_plan TEXT,
        user_committed BOOLEAN NOT NULL DEFAULT FALSE,
        user_note TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS decision_followups (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        seq BIGSERIAL,
        decision_id UUID NOT NULL REFERENCES decisions(id) ON DELETE CASCADE,
        author_type TEXT NOT NULL CHECK (author_type IN ('user', 'system')),
        content TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT clock_timestamp()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_decision_followups_order
        ON decision_followups(decision_id, created_at, seq)
    """,
)


@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    """Map asyncpg errors onto the decision error taxonomy."""
    try:
        yield
    except DecisionError:
        raise
    except asyncpg.UniqueViolationError as exc:
        if exc.constraint_name == ACTIVE_DECISION_INDEX:
            raise ConflictActiveDecision() from exc
        logger.exception("Unique violation during %s", action)
        raise StorageFailure(f"Storage conflict during {action}") from exc
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as exc:
        logger.exception("Storage error during %s", action)
        raise StorageFailure(f"Storage error during {action}") from exc


def _decision_from_row(row: asyncpg.Record) -> Decision:
    data = dict(row)
    data["id"] = str(data["id"])
    data["constraints"] = safe_json_parse(data.get("constraints"), [])
    return Decision.model_validate(data)


def _option_from_row(row: asyncpg.Record) -> Option:
    data = dict(row)
    data["id"] = str(data["id"])
    data["decision_id"] = str(data["decision_id"])
    data["key_assumptions"] = safe_json_parse(data.get("key_assumptions"))
    return Option.model_validate(data)


def _recommendation_from_row(row: asyncpg.Record) -> Recommendation:
    data = dict(row)
    data["id"] = str(data["id"])
    data["decision_id"] = str(data["decision_id"])
    if data.get("recommended_option_id") is not None:
        data["recommended_option_id"] = str(data["recommended_option_id"])
    return Recommendation.model_validate(data)


def _followup_from_row(row: asyncpg.Record) -> Followup:
    data = dict(row)
    data.pop("seq", None)
    data["id"] = str(data["id"])
    data["decision_id"] = str(data["decision_id"])
    return Followup.model_validate(data)


class PostgresDecisionStore:
    """PostgreSQL implementation of DecisionStore.

    The pool is created lazily on first use, and the tables are ensured at
    the same time.
    """

    def __init__(self, conn_string: str, min_size: int = 1, max_size: int = 10):
        self.conn_string = conn_string
        self.min_size = min_size
        self.max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None
        self._pool_lock = asyncio.Lock()

    async def _get_pool(self) -> asyncpg.Pool:
        """Get or create database connection pool."""
        if self._pool is None:
            async with self._pool_lock:
                if self._pool is None:
                    pool = await asyncpg.create_pool(
                        self.conn_string, min_size=self.min_size, max_size=self.max_size
                    )
                    await self._ensure_tables(pool)
                    self._pool = pool
        return self._pool

    async def _ensure_tables(self, pool: asyncpg.Pool) -> None:
        """Create decision tables and indexes if they don't exist."""
        async with pool.acquire() as conn:
            for statement in SCHEMA_STATEMENTS:
                await conn.execute(statement)
        logger.info("Decision tables ensured")

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def find_active_decision(self, user_id: str) -> Optional[Decision]:
        with _translate_errors("find_active_decision"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM decisions "
                    "WHERE user_id = $1 AND status IN ('analyzing', 'ready') "
                    "ORDER BY created_at DESC LIMIT 1",
                    user_id,
                )
        return _decision_from_row(row) if row else None

    async def create_decision(
        self, user_id: str, raw_input: str, understanding: Understanding
    ) -> tuple[Decision, list[Option]]:
        with _translate_errors("create_decision"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        INSERT INTO decisions (
                            user_id, title, raw_input, goal, primary_metric,
                            time_horizon, constraints, risk_tolerance, status
                        ) VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, 'analyzing')
                        RETURNING *
                        """,
                        user_id,
                        understanding.title,
                        raw_input,
                        understanding.goal,
                        understanding.primary_metric,
                        understanding.time_horizon,
                        json.dumps(understanding.constraints),
                        understanding.risk_tolerance.value,
                    )
                    option_rows = await conn.fetch(
                        """
                        INSERT INTO decision_options (decision_id, name, description, position)
                        SELECT $1, t.name, t.description, t.position
                        FROM unnest($2::text[], $3::text[], $4::int[])
                            AS t(name, description, position)
                        RETURNING *
                        """,
                        row["id"],
                        [opt.name for opt in understanding.options],
                        [opt.description for opt in understanding.options],
                        list(range(len(understanding.options))),
                    )
        options = sorted((_option_from_row(r) for r in option_rows), key=lambda o: o.position)
        return _decision_from_row(row), options

    async def get_decision(self, decision_id: str, user_id: str) -> Optional[Decision]:
        decision_uuid = _as_uuid(decision_id)
        if decision_uuid is None:
            return None
        with _translate_errors("get_decision"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM decisions WHERE id = $1 AND user_id = $2",
                    decision_uuid,
                    user_id,
                )
        return _decision_from_row(row) if row else None

    async def list_options(self, decision_id: str) -> list[Option]:
        decision_uuid = _as_uuid(decision_id)
        if decision_uuid is None:
            return []
        with _translate_errors("list_options"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT * FROM decision_options WHERE decision_id = $1 ORDER BY position",
                    decision_uuid,
                )
        return [_option_from_row(r) for r in rows]

    async def apply_stress_tests(
        self, decision_id: str, results: Sequence[tuple[str, StressTestResult]]
    ) -> list[Option]:
        decision_uuid = _as_uuid(decision_id)
        with _translate_errors("apply_stress_tests"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                # Single statement: either every option is updated or none is
                await conn.execute(
                    """
                    UPDATE decision_options AS o SET
                        upside = t.upside,
                        downside = t.downside,
                        key_assumptions = t.key_assumptions::jsonb,
                        fragility_score = t.fragility_score,
                        success_probability = t.success_probability,
                        constraint_violation_risk = t.constraint_violation_risk,
                        assumption_sensitivity = t.assumption_sensitivity
                    FROM unnest(
                        $2::uuid[], $3::text[], $4::text[], $5::text[], $6::text[],
                        $7::float8[], $8::float8[], $9::float8[]
                    ) AS t(
                        id, upside, downside, key_assumptions, fragility_score,
                        success_probability, constraint_violation_risk, assumption_sensitivity
                    )
                    WHERE o.id = t.id AND o.decision_id = $1
                    """,
                    decision_uuid,
                    [uuid.UUID(option_id) for option_id, _ in results],
                    [r.upside for _, r in results],
                    [r.downside for _, r in results],
                    [json.dumps(r.key_assumptions) for _, r in results],
                    [r.fragility_score.value for _, r in results],
                    [r.success_probability for _, r in results],
                    [r.constraint_violation_risk for _, r in results],
                    [r.assumption_sensitivity for _, r in results],
                )
        return await self.list_options(decision_id)

    async def replace_recommendation(
        self,
        decision_id: str,
        draft: RecommendationDraft,
        recommended_option_id: Optional[str],
    ) -> Recommendation:
        decision_uuid = _as_uuid(decision_id)
        option_uuid = _as_uuid(recommended_option_id) if recommended_option_id else None
        with _translate_errors("replace_recommendation"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    await conn.execute(
                        "DELETE FROM decision_recommendations WHERE decision_id = $1",
                        decision_uuid,
                    )
                    row = await conn.fetchrow(
                        """
                        INSERT INTO decision_recommendations (
                            decision_id, recommended_option_id, reasoning,
                            why_not_alternatives, execution_plan
                        ) VALUES ($1, $2, $3, $4, $5)
                        RETURNING *
                        """,
                        decision_uuid,
                        option_uuid,
                        draft.reasoning,
                        draft.why_not_alternatives,
                        draft.execution_plan,
                    )
        return _recommendation_from_row(row)

    async def get_recommendation(self, decision_id: str) -> Optional[Recommendation]:
        decision_uuid = _as_uuid(decision_id)
        if decision_uuid is None:
            return None
        with _translate_errors("get_recommendation"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM decision_recommendations WHERE decision_id = $1",
                    decision_uuid,
                )
        return _recommendation_from_row(row) if row else None

    async def update_understanding(
        self, decision_id: str, user_id: str, update: UnderstandingUpdate
    ) -> Optional[Decision]:
        decision_uuid = _as_uuid(decision_id)
        if decision_uuid is None:
            return None
        changes = update.changes()
        constraints = changes.get("constraints")
        risk_tolerance = changes.get("risk_tolerance")
        with _translate_errors("update_understanding"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                # NULL parameters leave the stored column untouched
                row = await conn.fetchrow(
                    """
                    UPDATE decisions SET
                        goal = COALESCE($3, goal),
                        primary_metric = COALESCE($4, primary_metric),
                        time_horizon = COALESCE($5, time_horizon),
                        constraints = COALESCE($6::jsonb, constraints),
                        risk_tolerance = COALESCE($7, risk_tolerance),
                        updated_at = NOW()
                    WHERE id = $1 AND user_id = $2 AND status <> 'committed'
                    RETURNING *
                    """,
                    decision_uuid,
                    user_id,
                    changes.get("goal"),
                    changes.get("primary_metric"),
                    changes.get("time_horizon"),
                    json.dumps(constraints) if constraints is not None else None,
                    risk_tolerance.value if risk_tolerance is not None else None,
                )
        return _decision_from_row(row) if row else None

    async def set_status(self, decision_id: str, status: DecisionStatus) -> Decision:
        with _translate_errors("set_status"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                row = await conn.fetchrow(
                    "UPDATE decisions SET status = $2, updated_at = NOW() "
                    "WHERE id = $1 AND status <> 'committed' RETURNING *",
                    _as_uuid(decision_id),
                    status.value,
                )
                if row is None:
                    row = await conn.fetchrow(
                        "SELECT * FROM decisions WHERE id = $1", _as_uuid(decision_id)
                    )
        if row is None:
            raise StorageFailure(f"Decision {decision_id} vanished during status update")
        return _decision_from_row(row)

    async def commit_decision(
        self, decision_id: str, user_id: str, note: Optional[str]
    ) -> Optional[Decision]:
        decision_uuid = _as_uuid(decision_id)
        if decision_uuid is None:
            return None
        with _translate_errors("commit_decision"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        UPDATE decisions SET
                            status = 'committed',
                            committed_at = NOW(),
                            updated_at = NOW()
                        WHERE id = $1 AND user_id = $2 AND status <> 'committed'
                        RETURNING *
                        """,
                        decision_uuid,
                        user_id,
                    )
                    if row is not None:
                        await conn.execute(
                            """
                            UPDATE decision_recommendations
                            SET user_committed = TRUE, user_note = COALESCE($2, user_note)
                            WHERE decision_id = $1
                            """,
                            decision_uuid,
                            note,
                        )
        return _decision_from_row(row) if row else None

    async def append_followup_exchange(
        self, decision_id: str, question: str, answer: str
    ) -> tuple[Followup, Followup]:
        decision_uuid = _as_uuid(decision_id)
        insert_sql = (
            "INSERT INTO decision_followups (decision_id, author_type, content) "
            "VALUES ($1, $2, $3) RETURNING *"
        )
        with _translate_errors("append_followup_exchange"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                async with conn.transaction():
                    user_row = await conn.fetchrow(
                        insert_sql, decision_uuid, AuthorType.USER.value, question
                    )
                    system_row = await conn.fetchrow(
                        insert_sql, decision_uuid, AuthorType.SYSTEM.value, answer
                    )
        return _followup_from_row(user_row), _followup_from_row(system_row)

    async def list_followups(self, decision_id: str) -> list[Followup]:
        decision_uuid = _as_uuid(decision_id)
        if decision_uuid is None:
            return []
        with _translate_errors("list_followups"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT * FROM decision_followups WHERE decision_id = $1 "
                    "ORDER BY created_at, seq",
                    decision_uuid,
                )
        return [_followup_from_row(r) for r in rows]

    async def list_committed(self, user_id: str) -> list[LibraryEntry]:
        with _translate_errors("list_committed"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                rows = await conn.fetch(
                    "SELECT id, title, goal, committed_at, created_at FROM decisions "
                    "WHERE user_id = $1 AND status = 'committed' "
                    "ORDER BY committed_at DESC",
                    user_id,
                )
        return [LibraryEntry.model_validate({**dict(r), "id": str(r["id"])}) for r in rows]

    async def delete_decision(self, decision_id: str, user_id: str) -> bool:
        decision_uuid = _as_uuid(decision_id)
        if decision_uuid is None:
            return False
        with _translate_errors("delete_decision"):
            pool = await self._get_pool()
            async with pool.acquire() as conn:
                result = await conn.execute(
                    "DELETE FROM decisions WHERE id = $1 AND user_id = $2",
                    decision_uuid,
                    user_id,
                )
        # asyncpg returns the command tag, e.g. "DELETE 1"
        return result.split()[-1] != "0"


# ============================================================================
# In-memory
# ============================================================================


class InMemoryDecisionStore:
    """In-memory implementation for tests and local development.

    Simple dict-based storage - not for production.  Every method runs
    without awaiting, so each call is atomic within the event loop.
    """

    def __init__(self) -> None:
        self.decisions: dict[str, Decision] = {}
        self.options: dict[str, Option] = {}
        self.recommendations: dict[str, Recommendation] = {}
        self.followups: list[Followup] = []

    async def close(self) -> None:
        return None

    def _options_of(self, decision_id: str) -> list[Option]:
        owned = [o for o in self.options.values() if o.decision_id == decision_id]
        return [o.model_copy(deep=True) for o in sorted(owned, key=lambda o: o.position)]

    async def find_active_decision(self, user_id: str) -> Optional[Decision]:
        for decision in self.decisions.values():
            if decision.user_id == user_id and decision.is_active:
                return decision.model_copy(deep=True)
        return None

    async def create_decision(
        self, user_id: str, raw_input: str, understanding: Understanding
    ) -> tuple[Decision, list[Option]]:
        if any(d.user_id == user_id and d.is_active for d in self.decisions.values()):
            raise ConflictActiveDecision()

        now = _utcnow()
        decision = Decision(
            id=str(uuid.uuid4()),
            user_id=user_id,
            title=understanding.title,
            raw_input=raw_input,
            goal=understanding.goal,
            primary_metric=understanding.primary_metric,
            time_horizon=understanding.time_horizon,
            constraints=list(understanding.constraints),
            risk_tolerance=understanding.risk_tolerance,
            status=DecisionStatus.ANALYZING,
            created_at=now,
            updated_at=now,
        )
        self.decisions[decision.id] = decision
        for position, draft in enumerate(understanding.options):
            option = Option(
                id=str(uuid.uuid4()),
                decision_id=decision.id,
                name=draft.name,
                description=draft.description,
                position=position,
            )
            self.options[option.id] = option
        return decision.model_copy(deep=True), self._options_of(decision.id)

    async def get_decision(self, decision_id: str, user_id: str) -> Optional[Decision]:
        decision = self.decisions.get(decision_id)
        if decision is None or decision.user_id != user_id:
            return None
        return decision.model_copy(deep=True)

    async def list_options(self, decision_id: str) -> list[Option]:
        return self._options_of(decision_id)

    async def apply_stress_tests(
        self, decision_id: str, results: Sequence[tuple[str, StressTestResult]]
    ) -> list[Option]:
        updated: dict[str, Option] = {}
        for option_id, result in results:
            option = self.options.get(option_id)
            if option is None or option.decision_id != decision_id:
                continue
            updated[option_id] = option.model_copy(
                update={
                    "upside": result.upside,
                    "downside": result.downside,
                    "key_assumptions": list(result.key_assumptions),
                    "fragility_score": result.fragility_score,
                    "success_probability": result.success_probability,
                    "constraint_violation_risk": result.constraint_violation_risk,
                    "assumption_sensitivity": result.assumption_sensitivity,
                }
            )
        self.options.update(updated)
        return self._options_of(decision_id)

    async def replace_recommendation(
        self,
        decision_id: str,
        draft: RecommendationDraft,
        recommended_option_id: Optional[str],
    ) -> Recommendation:
        recommendation = Recommendation(
            id=str(uuid.uuid4()),
            decision_id=decision_id,
            recommended_option_id=recommended_option_id,
            reasoning=draft.reasoning,
            why_not_alternatives=draft.why_not_alternatives,
            execution_plan=draft.execution_plan,
            created_at=_utcnow(),
        )
        self.recommendations[decision_id] = recommendation
        return recommendation.model_copy(deep=True)

    async def get_recommendation(self, decision_id: str) -> Optional[Recommendation]:
        recommendation = self.recommendations.get(decision_id)
        return recommendation.model_copy(deep=True) if recommendation else None

    async def update_understanding(
        self, decision_id: str, user_id: str, update: UnderstandingUpdate
    ) -> Optional[Decision]:
        decision = self.decisions.get(decision_id)
        if (
            decision is None
            or decision.user_id != user_id
            or decision.status == DecisionStatus.COMMITTED
        ):
            return None
        decision = decision.model_copy(update={**update.changes(), "updated_at": _utcnow()})
        self.decisions[decision_id] = decision
        return decision.model_copy(deep=True)

    async def set_status(self, decision_id: str, status: DecisionStatus) -> Decision:
        decision = self.decisions.get(decision_id)
        if decision is None:
            raise StorageFailure(f"Decision {decision_id} vanished during status update")
        if decision.status == DecisionStatus.COMMITTED:
            return decision.model_copy(deep=True)
        decision = decision.model_copy(update={"status": status, "updated_at": _utcnow()})
        self.decisions[decision_id] = decision
        return decision.model_copy(deep=True)

    async def commit_decision(
        self, decision_id: str, user_id: str, note: Optional[str]
    ) -> Optional[Decision]:
        decision = self.decisions.get(decision_id)
        if (
            decision is None
            or decision.user_id != user_id
            or decision.status == DecisionStatus.COMMITTED
        ):
            return None
        now = _utcnow()
        decision = decision.model_copy(
            update={"status": DecisionStatus.COMMITTED, "committed_at": now, "updated_at": now}
        )
        self.decisions[decision_id] = decision

        recommendation = self.recommendations.get(decision_id)
        if recommendation is not None:
            self.recommendations[decision_id] = recommendation.model_copy(
                update={
                    "user_committed": True,
                    "user_note": note if note is not None else recommendation.user_note,
                }
            )
        return decision.model_copy(deep=True)

    async def append_followup_exchange(
        self, decision_id: str, question: str, answer: str
    ) -> tuple[Followup, Followup]:
        now = _utcnow()
        question_entry = Followup(
            id=str(uuid.uuid4()),
            decision_id=decision_id,
            author_type=AuthorType.USER,
            content=question,
            created_at=now,
        )
        answer_entry = Followup(
            id=str(uuid.uuid4()),
            decision_id=decision_id,
            author_type=AuthorType.SYSTEM,
            content=answer,
            created_at=now,
        )
        self.followups.extend([question_entry, answer_entry])
        return question_entry.model_copy(), answer_entry.model_copy()

    async def list_followups(self, decision_id: str) -> list[Followup]:
        # Insertion order is creation order
        return [f.model_copy() for f in self.followups if f.decision_id == decision_id]

    async def list_committed(self, user_id: str) -> list[LibraryEntry]:
        committed = [
            d
            for d in self.decisions.values()
            if d.user_id == user_id and d.status == DecisionStatus.COMMITTED
        ]
        committed.sort(key=lambda d: d.committed_at or d.created_at, reverse=True)
        return [
            LibraryEntry(
                id=d.id,
                title=d.title,
                goal=d.goal,
                committed_at=d.committed_at,
                created_at=d.created_at,
            )
            for d in committed
        ]

    async def delete_decision(self, decision_id: str, user_id: str) -> bool:
        decision = self.decisions.get(decision_id)
        if decision is None or decision.user_id != user_id:
            return False
        del self.decisions[decision_id]
        self.options = {k: o for k, o in self.options.items() if o.decision_id != decision_id}
        self.recommendations.pop(decision_id, None)
        self.followups = [f for f in self.followups if f.decision_id != decision_id]
        return True
