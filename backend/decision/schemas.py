"""Pydantic schemas for the decision analysis pipeline.

Two families of models live here:
- Stage payloads parsed from reasoning-service completions
  (``Understanding``, ``StressTestResult``, ``RecommendationDraft``)
- Persisted records returned by the store
  (``Decision``, ``Option``, ``Recommendation``, ``Followup``)
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

MIN_KEY_ASSUMPTIONS = 2
MAX_KEY_ASSUMPTIONS = 4


class RiskTolerance(str, Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class FragilityScore(str, Enum):
    FRAGILE = "fragile"
    BALANCED = "balanced"
    ROBUST = "robust"


class DecisionStatus(str, Enum):
    ANALYZING = "analyzing"
    READY = "ready"
    COMMITTED = "committed"


class AuthorType(str, Enum):
    USER = "user"
    SYSTEM = "system"


ACTIVE_STATUSES = (DecisionStatus.ANALYZING, DecisionStatus.READY)


def _as_text(value: Any) -> Any:
    """Collapse list-shaped completions into a single paragraph."""
    if isinstance(value, list):
        return " ".join(str(item).strip() for item in value if str(item).strip())
    return value


def _as_string_list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return value


def _normalise_risk_tolerance(value: Any) -> Any:
    if isinstance(value, RiskTolerance):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in RiskTolerance._value2member_map_:
            return lowered
    return RiskTolerance.BALANCED


# ---------------------------------------------------------------------------
# Stage payloads
# ---------------------------------------------------------------------------


class OptionDraft(BaseModel):
    """A candidate option as named by the extractor."""

    name: str = Field(min_length=1)
    description: str = ""

    @field_validator("name", "description", mode="before")
    @classmethod
    def _strip(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


class Understanding(BaseModel):
    """Structured view of a decision extracted from free text."""

    title: str = Field(min_length=1)
    goal: str = ""
    primary_metric: str = ""
    time_horizon: str = ""
    constraints: list[str] = Field(default_factory=list)
    risk_tolerance: RiskTolerance = RiskTolerance.BALANCED
    options: list[OptionDraft] = Field(min_length=1)

    @field_validator("constraints", mode="before")
    @classmethod
    def _constraint_list(cls, value: Any) -> Any:
        return _as_string_list(value)

    @field_validator("risk_tolerance", mode="before")
    @classmethod
    def _risk_band(cls, value: Any) -> Any:
        # Unknown bands degrade to the middle one rather than failing extraction
        return _normalise_risk_tolerance(value)


class UnderstandingUpdate(BaseModel):
    """User-confirmed edits to the understanding; triggers re-analysis.

    Fields left out of the request keep their stored value.
    """

    goal: Optional[str] = None
    primary_metric: Optional[str] = None
    time_horizon: Optional[str] = None
    constraints: Optional[list[str]] = None
    risk_tolerance: Optional[RiskTolerance] = None

    @field_validator("constraints", mode="before")
    @classmethod
    def _constraint_list(cls, value: Any) -> Any:
        if value is None:
            return None
        return _as_string_list(value)

    def changes(self) -> dict[str, Any]:
        """Return only the fields the caller actually supplied."""
        return self.model_dump(exclude_unset=True, exclude_none=True)


class StressTestResult(BaseModel):
    """One option's behaviour under best/likely/worst-case perturbation."""

    name: str = ""
    upside: str
    downside: str
    key_assumptions: list[str] = Field(min_length=MIN_KEY_ASSUMPTIONS)
    fragility_score: FragilityScore
    success_probability: float = Field(ge=0, le=100)
    constraint_violation_risk: float = Field(ge=0, le=100)
    assumption_sensitivity: float = Field(ge=0, le=100)

    @field_validator("upside", "downside", mode="before")
    @classmethod
    def _join_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("key_assumptions", mode="before")
    @classmethod
    def _cap_assumptions(cls, value: Any) -> Any:
        value = _as_string_list(value)
        if isinstance(value, list):
            return value[:MAX_KEY_ASSUMPTIONS]
        return value

    @field_validator("fragility_score", mode="before")
    @classmethod
    def _lower_fragility(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator(
        "success_probability",
        "constraint_violation_risk",
        "assumption_sensitivity",
        mode="before",
    )
    @classmethod
    def _clamp_score(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip().rstrip("%")
        try:
            number = float(value)
        except (TypeError, ValueError):
            return value  # let field validation report it
        return min(100.0, max(0.0, number))


class RecommendationDraft(BaseModel):
    """Recommender output before it is bound to a persisted option."""

    recommended_option_name: str
    reasoning: str
    why_not_alternatives: str = ""
    execution_plan: Optional[str] = None

    @field_validator("reasoning", "why_not_alternatives", "execution_plan", mode="before")
    @classmethod
    def _join_text(cls, value: Any) -> Any:
        return _as_text(value)

    @field_validator("recommended_option_name", mode="before")
    @classmethod
    def _strip_name(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class Decision(BaseModel):
    id: str
    user_id: str
    title: str
    raw_input: str
    goal: str = ""
    primary_metric: str = ""
    time_horizon: str = ""
    constraints: list[str] = Field(default_factory=list)
    risk_tolerance: RiskTolerance = RiskTolerance.BALANCED
    status: DecisionStatus = DecisionStatus.ANALYZING
    created_at: datetime
    updated_at: datetime
    committed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


class Option(BaseModel):
    id: str
    decision_id: str
    name: str
    description: str = ""
    position: int
    upside: Optional[str] = None
    downside: Optional[str] = None
    key_assumptions: Optional[list[str]] = None
    fragility_score: Optional[FragilityScore] = None
    success_probability: Optional[float] = None
    constraint_violation_risk: Optional[float] = None
    assumption_sensitivity: Optional[float] = None

    @property
    def is_stress_tested(self) -> bool:
        return self.fragility_score is not None


class Recommendation(BaseModel):
    id: str
    decision_id: str
    recommended_option_id: Optional[str] = None
    reasoning: str
    why_not_alternatives: str = ""
    execution_plan: Optional[str] = None
    user_committed: bool = False
    user_note: Optional[str] = None
    created_at: datetime


class Followup(BaseModel):
    id: str
    decision_id: str
    author_type: AuthorType
    content: str
    created_at: datetime


class DecisionDetail(BaseModel):
    """A decision together with everything it owns."""

    decision: Decision
    options: list[Option] = Field(default_factory=list)
    recommendation: Optional[Recommendation] = None
    followups: list[Followup] = Field(default_factory=list)


class LibraryEntry(BaseModel):
    """Summary of a committed decision."""

    id: str
    title: str
    goal: str = ""
    committed_at: Optional[datetime] = None
    created_at: datetime
