"""Decision analysis pipeline built on LangGraph.

A free-text decision is turned into a structured understanding, every
option is stress-tested under perturbed assumptions, and a robustness-first
recommendation is produced.  Follow-up questions are answered in the
context of the decision.
"""

from __future__ import annotations

from .errors import (
    ConflictActiveDecision,
    DecisionError,
    InvalidTransition,
    NotFound,
    StageFailure,
    StorageFailure,
    ValidationFailure,
)
from .schemas import (
    Decision,
    DecisionDetail,
    DecisionStatus,
    Followup,
    Option,
    Recommendation,
    Understanding,
    UnderstandingUpdate,
)
from .state import AnalysisState

__all__ = [
    "ConflictActiveDecision",
    "DecisionError",
    "InvalidTransition",
    "NotFound",
    "StageFailure",
    "StorageFailure",
    "ValidationFailure",
    "Decision",
    "DecisionDetail",
    "DecisionStatus",
    "Followup",
    "Option",
    "Recommendation",
    "Understanding",
    "UnderstandingUpdate",
    "AnalysisState",
]
