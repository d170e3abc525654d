"""Error taxonomy for the decision pipeline.

Every error carries the HTTP status it maps to so the API layer can render
it without a lookup table.  Stage failures wrap the underlying exception
(network error, timeout, unparseable completion) as ``__cause__``.
"""

from __future__ import annotations


class DecisionError(Exception):
    """Base class for all decision pipeline errors."""

    status_code: int = 500
    default_message = "Decision pipeline error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class ValidationFailure(DecisionError):
    """Malformed or too-short input; user-correctable."""

    status_code = 400
    default_message = "Invalid request"


class NotFound(DecisionError):
    """Decision absent or not owned by the caller."""

    status_code = 404
    default_message = "Decision not found"


class ConflictActiveDecision(DecisionError):
    """The user already has a decision in ``analyzing`` or ``ready``."""

    status_code = 409
    default_message = "You already have an active decision. Commit or archive it first."


class InvalidTransition(DecisionError):
    """The requested transition is not allowed from the current status."""

    status_code = 409
    default_message = "Decision is already committed"


class StageFailure(DecisionError):
    """An external reasoning call failed or returned an unusable structure."""

    status_code = 500
    stage = "pipeline"
    default_message = "Decision analysis failed"


class ExtractionFailure(StageFailure):
    stage = "extract"
    default_message = "Failed to extract decision understanding"


class StressTestFailure(StageFailure):
    stage = "stress_test"
    default_message = "Failed to stress-test decision options"


class RecommendationFailure(StageFailure):
    stage = "recommend"
    default_message = "Failed to generate recommendation"


class FollowupFailure(StageFailure):
    stage = "followup"
    default_message = "Failed to process question"


class StorageFailure(DecisionError):
    """Persistence layer error."""

    status_code = 500
    default_message = "Storage error"
