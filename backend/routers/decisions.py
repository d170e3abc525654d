"""Decision analysis endpoints.

Every route requires a bearer token; decisions are only visible to their
owner.  Pipeline errors propagate as ``DecisionError`` and are rendered by
the application-level handler in ``main.py``.
"""

import logging
from functools import lru_cache
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from auth.dependencies import require_user_id
from config import get_pg_conn_str, use_in_memory_store
from decision.persistence import DecisionStore, InMemoryDecisionStore, PostgresDecisionStore
from decision.schemas import DecisionDetail, UnderstandingUpdate
from decision.service import DecisionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/decisions", tags=["Decisions"])


@lru_cache(maxsize=1)
def get_decision_store() -> DecisionStore:
    """Return the process-wide decision store."""
    if use_in_memory_store():
        logger.warning("Using in-memory decision store; data is lost on restart")
        return InMemoryDecisionStore()
    return PostgresDecisionStore(get_pg_conn_str())


def get_decision_service(
    store: DecisionStore = Depends(get_decision_store),
) -> DecisionService:
    return DecisionService(store)


# ============================================================================
# Request Models
# ============================================================================


class CreateDecisionRequest(BaseModel):
    """Free-text description of the decision."""
    content: str = Field("", description="At least 50 characters after trimming")


class AskFollowupRequest(BaseModel):
    question: str = ""


class CommitRequest(BaseModel):
    note: Optional[str] = None


def _detail_payload(detail: DecisionDetail) -> dict[str, Any]:
    return {"success": True, **detail.model_dump(mode="json")}


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/create")
async def create_decision(
    request: CreateDecisionRequest,
    user_id: str = Depends(require_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """
    Analyze a new decision: extract, stress-test and recommend.

    Returns 400 if the description is too short and 409 if the user
    already has an active decision.
    """
    decision = await service.create(user_id, request.content)
    return {"success": True, "decision_id": decision.id}


@router.get("/active")
async def get_active_decision(
    user_id: str = Depends(require_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """Get the user's active decision with options, recommendation and followups."""
    return _detail_payload(await service.get_active(user_id))


@router.post("/{decision_id}/confirm-understanding")
async def confirm_understanding(
    decision_id: str,
    request: UnderstandingUpdate,
    user_id: str = Depends(require_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """Apply the confirmed understanding and re-run the analysis."""
    await service.reanalyze(user_id, decision_id, request)
    return {"success": True}


@router.post("/{decision_id}/ask-followup")
async def ask_followup(
    decision_id: str,
    request: AskFollowupRequest,
    user_id: str = Depends(require_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    answer = await service.ask_followup(user_id, decision_id, request.question)
    return {"success": True, "answer": answer.model_dump(mode="json")}


@router.post("/{decision_id}/commit")
async def commit_decision(
    decision_id: str,
    request: Optional[CommitRequest] = None,
    user_id: str = Depends(require_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """Commit the decision; 409 if it is already committed."""
    note = request.note if request else None
    decision = await service.commit(user_id, decision_id, note)
    return {"success": True, "decision": decision.model_dump(mode="json")}


@router.get("/library")
async def list_library(
    user_id: str = Depends(require_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    """List committed decisions, most recently committed first."""
    entries = await service.list_library(user_id)
    return {"success": True, "decisions": [e.model_dump(mode="json") for e in entries]}


@router.get("/library/{decision_id}")
async def get_library_decision(
    decision_id: str,
    user_id: str = Depends(require_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    return _detail_payload(await service.get_library_decision(user_id, decision_id))


@router.delete("/{decision_id}")
async def delete_decision(
    decision_id: str,
    user_id: str = Depends(require_user_id),
    service: DecisionService = Depends(get_decision_service),
):
    await service.delete(user_id, decision_id)
    return {"success": True}
