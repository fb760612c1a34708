"""Edit suggestion API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from app.api.deps import get_actor_id, respond
from app.database import get_session
from app.suggestions.service import (
    approve_edit_suggestion,
    reject_edit_suggestion,
    submit_edit_suggestion,
)

router = APIRouter()


class SuggestionRequest(BaseModel):
    profile_id: UUID
    field_name: str
    new_value: str
    reason: Optional[str] = None


class ReviewRequest(BaseModel):
    notes: Optional[str] = None


@router.post("")
async def submit(
    request: SuggestionRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """
    Suggest a change to one field.

    Callers who may edit the profile directly have the change applied at once.
    """
    result = submit_edit_suggestion(
        session, request.profile_id, request.field_name, request.new_value, actor_id, request.reason
    )
    return respond(result, success_status=201)


@router.post("/{suggestion_id}/approve")
async def approve(
    suggestion_id: UUID,
    request: Optional[ReviewRequest] = None,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    notes = request.notes if request else None
    return respond(approve_edit_suggestion(session, suggestion_id, actor_id, notes))


@router.post("/{suggestion_id}/reject")
async def reject(
    suggestion_id: UUID,
    request: Optional[ReviewRequest] = None,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    notes = request.notes if request else None
    return respond(reject_edit_suggestion(session, suggestion_id, actor_id, notes))
