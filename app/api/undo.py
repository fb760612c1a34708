"""Undo API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from app.api.deps import get_actor_id, respond
from app.audit.cascade import undo_cascade
from app.audit.dispatch import undo_action
from app.audit.undo import undo_marriage_delete, undo_profile_delete, undo_profile_update
from app.database import get_session

router = APIRouter()


class UndoRequest(BaseModel):
    reason: Optional[str] = None


def _reason(request: Optional[UndoRequest]) -> Optional[str]:
    return request.reason if request else None


@router.post("/{log_id}")
async def undo(
    log_id: UUID,
    request: Optional[UndoRequest] = None,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Undo any undoable audit entry, dispatching on its action type."""
    return respond(undo_action(session, log_id, actor_id, _reason(request)))


@router.post("/{log_id}/profile-update")
async def undo_update(
    log_id: UUID,
    request: Optional[UndoRequest] = None,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(undo_profile_update(session, log_id, actor_id, _reason(request)))


@router.post("/{log_id}/profile-delete")
async def undo_delete(
    log_id: UUID,
    request: Optional[UndoRequest] = None,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(undo_profile_delete(session, log_id, actor_id, _reason(request)))


@router.post("/{log_id}/cascade")
async def undo_cascade_delete(
    log_id: UUID,
    request: Optional[UndoRequest] = None,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Restore every profile of the batch the entry belongs to."""
    return respond(undo_cascade(session, log_id, actor_id, _reason(request)))


@router.post("/{log_id}/marriage-delete")
async def undo_marriage(
    log_id: UUID,
    request: Optional[UndoRequest] = None,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(undo_marriage_delete(session, log_id, actor_id, _reason(request)))
