"""Audit log API endpoints. Admin only."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlmodel import Session

from app.api.deps import get_actor_id, respond
from app.audit.log import entries_for_batch, entries_for_record
from app.database import get_session
from app.mutation.rows import is_admin, require_actor, snapshot
from app.results import BatchNotFoundError, PermissionDenied, run_guarded

router = APIRouter()


def _require_admin(session: Session, actor_id: Optional[UUID]) -> None:
    if not is_admin(require_actor(session, actor_id)):
        raise PermissionDenied("The audit log is restricted to admins")


def _record_history(session: Session, record_id: UUID, actor_id: Optional[UUID]) -> dict:
    _require_admin(session, actor_id)
    entries = entries_for_record(session, record_id)
    return {"entries": [snapshot(entry) for entry in entries], "total": len(entries)}


def _batch(session: Session, batch_id: UUID, actor_id: Optional[UUID]) -> dict:
    _require_admin(session, actor_id)
    entries = entries_for_batch(session, batch_id)
    if not entries:
        raise BatchNotFoundError(f"Batch {batch_id} not found", batch_id=str(batch_id))
    return {"entries": [snapshot(entry) for entry in entries], "total": len(entries)}


@router.get("/records/{record_id}")
async def record_history(
    record_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Audit entries for one profile or marriage, newest first."""
    return respond(run_guarded(session, _record_history, session, record_id, actor_id))


@router.get("/batches/{batch_id}")
async def batch_history(
    batch_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(run_guarded(session, _batch, session, batch_id, actor_id))
