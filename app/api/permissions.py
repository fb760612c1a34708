"""Permission API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from app.api.deps import get_actor_id, respond
from app.database import get_session
from app.mutation.rows import require_actor
from app.ontology import is_full_permission
from app.permissions.evaluator import evaluate_many, evaluate_permission
from app.results import InvalidInputError, run_guarded

router = APIRouter()

MAX_BATCH_TARGETS = 500


class BatchPermissionRequest(BaseModel):
    target_ids: list[UUID]


def _single(session: Session, target_id: UUID, actor_id: Optional[UUID]) -> dict:
    require_actor(session, actor_id)
    level = evaluate_permission(session, actor_id, target_id)
    return {"target_id": str(target_id), "permission": level.value, "can_edit": is_full_permission(level)}


def _batch(session: Session, target_ids: list[UUID], actor_id: Optional[UUID]) -> dict:
    require_actor(session, actor_id)
    if len(target_ids) > MAX_BATCH_TARGETS:
        raise InvalidInputError(f"At most {MAX_BATCH_TARGETS} targets per request")
    levels = evaluate_many(session, actor_id, target_ids)
    return {"permissions": {str(target_id): level.value for target_id, level in levels.items()}}


@router.get("/{target_id}")
async def get_permission(
    target_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Permission level of the caller over one profile."""
    return respond(run_guarded(session, _single, session, target_id, actor_id))


@router.post("/batch")
async def batch_permissions(
    request: BatchPermissionRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(run_guarded(session, _batch, session, request.target_ids, actor_id))
