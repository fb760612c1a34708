"""Administration API endpoints."""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from app.api.deps import get_actor_id, respond
from app.database import get_session
from app.permissions.admin import (
    assign_moderator,
    block_submitter,
    revoke_moderator,
    unblock_submitter,
)

router = APIRouter()


class ModeratorRequest(BaseModel):
    user_id: UUID
    branch_hid: str


class BlockRequest(BaseModel):
    user_id: UUID
    reason: Optional[str] = None


@router.post("/moderators")
async def add_moderator(
    request: ModeratorRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Grant a profile edit rights over a HID branch."""
    return respond(assign_moderator(session, request.user_id, request.branch_hid, actor_id), success_status=201)


@router.delete("/moderators/{assignment_id}")
async def remove_moderator(
    assignment_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(revoke_moderator(session, assignment_id, actor_id))


@router.post("/blocks")
async def add_block(
    request: BlockRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Stop a profile from filing edit suggestions."""
    return respond(block_submitter(session, request.user_id, actor_id, request.reason), success_status=201)


@router.delete("/blocks/{block_id}")
async def remove_block(
    block_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(unblock_submitter(session, block_id, actor_id))
