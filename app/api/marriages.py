"""Marriage API endpoints."""

from datetime import date
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from app.api.deps import get_actor_id, respond
from app.database import get_session
from app.mutation.marriages import create_marriage, delete_marriage, update_marriage
from app.ontology import MarriageStatus

router = APIRouter()


class MarriageCreateRequest(BaseModel):
    husband_id: UUID
    wife_id: UUID
    munasib: Optional[str] = None
    status: MarriageStatus = MarriageStatus.CURRENT
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class MarriageUpdateRequest(BaseModel):
    expected_version: int
    updates: dict[str, Any]


@router.post("")
async def create(
    request: MarriageCreateRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """
    Record a marriage.

    When one spouse married into the family and ``munasib`` is omitted, it is
    taken from that spouse's family origin.
    """
    result = create_marriage(
        session,
        request.husband_id,
        request.wife_id,
        actor_id,
        munasib=request.munasib,
        status=request.status,
        start_date=request.start_date,
        end_date=request.end_date,
    )
    return respond(result, success_status=201)


@router.patch("/{marriage_id}")
async def update(
    marriage_id: UUID,
    request: MarriageUpdateRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(update_marriage(session, marriage_id, request.expected_version, request.updates, actor_id))


@router.delete("/{marriage_id}")
async def delete(
    marriage_id: UUID,
    version: int = Query(..., description="Expected current version"),
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Soft-delete a marriage, removing married-in spouses it leaves unattached."""
    return respond(delete_marriage(session, marriage_id, version, actor_id))
