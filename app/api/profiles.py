"""Profile API endpoints."""

from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from sqlmodel import Session

from app.api.deps import get_actor_id, respond
from app.audit.cascade import cascade_delete
from app.database import get_session
from app.models import Profile
from app.mutation.profiles import create_profile, delete_profile, update_profile
from app.mutation.rows import require_actor, snapshot
from app.ontology import Gender
from app.results import NotFoundError, run_guarded
from app.tree.name_chain import NameChainBuilder

router = APIRouter()


class ProfileCreateRequest(BaseModel):
    """Name and gender are required; any other editable field may be given."""

    model_config = ConfigDict(extra="allow")

    name: str
    gender: Gender
    hid: Optional[str] = None
    father_id: Optional[UUID] = None
    mother_id: Optional[UUID] = None
    family_origin: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    expected_version: int
    updates: dict[str, Any]


class CascadeDeleteRequest(BaseModel):
    expected_version: Optional[int] = None


def _fetch(session: Session, profile_id: UUID, actor_id: Optional[UUID]) -> dict:
    require_actor(session, actor_id)
    profile = session.get(Profile, profile_id)
    if profile is None:
        raise NotFoundError(f"Profile {profile_id} not found", record_id=str(profile_id))
    data = snapshot(profile)
    data["name_chain"] = NameChainBuilder(session).build(profile)
    data["is_munasib"] = profile.is_munasib
    return data


def _name_chain(session: Session, profile_id: UUID, actor_id: Optional[UUID]) -> dict:
    require_actor(session, actor_id)
    profile = session.get(Profile, profile_id)
    if profile is None:
        raise NotFoundError(f"Profile {profile_id} not found", record_id=str(profile_id))
    return {"profile_id": str(profile.id), "name_chain": NameChainBuilder(session).build(profile)}


@router.post("")
async def create(
    request: ProfileCreateRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """
    Create a profile.

    Children get the next HID under their blood parent. Roots and married-in
    profiles can only be added by admins.
    """
    fields = request.model_dump(mode="json", exclude_unset=True)
    return respond(create_profile(session, fields, actor_id), success_status=201)


@router.get("/{profile_id}")
async def get_profile(
    profile_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Get a profile by id, married-in and deleted profiles included."""
    return respond(run_guarded(session, _fetch, session, profile_id, actor_id))


@router.patch("/{profile_id}")
async def update(
    profile_id: UUID,
    request: ProfileUpdateRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """
    Patch a profile.

    Only the fields given are written. The request must carry the version the
    caller last saw; a stale version is answered with 409.
    """
    return respond(update_profile(session, profile_id, request.expected_version, request.updates, actor_id))


@router.delete("/{profile_id}")
async def delete(
    profile_id: UUID,
    version: int = Query(..., description="Expected current version"),
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Soft-delete one profile."""
    return respond(delete_profile(session, profile_id, version, actor_id))


@router.get("/{profile_id}/name-chain")
async def name_chain(
    profile_id: UUID,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    return respond(run_guarded(session, _name_chain, session, profile_id, actor_id))


@router.post("/{profile_id}/cascade-delete")
async def cascade(
    profile_id: UUID,
    request: Optional[CascadeDeleteRequest] = None,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """Soft-delete a profile and its whole branch as one batch. Admin only."""
    expected_version = request.expected_version if request else None
    return respond(cascade_delete(session, profile_id, actor_id, expected_version))
