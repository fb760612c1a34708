"""Search API endpoints."""

from typing import Optional, Union
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlmodel import Session

from app.api.deps import get_actor_id, respond
from app.database import get_session
from app.mutation.rows import require_actor
from app.results import run_guarded
from app.tree.search import search_by_name_terms

router = APIRouter()


class NameChainSearchRequest(BaseModel):
    terms: Union[list[str], str]
    limit: int = 50
    offset: int = 0


def _search(session: Session, request: NameChainSearchRequest, actor_id: Optional[UUID]) -> dict:
    require_actor(session, actor_id)
    return search_by_name_terms(session, request.terms, request.limit, request.offset)


@router.post("/name-chain")
async def search_name_chain(
    request: NameChainSearchRequest,
    session: Session = Depends(get_session),
    actor_id: Optional[UUID] = Depends(get_actor_id),
) -> JSONResponse:
    """
    Search blood relatives by name chain.

    "محمد عبدالله" ranks profiles named محمد whose father is عبدالله first.
    """
    return respond(run_guarded(session, _search, session, request, actor_id))
