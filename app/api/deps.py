"""Shared request dependencies and result responses."""

from typing import Optional
from uuid import UUID

from fastapi import Header
from fastapi.responses import JSONResponse

from app.ontology import ErrorCode
from app.results import OperationResult

STATUS_BY_CODE = {
    ErrorCode.AUTHENTICATION_REQUIRED: 401,
    ErrorCode.PERMISSION_DENIED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.BATCH_NOT_FOUND: 404,
    ErrorCode.VERSION_CONFLICT: 409,
    ErrorCode.ALREADY_UNDONE: 409,
    ErrorCode.NOT_UNDOABLE: 409,
    ErrorCode.LOCK_CONTENTION: 423,
    ErrorCode.PARENT_MISSING: 422,
    ErrorCode.MUNASIB_CONSTRAINT: 422,
    ErrorCode.INVALID_INPUT: 422,
    ErrorCode.FIELD_NOT_WHITELISTED: 422,
    ErrorCode.LIMIT_EXCEEDED: 422,
    ErrorCode.RATE_LIMITED: 429,
}


async def get_actor_id(x_actor_id: Optional[UUID] = Header(default=None)) -> Optional[UUID]:
    """Calling profile id. Services reject a missing one with AUTHENTICATION_REQUIRED."""
    return x_actor_id


def respond(result: OperationResult, success_status: int = 200) -> JSONResponse:
    status_code = success_status if result.success else STATUS_BY_CODE.get(result.error_code, 400)
    return JSONResponse(status_code=status_code, content=result.model_dump(mode="json"))
