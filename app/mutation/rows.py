"""Row locking, actor lookup and snapshots shared by every mutating service."""

from datetime import datetime
from typing import Any, Optional, Type, TypeVar
from uuid import UUID

from pydantic import TypeAdapter
from sqlalchemy import inspect
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, select

from app.models import Profile
from app.ontology import ADMIN_ROLES
from app.results import (
    AuthenticationError,
    LockContentionError,
    NotFoundError,
    VersionConflictError,
)

ModelT = TypeVar("ModelT", bound=SQLModel)

# SQLSTATE raised by FOR UPDATE NOWAIT when the row is already locked
LOCK_NOT_AVAILABLE = "55P03"


def _is_lock_not_available(exc: OperationalError) -> bool:
    orig = exc.orig
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    return code == LOCK_NOT_AVAILABLE


def lock_row(session: Session, model: Type[ModelT], row_id: UUID) -> Optional[ModelT]:
    """
    ``SELECT ... FOR UPDATE NOWAIT`` one row, refreshing any cached copy.

    A row held by another transaction raises LockContentionError instead of
    waiting.
    """
    rows = lock_rows(session, model, model.id == row_id, resource=f"{model.__name__} {row_id}")
    return rows[0] if rows else None


def lock_rows(session: Session, model: Type[ModelT], *criteria: Any, resource: str) -> list[ModelT]:
    """Row-lock every ``model`` row matching ``criteria``, NOWAIT."""
    statement = (
        select(model)
        .where(*criteria)
        .with_for_update(nowait=True)
        .execution_options(populate_existing=True)
    )
    try:
        return list(session.exec(statement).all())
    except OperationalError as exc:
        if _is_lock_not_available(exc):
            raise LockContentionError(
                f"{resource} is being modified by another request, try again shortly",
                resource=resource,
            ) from exc
        raise


def require_row(session: Session, model: Type[ModelT], row_id: UUID) -> ModelT:
    row = lock_row(session, model, row_id)
    if row is None:
        raise NotFoundError(f"{model.__name__} {row_id} not found", record_id=str(row_id))
    return row


def require_actor(session: Session, actor_id: Optional[UUID]) -> Profile:
    """Resolve the calling profile; anonymous or deleted callers are rejected."""
    if actor_id is None:
        raise AuthenticationError("Authentication required")
    actor = session.get(Profile, actor_id)
    if actor is None or actor.deleted_at is not None:
        raise AuthenticationError("No active profile for the calling identity")
    return actor


def is_admin(profile: Profile) -> bool:
    return profile.role in ADMIN_ROLES


def snapshot(row: SQLModel) -> dict[str, Any]:
    """JSON-safe copy of every column of ``row``."""
    # model_dump reads __dict__ directly, so expired attributes must be loaded first
    state = inspect(row)
    if state.expired_attributes and state.session is not None:
        state.session.refresh(row)
    return row.model_dump(mode="json")


def coerce_field(model: Type[SQLModel], field: str, value: Any) -> Any:
    """Convert a JSON snapshot value back to the column's Python type."""
    annotation = model.model_fields[field].annotation
    return TypeAdapter(annotation).validate_python(value)


def touch(row: SQLModel, actor_id: Optional[UUID] = None) -> None:
    """Bump the optimistic-lock version and modification stamps."""
    row.version += 1
    row.updated_at = datetime.utcnow()
    if actor_id is not None and hasattr(row, "updated_by"):
        row.updated_by = actor_id


def check_version(row: SQLModel, expected_version: Optional[int], message: Optional[str] = None) -> None:
    """Optimistic lock check; ``None`` skips it."""
    if expected_version is not None and row.version != expected_version:
        raise VersionConflictError(row.version, expected_version, message)
