"""Route an undo request to the handler for the entry's action type."""

from typing import Optional
from uuid import UUID

from sqlmodel import Session

from app.audit.cascade import undo_cascade
from app.audit.undo import undo_marriage_delete, undo_profile_delete, undo_profile_update
from app.models import AuditLogEntry
from app.ontology import ActionType
from app.results import NotFoundError, NotUndoableError, OperationResult

UNDO_HANDLERS = {
    ActionType.PROFILE_UPDATE: undo_profile_update,
    ActionType.PROFILE_DELETE: undo_profile_delete,
    ActionType.CASCADE_DELETE: undo_cascade,
    ActionType.MARRIAGE_SOFT_DELETE: undo_marriage_delete,
}


def undo_action(
    session: Session, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None
) -> OperationResult:
    entry = session.get(AuditLogEntry, log_id)
    if entry is None:
        return OperationResult.failure(NotFoundError(f"Audit entry {log_id} not found", log_id=str(log_id)))

    handler = UNDO_HANDLERS.get(entry.action_type)
    if entry.batch_id is not None and entry.action_type == ActionType.MARRIAGE_SOFT_DELETE:
        # Marriages removed by a cascade come back with their batch
        handler = undo_cascade
    if handler is None:
        return OperationResult.failure(
            NotUndoableError(
                f"No undo available for {entry.action_type.value}",
                action_type=entry.action_type.value,
            )
        )
    return handler(session, log_id, actor_id, reason)
