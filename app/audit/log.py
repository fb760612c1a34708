"""
Audit log entries and typed change sets.

Every mutation appends one ``AuditLogEntry`` in the same transaction as the
row change. The before/after snapshots are stored whole; the fields that
actually changed are carried by a ``ChangeSet`` so the undo engine never has
to guess at JSON shapes.
"""

from datetime import datetime
from typing import Any, Iterable, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlmodel import Session, select

from app.models import AuditLogEntry
from app.ontology import ActionCategory, ActionType, Severity

# Bookkeeping columns that change on every write and never count as edits
VOLATILE_FIELDS = frozenset({"version", "updated_at", "updated_by", "created_at"})

DATE_FIELDS = frozenset({"dob_data", "dod_data"})
OBJECT_FIELDS = frozenset({"social_media_links"})
LIST_FIELDS = frozenset({"achievements", "timeline"})

_CATEGORIES = {
    ActionType.PROFILE_CREATE: ActionCategory.PROFILE,
    ActionType.PROFILE_UPDATE: ActionCategory.PROFILE,
    ActionType.PROFILE_DELETE: ActionCategory.PROFILE,
    ActionType.CASCADE_DELETE: ActionCategory.PROFILE,
    ActionType.MARRIAGE_CREATE: ActionCategory.MARRIAGE,
    ActionType.MARRIAGE_UPDATE: ActionCategory.MARRIAGE,
    ActionType.MARRIAGE_SOFT_DELETE: ActionCategory.MARRIAGE,
    ActionType.SUGGESTION_APPROVE: ActionCategory.SUGGESTION,
    ActionType.SUGGESTION_REJECT: ActionCategory.SUGGESTION,
}


def structured_value_problem(field: str, value: Any) -> Optional[str]:
    """Return why ``value`` cannot be stored in ``field``, or None."""
    if value is None:
        return None
    if field in DATE_FIELDS:
        if not isinstance(value, dict) or not ({"hijri", "gregorian"} & value.keys()):
            return f"{field} must be an object with 'hijri' or 'gregorian'"
    elif field in OBJECT_FIELDS:
        if not isinstance(value, dict):
            return f"{field} must be an object"
    elif field in LIST_FIELDS:
        if not isinstance(value, list):
            return f"{field} must be a list"
    return None


class FieldChange(BaseModel):
    field: str
    old: Any = None
    new: Any = None


class ChangeSet(BaseModel):
    """Field name -> (old, new) pairs for one mutation."""

    changes: list[FieldChange] = []

    @classmethod
    def diff(cls, before: Optional[dict], after: Optional[dict]) -> "ChangeSet":
        before = before or {}
        after = after or {}
        changes = []
        for field in sorted(set(before) | set(after)):
            if field in VOLATILE_FIELDS:
                continue
            if before.get(field) != after.get(field):
                changes.append(FieldChange(field=field, old=before.get(field), new=after.get(field)))
        return cls(changes=changes)

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "ChangeSet":
        before = entry.old_data or {}
        after = entry.new_data or {}
        return cls(
            changes=[
                FieldChange(field=field, old=before.get(field), new=after.get(field))
                for field in entry.changed_fields
            ]
        )

    @property
    def fields(self) -> list[str]:
        return [change.field for change in self.changes]

    def __bool__(self) -> bool:
        return bool(self.changes)


def category_for(action_type: ActionType) -> ActionCategory:
    return _CATEGORIES.get(action_type, ActionCategory.UNDO)


def record_entry(
    session: Session,
    *,
    table_name: str,
    record_id: UUID,
    action_type: ActionType,
    actor_id: Optional[UUID],
    before: Optional[dict],
    after: Optional[dict],
    description: str,
    severity: Severity = Severity.LOW,
    is_undoable: bool = True,
    changes: Optional[ChangeSet] = None,
    batch_id: Optional[UUID] = None,
    compensates: Optional[UUID] = None,
    details: Optional[dict] = None,
) -> AuditLogEntry:
    """Append one audit entry to the current transaction."""
    if changes is None:
        changes = ChangeSet.diff(before, after)

    metadata = dict(details or {})
    if batch_id is not None:
        metadata["batch_id"] = str(batch_id)

    entry = AuditLogEntry(
        table_name=table_name,
        record_id=record_id,
        action_type=action_type,
        action_category=category_for(action_type),
        actor_id=actor_id,
        old_data=before,
        new_data=after,
        changed_fields=changes.fields,
        description=description,
        severity=severity,
        is_undoable=is_undoable,
        batch_id=batch_id,
        compensates_log_id=compensates,
        details=metadata,
    )
    session.add(entry)
    session.flush()
    return entry


def mark_undone(entry: AuditLogEntry, actor_id: UUID, reason: Optional[str]) -> None:
    entry.undone_at = datetime.utcnow()
    entry.undone_by = actor_id
    entry.undo_reason = reason


def entries_for_record(session: Session, record_id: UUID) -> list[AuditLogEntry]:
    statement = (
        select(AuditLogEntry)
        .where(AuditLogEntry.record_id == record_id)
        .order_by(AuditLogEntry.created_at.desc())
    )
    return list(session.exec(statement).all())


def entries_for_batch(
    session: Session, batch_id: UUID, action_types: Optional[Iterable[ActionType]] = None
) -> list[AuditLogEntry]:
    statement = select(AuditLogEntry).where(AuditLogEntry.batch_id == batch_id)
    if action_types is not None:
        statement = statement.where(AuditLogEntry.action_type.in_(list(action_types)))
    return list(session.exec(statement.order_by(AuditLogEntry.created_at)).all())
