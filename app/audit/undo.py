"""
Compensating-transaction undo.

An undo never rewrites history: it applies the inverse change as a new
mutation, marks the original entry undone and appends a non-undoable entry
pointing back at it. Each attempt holds the lease ``audit:<log id>`` until
its transaction commits, and row-locks the entry, the record and any parent
it is about to point at again.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlmodel import Session, select

from app.audit.log import ChangeSet, mark_undone, record_entry, structured_value_problem
from app.config import settings
from app.locking import get_lease_manager
from app.models import AuditLogEntry, Marriage, Profile
from app.mutation.profiles import UPDATABLE_FIELDS
from app.mutation.rows import (
    check_version,
    coerce_field,
    is_admin,
    lock_row,
    require_actor,
    require_row,
    snapshot,
    touch,
)
from app.ontology import ActionType, is_full_permission
from app.permissions.evaluator import evaluate_many
from app.results import (
    AlreadyUndoneError,
    InvalidInputError,
    LockContentionError,
    NotFoundError,
    NotUndoableError,
    OperationResult,
    ParentMissingError,
    PermissionDenied,
    run_guarded,
)

logger = logging.getLogger(__name__)

PARENT_ROLES = {"father_id": "father", "mother_id": "mother"}


def lease_key(log_id: UUID) -> str:
    return f"audit:{log_id}"


def load_undoable_entry(session: Session, log_id: UUID, action_types: Iterable[ActionType]) -> AuditLogEntry:
    """Row-lock an audit entry and make sure it can still be undone."""
    try:
        entry = lock_row(session, AuditLogEntry, log_id)
    except LockContentionError as exc:
        raise LockContentionError("Undo already in progress for this entry", log_id=str(log_id)) from exc
    if entry is None:
        raise NotFoundError(f"Audit entry {log_id} not found", log_id=str(log_id))
    if entry.undone_at is not None:
        raise AlreadyUndoneError(
            f"Already undone at {entry.undone_at.isoformat()}",
            undone_at=entry.undone_at.isoformat(),
            undone_by=str(entry.undone_by) if entry.undone_by else None,
        )
    if not entry.is_undoable or entry.action_type not in set(action_types):
        raise NotUndoableError(
            f"Entry of type {entry.action_type.value} cannot be undone here",
            action_type=entry.action_type.value,
        )
    return entry


def check_undo_permission(
    session: Session, actor: Profile, entry: AuditLogEntry, target_ids: Iterable[UUID]
) -> None:
    """Full permission over any target, and the undo window for non-admins."""
    levels = evaluate_many(session, actor.id, target_ids)
    if not any(is_full_permission(level) for level in levels.values()):
        raise PermissionDenied("Insufficient permission to undo this action")
    if not is_admin(actor):
        window = timedelta(days=settings.undo_window_days)
        if datetime.utcnow() - entry.created_at > window:
            raise PermissionDenied(
                f"Only admins can undo actions older than {settings.undo_window_days} days"
            )


def guard_parents(session: Session, before: Optional[dict]) -> None:
    """Every parent the restored row will point at must exist and be active."""
    for field, role in PARENT_ROLES.items():
        parent_id = (before or {}).get(field)
        if not parent_id:
            continue
        parent = lock_row(session, Profile, UUID(str(parent_id)))
        if parent is None or parent.deleted_at is not None:
            label = parent.name if parent is not None else parent_id
            raise ParentMissingError(
                f"Cannot undo: {role} {label} ({parent_id}) has been deleted",
                parent_id=str(parent_id),
                field=field,
            )


def _expected_version(entry: AuditLogEntry) -> Optional[int]:
    return (entry.new_data or {}).get("version")


def _edited_since(profile_or_marriage, entry: AuditLogEntry) -> str:
    return (
        f"Cannot undo: record was edited since (current version "
        f"{profile_or_marriage.version}, expected {_expected_version(entry)})"
    )


class UndoEngine:
    """Inverse operations for the undoable audit action types."""

    def __init__(self, session: Session):
        self.session = session

    def _compensate(
        self,
        entry: AuditLogEntry,
        actor: Profile,
        action_type: ActionType,
        before: dict,
        after: dict,
        reason: Optional[str],
        description: str,
        details: Optional[dict] = None,
    ) -> AuditLogEntry:
        mark_undone(entry, actor.id, reason)
        self.session.add(entry)
        return record_entry(
            self.session,
            table_name=entry.table_name,
            record_id=entry.record_id,
            action_type=action_type,
            actor_id=actor.id,
            before=before,
            after=after,
            description=description,
            severity=entry.severity,
            is_undoable=False,
            compensates=entry.id,
            details=dict(details or {}, reason=reason),
        )

    def undo_profile_update(self, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None) -> dict:
        actor = require_actor(self.session, actor_id)
        entry = load_undoable_entry(self.session, log_id, [ActionType.PROFILE_UPDATE])
        check_undo_permission(self.session, actor, entry, [entry.record_id])

        profile = require_row(self.session, Profile, entry.record_id)
        check_version(profile, _expected_version(entry), _edited_since(profile, entry))
        guard_parents(self.session, entry.old_data)

        before = snapshot(profile)
        restored, skipped = [], {}
        for change in ChangeSet.from_entry(entry).changes:
            if change.field not in UPDATABLE_FIELDS:
                skipped[change.field] = "not restorable"
                continue
            problem = structured_value_problem(change.field, change.old)
            if problem:
                skipped[change.field] = problem
                continue
            try:
                setattr(profile, change.field, coerce_field(Profile, change.field, change.old))
            except ValidationError:
                skipped[change.field] = "invalid stored value"
                continue
            restored.append(change.field)

        if skipped:
            logger.warning("Undo of %s skipped fields: %s", entry.id, skipped)

        touch(profile, actor.id)
        self.session.add(profile)
        self.session.flush()
        after = snapshot(profile)

        compensating = self._compensate(
            entry,
            actor,
            ActionType.UNDO_PROFILE_UPDATE,
            before,
            after,
            reason,
            f"Undid update of {', '.join(restored) or 'nothing'} on {profile.name}",
            {"restored_fields": restored, "skipped_fields": skipped},
        )
        return {
            "profile_id": str(profile.id),
            "version": profile.version,
            "restored_fields": restored,
            "skipped_fields": skipped,
            "compensating_log_id": str(compensating.id),
        }

    def undo_profile_delete(self, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None) -> dict:
        actor = require_actor(self.session, actor_id)
        entry = load_undoable_entry(self.session, log_id, [ActionType.PROFILE_DELETE])
        check_undo_permission(self.session, actor, entry, [entry.record_id])

        profile = require_row(self.session, Profile, entry.record_id)
        check_version(profile, _expected_version(entry), _edited_since(profile, entry))
        if profile.deleted_at is None:
            raise InvalidInputError(f"Profile {profile.id} is not deleted")
        guard_parents(self.session, entry.old_data)

        before = snapshot(profile)
        profile.deleted_at = None
        touch(profile, actor.id)
        self.session.add(profile)
        self.session.flush()

        compensating = self._compensate(
            entry,
            actor,
            ActionType.UNDO_PROFILE_DELETE,
            before,
            snapshot(profile),
            reason,
            f"Restored profile {profile.name}",
        )
        return {
            "profile_id": str(profile.id),
            "version": profile.version,
            "compensating_log_id": str(compensating.id),
        }

    def undo_marriage_delete(self, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None) -> dict:
        actor = require_actor(self.session, actor_id)
        entry = load_undoable_entry(self.session, log_id, [ActionType.MARRIAGE_SOFT_DELETE])

        marriage = require_row(self.session, Marriage, entry.record_id)
        check_undo_permission(self.session, actor, entry, [marriage.husband_id, marriage.wife_id])
        check_version(marriage, _expected_version(entry), _edited_since(marriage, entry))
        if marriage.deleted_at is None:
            raise InvalidInputError(f"Marriage {marriage.id} is not deleted")

        munasib_restored = self._restore_cleaned_spouses(entry, marriage, actor)

        for spouse_id in (marriage.husband_id, marriage.wife_id):
            spouse = lock_row(self.session, Profile, spouse_id)
            if spouse is None or spouse.deleted_at is not None:
                label = spouse.name if spouse is not None else spouse_id
                raise ParentMissingError(
                    f"Cannot undo: spouse {label} ({spouse_id}) has been deleted, restore them first",
                    spouse_id=str(spouse_id),
                )

        before = snapshot(marriage)
        marriage.deleted_at = None
        touch(marriage)
        self.session.add(marriage)
        self.session.flush()

        compensating = self._compensate(
            entry,
            actor,
            ActionType.UNDO_MARRIAGE_DELETE,
            before,
            snapshot(marriage),
            reason,
            "Restored marriage",
            {"munasib_profiles_restored": [str(profile_id) for profile_id in munasib_restored]},
        )
        return {
            "marriage_id": str(marriage.id),
            "version": marriage.version,
            "munasib_profiles_restored": [str(profile_id) for profile_id in munasib_restored],
            "compensating_log_id": str(compensating.id),
        }

    def _restore_cleaned_spouses(self, entry: AuditLogEntry, marriage: Marriage, actor: Profile) -> list[UUID]:
        """Bring back married-in spouses the marriage delete removed."""
        cleaned_ids = [UUID(value) for value in entry.details.get("munasib_profiles_deleted", [])]
        if not cleaned_ids:
            return []

        cleanup_entries = self.session.exec(
            select(AuditLogEntry)
            .where(AuditLogEntry.record_id.in_(cleaned_ids))
            .where(AuditLogEntry.action_type == ActionType.PROFILE_DELETE)
            .where(AuditLogEntry.undone_at == None)  # noqa: E711
        ).all()

        restored = []
        for profile_id in cleaned_ids:
            spouse = require_row(self.session, Profile, profile_id)
            if spouse.deleted_at is None:
                continue
            before = snapshot(spouse)
            spouse.deleted_at = None
            touch(spouse, actor.id)
            self.session.add(spouse)
            self.session.flush()

            for cleanup in cleanup_entries:
                if cleanup.record_id == profile_id and cleanup.details.get("marriage_id") == str(marriage.id):
                    self._compensate(
                        cleanup,
                        actor,
                        ActionType.UNDO_PROFILE_DELETE,
                        before,
                        snapshot(spouse),
                        None,
                        f"Restored married-in profile {spouse.name} with its marriage",
                    )
            restored.append(spouse.id)
        return restored


def _guarded_undo(session: Session, handler_name: str, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str], message: str) -> OperationResult:
    handler = getattr(UndoEngine(session), handler_name)
    return run_guarded(
        session,
        handler,
        log_id,
        actor_id,
        reason,
        lease=get_lease_manager().hold(lease_key(log_id)),
        message=message,
    )


def undo_profile_update(
    session: Session, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None
) -> OperationResult:
    return _guarded_undo(session, "undo_profile_update", log_id, actor_id, reason, "Profile update undone")


def undo_profile_delete(
    session: Session, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None
) -> OperationResult:
    return _guarded_undo(session, "undo_profile_delete", log_id, actor_id, reason, "Profile restored")


def undo_marriage_delete(
    session: Session, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None
) -> OperationResult:
    return _guarded_undo(session, "undo_marriage_delete", log_id, actor_id, reason, "Marriage restored")
