"""
Cascade delete and batch restore.

A cascade soft-deletes a profile, every active descendant and their active
marriages as one batch. All entries share one ``batch_id``; restoring the
batch walks them newest first so children come back before their parents.
"""

import logging
from collections import deque
from contextlib import ExitStack
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID, uuid4

from sqlmodel import Session, or_, select

from app.audit.log import mark_undone, record_entry
from app.audit.undo import lease_key
from app.config import settings
from app.locking import get_lease_manager
from app.models import AuditLogEntry, Marriage, Profile
from app.mutation.rows import (
    check_version,
    is_admin,
    lock_row,
    lock_rows,
    require_actor,
    require_row,
    snapshot,
    touch,
)
from app.ontology import ActionType, Severity, is_full_permission
from app.permissions.evaluator import evaluate_many
from app.results import (
    AlreadyUndoneError,
    BatchNotFoundError,
    DomainError,
    InvalidInputError,
    LimitExceededError,
    NotFoundError,
    OperationResult,
    ParentMissingError,
    PermissionDenied,
    run_guarded,
)

logger = logging.getLogger(__name__)


def batch_lease_key(batch_id: UUID) -> str:
    return f"batch:{batch_id}"


class CascadeService:
    def __init__(self, session: Session):
        self.session = session

    def _collect(self, root: Profile) -> list[Profile]:
        """Root plus active descendants, breadth first so parents precede children."""
        members = [root]
        visited = {root.id}
        frontier = deque([root.id])
        depth = 0
        while frontier and depth < settings.max_tree_depth:
            current = list(frontier)
            frontier.clear()
            children = self.session.exec(
                select(Profile)
                .where(or_(Profile.father_id.in_(current), Profile.mother_id.in_(current)))
                .where(Profile.deleted_at == None)  # noqa: E711
                .order_by(Profile.generation, Profile.sibling_order, Profile.name)
            ).all()
            for child in children:
                if child.id in visited:
                    continue
                visited.add(child.id)
                members.append(child)
                frontier.append(child.id)
            if len(members) - 1 > settings.cascade_max_descendants:
                raise LimitExceededError(
                    f"Cascade would delete more than {settings.cascade_max_descendants} descendants",
                    limit=settings.cascade_max_descendants,
                )
            depth += 1
        return members

    def delete(self, root_id: UUID, actor_id: Optional[UUID], expected_version: Optional[int] = None) -> dict:
        actor = require_actor(self.session, actor_id)
        if not is_admin(actor):
            raise PermissionDenied("Cascade delete is restricted to admins")

        root = require_row(self.session, Profile, root_id)
        if root.deleted_at is not None:
            raise NotFoundError(f"Profile {root_id} is already deleted", record_id=str(root_id))
        check_version(root, expected_version)

        members = self._collect(root)
        levels = evaluate_many(self.session, actor.id, [member.id for member in members])
        denied = [str(profile_id) for profile_id, level in levels.items() if not is_full_permission(level)]
        if denied:
            raise PermissionDenied("Insufficient permission over part of the branch", profile_ids=denied)

        batch_id = uuid4()
        now = datetime.utcnow()
        position = 0
        deleted_ids = []
        for member in members:
            profile = require_row(self.session, Profile, member.id)
            before = snapshot(profile)
            profile.deleted_at = now
            touch(profile, actor.id)
            self.session.add(profile)
            self.session.flush()
            record_entry(
                self.session,
                table_name="profiles",
                record_id=profile.id,
                action_type=ActionType.CASCADE_DELETE,
                actor_id=actor.id,
                before=before,
                after=snapshot(profile),
                description=f"Cascade delete of {profile.name}",
                severity=Severity.HIGH,
                batch_id=batch_id,
                details={"position": position, "root_id": str(root.id)},
            )
            position += 1
            deleted_ids.append(profile.id)

        marriages = self.session.exec(
            select(Marriage)
            .where(or_(Marriage.husband_id.in_(deleted_ids), Marriage.wife_id.in_(deleted_ids)))
            .where(Marriage.deleted_at == None)  # noqa: E711
        ).all()
        for candidate in marriages:
            marriage = require_row(self.session, Marriage, candidate.id)
            before = snapshot(marriage)
            marriage.deleted_at = now
            touch(marriage)
            self.session.add(marriage)
            self.session.flush()
            record_entry(
                self.session,
                table_name="marriages",
                record_id=marriage.id,
                action_type=ActionType.MARRIAGE_SOFT_DELETE,
                actor_id=actor.id,
                before=before,
                after=snapshot(marriage),
                description="Marriage removed by cascade delete",
                severity=Severity.HIGH,
                is_undoable=False,
                batch_id=batch_id,
                details={"position": position, "root_id": str(root.id)},
            )
            position += 1

        logger.info(
            "Cascade %s removed %d profiles and %d marriages under %s",
            batch_id,
            len(deleted_ids),
            len(marriages),
            root.id,
        )
        return {
            "batch_id": str(batch_id),
            "deleted_count": len(deleted_ids),
            "marriages_deleted": len(marriages),
            "profile_ids": [str(profile_id) for profile_id in deleted_ids],
        }

    def restore(
        self, leases: ExitStack, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None
    ) -> dict:
        """
        Restore every pending member of the batch ``log_id`` belongs to.

        Two leases are taken: ``audit:<log id>`` for the entry named and
        ``batch:<batch id>`` once the batch is known, so restores started
        from different members of one batch still exclude each other. Each
        member is restored in its own savepoint; a failed member is rolled
        back alone, logged and reported in ``failed``.
        """
        actor = require_actor(self.session, actor_id)
        if not is_admin(actor):
            raise PermissionDenied("Restoring a cascade delete is restricted to admins")

        leases.enter_context(get_lease_manager().hold(lease_key(log_id)))
        anchor = lock_row(self.session, AuditLogEntry, log_id)
        if anchor is None:
            raise NotFoundError(f"Audit entry {log_id} not found", log_id=str(log_id))
        batch_value = anchor.batch_id or anchor.details.get("batch_id")
        if not batch_value:
            raise BatchNotFoundError(f"Audit entry {log_id} is not part of a batch", log_id=str(log_id))
        batch_id = UUID(str(batch_value))

        leases.enter_context(get_lease_manager().hold(batch_lease_key(batch_id)))
        batch = lock_rows(
            self.session,
            AuditLogEntry,
            AuditLogEntry.batch_id == batch_id,
            resource=f"Batch {batch_id}",
        )
        cascade_entries = [e for e in batch if e.action_type == ActionType.CASCADE_DELETE]
        if not cascade_entries:
            raise BatchNotFoundError(f"No cascade delete found for batch {batch_id}", batch_id=str(batch_id))

        pending = [e for e in cascade_entries if e.undone_at is None]
        if not pending:
            undone_at = max(e.undone_at for e in cascade_entries)
            raise AlreadyUndoneError(
                f"Batch already restored at {undone_at.isoformat()}", batch_id=str(batch_id)
            )

        # Children were logged after their parents
        pending.sort(key=lambda e: (e.created_at, e.details.get("position", 0)), reverse=True)

        restored, failed = [], []
        for entry in pending:
            problem = self._restore_member(self._restore_profile, entry, actor, reason)
            if problem is not None:
                failed.append({"profile_id": str(entry.record_id), "reason": problem})
                continue
            restored.append(str(entry.record_id))

        marriages_restored = 0
        for entry in batch:
            if entry.action_type != ActionType.MARRIAGE_SOFT_DELETE or entry.undone_at is not None:
                continue
            problem = self._restore_member(self._restore_marriage, entry, actor, reason)
            if problem is not None:
                failed.append({"marriage_id": str(entry.record_id), "reason": problem})
                continue
            marriages_restored += 1

        return {
            "batch_id": str(batch_id),
            "restored_count": len(restored),
            "restored_profile_ids": restored,
            "marriages_restored": marriages_restored,
            "failed": failed,
        }

    def _restore_member(
        self,
        restore: Callable[[AuditLogEntry, Profile, Optional[str]], None],
        entry: AuditLogEntry,
        actor: Profile,
        reason: Optional[str],
    ) -> Optional[str]:
        """Run one member restore in a savepoint; return the failure message, if any."""
        try:
            with self.session.begin_nested():
                restore(entry, actor, reason)
        except DomainError as exc:
            logger.warning(
                "Cascade member %s (%s) not restored: %s", entry.record_id, entry.table_name, exc.message
            )
            return exc.message
        return None

    def _restore_profile(self, entry: AuditLogEntry, actor: Profile, reason: Optional[str]) -> None:
        profile = lock_row(self.session, Profile, entry.record_id)
        if profile is None:
            raise NotFoundError(f"Profile {entry.record_id} no longer exists")
        if profile.deleted_at is None:
            raise InvalidInputError(f"Profile {profile.id} is already active")

        before = snapshot(profile)
        profile.deleted_at = None
        touch(profile, actor.id)
        self.session.add(profile)
        self.session.flush()

        mark_undone(entry, actor.id, reason)
        self.session.add(entry)
        record_entry(
            self.session,
            table_name="profiles",
            record_id=profile.id,
            action_type=ActionType.UNDO_CASCADE_DELETE,
            actor_id=actor.id,
            before=before,
            after=snapshot(profile),
            description=f"Restored {profile.name} from cascade delete",
            severity=Severity.HIGH,
            is_undoable=False,
            compensates=entry.id,
            details={"restored_batch_id": str(entry.batch_id), "reason": reason},
        )

    def _restore_marriage(self, entry: AuditLogEntry, actor: Profile, reason: Optional[str]) -> None:
        marriage = lock_row(self.session, Marriage, entry.record_id)
        if marriage is None or marriage.deleted_at is None:
            raise InvalidInputError(f"Marriage {entry.record_id} is not deleted")
        for spouse_id in (marriage.husband_id, marriage.wife_id):
            spouse = self.session.get(Profile, spouse_id)
            if spouse is None or spouse.deleted_at is not None:
                label = spouse.name if spouse is not None else spouse_id
                raise ParentMissingError(
                    f"Cannot restore marriage: spouse {label} ({spouse_id}) is deleted, restore them first",
                    spouse_id=str(spouse_id),
                )

        before = snapshot(marriage)
        marriage.deleted_at = None
        touch(marriage)
        self.session.add(marriage)
        self.session.flush()

        mark_undone(entry, actor.id, reason)
        self.session.add(entry)
        record_entry(
            self.session,
            table_name="marriages",
            record_id=marriage.id,
            action_type=ActionType.UNDO_CASCADE_DELETE,
            actor_id=actor.id,
            before=before,
            after=snapshot(marriage),
            description="Restored marriage from cascade delete",
            severity=Severity.HIGH,
            is_undoable=False,
            compensates=entry.id,
            details={"restored_batch_id": str(entry.batch_id), "reason": reason},
        )


def cascade_delete(
    session: Session, root_id: UUID, actor_id: Optional[UUID], expected_version: Optional[int] = None
) -> OperationResult:
    return run_guarded(
        session, CascadeService(session).delete, root_id, actor_id, expected_version, message="Branch deleted"
    )


def undo_cascade(
    session: Session, log_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None
) -> OperationResult:
    leases = ExitStack()
    return run_guarded(
        session,
        CascadeService(session).restore,
        leases,
        log_id,
        actor_id,
        reason,
        lease=leases,
        message="Branch restored",
    )
