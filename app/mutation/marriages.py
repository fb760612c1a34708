"""
Marriage mutations.

The munasib rule itself is enforced by the flush hook in ``app.models``; this
service fills the value in when the caller leaves it out and keeps married-in
spouses from lingering once their last marriage is gone.
"""

import logging
from datetime import date, datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlmodel import Session, or_, select

from app.audit.log import record_entry
from app.models import Marriage, Profile
from app.mutation.rows import (
    check_version,
    coerce_field,
    require_actor,
    require_row,
    snapshot,
    touch,
)
from app.ontology import ActionType, Gender, MarriageStatus, Severity, is_full_permission
from app.permissions.evaluator import evaluate_many
from app.results import (
    InvalidInputError,
    NotFoundError,
    OperationResult,
    PermissionDenied,
    run_guarded,
)
from app.tree.munasib import expected_munasib

logger = logging.getLogger(__name__)

MARRIAGE_UPDATABLE_FIELDS = frozenset({"status", "start_date", "end_date", "munasib"})


def _require_spouse_permission(session: Session, actor_id: UUID, marriage: Marriage, action: str) -> None:
    """Full permission over either spouse is enough."""
    levels = evaluate_many(session, actor_id, [marriage.husband_id, marriage.wife_id])
    if not any(is_full_permission(level) for level in levels.values()):
        raise PermissionDenied(
            f"Insufficient permission to {action}",
            permission={str(profile_id): level.value for profile_id, level in levels.items()},
        )


def active_marriages_of(session: Session, profile_id: UUID) -> list[Marriage]:
    return list(
        session.exec(
            select(Marriage)
            .where(or_(Marriage.husband_id == profile_id, Marriage.wife_id == profile_id))
            .where(Marriage.deleted_at == None)  # noqa: E711
        ).all()
    )


def has_active_children(session: Session, profile_id: UUID) -> bool:
    child = session.exec(
        select(Profile.id)
        .where(or_(Profile.father_id == profile_id, Profile.mother_id == profile_id))
        .where(Profile.deleted_at == None)  # noqa: E711
    ).first()
    return child is not None


class MarriageService:
    def __init__(self, session: Session):
        self.session = session

    def _spouse(self, profile_id: UUID, gender: Gender, role: str) -> Profile:
        spouse = self.session.get(Profile, profile_id)
        if spouse is None or spouse.deleted_at is not None:
            raise NotFoundError(f"{role} {profile_id} not found", record_id=str(profile_id))
        if spouse.gender != gender:
            raise InvalidInputError(f"{role} must be {gender.value}", field=f"{role}_id")
        return spouse

    def create(
        self,
        husband_id: UUID,
        wife_id: UUID,
        actor_id: Optional[UUID],
        munasib: Optional[str] = None,
        status: MarriageStatus = MarriageStatus.CURRENT,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> dict:
        actor = require_actor(self.session, actor_id)
        husband = self._spouse(husband_id, Gender.MALE, "husband")
        wife = self._spouse(wife_id, Gender.FEMALE, "wife")

        marriage = Marriage(
            husband_id=husband.id,
            wife_id=wife.id,
            munasib=munasib,
            status=status,
            start_date=start_date,
            end_date=end_date,
        )
        _require_spouse_permission(self.session, actor.id, marriage, "record this marriage")

        duplicate = self.session.exec(
            select(Marriage.id)
            .where(Marriage.husband_id == husband.id)
            .where(Marriage.wife_id == wife.id)
            .where(Marriage.deleted_at == None)  # noqa: E711
        ).first()
        if duplicate is not None:
            raise InvalidInputError("These spouses already have an active marriage")

        if munasib is None and (husband.hid is None) != (wife.hid is None):
            marriage.munasib = expected_munasib(
                husband.hid, wife.hid, husband.family_origin, wife.family_origin
            )

        self.session.add(marriage)
        self.session.flush()
        after = snapshot(marriage)
        record_entry(
            self.session,
            table_name="marriages",
            record_id=marriage.id,
            action_type=ActionType.MARRIAGE_CREATE,
            actor_id=actor.id,
            before=None,
            after=after,
            description=f"Recorded marriage of {husband.name} and {wife.name}",
            is_undoable=False,
        )
        return after

    def update(
        self,
        marriage_id: UUID,
        expected_version: int,
        updates: dict[str, Any],
        actor_id: Optional[UUID],
    ) -> dict:
        actor = require_actor(self.session, actor_id)
        if not updates:
            raise InvalidInputError("No fields to update")
        unknown = sorted(set(updates) - MARRIAGE_UPDATABLE_FIELDS)
        if unknown:
            raise InvalidInputError(f"Fields cannot be updated: {', '.join(unknown)}", fields=unknown)

        marriage = require_row(self.session, Marriage, marriage_id)
        if marriage.deleted_at is not None:
            raise NotFoundError(f"Marriage {marriage_id} is deleted", record_id=str(marriage_id))
        _require_spouse_permission(self.session, actor.id, marriage, "edit this marriage")
        check_version(marriage, expected_version)

        before = snapshot(marriage)
        for field, value in updates.items():
            try:
                setattr(marriage, field, coerce_field(Marriage, field, value))
            except ValidationError as exc:
                raise InvalidInputError(f"Invalid value for {field}", field=field) from exc
        touch(marriage)
        self.session.add(marriage)
        self.session.flush()
        after = snapshot(marriage)

        record_entry(
            self.session,
            table_name="marriages",
            record_id=marriage.id,
            action_type=ActionType.MARRIAGE_UPDATE,
            actor_id=actor.id,
            before=before,
            after=after,
            description="Updated marriage",
            is_undoable=False,
        )
        return after

    def delete(self, marriage_id: UUID, expected_version: int, actor_id: Optional[UUID]) -> dict:
        actor = require_actor(self.session, actor_id)
        marriage = require_row(self.session, Marriage, marriage_id)
        if marriage.deleted_at is not None:
            raise NotFoundError(f"Marriage {marriage_id} is already deleted", record_id=str(marriage_id))
        _require_spouse_permission(self.session, actor.id, marriage, "delete this marriage")
        check_version(marriage, expected_version)

        now = datetime.utcnow()
        before = snapshot(marriage)
        marriage.deleted_at = now
        touch(marriage)
        self.session.add(marriage)
        self.session.flush()

        cleaned = self._clean_up_munasib(marriage, actor.id, now)
        entry = record_entry(
            self.session,
            table_name="marriages",
            record_id=marriage.id,
            action_type=ActionType.MARRIAGE_SOFT_DELETE,
            actor_id=actor.id,
            before=before,
            after=snapshot(marriage),
            description="Deleted marriage",
            severity=Severity.MEDIUM,
            details={"munasib_profiles_deleted": [str(profile_id) for profile_id in cleaned]},
        )
        return {
            "marriage_id": str(marriage.id),
            "version": marriage.version,
            "log_id": str(entry.id),
            "munasib_profiles_deleted": [str(profile_id) for profile_id in cleaned],
        }

    def _clean_up_munasib(self, marriage: Marriage, actor_id: UUID, now: datetime) -> list[UUID]:
        """Soft-delete married-in spouses left with no marriage and no children."""
        cleaned = []
        for spouse_id in (marriage.husband_id, marriage.wife_id):
            spouse = require_row(self.session, Profile, spouse_id)
            if spouse.hid is not None or spouse.deleted_at is not None:
                continue
            if active_marriages_of(self.session, spouse.id) or has_active_children(self.session, spouse.id):
                continue

            before = snapshot(spouse)
            spouse.deleted_at = now
            touch(spouse, actor_id)
            self.session.add(spouse)
            self.session.flush()
            record_entry(
                self.session,
                table_name="profiles",
                record_id=spouse.id,
                action_type=ActionType.PROFILE_DELETE,
                actor_id=actor_id,
                before=before,
                after=snapshot(spouse),
                description=f"Removed married-in profile {spouse.name} with its last marriage",
                severity=Severity.MEDIUM,
                is_undoable=False,
                details={"marriage_id": str(marriage.id)},
            )
            logger.info("Munasib profile %s removed with marriage %s", spouse.id, marriage.id)
            cleaned.append(spouse.id)
        return cleaned


def create_marriage(session: Session, husband_id: UUID, wife_id: UUID, actor_id: Optional[UUID], **fields: Any) -> OperationResult:
    return run_guarded(
        session, MarriageService(session).create, husband_id, wife_id, actor_id, message="Marriage recorded", **fields
    )


def update_marriage(
    session: Session, marriage_id: UUID, expected_version: int, updates: dict[str, Any], actor_id: Optional[UUID]
) -> OperationResult:
    return run_guarded(
        session,
        MarriageService(session).update,
        marriage_id,
        expected_version,
        updates,
        actor_id,
        message="Marriage updated",
    )


def delete_marriage(
    session: Session, marriage_id: UUID, expected_version: int, actor_id: Optional[UUID]
) -> OperationResult:
    return run_guarded(
        session, MarriageService(session).delete, marriage_id, expected_version, actor_id, message="Marriage deleted"
    )
