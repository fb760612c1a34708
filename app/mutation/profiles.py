"""
Profile mutations with optimistic locking.

Every write row-locks the profile, checks the caller's expected version,
increments the version by exactly one and appends an audit entry in the same
transaction.
"""

import logging
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlmodel import Session, select

from app.audit.log import ChangeSet, record_entry, structured_value_problem
from app.models import Profile
from app.mutation.rows import (
    check_version,
    coerce_field,
    is_admin,
    require_actor,
    require_row,
    snapshot,
    touch,
)
from app.ontology import ActionType, Gender, Severity
from app.permissions.evaluator import collect_descendants, require_full_permission
from app.results import (
    InvalidInputError,
    NotFoundError,
    OperationResult,
    PermissionDenied,
    run_guarded,
)
from app.tree.hid import generation_of, next_child_hid, parse_hid, separator_of, sibling_index

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset(
    {
        "name",
        "kunya",
        "nickname",
        "gender",
        "status",
        "dob_data",
        "dod_data",
        "bio",
        "phone",
        "email",
        "birth_place",
        "current_residence",
        "occupation",
        "education",
        "family_origin",
        "photo_url",
        "social_media_links",
        "achievements",
        "timeline",
        "dob_is_public",
        "profile_visibility",
        "father_id",
        "mother_id",
    }
)

# Fields a new profile may be created with, on top of the updatable ones
CREATE_ONLY_FIELDS = frozenset({"hid"})

PARENT_FIELDS = {"father_id": Gender.MALE, "mother_id": Gender.FEMALE}


class ProfileService:
    """Create, update and soft-delete profiles."""

    def __init__(self, session: Session):
        self.session = session

    def _coerce(self, updates: dict[str, Any]) -> dict[str, Any]:
        values = {}
        for field, value in updates.items():
            problem = structured_value_problem(field, value)
            if problem:
                raise InvalidInputError(problem, field=field)
            try:
                values[field] = coerce_field(Profile, field, value)
            except ValidationError as exc:
                raise InvalidInputError(f"Invalid value for {field}", field=field) from exc
        if "name" in values and not (values["name"] or "").strip():
            raise InvalidInputError("name must not be empty", field="name")
        return values

    def _check_parent(self, profile_id: Optional[UUID], field: str, parent_id: Optional[UUID]) -> Optional[Profile]:
        """A parent must exist, be active, have the right gender and not close a cycle."""
        if parent_id is None:
            return None
        parent = self.session.get(Profile, parent_id)
        if parent is None or parent.deleted_at is not None:
            raise InvalidInputError(f"{field} {parent_id} does not exist", field=field)
        if parent.gender != PARENT_FIELDS[field]:
            raise InvalidInputError(
                f"{field} must reference a {PARENT_FIELDS[field].value} profile", field=field
            )
        if profile_id is not None:
            if parent_id == profile_id or parent_id in collect_descendants(self.session, profile_id):
                raise InvalidInputError(f"{field} would create a cycle", field=field)
        return parent

    def update(
        self,
        profile_id: UUID,
        expected_version: int,
        field_updates: dict[str, Any],
        actor_id: Optional[UUID],
    ) -> dict:
        actor = require_actor(self.session, actor_id)
        if not field_updates:
            raise InvalidInputError("No fields to update")
        unknown = sorted(set(field_updates) - UPDATABLE_FIELDS)
        if unknown:
            raise InvalidInputError(f"Fields cannot be updated: {', '.join(unknown)}", fields=unknown)

        require_full_permission(self.session, actor.id, profile_id, "edit this profile")

        profile = require_row(self.session, Profile, profile_id)
        if profile.deleted_at is not None:
            raise NotFoundError(f"Profile {profile_id} is deleted", record_id=str(profile_id))
        check_version(profile, expected_version)

        values = self._coerce(field_updates)
        for field in PARENT_FIELDS:
            if field in values:
                self._check_parent(profile.id, field, values[field])

        before = snapshot(profile)
        for field, value in values.items():
            setattr(profile, field, value)
        touch(profile, actor.id)
        self.session.add(profile)
        self.session.flush()
        after = snapshot(profile)

        changes = ChangeSet.diff(before, after)
        record_entry(
            self.session,
            table_name="profiles",
            record_id=profile.id,
            action_type=ActionType.PROFILE_UPDATE,
            actor_id=actor.id,
            before=before,
            after=after,
            changes=changes,
            description=f"Updated {', '.join(changes.fields) or 'nothing'} on {profile.name}",
        )
        return after

    def create(self, fields: dict[str, Any], actor_id: Optional[UUID]) -> dict:
        actor = require_actor(self.session, actor_id)
        unknown = sorted(set(fields) - UPDATABLE_FIELDS - CREATE_ONLY_FIELDS)
        if unknown:
            raise InvalidInputError(f"Unknown fields: {', '.join(unknown)}", fields=unknown)
        if not fields.get("name") or not fields.get("gender"):
            raise InvalidInputError("name and gender are required")

        requested_hid = fields.get("hid")
        values = self._coerce({k: v for k, v in fields.items() if k != "hid"})
        father = self._check_parent(None, "father_id", values.get("father_id"))
        mother = self._check_parent(None, "mother_id", values.get("mother_id"))

        if father is not None or mother is not None:
            if requested_hid is not None:
                raise InvalidInputError("hid is assigned automatically for children", field="hid")
            lineage_parent = father if father is not None and father.hid else mother
            if lineage_parent is None or not lineage_parent.hid:
                raise InvalidInputError("At least one parent must belong to the family tree")
            for parent in (father, mother):
                if parent is not None:
                    require_full_permission(self.session, actor.id, parent.id, "add a child here")
            hid = self._next_hid(lineage_parent.hid)
        else:
            if not is_admin(actor):
                raise PermissionDenied("Only admins can add root or married-in profiles")
            hid = self._root_hid(requested_hid)

        profile = Profile(**values, hid=hid, generation=generation_of(hid), updated_by=actor.id)
        if father is not None or mother is not None:
            profile.sibling_order = sibling_index(parse_hid(hid)[-1])
        self.session.add(profile)
        self.session.flush()

        after = snapshot(profile)
        record_entry(
            self.session,
            table_name="profiles",
            record_id=profile.id,
            action_type=ActionType.PROFILE_CREATE,
            actor_id=actor.id,
            before=None,
            after=after,
            description=f"Created profile {profile.name}",
            is_undoable=False,
        )
        return after

    def _next_hid(self, parent_hid: str) -> str:
        prefix = parent_hid + separator_of(parent_hid)
        # Deleted children keep their numbers
        siblings = self.session.exec(select(Profile.hid).where(Profile.hid.startswith(prefix))).all()
        return next_child_hid(parent_hid, siblings)

    def _root_hid(self, requested_hid: Optional[str]) -> Optional[str]:
        if requested_hid is None:
            return None
        try:
            parse_hid(requested_hid)
        except ValueError as exc:
            raise InvalidInputError(str(exc), field="hid") from exc
        taken = self.session.exec(select(Profile.id).where(Profile.hid == requested_hid)).first()
        if taken is not None:
            raise InvalidInputError(f"HID {requested_hid} is already in use", field="hid")
        return requested_hid

    def delete(self, profile_id: UUID, expected_version: int, actor_id: Optional[UUID]) -> dict:
        actor = require_actor(self.session, actor_id)
        require_full_permission(self.session, actor.id, profile_id, "delete this profile")

        profile = require_row(self.session, Profile, profile_id)
        if profile.deleted_at is not None:
            raise NotFoundError(f"Profile {profile_id} is already deleted", record_id=str(profile_id))
        check_version(profile, expected_version)

        before = snapshot(profile)
        profile.deleted_at = datetime.utcnow()
        touch(profile, actor.id)
        self.session.add(profile)
        self.session.flush()
        after = snapshot(profile)

        entry = record_entry(
            self.session,
            table_name="profiles",
            record_id=profile.id,
            action_type=ActionType.PROFILE_DELETE,
            actor_id=actor.id,
            before=before,
            after=after,
            description=f"Deleted profile {profile.name}",
            severity=Severity.MEDIUM,
        )
        logger.info("Profile %s deleted by %s", profile.id, actor.id)
        return {"profile_id": str(profile.id), "version": profile.version, "log_id": str(entry.id)}


def update_profile(
    session: Session,
    profile_id: UUID,
    expected_version: int,
    field_updates: dict[str, Any],
    actor_id: Optional[UUID],
) -> OperationResult:
    return run_guarded(
        session,
        ProfileService(session).update,
        profile_id,
        expected_version,
        field_updates,
        actor_id,
        message="Profile updated",
    )


def create_profile(session: Session, fields: dict[str, Any], actor_id: Optional[UUID]) -> OperationResult:
    return run_guarded(session, ProfileService(session).create, fields, actor_id, message="Profile created")


def delete_profile(
    session: Session, profile_id: UUID, expected_version: int, actor_id: Optional[UUID]
) -> OperationResult:
    return run_guarded(
        session,
        ProfileService(session).delete,
        profile_id,
        expected_version,
        actor_id,
        message="Profile deleted",
    )
