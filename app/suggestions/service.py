"""
Edit suggestions.

Relatives without direct edit rights propose single-field changes; people
with full permission over the profile approve or reject them. Approval is
version-checked against the profile as it was when the suggestion was filed.
"""

import logging
from datetime import datetime, time
from typing import Any, Optional
from uuid import UUID

from sqlmodel import Session, func, select

from app.audit.log import record_entry
from app.config import settings
from app.models import EditSuggestion, Profile
from app.mutation.profiles import ProfileService
from app.mutation.rows import is_admin, require_actor, require_row, snapshot
from app.notifications.dispatcher import NotificationDispatcher
from app.ontology import (
    ActionType,
    PermissionLevel,
    Role,
    SuggestionStatus,
    is_full_permission,
)
from app.permissions.evaluator import evaluate_permission, require_full_permission
from app.results import (
    FieldNotWhitelistedError,
    InvalidInputError,
    NotFoundError,
    OperationResult,
    PermissionDenied,
    RateLimitExceededError,
    VersionConflictError,
    run_guarded,
)

logger = logging.getLogger(__name__)

SUGGESTIBLE_FIELDS = frozenset(
    {
        "name",
        "kunya",
        "nickname",
        "bio",
        "occupation",
        "education",
        "phone",
        "email",
        "birth_place",
        "current_residence",
    }
)


def _start_of_day() -> datetime:
    return datetime.combine(datetime.utcnow().date(), time.min)


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class SuggestionService:
    def __init__(self, session: Session):
        self.session = session
        self.notifications = NotificationDispatcher(session)

    def _count_today(self, *conditions) -> int:
        statement = select(func.count()).select_from(EditSuggestion)
        for condition in conditions:
            statement = statement.where(condition)
        return self.session.exec(statement).one()

    def _log_review(self, suggestion: EditSuggestion, actor_id: UUID, action_type: ActionType, description: str) -> None:
        record_entry(
            self.session,
            table_name="profile_edit_suggestions",
            record_id=suggestion.id,
            action_type=action_type,
            actor_id=actor_id,
            before=None,
            after=snapshot(suggestion),
            description=description,
            is_undoable=False,
            details={"profile_id": str(suggestion.profile_id), "field_name": suggestion.field_name},
        )

    def submit(
        self,
        profile_id: UUID,
        field_name: str,
        new_value: str,
        actor_id: Optional[UUID],
        reason: Optional[str] = None,
    ) -> dict:
        actor = require_actor(self.session, actor_id)
        if field_name not in SUGGESTIBLE_FIELDS:
            raise FieldNotWhitelistedError(
                f"Field {field_name!r} cannot be suggested", field=field_name
            )

        profile = self.session.get(Profile, profile_id)
        if profile is None or profile.deleted_at is not None:
            raise NotFoundError(f"Profile {profile_id} not found", record_id=str(profile_id))

        level = evaluate_permission(self.session, actor.id, profile.id)
        if level in (PermissionLevel.BLOCKED, PermissionLevel.NONE):
            raise PermissionDenied("You cannot suggest edits to this profile", permission=level.value)

        submitted = self._count_today(
            EditSuggestion.submitter_id == actor.id, EditSuggestion.created_at >= _start_of_day()
        )
        if submitted >= settings.suggestion_daily_limit:
            raise RateLimitExceededError(
                f"Daily limit of {settings.suggestion_daily_limit} suggestions reached",
                limit=settings.suggestion_daily_limit,
            )

        suggestion = EditSuggestion(
            profile_id=profile.id,
            submitter_id=actor.id,
            field_name=field_name,
            old_value=_as_text(getattr(profile, field_name)),
            new_value=new_value,
            reason=reason,
            profile_version=profile.version,
        )

        if is_full_permission(level):
            after = ProfileService(self.session).update(
                profile.id, profile.version, {field_name: new_value}, actor.id
            )
            suggestion.status = SuggestionStatus.AUTO_APPROVED
            suggestion.reviewed_by = actor.id
            suggestion.reviewed_at = datetime.utcnow()
            self.session.add(suggestion)
            self.session.flush()
            return {"suggestion_id": str(suggestion.id), "status": suggestion.status.value, "profile": after}

        self.session.add(suggestion)
        self.session.flush()
        self.notifications.notify(
            self.notifications.approvers_of(profile),
            "New edit suggestion",
            f"A change to {field_name} was suggested for {profile.name}",
            {"suggestion_id": str(suggestion.id), "profile_id": str(profile.id)},
        )
        return {"suggestion_id": str(suggestion.id), "status": suggestion.status.value}

    def _pending(self, suggestion_id: UUID) -> EditSuggestion:
        suggestion = require_row(self.session, EditSuggestion, suggestion_id)
        if suggestion.status != SuggestionStatus.PENDING:
            raise InvalidInputError(
                f"Suggestion already {suggestion.status.value}", status=suggestion.status.value
            )
        return suggestion

    def approve(self, suggestion_id: UUID, actor_id: Optional[UUID], notes: Optional[str] = None) -> dict:
        actor = require_actor(self.session, actor_id)
        suggestion = self._pending(suggestion_id)
        require_full_permission(self.session, actor.id, suggestion.profile_id, "approve this suggestion")

        approved = self._count_today(
            EditSuggestion.reviewed_by == actor.id,
            EditSuggestion.status == SuggestionStatus.APPROVED,
            EditSuggestion.reviewed_at >= _start_of_day(),
        )
        if approved >= settings.approval_daily_limit:
            raise RateLimitExceededError(
                f"Daily limit of {settings.approval_daily_limit} approvals reached",
                limit=settings.approval_daily_limit,
            )

        profile = require_row(self.session, Profile, suggestion.profile_id)
        suggestion.reviewed_by = actor.id
        suggestion.reviewed_at = datetime.utcnow()

        current, expected = profile.version, suggestion.profile_version
        if current != expected:
            suggestion.status = SuggestionStatus.REJECTED
            suggestion.notes = "Profile changed after this suggestion was made"
            self.session.add(suggestion)
            self._log_review(suggestion, actor.id, ActionType.SUGGESTION_REJECT, "Suggestion outdated")
            logger.info("Suggestion %s outdated at version %s", suggestion.id, current)
            # The rejection stands even though the approval fails
            self.session.commit()
            raise VersionConflictError(
                current,
                expected,
                f"Profile changed since the suggestion was made (current version "
                f"{current}, suggested against {expected})",
            )

        after = ProfileService(self.session).update(
            profile.id, suggestion.profile_version, {suggestion.field_name: suggestion.new_value}, actor.id
        )
        suggestion.status = SuggestionStatus.APPROVED
        suggestion.notes = notes
        self.session.add(suggestion)
        self._log_review(
            suggestion, actor.id, ActionType.SUGGESTION_APPROVE, f"Approved change to {suggestion.field_name}"
        )
        self.notifications.notify(
            [suggestion.submitter_id],
            "Suggestion approved",
            f"Your change to {suggestion.field_name} was approved",
            {"suggestion_id": str(suggestion.id)},
        )
        return {"suggestion_id": str(suggestion.id), "status": suggestion.status.value, "profile": after}

    def reject(self, suggestion_id: UUID, actor_id: Optional[UUID], notes: Optional[str] = None) -> dict:
        actor = require_actor(self.session, actor_id)
        suggestion = self._pending(suggestion_id)

        allowed = (
            actor.id == suggestion.profile_id
            or is_admin(actor)
            or actor.role == Role.MODERATOR
            or evaluate_permission(self.session, actor.id, suggestion.profile_id) == PermissionLevel.MODERATOR
        )
        if not allowed:
            raise PermissionDenied("Only the profile owner, an admin or a moderator can reject")

        suggestion.status = SuggestionStatus.REJECTED
        suggestion.reviewed_by = actor.id
        suggestion.reviewed_at = datetime.utcnow()
        suggestion.notes = notes
        self.session.add(suggestion)
        self._log_review(
            suggestion, actor.id, ActionType.SUGGESTION_REJECT, f"Rejected change to {suggestion.field_name}"
        )
        self.notifications.notify(
            [suggestion.submitter_id],
            "Suggestion rejected",
            f"Your change to {suggestion.field_name} was not accepted",
            {"suggestion_id": str(suggestion.id)},
        )
        return {"suggestion_id": str(suggestion.id), "status": suggestion.status.value}


def submit_edit_suggestion(
    session: Session,
    profile_id: UUID,
    field_name: str,
    new_value: str,
    actor_id: Optional[UUID],
    reason: Optional[str] = None,
) -> OperationResult:
    return run_guarded(
        session,
        SuggestionService(session).submit,
        profile_id,
        field_name,
        new_value,
        actor_id,
        reason,
        message="Suggestion submitted",
    )


def approve_edit_suggestion(
    session: Session, suggestion_id: UUID, actor_id: Optional[UUID], notes: Optional[str] = None
) -> OperationResult:
    return run_guarded(
        session, SuggestionService(session).approve, suggestion_id, actor_id, notes, message="Suggestion approved"
    )


def reject_edit_suggestion(
    session: Session, suggestion_id: UUID, actor_id: Optional[UUID], notes: Optional[str] = None
) -> OperationResult:
    return run_guarded(
        session, SuggestionService(session).reject, suggestion_id, actor_id, notes, message="Suggestion rejected"
    )
