"""Branch-moderator assignments and suggestion blocks. Admin only."""

import logging
from typing import Optional
from uuid import UUID

from sqlmodel import Session, select

from app.models import BranchModerator, Profile, SuggestionBlock
from app.mutation.rows import is_admin, require_actor
from app.results import InvalidInputError, NotFoundError, OperationResult, PermissionDenied, run_guarded
from app.tree.hid import parse_hid

logger = logging.getLogger(__name__)


class AdminService:
    def __init__(self, session: Session):
        self.session = session

    def _require_admin(self, actor_id: Optional[UUID]) -> Profile:
        actor = require_actor(self.session, actor_id)
        if not is_admin(actor):
            raise PermissionDenied("Administration is restricted to admins")
        return actor

    def _require_profile(self, profile_id: UUID) -> Profile:
        profile = self.session.get(Profile, profile_id)
        if profile is None or profile.deleted_at is not None:
            raise NotFoundError(f"Profile {profile_id} not found", record_id=str(profile_id))
        return profile

    def assign_moderator(self, user_id: UUID, branch_hid: str, actor_id: Optional[UUID]) -> dict:
        actor = self._require_admin(actor_id)
        self._require_profile(user_id)
        try:
            parse_hid(branch_hid)
        except ValueError as exc:
            raise InvalidInputError(str(exc), field="branch_hid") from exc

        existing = self.session.exec(
            select(BranchModerator)
            .where(BranchModerator.user_id == user_id)
            .where(BranchModerator.branch_hid == branch_hid)
            .where(BranchModerator.is_active == True)  # noqa: E712
        ).first()
        if existing is not None:
            raise InvalidInputError("Moderator already assigned to this branch")

        assignment = BranchModerator(user_id=user_id, branch_hid=branch_hid, assigned_by=actor.id)
        self.session.add(assignment)
        self.session.flush()
        logger.info("Profile %s now moderates branch %s", user_id, branch_hid)
        return {"assignment_id": str(assignment.id), "user_id": str(user_id), "branch_hid": branch_hid}

    def revoke_moderator(self, assignment_id: UUID, actor_id: Optional[UUID]) -> dict:
        self._require_admin(actor_id)
        assignment = self.session.get(BranchModerator, assignment_id)
        if assignment is None or not assignment.is_active:
            raise NotFoundError(f"Moderator assignment {assignment_id} not found")
        assignment.is_active = False
        self.session.add(assignment)
        logger.info("Moderator assignment %s revoked", assignment_id)
        return {"assignment_id": str(assignment_id), "is_active": False}

    def block_submitter(self, user_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None) -> dict:
        actor = self._require_admin(actor_id)
        self._require_profile(user_id)
        block = SuggestionBlock(blocked_user_id=user_id, blocked_by=actor.id, reason=reason)
        self.session.add(block)
        self.session.flush()
        logger.info("Profile %s blocked from suggesting edits", user_id)
        return {"block_id": str(block.id), "blocked_user_id": str(user_id)}

    def unblock_submitter(self, block_id: UUID, actor_id: Optional[UUID]) -> dict:
        self._require_admin(actor_id)
        block = self.session.get(SuggestionBlock, block_id)
        if block is None or not block.is_active:
            raise NotFoundError(f"Suggestion block {block_id} not found")
        block.is_active = False
        self.session.add(block)
        return {"block_id": str(block_id), "is_active": False}


def assign_moderator(session: Session, user_id: UUID, branch_hid: str, actor_id: Optional[UUID]) -> OperationResult:
    return run_guarded(session, AdminService(session).assign_moderator, user_id, branch_hid, actor_id)


def revoke_moderator(session: Session, assignment_id: UUID, actor_id: Optional[UUID]) -> OperationResult:
    return run_guarded(session, AdminService(session).revoke_moderator, assignment_id, actor_id)


def block_submitter(
    session: Session, user_id: UUID, actor_id: Optional[UUID], reason: Optional[str] = None
) -> OperationResult:
    return run_guarded(session, AdminService(session).block_submitter, user_id, actor_id, reason)


def unblock_submitter(session: Session, block_id: UUID, actor_id: Optional[UUID]) -> OperationResult:
    return run_guarded(session, AdminService(session).unblock_submitter, block_id, actor_id)
