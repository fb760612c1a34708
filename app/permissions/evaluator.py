"""
Permission graph evaluation.

The level an actor holds over a target profile is derived from the family
graph: self and close relatives edit directly, branch moderators edit inside
their HID subtree, everyone else may only suggest.
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional
from uuid import UUID

from sqlmodel import Session, or_, select

from app.config import settings
from app.models import BranchModerator, Marriage, Profile, SuggestionBlock
from app.ontology import (
    ADMIN_ROLES,
    CURRENT_MARRIAGE_STATUSES,
    PermissionLevel,
    is_full_permission,
)
from app.results import PermissionDenied
from app.tree.hid import contains


@dataclass
class ActorContext:
    """Everything about the actor needed to rate any number of targets."""

    actor: Profile
    descendant_ids: set[UUID] = field(default_factory=set)
    spouse_ids: set[UUID] = field(default_factory=set)
    branch_hids: list[str] = field(default_factory=list)
    is_blocked: bool = False

    @property
    def is_admin(self) -> bool:
        return self.actor.role in ADMIN_ROLES

    def level_for(self, target: Optional[Profile]) -> PermissionLevel:
        if target is None:
            return PermissionLevel.NONE

        actor = self.actor
        if self.is_admin or actor.id == target.id:
            return PermissionLevel.ADMIN

        if target.id in self.descendant_ids:
            return PermissionLevel.INNER
        if target.id in (actor.father_id, actor.mother_id):
            return PermissionLevel.INNER
        if _shares_parent(actor, target):
            return PermissionLevel.INNER
        if target.id in self.spouse_ids:
            return PermissionLevel.INNER

        if any(contains(branch, target.hid) for branch in self.branch_hids):
            return PermissionLevel.MODERATOR

        if self.is_blocked:
            return PermissionLevel.BLOCKED
        return PermissionLevel.SUGGEST


def _shares_parent(actor: Profile, target: Profile) -> bool:
    if actor.father_id is not None and actor.father_id == target.father_id:
        return True
    return actor.mother_id is not None and actor.mother_id == target.mother_id


def collect_descendants(session: Session, root_id: UUID) -> set[UUID]:
    """Every profile below ``root_id``, one query per generation."""
    found: set[UUID] = set()
    frontier = {root_id}
    for _ in range(settings.max_tree_depth):
        if not frontier:
            break
        children = session.exec(
            select(Profile.id).where(
                or_(Profile.father_id.in_(frontier), Profile.mother_id.in_(frontier))
            )
        ).all()
        frontier = set(children) - found - {root_id}
        found |= frontier
    return found


def load_actor_context(session: Session, actor_id: Optional[UUID]) -> Optional[ActorContext]:
    """Load the actor's relations, or None if the actor cannot act at all."""
    if actor_id is None:
        return None
    actor = session.get(Profile, actor_id)
    if actor is None or actor.deleted_at is not None:
        return None

    context = ActorContext(actor=actor)
    if context.is_admin:
        return context

    context.descendant_ids = collect_descendants(session, actor.id)

    marriages = session.exec(
        select(Marriage)
        .where(or_(Marriage.husband_id == actor.id, Marriage.wife_id == actor.id))
        .where(Marriage.deleted_at == None)  # noqa: E711
        .where(Marriage.status.in_(list(CURRENT_MARRIAGE_STATUSES)))
    ).all()
    context.spouse_ids = {
        m.wife_id if m.husband_id == actor.id else m.husband_id for m in marriages
    }

    context.branch_hids = list(
        session.exec(
            select(BranchModerator.branch_hid)
            .where(BranchModerator.user_id == actor.id)
            .where(BranchModerator.is_active == True)  # noqa: E712
        ).all()
    )

    context.is_blocked = (
        session.exec(
            select(SuggestionBlock.id)
            .where(SuggestionBlock.blocked_user_id == actor.id)
            .where(SuggestionBlock.is_active == True)  # noqa: E712
        ).first()
        is not None
    )
    return context


def evaluate_permission(
    session: Session, actor_id: Optional[UUID], target_id: Optional[UUID]
) -> PermissionLevel:
    """Permission level of ``actor_id`` over ``target_id``."""
    if target_id is None:
        return PermissionLevel.NONE
    context = load_actor_context(session, actor_id)
    if context is None:
        return PermissionLevel.NONE
    return context.level_for(session.get(Profile, target_id))


def evaluate_many(
    session: Session, actor_id: Optional[UUID], target_ids: Iterable[UUID]
) -> dict[UUID, PermissionLevel]:
    """
    Rate many targets at once.

    The actor's relations are loaded once and all targets are fetched in one
    query, so the cost does not grow with the number of targets.
    """
    target_ids = list(dict.fromkeys(target_ids))
    context = load_actor_context(session, actor_id)
    if context is None:
        return {target_id: PermissionLevel.NONE for target_id in target_ids}

    targets = {
        profile.id: profile
        for profile in session.exec(select(Profile).where(Profile.id.in_(target_ids))).all()
    }
    return {target_id: context.level_for(targets.get(target_id)) for target_id in target_ids}


def require_full_permission(
    session: Session, actor_id: Optional[UUID], target_id: UUID, action: str
) -> PermissionLevel:
    """Raise PermissionDenied unless the actor may edit the target directly."""
    level = evaluate_permission(session, actor_id, target_id)
    if not is_full_permission(level):
        raise PermissionDenied(
            f"Insufficient permission to {action} (level: {level.value})",
            permission=level.value,
        )
    return level
