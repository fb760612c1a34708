"""
Fire-and-forget notification dispatch.

Notifications are queued for the RQ worker. A queue outage is logged and
swallowed: the edit that triggered the notification has already succeeded
and must not be reported as failed.
"""

import logging
from typing import Iterable, Optional
from uuid import UUID

from redis.exceptions import RedisError
from sqlmodel import Session, select

from app.config import settings
from app.models import BranchModerator, Profile
from app.tree.hid import contains
from app.worker.tasks import deliver_notification, enqueue_task

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def __init__(self, session: Session):
        self.session = session

    def _account_ids(self, profile_ids: Iterable[Optional[UUID]]) -> list[str]:
        wanted = [profile_id for profile_id in dict.fromkeys(profile_ids) if profile_id is not None]
        if not wanted:
            return []
        profiles = self.session.exec(
            select(Profile)
            .where(Profile.id.in_(wanted))
            .where(Profile.deleted_at == None)  # noqa: E711
        ).all()
        return sorted(str(p.user_id) for p in profiles if p.user_id is not None)

    def approvers_of(self, profile: Profile) -> list[UUID]:
        """The profile itself, its parents and the moderators of its branch."""
        candidates = [profile.id, profile.father_id, profile.mother_id]
        if profile.hid:
            moderators = self.session.exec(
                select(BranchModerator).where(BranchModerator.is_active == True)  # noqa: E712
            ).all()
            candidates.extend(m.user_id for m in moderators if contains(m.branch_hid, profile.hid))
        return [candidate for candidate in candidates if candidate is not None]

    def notify(
        self,
        profile_ids: Iterable[Optional[UUID]],
        title: str,
        body: str,
        data: Optional[dict] = None,
    ) -> Optional[str]:
        """Queue a push to the accounts linked to ``profile_ids``; returns the job id."""
        if not settings.notifications_enabled:
            return None
        user_ids = self._account_ids(profile_ids)
        if not user_ids:
            return None

        payload = {"user_ids": user_ids, "title": title, "body": body, "data": data or {}}
        try:
            return enqueue_task(deliver_notification, payload)
        except (RedisError, ConnectionError) as exc:
            logger.warning("Notification %r not queued: %s", title, exc)
            return None
