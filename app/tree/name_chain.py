"""
Ancestry name chains.

"محمد بن عبدالله سعد القفاري": the profile's name, one gender-correct
connective, the father line, and the family suffix for blood relatives.
Chains are built on read by walking father links; nothing is stored.
"""

from typing import Optional
from uuid import UUID

from sqlmodel import Session

from app.config import settings
from app.models import Profile
from app.ontology import Gender
from app.results import NotFoundError


class NameChainBuilder:
    """
    Walks father links with a depth ceiling and a visited set.

    Father lines are memoised per builder, so building chains for a whole
    family costs one walk per distinct ancestor. Create a new builder after
    any change to names or parent links.
    """

    def __init__(self, session: Session, max_depth: Optional[int] = None):
        self.session = session
        self.max_depth = max_depth or settings.name_chain_max_depth
        self._lines: dict[UUID, tuple[str, ...]] = {}

    def _father(self, profile: Profile) -> Optional[Profile]:
        if profile.father_id is None:
            return None
        father = self.session.get(Profile, profile.father_id)
        if father is None or father.deleted_at is not None:
            return None
        return father

    def lineage(self, profile: Profile) -> tuple[str, ...]:
        """Names from ``profile`` up its father line, at most ``max_depth`` long."""
        if profile.id in self._lines:
            return self._lines[profile.id]

        walked: list[Profile] = []
        visited: set[UUID] = set()
        current: Optional[Profile] = profile
        tail: tuple[str, ...] = ()
        cut_short = False
        while current is not None:
            if current.id in self._lines:
                tail = self._lines[current.id]
                break
            if current.id in visited:
                break
            if len(walked) == self.max_depth:
                cut_short = True
                break
            visited.add(current.id)
            walked.append(current)
            current = self._father(current)

        # Lines of the upper nodes are incomplete when the ceiling stopped the walk
        for node in reversed(walked):
            tail = ((node.name,) + tail)[: self.max_depth]
            if not cut_short or node is profile:
                self._lines[node.id] = tail
        return tail

    def build(self, profile: Profile) -> str:
        names = self.lineage(profile)
        connective = (
            settings.connective_female if profile.gender == Gender.FEMALE else settings.connective_male
        )
        parts = [names[0]]
        if len(names) > 1:
            parts.append(connective)
            parts.extend(names[1:])
        if profile.hid is not None and settings.family_name_suffix:
            parts.append(settings.family_name_suffix)
        return " ".join(parts)


def build_ancestry_chain(session: Session, profile_id: UUID) -> str:
    profile = session.get(Profile, profile_id)
    if profile is None:
        raise NotFoundError(f"Profile {profile_id} not found", record_id=str(profile_id))
    return NameChainBuilder(session).build(profile)
