"""
Tree integrity validator.

Scans profiles and marriages for states the write path should never produce
but older rows or manual repairs can: parent cycles, dangling references,
HIDs that disagree with the father line, munasib values that break the
marriage rule and malformed date objects. Flags are stored, not blocking.
"""

from typing import Any, Optional
from uuid import UUID

from sqlmodel import Session, select

from app.models import Flag, Marriage, Profile
from app.ontology import FlagType
from app.tree.hid import generation_of, parse_hid
from app.tree.munasib import is_valid_date_object, munasib_violation

MAX_LIFESPAN_YEARS = 120


def gregorian_year(date_object: Optional[dict]) -> Optional[int]:
    """Year of the gregorian part of a dual-calendar date, if it has one."""
    if not isinstance(date_object, dict):
        return None
    gregorian = date_object.get("gregorian")
    if isinstance(gregorian, dict):
        gregorian = gregorian.get("year")
    try:
        return int(gregorian) if gregorian is not None else None
    except (TypeError, ValueError):
        return None


class Validator:
    """Validate the family tree and generate flags."""

    def __init__(self, session: Session):
        self.session = session
        self.flags_created = 0

    def validate_all(self) -> dict:
        """
        Run all validation rules on active data.

        Returns summary statistics.
        """
        self.flags_created = 0
        profiles = self.session.exec(select(Profile)).all()
        by_id = {profile.id: profile for profile in profiles}
        active = [profile for profile in profiles if profile.deleted_at is None]

        for profile in active:
            self._validate_references(profile, by_id)
            self._validate_hid(profile, by_id)
            self._validate_dates(profile)
            self._validate_lifespan(profile)

        self._detect_circular_relationships(active)

        marriages = self.session.exec(
            select(Marriage).where(Marriage.deleted_at == None)  # noqa: E711
        ).all()
        for marriage in marriages:
            self._validate_marriage(marriage, by_id)

        self.session.commit()
        return {
            "profiles_validated": len(active),
            "marriages_validated": len(marriages),
            "flags_created": self.flags_created,
        }

    def _validate_references(self, profile: Profile, by_id: dict[UUID, Profile]) -> None:
        for field in ("father_id", "mother_id"):
            parent_id = getattr(profile, field)
            if parent_id is None:
                continue
            parent = by_id.get(parent_id)
            if parent is None or parent.deleted_at is not None:
                self._create_flag(
                    FlagType.ORPHANED_REFERENCE,
                    "profile",
                    profile.id,
                    f"{field} points at a missing or deleted profile",
                    details={"field": field, "parent_id": str(parent_id)},
                )

    def _validate_hid(self, profile: Profile, by_id: dict[UUID, Profile]) -> None:
        if profile.hid is None:
            return
        try:
            segments = parse_hid(profile.hid)
        except ValueError:
            self._create_flag(
                FlagType.HID_MISMATCH, "profile", profile.id, f"Malformed HID {profile.hid!r}", severity="error"
            )
            return

        if profile.generation is not None and profile.generation != generation_of(profile.hid):
            self._create_flag(
                FlagType.HID_MISMATCH,
                "profile",
                profile.id,
                f"Generation {profile.generation} does not match HID {profile.hid}",
                details={"generation": profile.generation, "hid": profile.hid},
            )

        father = by_id.get(profile.father_id) if profile.father_id else None
        if father is not None and father.hid:
            try:
                father_segments = parse_hid(father.hid)
            except ValueError:
                return
            if segments[:-1] != father_segments:
                self._create_flag(
                    FlagType.HID_MISMATCH,
                    "profile",
                    profile.id,
                    f"HID {profile.hid} is not under father's HID {father.hid}",
                    details={"hid": profile.hid, "father_hid": father.hid},
                )

    def _validate_dates(self, profile: Profile) -> None:
        for field in ("dob_data", "dod_data"):
            value: Any = getattr(profile, field)
            if value is not None and not is_valid_date_object(value):
                self._create_flag(
                    FlagType.INVALID_DATE_SHAPE,
                    "profile",
                    profile.id,
                    f"{field} has no 'hijri' or 'gregorian' part",
                    severity="error",
                    details={"field": field},
                )

    def _validate_lifespan(self, profile: Profile) -> None:
        birth = gregorian_year(profile.dob_data)
        death = gregorian_year(profile.dod_data)
        if birth is None or death is None:
            return

        lifespan = death - birth
        if lifespan < 0:
            self._create_flag(
                FlagType.LIFESPAN_INVALID,
                "profile",
                profile.id,
                f"Death year {death} before birth year {birth}",
                severity="error",
                details={"birth_year": birth, "death_year": death},
            )
        elif lifespan > MAX_LIFESPAN_YEARS:
            self._create_flag(
                FlagType.LIFESPAN_INVALID,
                "profile",
                profile.id,
                f"Unrealistic lifespan: {lifespan} years",
                details={"birth_year": birth, "death_year": death},
            )

    def _detect_circular_relationships(self, profiles: list[Profile]) -> None:
        """Detect profiles that are their own ancestors."""
        graph = {
            profile.id: [parent for parent in (profile.father_id, profile.mother_id) if parent]
            for profile in profiles
        }

        visited = set()
        rec_stack = set()

        def has_cycle(node: UUID) -> bool:
            visited.add(node)
            rec_stack.add(node)

            for neighbor in graph.get(node, []):
                if neighbor not in visited:
                    if has_cycle(neighbor):
                        return True
                elif neighbor in rec_stack:
                    return True

            rec_stack.remove(node)
            return False

        for node in graph:
            if node not in visited:
                if has_cycle(node):
                    self._create_flag(
                        FlagType.CIRCULAR_RELATIONSHIP,
                        "profile",
                        node,
                        "Circular parent-child relationship detected",
                        severity="critical",
                        details={"node_id": str(node)},
                    )
                    rec_stack.clear()

    def _validate_marriage(self, marriage: Marriage, by_id: dict[UUID, Profile]) -> None:
        husband = by_id.get(marriage.husband_id)
        wife = by_id.get(marriage.wife_id)
        if husband is None or wife is None or husband.deleted_at or wife.deleted_at:
            self._create_flag(
                FlagType.ORPHANED_REFERENCE,
                "marriage",
                marriage.id,
                "Active marriage references a missing or deleted spouse",
            )
            return

        problem = munasib_violation(
            husband.hid, wife.hid, husband.family_origin, wife.family_origin, marriage.munasib
        )
        if problem:
            self._create_flag(
                FlagType.MUNASIB_VIOLATION,
                "marriage",
                marriage.id,
                problem,
                severity="error",
                details={"munasib": marriage.munasib},
            )

    def _create_flag(
        self,
        flag_type: FlagType,
        entity_type: str,
        entity_id: UUID,
        message: str,
        severity: str = "warning",
        details: dict = None,
    ) -> None:
        """Create a validation flag."""
        flag = Flag(
            flag_type=flag_type,
            severity=severity,
            entity_type=entity_type,
            entity_id=entity_id,
            message=message,
            details=details or {},
        )
        self.session.add(flag)
        self.flags_created += 1
