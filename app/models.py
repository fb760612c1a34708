"""
Database models for Nasab.

All models use SQLModel for type-safe ORM with Pydantic validation.
Profiles and marriages are never physically deleted; every mutation leaves an
AuditLogEntry that the undo engine can compensate.
"""

from datetime import date, datetime
from typing import Optional
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import event, inspect
from sqlmodel import JSON, Column, Field, SQLModel

from app.ontology import (
    ActionCategory,
    ActionType,
    FlagType,
    Gender,
    JobStatus,
    JobType,
    LifeStatus,
    MarriageStatus,
    Role,
    Severity,
    SuggestionStatus,
)
from app.results import InvalidInputError, MunasibConstraintViolation
from app.tree.munasib import is_valid_date_object, munasib_violation


class Profile(SQLModel, table=True):
    """
    A person node. Blood relatives carry a HID; married-in spouses do not.
    """

    __tablename__ = "profiles"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    updated_by: Optional[UUID] = None

    # Tree position
    hid: Optional[str] = Field(default=None, index=True)
    generation: Optional[int] = None
    sibling_order: int = Field(default=0)
    father_id: Optional[UUID] = Field(default=None, foreign_key="profiles.id", index=True)
    mother_id: Optional[UUID] = Field(default=None, foreign_key="profiles.id", index=True)

    # Identity
    name: str
    gender: Gender
    status: LifeStatus = Field(default=LifeStatus.ALIVE)
    family_origin: Optional[str] = None
    kunya: Optional[str] = None
    nickname: Optional[str] = None

    # Account
    user_id: Optional[UUID] = Field(default=None, index=True)
    role: Role = Field(default=Role.USER)

    # Biography
    bio: Optional[str] = None
    occupation: Optional[str] = None
    education: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    birth_place: Optional[str] = None
    current_residence: Optional[str] = None
    photo_url: Optional[str] = None
    dob_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    dod_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    social_media_links: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    achievements: Optional[list] = Field(default=None, sa_column=Column(JSON))
    timeline: Optional[list] = Field(default=None, sa_column=Column(JSON))
    dob_is_public: bool = Field(default=True)
    profile_visibility: str = Field(default="family")

    # Concurrency and lifecycle
    version: int = Field(default=1)
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    @property
    def is_munasib(self) -> bool:
        return self.hid is None

    @property
    def is_active(self) -> bool:
        return self.deleted_at is None


class Marriage(SQLModel, table=True):
    """
    Marriage between two profiles. ``munasib`` is validated on every write.
    """

    __tablename__ = "marriages"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    husband_id: UUID = Field(foreign_key="profiles.id", index=True)
    wife_id: UUID = Field(foreign_key="profiles.id", index=True)
    munasib: Optional[str] = None
    status: MarriageStatus = Field(default=MarriageStatus.CURRENT)
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    version: int = Field(default=1)
    deleted_at: Optional[datetime] = Field(default=None)


class AuditLogEntry(SQLModel, table=True):
    """
    Append-only mutation log. Only the undo-tracking fields are ever updated.
    """

    __tablename__ = "audit_log"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    table_name: str
    record_id: UUID = Field(index=True)
    action_type: ActionType
    action_category: ActionCategory
    actor_id: Optional[UUID] = None

    old_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    new_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    changed_fields: list = Field(default_factory=list, sa_column=Column(JSON))
    description: str = ""
    severity: Severity = Field(default=Severity.LOW)

    # Undo tracking
    is_undoable: bool = Field(default=True)
    undone_at: Optional[datetime] = None
    undone_by: Optional[UUID] = None
    undo_reason: Optional[str] = None
    compensates_log_id: Optional[UUID] = Field(default=None, foreign_key="audit_log.id")

    # Batch operations
    batch_id: Optional[UUID] = Field(default=None, index=True)
    details: dict = Field(default_factory=dict, sa_column=Column("metadata", JSON))


class EditSuggestion(SQLModel, table=True):
    """
    Proposed field change awaiting review.
    """

    __tablename__ = "profile_edit_suggestions"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)

    profile_id: UUID = Field(foreign_key="profiles.id", index=True)
    submitter_id: UUID = Field(foreign_key="profiles.id", index=True)
    field_name: str
    old_value: Optional[str] = None
    new_value: str
    reason: Optional[str] = None
    profile_version: int

    status: SuggestionStatus = Field(default=SuggestionStatus.PENDING)
    reviewed_by: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None


class BranchModerator(SQLModel, table=True):
    """
    Grants edit rights over every profile inside a HID subtree.
    """

    __tablename__ = "branch_moderators"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="profiles.id", index=True)
    branch_hid: str = Field(index=True)
    assigned_by: UUID = Field(foreign_key="profiles.id")
    assigned_at: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = Field(default=True)


class SuggestionBlock(SQLModel, table=True):
    __tablename__ = "suggestion_blocks"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    blocked_user_id: UUID = Field(foreign_key="profiles.id", index=True)
    blocked_by: UUID = Field(foreign_key="profiles.id")
    reason: Optional[str] = None
    blocked_at: datetime = Field(default_factory=datetime.utcnow)
    is_active: bool = Field(default=True)


class Flag(SQLModel, table=True):
    """
    Tree integrity flags and anomaly markers.
    """

    __tablename__ = "flags"

    flag_id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    flag_type: FlagType
    severity: str = Field(default="warning")  # info, warning, error, critical

    # Flagged entity
    entity_type: str  # profile, marriage
    entity_id: UUID

    # Description
    message: str
    details: dict = Field(default_factory=dict, sa_column=Column(JSON))

    # Resolution
    is_resolved: bool = Field(default=False)
    resolved_at: Optional[datetime] = None
    resolution_notes: Optional[str] = None


class Run(SQLModel, table=True):
    """
    Job execution tracking.
    """

    __tablename__ = "runs"

    run_id: UUID = Field(default_factory=uuid4, primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    job_type: JobType
    status: JobStatus = Field(default=JobStatus.QUEUED)

    # Configuration
    config: dict = Field(default_factory=dict, sa_column=Column(JSON))

    # Results
    result_summary: dict = Field(default_factory=dict, sa_column=Column(JSON))
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Write-time constraints. These run inside every flush, so no caller that goes
# through the ORM can store a row that breaks them.
# ---------------------------------------------------------------------------

_profiles = Profile.__table__


def _spouse_row(connection, profile_id: UUID):
    return connection.execute(
        sa.select(_profiles.c.hid, _profiles.c.family_origin).where(_profiles.c.id == profile_id)
    ).first()


def _check_munasib(connection, marriage: Marriage) -> None:
    husband = _spouse_row(connection, marriage.husband_id)
    wife = _spouse_row(connection, marriage.wife_id)
    if husband is None or wife is None:
        raise MunasibConstraintViolation("Both spouses must exist")

    problem = munasib_violation(
        husband.hid, wife.hid, husband.family_origin, wife.family_origin, marriage.munasib
    )
    if problem:
        raise MunasibConstraintViolation(problem, marriage_id=str(marriage.id))


@event.listens_for(Marriage, "before_insert")
def _marriage_before_insert(mapper, connection, target: Marriage) -> None:
    _check_munasib(connection, target)


@event.listens_for(Marriage, "before_update")
def _marriage_before_update(mapper, connection, target: Marriage) -> None:
    state = inspect(target)
    watched = ("munasib", "husband_id", "wife_id")
    if any(state.attrs[name].history.has_changes() for name in watched):
        _check_munasib(connection, target)


def _check_date_shapes(target: Profile) -> None:
    for field in ("dob_data", "dod_data"):
        value = getattr(target, field)
        if value is not None and not is_valid_date_object(value):
            raise InvalidInputError(
                f"{field} must be an object containing 'hijri' or 'gregorian'", field=field
            )


@event.listens_for(Profile, "before_insert")
def _profile_before_insert(mapper, connection, target: Profile) -> None:
    _check_date_shapes(target)


@event.listens_for(Profile, "before_update")
def _profile_before_update(mapper, connection, target: Profile) -> None:
    _check_date_shapes(target)
