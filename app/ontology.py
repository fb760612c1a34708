"""
Nasab Ontology Definition v0.1.0

This module defines the vocabulary shared by storage, services and the API:
roles, lifecycle states, audit action types, permission levels and error codes.
"""

from enum import Enum
from typing import Final

ONTOLOGY_VERSION: Final[str] = "0.1.0"


class Role(str, Enum):
    """Account roles attached to a profile."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class LifeStatus(str, Enum):
    ALIVE = "alive"
    DECEASED = "deceased"


class MarriageStatus(str, Enum):
    """Marriage states. The last three are legacy values kept for old rows."""

    CURRENT = "current"
    PAST = "past"
    MARRIED = "married"
    DIVORCED = "divorced"
    WIDOWED = "widowed"


class PermissionLevel(str, Enum):
    """Computed edit permission of an actor over a target profile."""

    ADMIN = "admin"
    MODERATOR = "moderator"
    INNER = "inner"
    FAMILY = "family"
    EXTENDED = "extended"
    SUGGEST = "suggest"
    BLOCKED = "blocked"
    NONE = "none"


class ActionType(str, Enum):
    """Audit log action types."""

    PROFILE_CREATE = "profile_create"
    PROFILE_UPDATE = "profile_update"
    PROFILE_DELETE = "profile_delete"
    CASCADE_DELETE = "cascade_delete"
    MARRIAGE_CREATE = "marriage_create"
    MARRIAGE_UPDATE = "marriage_update"
    MARRIAGE_SOFT_DELETE = "marriage_soft_delete"
    SUGGESTION_APPROVE = "suggestion_approve"
    SUGGESTION_REJECT = "suggestion_reject"
    UNDO_PROFILE_UPDATE = "undo_profile_update"
    UNDO_PROFILE_DELETE = "undo_profile_delete"
    UNDO_CASCADE_DELETE = "undo_cascade_delete"
    UNDO_MARRIAGE_DELETE = "undo_marriage_delete"


class ActionCategory(str, Enum):
    PROFILE = "profile"
    MARRIAGE = "marriage"
    SUGGESTION = "suggestion"
    UNDO = "undo"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"


class FlagType(str, Enum):
    """Tree integrity flags raised by the validator."""

    CIRCULAR_RELATIONSHIP = "circular_relationship"
    ORPHANED_REFERENCE = "orphaned_reference"
    HID_MISMATCH = "hid_mismatch"
    MUNASIB_VIOLATION = "munasib_violation"
    INVALID_DATE_SHAPE = "invalid_date_shape"
    LIFESPAN_INVALID = "lifespan_invalid"


class JobType(str, Enum):
    """Background job types."""

    VALIDATE_TREE = "validate_tree"


class JobStatus(str, Enum):
    """Job execution states."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ErrorCode(str, Enum):
    """Machine-readable failure codes returned in operation results."""

    AUTHENTICATION_REQUIRED = "AUTHENTICATION_REQUIRED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    LOCK_CONTENTION = "LOCK_CONTENTION"
    PARENT_MISSING = "PARENT_MISSING"
    MUNASIB_CONSTRAINT = "MUNASIB_CONSTRAINT"
    ALREADY_UNDONE = "ALREADY_UNDONE"
    NOT_UNDOABLE = "NOT_UNDOABLE"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"
    FIELD_NOT_WHITELISTED = "FIELD_NOT_WHITELISTED"
    RATE_LIMITED = "RATE_LIMITED"
    BATCH_NOT_FOUND = "BATCH_NOT_FOUND"
    LIMIT_EXCEEDED = "LIMIT_EXCEEDED"


# Levels that may write directly instead of filing a suggestion
FULL_PERMISSION_LEVELS: Final[frozenset] = frozenset(
    {PermissionLevel.ADMIN, PermissionLevel.MODERATOR, PermissionLevel.INNER}
)

ADMIN_ROLES: Final[frozenset] = frozenset({Role.ADMIN, Role.SUPER_ADMIN})

CURRENT_MARRIAGE_STATUSES: Final[frozenset] = frozenset(
    {MarriageStatus.CURRENT, MarriageStatus.MARRIED}
)


def is_full_permission(level: PermissionLevel) -> bool:
    """True if the level allows direct edits."""
    return level in FULL_PERMISSION_LEVELS
