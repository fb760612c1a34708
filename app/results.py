"""
Domain errors and structured operation results.

Services raise ``DomainError`` subclasses internally. Public entry points run
through ``run_guarded`` which commits on success and turns a ``DomainError``
into a failed ``OperationResult`` after rolling the transaction back, so
callers always get ``{success, error_code, message, data}``.
"""

import logging
from contextlib import nullcontext
from typing import Any, Callable, ContextManager, Optional

from pydantic import BaseModel
from sqlmodel import Session

from app.ontology import ErrorCode

logger = logging.getLogger(__name__)


class DomainError(Exception):
    """Base class for expected, reportable failures."""

    code: ErrorCode = ErrorCode.INVALID_INPUT

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details


class AuthenticationError(DomainError):
    code = ErrorCode.AUTHENTICATION_REQUIRED


class PermissionDenied(DomainError):
    code = ErrorCode.PERMISSION_DENIED


class VersionConflictError(DomainError):
    code = ErrorCode.VERSION_CONFLICT

    def __init__(self, current: int, expected: Optional[int], message: Optional[str] = None):
        super().__init__(
            message
            or f"Version conflict: current version is {current}, expected {expected}",
            current_version=current,
            expected_version=expected,
        )
        self.current = current
        self.expected = expected


class LockContentionError(DomainError):
    code = ErrorCode.LOCK_CONTENTION


class ParentMissingError(DomainError):
    code = ErrorCode.PARENT_MISSING


class MunasibConstraintViolation(DomainError):
    code = ErrorCode.MUNASIB_CONSTRAINT


class AlreadyUndoneError(DomainError):
    code = ErrorCode.ALREADY_UNDONE


class NotUndoableError(DomainError):
    code = ErrorCode.NOT_UNDOABLE


class NotFoundError(DomainError):
    code = ErrorCode.NOT_FOUND


class InvalidInputError(DomainError):
    code = ErrorCode.INVALID_INPUT


class FieldNotWhitelistedError(DomainError):
    code = ErrorCode.FIELD_NOT_WHITELISTED


class RateLimitExceededError(DomainError):
    code = ErrorCode.RATE_LIMITED


class BatchNotFoundError(DomainError):
    code = ErrorCode.BATCH_NOT_FOUND


class LimitExceededError(DomainError):
    code = ErrorCode.LIMIT_EXCEEDED


class OperationResult(BaseModel):
    """Outcome of one service operation."""

    success: bool
    error_code: Optional[ErrorCode] = None
    message: str = ""
    data: Any = None

    @classmethod
    def ok(cls, data: Any = None, message: str = "") -> "OperationResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, error: DomainError) -> "OperationResult":
        return cls(
            success=False,
            error_code=error.code,
            message=error.message,
            data=error.details or None,
        )

    @property
    def retryable(self) -> bool:
        """Lock contention clears by itself; every other failure needs action."""
        return self.error_code == ErrorCode.LOCK_CONTENTION


def run_guarded(
    session: Session,
    operation: Callable[..., Any],
    *args: Any,
    lease: Optional[ContextManager] = None,
    message: str = "",
    **kwargs: Any,
) -> OperationResult:
    """
    Run ``operation`` as one transaction.

    The optional lease is held until after commit so a concurrent holder of
    the same key never observes uncommitted state.
    """
    try:
        with lease if lease is not None else nullcontext():
            data = operation(*args, **kwargs)
            session.commit()
    except DomainError as exc:
        session.rollback()
        logger.info("%s rejected: %s (%s)", operation.__name__, exc.message, exc.code.value)
        return OperationResult.failure(exc)

    return OperationResult.ok(data, message)
