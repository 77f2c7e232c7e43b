"""Typed errors for skill-trust-engine.

Every error raised across a service boundary carries a stable `ErrorCode`.
The API layer maps codes to HTTP status codes; callers match on `code`, never
on message text.
"""

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable error codes surfaced to callers."""

    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    ALREADY_REVIEWED = "ALREADY_REVIEWED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_INPUT = "INVALID_INPUT"


class TrustEngineError(Exception):
    """Base error with a stable code and structured details.

    Attributes:
        message: Human-readable description.
        code: Stable ErrorCode value.
        details: Structured, caller-safe context (never internal permission tables).
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses."""
        return {"code": self.code.value, "message": self.message, "details": self.details}


class QuarantineServiceError(TrustEngineError):
    """Raised by quarantine review, approval, and authorization checks."""


class NotFoundError(TrustEngineError):
    """Raised when a requested resource does not exist."""

    def __init__(self, resource: str, resource_id: str) -> None:
        super().__init__(
            message=f"{resource} not found: {resource_id}",
            code=ErrorCode.NOT_FOUND,
            details={"resource": resource, "resource_id": resource_id},
        )


class DuplicateApprovalError(TrustEngineError):
    """Raised by the approval repository when a reviewer already holds an approval row."""

    def __init__(self, quarantine_id: str, reviewer_id: str) -> None:
        super().__init__(
            message=f"Reviewer {reviewer_id} already approved quarantine entry {quarantine_id}",
            code=ErrorCode.ALREADY_REVIEWED,
            details={"quarantine_id": quarantine_id},
        )
        self.quarantine_id = quarantine_id
        self.reviewer_id = reviewer_id


class ValidationError(TrustEngineError, ValueError):
    """Raised for precondition violations on caller-supplied input."""

    def __init__(self, message: str, field: str | None = None) -> None:
        details = {"field": field} if field else {}
        super().__init__(message=message, code=ErrorCode.INVALID_INPUT, details=details)
        self.field = field
