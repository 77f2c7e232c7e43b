"""Session and permission checks for quarantine and audit operations.

Every protected call validates the session first (present, not expired) and
then checks permission membership. `quarantine:admin` implies every other
permission. Errors name the missing permission only, never the session's
granted permissions.
"""

from datetime import UTC, datetime

from skill_trust_engine.core.types import AuthenticatedSession, Permission
from skill_trust_engine.errors import ErrorCode, QuarantineServiceError


def has_permission(session: AuthenticatedSession, permission: Permission) -> bool:
    if Permission.QUARANTINE_ADMIN.value in session.permissions:
        return True
    return permission.value in session.permissions


def is_session_valid(session: AuthenticatedSession, now: datetime | None = None) -> bool:
    now = now or datetime.now(UTC)
    expires_at = session.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return expires_at > now


def require_permission(
    session: AuthenticatedSession | None,
    permission: Permission,
    now: datetime | None = None,
) -> AuthenticatedSession:
    """Validate a session and require one permission.

    Args:
        session: The caller's session, or None when unauthenticated.
        permission: Required permission.
        now: Reference time for the expiry check. Defaults to now (UTC).

    Returns:
        The validated session.

    Raises:
        QuarantineServiceError: UNAUTHORIZED when no session is supplied,
            SESSION_EXPIRED when it has expired, INSUFFICIENT_PERMISSIONS when
            the permission is missing.
    """
    if session is None:
        raise QuarantineServiceError("Authentication required", ErrorCode.UNAUTHORIZED)

    if not is_session_valid(session, now):
        raise QuarantineServiceError(
            "Session has expired",
            ErrorCode.SESSION_EXPIRED,
            {"expires_at": session.expires_at.isoformat()},
        )

    if not has_permission(session, permission):
        raise QuarantineServiceError(
            f"Permission denied: {permission.value} required",
            ErrorCode.INSUFFICIENT_PERMISSIONS,
            {"required_permission": permission.value},
        )

    return session
