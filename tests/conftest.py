"""Test fixtures for skill-trust-engine.

Provides:
- make_fake_session: An AuthenticatedSession with chosen permissions
- make_fake_entry: A QuarantineEntry-shaped MagicMock for service tests
- make_fake_approval: A QuarantineApproval-shaped MagicMock
- db_engine / db_session: An in-memory SQLite primary database with all tables
- audit_engine / audit_logger: A separate in-memory SQLite audit wall
- mock_audit_logger: An AsyncMock AuditLogger that captures safe_log() calls
- release_handler: An AsyncMock release handler
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from skill_trust_engine.adapters.database import make_session_factory
from skill_trust_engine.core.audit_logger import AuditLogger
from skill_trust_engine.core.models import Base
from skill_trust_engine.core.types import AuditEvent, AuthenticatedSession, Permission

REVIEW_PERMISSIONS = frozenset({Permission.QUARANTINE_READ.value, Permission.QUARANTINE_REVIEW.value})
MALICIOUS_REVIEW_PERMISSIONS = REVIEW_PERMISSIONS | {Permission.QUARANTINE_REVIEW_MALICIOUS.value}


def make_fake_session(
    user_id: str = "reviewer-1",
    permissions: frozenset[str] | set[str] = REVIEW_PERMISSIONS,
    expires_at: datetime | None = None,
    email: str | None = None,
) -> AuthenticatedSession:
    """Build an authenticated reviewer session.

    Args:
        user_id: Reviewer identifier.
        permissions: Granted permission strings.
        expires_at: Expiry. Defaults to one hour from now.
        email: Reviewer email. Derived from user_id when None.

    Returns:
        An AuthenticatedSession.
    """
    return AuthenticatedSession(
        user_id=user_id,
        email=email or f"{user_id}@example.com",
        permissions=frozenset(permissions),
        session_id=f"sess-{user_id}",
        expires_at=expires_at or datetime.now(UTC) + timedelta(hours=1),
    )


def make_fake_entry(
    severity: str = "high",
    status: str = "pending",
    skill_id: str = "acme/deploy-helper",
    content_hash: str | None = "a" * 64,
) -> MagicMock:
    """Build a QuarantineEntry-shaped mock."""
    entry = MagicMock()
    entry.id = uuid.uuid4()
    entry.skill_id = skill_id
    entry.severity = severity
    entry.status = status
    entry.reason = "Risk score 45 reached quarantine threshold 30"
    entry.findings = [
        {"type": "suspicious-code", "severity": "high", "line": 3, "snippet": "eval(", "rule_id": "sc-eval"},
    ]
    entry.risk_score = 45
    entry.content_hash = content_hash
    entry.quarantined_at = datetime.now(UTC)
    entry.reviewed_by = None
    entry.reviewer_email = None
    entry.reviewed_at = None
    entry.review_notes = None
    return entry


def make_fake_approval(
    reviewer_id: str,
    approved_at: datetime | None = None,
    completed_at: datetime | None = None,
) -> MagicMock:
    """Build a QuarantineApproval-shaped mock."""
    approval = MagicMock()
    approval.id = uuid.uuid4()
    approval.reviewer_id = reviewer_id
    approval.reviewer_email = f"{reviewer_id}@example.com"
    approval.approved_at = approved_at or datetime.now(UTC)
    approval.completed_at = completed_at
    approval.notes = None
    return approval


def audit_events(mock_audit_logger: AsyncMock) -> list[AuditEvent]:
    """Return every AuditEvent passed to a mock logger's safe_log, in call order."""
    return [c.args[0] for c in mock_audit_logger.safe_log.call_args_list]


async def _create_engine() -> AsyncEngine:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)
    return engine


@pytest_asyncio.fixture()
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite primary database with every table created.

    Yields:
        The async engine.
    """
    engine = await _create_engine()
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """A primary database session.

    Args:
        db_engine: Injected primary engine fixture.

    Yields:
        An AsyncSession bound to the primary engine.
    """
    async with make_session_factory(db_engine)() as session:
        yield session


@pytest_asyncio.fixture()
async def audit_engine() -> AsyncGenerator[AsyncEngine, None]:
    """A separate in-memory SQLite database standing in for the audit wall."""
    engine = await _create_engine()
    yield engine
    await engine.dispose()


@pytest.fixture()
def audit_session_factory(audit_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(audit_engine)


@pytest.fixture()
def audit_logger(audit_session_factory: async_sessionmaker[AsyncSession]) -> AuditLogger:
    """A real AuditLogger writing to the audit wall fixture database.

    Args:
        audit_session_factory: Injected audit session factory.

    Returns:
        AuditLogger instance.
    """
    return AuditLogger(audit_session_factory)


@pytest.fixture()
def mock_audit_logger() -> AsyncMock:
    """Create a mock AuditLogger that captures safe_log() calls.

    Returns:
        AsyncMock with safe_log returning None.
    """
    logger = AsyncMock(spec=AuditLogger)
    logger.safe_log.return_value = None
    return logger


@pytest.fixture()
def release_handler() -> AsyncMock:
    """Create a mock release handler.

    Returns:
        AsyncMock whose release() records each released entry.
    """
    handler = AsyncMock()
    handler.release.return_value = None
    return handler


def skill_markdown(body: str = "", version: str | None = None, extra_frontmatter: dict[str, Any] | None = None) -> str:
    """Build skill markdown with optional YAML frontmatter."""
    lines: list[str] = []
    fields = dict(extra_frontmatter or {})
    if version is not None:
        fields["version"] = version
    if fields:
        lines.append("---")
        lines.extend(f"{key}: {value}" for key, value in fields.items())
        lines.append("---")
    lines.append(body)
    return "\n".join(lines)
