"""Audit Wall: separate connection for the append-only audit log.

This module is the ONLY place that connects to the audit database
(SKILL_TRUST_AUDIT_DB_URL, falling back to the primary URL when unset).
Audit writes run on their own sessions, so a failed audit write never rolls
back the primary transaction it is recording, and a rolled-back primary
transaction never erases its audit trail.

Key exports:
- init_audit_db(...): Call at startup to initialize the audit engine
- close_audit_db(): Call at shutdown to dispose the engine
- get_audit_session_factory(): FastAPI dependency returning the session factory
- AuditLogStore: Append-only store: append, query, purge, list
"""

from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from skill_trust_engine.adapters.database import engine_options, make_session_factory
from skill_trust_engine.core.models import AuditLogEntry
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)

# Module-level engine and session factory: initialized by init_audit_db()
_audit_engine: AsyncEngine | None = None
_audit_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_audit_db(
    audit_db_url: str,
    pool_size: int = 5,
    max_overflow: int = 2,
    pool_timeout: int = 30,
) -> AsyncEngine:
    """Initialize the Audit Wall database engine and session factory.

    Must be called once at application startup before any audit write.

    Args:
        audit_db_url: SQLAlchemy async URL of the audit database.
        pool_size: Connection pool size.
        max_overflow: Max overflow connections above pool_size.
        pool_timeout: Seconds to wait for a connection before raising.

    Returns:
        The created engine.
    """
    global _audit_engine, _audit_session_factory  # noqa: PLW0603

    logger.info("Initializing Audit Wall engine", pool_size=pool_size, max_overflow=max_overflow)

    _audit_engine = create_async_engine(
        audit_db_url,
        # Echo stays off: audit queries must not log values
        echo=False,
        **engine_options(audit_db_url, pool_size, max_overflow, pool_timeout),
    )
    _audit_session_factory = make_session_factory(_audit_engine)

    logger.info("Audit Wall engine initialized")
    return _audit_engine


async def close_audit_db() -> None:
    """Dispose the Audit Wall database engine."""
    global _audit_engine, _audit_session_factory  # noqa: PLW0603

    if _audit_engine is not None:
        logger.info("Disposing Audit Wall engine")
        await _audit_engine.dispose()
        _audit_engine = None
        _audit_session_factory = None


def get_audit_session_factory() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency returning the Audit Wall session factory.

    Returns:
        The session factory bound to the audit engine.

    Raises:
        RuntimeError: If init_audit_db() has not been called yet.
    """
    if _audit_session_factory is None:
        raise RuntimeError(
            "Audit Wall database has not been initialized. "
            "Call init_audit_db() in the application lifespan handler."
        )
    return _audit_session_factory


class AuditLogStore:
    """Append-only store for AuditLogEntry on the Audit Wall database.

    There is no update method. Entries leave the table only through
    delete_older_than, which AuditLogger calls for retention cleanup and
    always follows with a new entry recording the purge.

    Args:
        session: An Audit Wall session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        event_type: str,
        actor: str,
        resource: str,
        action: str,
        result: str,
        details: dict[str, Any],
        timestamp: datetime,
    ) -> AuditLogEntry:
        """Append an audit entry.

        Args:
            event_type: Dot-notation event type.
            actor: Reviewer email, "system", or "scanner".
            resource: Affected resource.
            action: Short action verb.
            result: success | failure | blocked.
            details: Event-specific payload.
            timestamp: Event timestamp (UTC).

        Returns:
            The persisted AuditLogEntry.
        """
        entry = AuditLogEntry(
            event_type=event_type,
            actor=actor,
            resource=resource,
            action=action,
            result=result,
            details=details,
            timestamp=timestamp,
        )
        self._session.add(entry)
        await self._session.flush()

        logger.debug("Audit entry written", entry_id=str(entry.id), event_type=event_type, resource=resource)
        return entry

    async def query(
        self,
        event_type: str | None = None,
        resource: str | None = None,
        actor: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Query audit entries with filters.

        Args:
            event_type: Optional exact event type.
            resource: Optional exact resource.
            actor: Optional exact actor.
            since: Optional inclusive lower time bound.
            until: Optional inclusive upper time bound.
            limit: Maximum entries returned.

        Returns:
            Matching entries ordered by timestamp descending.
        """
        stmt = select(AuditLogEntry)

        if event_type:
            stmt = stmt.where(AuditLogEntry.event_type == event_type)
        if resource:
            stmt = stmt.where(AuditLogEntry.resource == resource)
        if actor:
            stmt = stmt.where(AuditLogEntry.actor == actor)
        if since:
            stmt = stmt.where(AuditLogEntry.timestamp >= since)
        if until:
            stmt = stmt.where(AuditLogEntry.timestamp <= until)

        stmt = stmt.order_by(AuditLogEntry.timestamp.desc()).limit(limit)

        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Purge entries with a timestamp strictly before cutoff.

        Args:
            cutoff: Retention boundary (UTC).

        Returns:
            Number of entries deleted.
        """
        result = await self._session.execute(delete(AuditLogEntry).where(AuditLogEntry.timestamp < cutoff))
        return result.rowcount or 0

    async def list_all(self) -> list[AuditLogEntry]:
        """Return every entry ordered by timestamp ascending."""
        result = await self._session.execute(select(AuditLogEntry).order_by(AuditLogEntry.timestamp.asc()))
        return list(result.scalars().all())
