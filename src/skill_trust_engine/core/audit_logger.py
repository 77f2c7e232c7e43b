"""Audit logging for trust decisions, quarantine actions, and retention.

AuditLogger is the single point of entry for audit writes. Each write runs on
its own Audit Wall session and commits independently of the caller's primary
transaction.

Scan and quarantine code records through `safe_log`, which logs a failed
audit write and continues, so an audit outage never aborts the operation
being recorded. `log` raises for callers that need the failure.
"""

import json
from collections.abc import Awaitable
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from skill_trust_engine.adapters.audit_wall import AuditLogStore
from skill_trust_engine.core.models import AuditLogEntry
from skill_trust_engine.core.types import AuditEvent
from skill_trust_engine.errors import ValidationError
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)

MIN_RETENTION_DAYS = 1
CLEANUP_EVENT_TYPE = "audit.retention.cleanup"


def validate_retention_days(retention_days: Any) -> int:
    """Validate a retention window.

    Args:
        retention_days: Requested retention in whole days.

    Returns:
        The validated value.

    Raises:
        ValidationError: If the value is not an integer (bools included) or is
            below the minimum retention of one day.
    """
    if isinstance(retention_days, bool) or not isinstance(retention_days, int):
        raise ValidationError(
            f"retention_days must be an integer, got {retention_days!r}",
            field="retention_days",
        )
    if retention_days < MIN_RETENTION_DAYS:
        raise ValidationError(
            f"retention_days must be at least the minimum of {MIN_RETENTION_DAYS} day, got {retention_days}",
            field="retention_days",
        )
    return retention_days


def entry_to_dict(entry: AuditLogEntry) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "event_type": entry.event_type,
        "actor": entry.actor,
        "resource": entry.resource,
        "action": entry.action,
        "result": entry.result,
        "metadata": entry.details,
        "timestamp": entry.timestamp.isoformat(),
    }


class AuditLogger:
    """Append-only audit log over the Audit Wall.

    Args:
        session_factory: Audit Wall session factory from get_audit_session_factory().
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def log(self, event: AuditEvent) -> AuditLogEntry:
        """Append an audit entry and commit it.

        Args:
            event: The event to record. Timestamp defaults to now (UTC).

        Returns:
            The persisted AuditLogEntry.
        """
        async with self._session_factory() as session:
            store = AuditLogStore(session)
            entry = await store.append(
                event_type=event.event_type,
                actor=event.actor,
                resource=event.resource,
                action=event.action,
                result=event.result,
                details=event.metadata,
                timestamp=event.timestamp or datetime.now(UTC),
            )
            await session.commit()
        return entry

    async def safe_log(self, event: AuditEvent) -> AuditLogEntry | None:
        """Append an audit entry, logging and swallowing any failure.

        Args:
            event: The event to record.

        Returns:
            The persisted entry, or None when the write failed.
        """
        try:
            return await self.log(event)
        except Exception as exc:
            logger.error(
                "Audit write failed, continuing",
                event_type=event.event_type,
                resource=event.resource,
                error=str(exc),
            )
            return None

    async def query(
        self,
        event_type: str | None = None,
        resource: str | None = None,
        actor: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 100,
    ) -> list[AuditLogEntry]:
        """Query audit entries, newest first.

        Args:
            event_type: Optional exact event type.
            resource: Optional exact resource.
            actor: Optional exact actor.
            since: Optional inclusive lower time bound.
            until: Optional inclusive upper time bound.
            limit: Maximum entries returned.

        Returns:
            Matching AuditLogEntry records.
        """
        async with self._session_factory() as session:
            return await AuditLogStore(session).query(
                event_type=event_type,
                resource=resource,
                actor=actor,
                since=since,
                until=until,
                limit=limit,
            )

    def cleanup_old_logs(self, retention_days: int) -> Awaitable[int]:
        """Purge entries older than the retention window.

        The argument is validated before anything is awaited, so an invalid
        value raises at call time and the table is never touched. The purge
        and the entry documenting it commit together.

        Args:
            retention_days: Retention window in whole days, at least 1.

        Returns:
            Awaitable resolving to the number of entries deleted.

        Raises:
            ValidationError: If retention_days is not an integer of at least 1.
        """
        validate_retention_days(retention_days)
        return self._cleanup(retention_days)

    async def _cleanup(self, retention_days: int) -> int:
        now = datetime.now(UTC)
        cutoff = now - timedelta(days=retention_days)

        async with self._session_factory() as session:
            store = AuditLogStore(session)
            deleted = await store.delete_older_than(cutoff)
            await store.append(
                event_type=CLEANUP_EVENT_TYPE,
                actor="system",
                resource="audit_log",
                action="cleanup",
                result="success",
                details={
                    "retention_days": retention_days,
                    "deleted_count": deleted,
                    "cutoff": cutoff.isoformat(),
                },
                timestamp=now,
            )
            await session.commit()

        logger.info("Audit log retention cleanup", retention_days=retention_days, deleted_count=deleted)
        return deleted

    async def export(self) -> str:
        """Serialize every audit entry for SIEM ingestion.

        Returns:
            A JSON array of entries, oldest first, with ISO-8601 timestamps.
        """
        async with self._session_factory() as session:
            entries = await AuditLogStore(session).list_all()
        return json.dumps([entry_to_dict(e) for e in entries], indent=2)
