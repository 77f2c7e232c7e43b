"""SQLAlchemy repositories for the skill trust engine primary database.

Each repository implements the corresponding interface from core/interfaces.py.

Repositories:
- QuarantineRepository: QuarantineEntry CRUD, stats, conditional review
- ApprovalRepository: Multi-approval records for malicious entries
- SkillVersionRepository: Content-hash version history with pruning
- AdvisoryRepository: Security advisories with soft withdrawal

NOTE: AuditLogStore is intentionally in audit_wall.py, not here. It uses a
separate session factory and must never share the primary DB session.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from skill_trust_engine.core.models import QuarantineApproval, QuarantineEntry, SkillAdvisory, SkillVersionRecord
from skill_trust_engine.errors import DuplicateApprovalError, NotFoundError
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)


class QuarantineRepository:
    """Repository for QuarantineEntry persistence on the primary database.

    Args:
        session: The primary DB async session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(
        self,
        skill_id: str,
        severity: str,
        findings: list[dict[str, Any]],
        reason: str | None = None,
        risk_score: int | None = None,
        content_hash: str | None = None,
    ) -> QuarantineEntry:
        """Create and persist a pending quarantine entry.

        Args:
            skill_id: Held skill identifier.
            severity: low | medium | high | malicious.
            findings: Serialized findings that triggered the quarantine.
            reason: Optional human-readable reason.
            risk_score: Scan risk score at quarantine time.
            content_hash: Hash of the quarantined content.

        Returns:
            The persisted QuarantineEntry.
        """
        entry = QuarantineEntry(
            skill_id=skill_id,
            severity=severity,
            status="pending",
            findings=findings,
            reason=reason,
            risk_score=risk_score,
            content_hash=content_hash,
            quarantined_at=datetime.now(UTC),
        )
        self._session.add(entry)
        await self._session.flush()
        logger.info(
            "Quarantine entry created in DB",
            quarantine_id=str(entry.id),
            skill_id=skill_id,
            severity=severity,
        )
        return entry

    async def get_by_id(self, quarantine_id: uuid.UUID) -> QuarantineEntry:
        """Retrieve an entry by ID.

        Args:
            quarantine_id: The entry UUID.

        Returns:
            The QuarantineEntry.

        Raises:
            NotFoundError: If not found.
        """
        result = await self._session.execute(select(QuarantineEntry).where(QuarantineEntry.id == quarantine_id))
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError(resource="QuarantineEntry", resource_id=str(quarantine_id))
        return entry

    async def get_for_update(self, quarantine_id: uuid.UUID) -> QuarantineEntry:
        """Retrieve an entry and hold its row lock until the transaction ends.

        Reviews of one entry serialise on this lock, so a second reviewer
        reads the first reviewer's committed approvals. SQLite has no row
        locks and ignores FOR UPDATE.

        Raises:
            NotFoundError: If not found.
        """
        stmt = (
            select(QuarantineEntry)
            .where(QuarantineEntry.id == quarantine_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        entry = result.scalar_one_or_none()
        if entry is None:
            raise NotFoundError(resource="QuarantineEntry", resource_id=str(quarantine_id))
        return entry

    async def list_all(
        self,
        status_filter: str | None = None,
        severity_filter: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> list[QuarantineEntry]:
        """List entries with optional filters, newest first.

        Args:
            status_filter: Optional status.
            severity_filter: Optional severity.
            page: Page number (1-indexed).
            page_size: Records per page.

        Returns:
            List of QuarantineEntry records.
        """
        stmt = select(QuarantineEntry)
        if status_filter:
            stmt = stmt.where(QuarantineEntry.status == status_filter)
        if severity_filter:
            stmt = stmt.where(QuarantineEntry.severity == severity_filter)
        stmt = stmt.order_by(QuarantineEntry.quarantined_at.desc()).offset((page - 1) * page_size).limit(page_size)
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def list_for_skill(self, skill_id: str) -> list[QuarantineEntry]:
        stmt = (
            select(QuarantineEntry)
            .where(QuarantineEntry.skill_id == skill_id)
            .order_by(QuarantineEntry.quarantined_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_stats(self) -> dict[str, Any]:
        """Return quarantine counts.

        Returns:
            Dict with total, by_status, and by_severity counts.
        """
        by_status_rows = await self._session.execute(
            select(QuarantineEntry.status, func.count()).group_by(QuarantineEntry.status)
        )
        by_severity_rows = await self._session.execute(
            select(QuarantineEntry.severity, func.count()).group_by(QuarantineEntry.severity)
        )
        by_status = {status: count for status, count in by_status_rows.all()}
        by_severity = {severity: count for severity, count in by_severity_rows.all()}
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_severity": by_severity,
        }

    async def finalize_review(
        self,
        quarantine_id: uuid.UUID,
        status: str,
        reviewed_by: str,
        reviewer_email: str,
        review_notes: str | None,
    ) -> bool:
        """Move a pending entry to a terminal status.

        The WHERE clause requires status = 'pending', so of two concurrent
        callers exactly one performs the transition.

        Args:
            quarantine_id: The entry UUID.
            status: approved | rejected.
            reviewed_by: Reviewer user_id(s).
            reviewer_email: Reviewer email(s).
            review_notes: Optional notes.

        Returns:
            True if this call performed the transition.
        """
        stmt = (
            update(QuarantineEntry)
            .where(QuarantineEntry.id == quarantine_id, QuarantineEntry.status == "pending")
            .values(
                status=status,
                reviewed_by=reviewed_by,
                reviewer_email=reviewer_email,
                reviewed_at=datetime.now(UTC),
                review_notes=review_notes,
            )
            .returning(QuarantineEntry.id)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        transitioned = result.scalar_one_or_none() is not None
        logger.info(
            "Quarantine review finalized" if transitioned else "Quarantine entry no longer pending",
            quarantine_id=str(quarantine_id),
            status=status,
        )
        return transitioned

    async def delete(self, quarantine_id: uuid.UUID) -> bool:
        result = await self._session.execute(delete(QuarantineEntry).where(QuarantineEntry.id == quarantine_id))
        return (result.rowcount or 0) > 0


class ApprovalRepository:
    """Repository for multi-approval records.

    The (quarantine_id, reviewer_id) unique constraint is the source of truth
    for duplicate detection. A violation surfaces as DuplicateApprovalError.

    Args:
        session: The primary DB async session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_approval(
        self,
        quarantine_id: uuid.UUID,
        reviewer_id: str,
        reviewer_email: str,
        session_id: str | None = None,
        notes: str | None = None,
    ) -> QuarantineApproval:
        """Persist one reviewer's approval.

        A uniqueness violation rolls back the current transaction before
        raising, leaving the session usable.

        Args:
            quarantine_id: The entry being approved.
            reviewer_id: Approving reviewer's user_id.
            reviewer_email: Approving reviewer's email.
            session_id: Session used to approve.
            notes: Optional reviewer notes.

        Returns:
            The persisted QuarantineApproval.

        Raises:
            DuplicateApprovalError: If the reviewer already approved this entry.
        """
        approval = QuarantineApproval(
            quarantine_id=quarantine_id,
            reviewer_id=reviewer_id,
            reviewer_email=reviewer_email,
            decision="approved",
            session_id=session_id,
            notes=notes,
            approved_at=datetime.now(UTC),
        )
        self._session.add(approval)
        try:
            await self._session.flush()
        except IntegrityError as exc:
            await self._session.rollback()
            raise DuplicateApprovalError(str(quarantine_id), reviewer_id) from exc
        return approval

    async def list_approvals(self, quarantine_id: uuid.UUID) -> list[QuarantineApproval]:
        stmt = (
            select(QuarantineApproval)
            .where(QuarantineApproval.quarantine_id == quarantine_id)
            .order_by(QuarantineApproval.approved_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_pending_approvals(self, quarantine_id: uuid.UUID) -> list[QuarantineApproval]:
        stmt = (
            select(QuarantineApproval)
            .where(QuarantineApproval.quarantine_id == quarantine_id, QuarantineApproval.completed_at.is_(None))
            .order_by(QuarantineApproval.approved_at.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_reviewer_approval(self, quarantine_id: uuid.UUID, reviewer_id: str) -> QuarantineApproval | None:
        stmt = select(QuarantineApproval).where(
            QuarantineApproval.quarantine_id == quarantine_id,
            QuarantineApproval.reviewer_id == reviewer_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_pending(self, quarantine_id: uuid.UUID) -> int:
        stmt = select(func.count()).where(
            QuarantineApproval.quarantine_id == quarantine_id,
            QuarantineApproval.completed_at.is_(None),
        )
        result = await self._session.execute(stmt)
        return int(result.scalar() or 0)

    async def get_workflow_start_time(self, quarantine_id: uuid.UUID) -> datetime | None:
        stmt = select(func.min(QuarantineApproval.approved_at)).where(
            QuarantineApproval.quarantine_id == quarantine_id,
            QuarantineApproval.completed_at.is_(None),
        )
        result = await self._session.execute(stmt)
        started = result.scalar()
        # Aggregates bypass the column type on some backends
        if isinstance(started, str):
            started = datetime.fromisoformat(started)
        if started is not None and started.tzinfo is None:
            started = started.replace(tzinfo=UTC)
        return started

    async def mark_complete(self, quarantine_id: uuid.UUID, completed_at: datetime) -> int:
        stmt = (
            update(QuarantineApproval)
            .where(QuarantineApproval.quarantine_id == quarantine_id, QuarantineApproval.completed_at.is_(None))
            .values(completed_at=completed_at)
            .returning(QuarantineApproval.id)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        return len(result.scalars().all())

    async def clear_approvals(self, quarantine_id: uuid.UUID) -> int:
        stmt = delete(QuarantineApproval).where(
            QuarantineApproval.quarantine_id == quarantine_id,
            QuarantineApproval.completed_at.is_(None),
        )
        result = await self._session.execute(stmt)
        cleared = result.rowcount or 0
        logger.info("Pending approvals cleared", quarantine_id=str(quarantine_id), cleared=cleared)
        return cleared

    async def delete_for_entry(self, quarantine_id: uuid.UUID) -> int:
        result = await self._session.execute(
            delete(QuarantineApproval).where(QuarantineApproval.quarantine_id == quarantine_id)
        )
        return result.rowcount or 0


class SkillVersionRepository:
    """Repository for content-hash version history.

    Args:
        session: The primary DB async session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_version(
        self,
        skill_id: str,
        content_hash: str,
        semver: str | None = None,
        change_type: str | None = None,
        keep_count: int = 50,
        recorded_at: datetime | None = None,
    ) -> SkillVersionRecord:
        """Record a version and prune history.

        Recording the same (skill_id, content_hash) twice returns the existing
        record unchanged.

        Args:
            skill_id: Registry skill identifier.
            content_hash: SHA-256 hex digest of the content.
            semver: Declared frontmatter version.
            change_type: Classified change from the previous version.
            keep_count: Versions retained per skill after pruning.
            recorded_at: Observation time. Defaults to now (UTC).

        Returns:
            The new or existing SkillVersionRecord.
        """
        existing = await self.get_version_by_hash(skill_id, content_hash)
        if existing is not None:
            return existing

        record = SkillVersionRecord(
            skill_id=skill_id,
            content_hash=content_hash,
            semver=semver,
            change_type=change_type,
            recorded_at=recorded_at or datetime.now(UTC),
        )
        self._session.add(record)
        await self._session.flush()
        await self.prune_versions(skill_id, keep_count)
        logger.info(
            "Skill version recorded",
            skill_id=skill_id,
            content_hash=content_hash[:12],
            change_type=change_type,
        )
        return record

    async def get_latest_version(self, skill_id: str) -> SkillVersionRecord | None:
        stmt = (
            select(SkillVersionRecord)
            .where(SkillVersionRecord.skill_id == skill_id)
            .order_by(SkillVersionRecord.recorded_at.desc())
            .limit(1)
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_version_history(self, skill_id: str, limit: int = 20) -> list[SkillVersionRecord]:
        stmt = (
            select(SkillVersionRecord)
            .where(SkillVersionRecord.skill_id == skill_id)
            .order_by(SkillVersionRecord.recorded_at.desc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_version_by_hash(self, skill_id: str, content_hash: str) -> SkillVersionRecord | None:
        stmt = select(SkillVersionRecord).where(
            SkillVersionRecord.skill_id == skill_id,
            SkillVersionRecord.content_hash == content_hash,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def prune_versions(self, skill_id: str, keep_count: int = 50) -> int:
        """Delete all but the newest keep_count versions of a skill.

        Returns:
            Number of records deleted.
        """
        stale_ids = (
            select(SkillVersionRecord.id)
            .where(SkillVersionRecord.skill_id == skill_id)
            .order_by(SkillVersionRecord.recorded_at.desc())
            .offset(keep_count)
        )
        ids = list((await self._session.execute(stale_ids)).scalars().all())
        if not ids:
            return 0
        await self._session.execute(
            delete(SkillVersionRecord)
            .where(SkillVersionRecord.id.in_(ids))
            .execution_options(synchronize_session="fetch")
        )
        logger.debug("Skill versions pruned", skill_id=skill_id, deleted=len(ids))
        return len(ids)


class AdvisoryRepository:
    """Repository for security advisories.

    Args:
        session: The primary DB async session.
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert_advisory(
        self,
        advisory_id: str,
        skill_id: str,
        severity: str,
        title: str,
        description: str | None = None,
        affected_versions: str | None = None,
        patched_versions: str | None = None,
        cwe_ids: list[str] | None = None,
        references: list[str] | None = None,
        published_at: datetime | None = None,
    ) -> SkillAdvisory:
        """Insert an advisory or replace the one with the same advisory_id.

        Replacing an advisory re-activates it.

        Returns:
            The persisted SkillAdvisory.
        """
        result = await self._session.execute(select(SkillAdvisory).where(SkillAdvisory.advisory_id == advisory_id))
        advisory = result.scalar_one_or_none()
        if advisory is None:
            advisory = SkillAdvisory(advisory_id=advisory_id)
            self._session.add(advisory)

        advisory.skill_id = skill_id
        advisory.severity = severity
        advisory.title = title
        advisory.description = description
        advisory.affected_versions = affected_versions
        advisory.patched_versions = patched_versions
        advisory.cwe_ids = list(cwe_ids or [])
        advisory.references = list(references or [])
        advisory.published_at = published_at or datetime.now(UTC)
        advisory.withdrawn_at = None

        await self._session.flush()
        logger.info("Advisory upserted", advisory_id=advisory_id, skill_id=skill_id, severity=severity)
        return advisory

    async def withdraw_advisory(self, advisory_id: str) -> bool:
        stmt = (
            update(SkillAdvisory)
            .where(SkillAdvisory.advisory_id == advisory_id, SkillAdvisory.withdrawn_at.is_(None))
            .values(withdrawn_at=datetime.now(UTC))
            .returning(SkillAdvisory.id)
            .execution_options(synchronize_session="fetch")
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_advisories_for_skill(self, skill_id: str) -> list[SkillAdvisory]:
        stmt = (
            select(SkillAdvisory)
            .where(SkillAdvisory.skill_id == skill_id, SkillAdvisory.withdrawn_at.is_(None))
            .order_by(SkillAdvisory.published_at.desc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def get_active_advisories(self, severity: str | None = None) -> list[SkillAdvisory]:
        stmt = select(SkillAdvisory).where(SkillAdvisory.withdrawn_at.is_(None))
        if severity:
            stmt = stmt.where(SkillAdvisory.severity == severity)
        stmt = stmt.order_by(SkillAdvisory.published_at.desc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
