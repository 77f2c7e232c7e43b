"""Abstract interfaces (Protocol classes) for the skill trust engine.

Defines the contracts between the service layer and the adapter layer.
Services depend on these protocols, never on concrete adapters, so they can
be tested with mock adapters.

Protocols defined:
- IQuarantineRepository
- IApprovalRepository
- ISkillVersionRepository
- IAdvisoryRepository
- IReleaseHandler
- IValidationCapability
"""

import uuid
from datetime import datetime
from typing import Any, Protocol

from skill_trust_engine.core.models import (
    QuarantineApproval,
    QuarantineEntry,
    SkillAdvisory,
    SkillVersionRecord,
)
from skill_trust_engine.core.types import ScanReport


class IQuarantineRepository(Protocol):
    """Repository contract for QuarantineEntry persistence."""

    async def create(
        self,
        skill_id: str,
        severity: str,
        findings: list[dict[str, Any]],
        reason: str | None = None,
        risk_score: int | None = None,
        content_hash: str | None = None,
    ) -> QuarantineEntry:
        """Create and persist a pending quarantine entry."""
        ...

    async def get_by_id(self, quarantine_id: uuid.UUID) -> QuarantineEntry:
        """Retrieve an entry by ID.

        Raises:
            NotFoundError: If no entry exists with the given ID.
        """
        ...

    async def get_for_update(self, quarantine_id: uuid.UUID) -> QuarantineEntry:
        """Retrieve an entry by ID, locking its row for the current transaction.

        Raises:
            NotFoundError: If no entry exists with the given ID.
        """
        ...

    async def list_all(
        self,
        status_filter: str | None = None,
        severity_filter: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> list[QuarantineEntry]:
        """List entries newest first with optional filters."""
        ...

    async def list_for_skill(self, skill_id: str) -> list[QuarantineEntry]:
        """List every entry opened for a skill, newest first."""
        ...

    async def get_stats(self) -> dict[str, Any]:
        """Return counts by status and by severity."""
        ...

    async def finalize_review(
        self,
        quarantine_id: uuid.UUID,
        status: str,
        reviewed_by: str,
        reviewer_email: str,
        review_notes: str | None,
    ) -> bool:
        """Move a pending entry to a terminal status.

        The update is conditional on the entry still being pending.

        Returns:
            True if this call performed the transition, False if the entry was
            no longer pending.
        """
        ...

    async def delete(self, quarantine_id: uuid.UUID) -> bool:
        """Delete an entry. Returns False when it did not exist."""
        ...


class IApprovalRepository(Protocol):
    """Repository contract for multi-approval records."""

    async def record_approval(
        self,
        quarantine_id: uuid.UUID,
        reviewer_id: str,
        reviewer_email: str,
        session_id: str | None = None,
        notes: str | None = None,
    ) -> QuarantineApproval:
        """Persist one reviewer's approval.

        Raises:
            DuplicateApprovalError: If the reviewer already holds an approval
                row for this entry.
        """
        ...

    async def list_approvals(self, quarantine_id: uuid.UUID) -> list[QuarantineApproval]:
        """Return every approval row for an entry, oldest first."""
        ...

    async def get_pending_approvals(self, quarantine_id: uuid.UUID) -> list[QuarantineApproval]:
        """Return pending approvals ordered oldest first."""
        ...

    async def get_reviewer_approval(self, quarantine_id: uuid.UUID, reviewer_id: str) -> QuarantineApproval | None:
        """Return the reviewer's approval row, if any."""
        ...

    async def count_pending(self, quarantine_id: uuid.UUID) -> int:
        """Count pending approvals for an entry."""
        ...

    async def get_workflow_start_time(self, quarantine_id: uuid.UUID) -> datetime | None:
        """Return the time of the oldest pending approval, if any."""
        ...

    async def mark_complete(self, quarantine_id: uuid.UUID, completed_at: datetime) -> int:
        """Stamp every pending approval as complete. Returns rows updated."""
        ...

    async def clear_approvals(self, quarantine_id: uuid.UUID) -> int:
        """Delete pending approvals. Returns rows deleted."""
        ...

    async def delete_for_entry(self, quarantine_id: uuid.UUID) -> int:
        """Delete every approval row for an entry. Returns rows deleted."""
        ...


class ISkillVersionRepository(Protocol):
    """Repository contract for skill version history."""

    async def record_version(
        self,
        skill_id: str,
        content_hash: str,
        semver: str | None = None,
        change_type: str | None = None,
        keep_count: int = 50,
        recorded_at: datetime | None = None,
    ) -> SkillVersionRecord:
        """Record a version, idempotent per (skill_id, content_hash), then prune."""
        ...

    async def get_latest_version(self, skill_id: str) -> SkillVersionRecord | None:
        """Return the most recently recorded version."""
        ...

    async def get_version_history(self, skill_id: str, limit: int = 20) -> list[SkillVersionRecord]:
        """Return versions newest first."""
        ...

    async def get_version_by_hash(self, skill_id: str, content_hash: str) -> SkillVersionRecord | None:
        """Return the version with the given content hash."""
        ...

    async def prune_versions(self, skill_id: str, keep_count: int = 50) -> int:
        """Delete all but the newest keep_count versions. Returns rows deleted."""
        ...


class IAdvisoryRepository(Protocol):
    """Repository contract for security advisories."""

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
        """Insert or update an advisory by advisory_id."""
        ...

    async def withdraw_advisory(self, advisory_id: str) -> bool:
        """Soft-delete an active advisory. Returns False when none was active."""
        ...

    async def get_advisories_for_skill(self, skill_id: str) -> list[SkillAdvisory]:
        """Return active advisories for a skill, newest first."""
        ...

    async def get_active_advisories(self, severity: str | None = None) -> list[SkillAdvisory]:
        """Return active advisories, optionally filtered by severity."""
        ...


class IReleaseHandler(Protocol):
    """Performs the release of an approved skill from quarantine."""

    async def release(self, entry: QuarantineEntry, approvers: list[str]) -> None:
        """Release the skill held by an approved entry.

        Args:
            entry: The quarantine entry that reached approved.
            approvers: Emails of the reviewers whose approvals released it.
        """
        ...


class IValidationCapability(Protocol):
    """Edition-specific content validation, selected once at startup."""

    @property
    def edition(self) -> str:
        """Edition name: community or enterprise."""
        ...

    def scan(self, skill_id: str, content: str) -> ScanReport:
        """Scan content and apply edition policy."""
        ...

    def quick_check(self, content: str) -> bool:
        """Fast pre-filter. True means no critical pattern was found."""
        ...
