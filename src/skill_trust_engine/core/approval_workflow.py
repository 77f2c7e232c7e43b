"""Multi-reviewer approval workflow for malicious-severity quarantine entries.

A malicious entry is released only after `required_approvals` distinct
reviewers approve it. Approval state lives in the approval table, so a
restart loses nothing, and the (quarantine_id, reviewer_id) uniqueness
constraint is what rejects a second approval from the same reviewer.

When the oldest pending approval is older than the timeout, pending approvals
are discarded, the discard is audited once, and the current approval starts a
fresh round as approval 1 of N.
"""

import uuid
from dataclasses import replace
from datetime import UTC, datetime, timedelta

from skill_trust_engine.core.audit_logger import AuditLogger
from skill_trust_engine.core.interfaces import IApprovalRepository, IQuarantineRepository, IReleaseHandler
from skill_trust_engine.core.models import QuarantineApproval, QuarantineEntry
from skill_trust_engine.core.types import (
    ApprovalSummary,
    AuditEvent,
    AuthenticatedSession,
    MultiApprovalStatus,
    QuarantineSeverity,
    QuarantineStatus,
    ReviewResult,
)
from skill_trust_engine.errors import DuplicateApprovalError, ErrorCode, QuarantineServiceError
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)

DEFAULT_REQUIRED_APPROVALS = 2
DEFAULT_TIMEOUT_HOURS = 24


def build_status(
    quarantine_id: uuid.UUID,
    approvals: list[QuarantineApproval],
    required_approvals: int,
) -> MultiApprovalStatus:
    """Build workflow progress from persisted approval rows.

    Args:
        quarantine_id: The entry the approvals belong to.
        approvals: Approval rows, oldest first.
        required_approvals: Approvals needed to release the entry.

    Returns:
        MultiApprovalStatus reflecting the rows.
    """
    completed = [a.completed_at for a in approvals if a.completed_at is not None]
    return MultiApprovalStatus(
        quarantine_id=quarantine_id,
        required_approvals=required_approvals,
        approvals=tuple(
            ApprovalSummary(
                reviewer_id=a.reviewer_id,
                reviewer_email=a.reviewer_email,
                approved_at=a.approved_at,
                notes=a.notes,
            )
            for a in approvals
        ),
        is_complete=bool(completed),
        started_at=approvals[0].approved_at if approvals else None,
        completed_at=max(completed) if completed else None,
    )


class ApprovalWorkflow:
    """Persisted multi-reviewer consensus for malicious-severity entries.

    Permission checks happen in QuarantineService before the workflow is
    entered. The workflow assumes the entry is pending and malicious.

    Args:
        quarantine_repo: Repository for quarantine entries.
        approval_repo: Repository for approval rows.
        audit_logger: Audit logger for workflow events.
        release_handler: Invoked once when an entry reaches approved.
        required_approvals: Distinct approvals required to release.
        timeout_hours: Age of the first pending approval after which the round resets.
    """

    def __init__(
        self,
        quarantine_repo: IQuarantineRepository,
        approval_repo: IApprovalRepository,
        audit_logger: AuditLogger,
        release_handler: IReleaseHandler,
        required_approvals: int = DEFAULT_REQUIRED_APPROVALS,
        timeout_hours: int = DEFAULT_TIMEOUT_HOURS,
    ) -> None:
        self._quarantine_repo = quarantine_repo
        self._approval_repo = approval_repo
        self._audit_logger = audit_logger
        self._release_handler = release_handler
        self._required_approvals = required_approvals
        self._timeout = timedelta(hours=timeout_hours)

    @property
    def required_approvals(self) -> int:
        return self._required_approvals

    async def approve(
        self,
        session: AuthenticatedSession,
        entry: QuarantineEntry,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> ReviewResult:
        """Record one reviewer's approval and release the entry at quorum.

        Args:
            session: The validated reviewer session.
            entry: The pending malicious-severity entry.
            notes: Optional reviewer notes.
            now: Reference time for the timeout check. Defaults to now (UTC).

        Returns:
            ReviewResult with multi-approval progress. `status` is approved
            only for the call that completed the workflow.

        Raises:
            QuarantineServiceError: ALREADY_REVIEWED if this reviewer already
                approved the current round, or if a concurrent review finalized
                the entry first.
        """
        now = now or datetime.now(UTC)
        quarantine_id = entry.id
        skill_id = entry.skill_id
        warnings: list[str] = []

        approvals_reset = await self._reset_if_stale(session, quarantine_id, skill_id, now)
        if approvals_reset:
            warnings.append(
                f"Multi-approval workflow timed out after {self._timeout_hours} hours; "
                "prior approvals were cleared and this approval starts a new round"
            )

        existing = await self._approval_repo.get_reviewer_approval(quarantine_id, session.user_id)
        if existing is not None:
            raise self._already_approved(quarantine_id, existing.approved_at)

        try:
            await self._approval_repo.record_approval(
                quarantine_id=quarantine_id,
                reviewer_id=session.user_id,
                reviewer_email=session.email,
                session_id=session.session_id,
                notes=notes,
            )
        except DuplicateApprovalError as exc:
            previous = await self._approval_repo.get_reviewer_approval(quarantine_id, session.user_id)
            raise self._already_approved(quarantine_id, previous.approved_at if previous else None) from exc

        # Re-read after insert so concurrent approvals are counted
        approval_count = await self._approval_repo.count_pending(quarantine_id)

        if approval_count < self._required_approvals:
            pending = await self._approval_repo.get_pending_approvals(quarantine_id)
            await self._audit_approval(session, entry, approval_count)
            logger.info(
                "Multi-approval recorded",
                quarantine_id=str(quarantine_id),
                approval_count=approval_count,
                required_approvals=self._required_approvals,
            )
            warnings.append(
                f"Multi-approval in progress: {approval_count}/{self._required_approvals} approvals received"
            )
            warnings.append(f"Requires {self._required_approvals - approval_count} more approval(s)")
            return ReviewResult(
                quarantine_id=quarantine_id,
                skill_id=skill_id,
                severity=QuarantineSeverity.MALICIOUS,
                status=QuarantineStatus.PENDING,
                can_import=False,
                reviewed_by=session.reviewer(),
                warnings=tuple(warnings),
                multi_approval=build_status(quarantine_id, pending, self._required_approvals),
                approvals_reset=approvals_reset,
            )

        return await self._complete(session, entry, notes, now, approval_count, warnings, approvals_reset)

    async def status(self, quarantine_id: uuid.UUID) -> MultiApprovalStatus:
        approvals = await self._approval_repo.list_approvals(quarantine_id)
        return build_status(quarantine_id, approvals, self._required_approvals)

    async def cancel(self, session: AuthenticatedSession, entry: QuarantineEntry) -> bool:
        """Discard the pending approval round for an entry.

        Returns:
            True if pending approvals existed and were cleared.
        """
        pending = await self._approval_repo.get_pending_approvals(entry.id)
        if not pending:
            return False

        cleared = await self._approval_repo.clear_approvals(entry.id)
        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="quarantine.multi_approval.cancelled",
                actor=session.email,
                resource=entry.skill_id,
                action="cancel",
                metadata={
                    "quarantine_id": str(entry.id),
                    "cleared_count": cleared,
                    "cancelled_approvals": [_approval_to_dict(a) for a in pending],
                    "cancelled_by": session.reviewer(),
                },
            )
        )
        logger.info("Multi-approval cancelled", quarantine_id=str(entry.id), cleared=cleared)
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @property
    def _timeout_hours(self) -> int:
        return int(self._timeout.total_seconds() // 3600)

    async def _reset_if_stale(
        self,
        session: AuthenticatedSession,
        quarantine_id: uuid.UUID,
        skill_id: str,
        now: datetime,
    ) -> bool:
        started_at = await self._approval_repo.get_workflow_start_time(quarantine_id)
        if started_at is None or now - started_at <= self._timeout:
            return False

        expired = await self._approval_repo.get_pending_approvals(quarantine_id)
        await self._approval_repo.clear_approvals(quarantine_id)

        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="quarantine.multi_approval.timeout",
                actor="system",
                resource=skill_id,
                action="timeout",
                metadata={
                    "quarantine_id": str(quarantine_id),
                    "timeout_hours": self._timeout_hours,
                    "expired_approvals": [_approval_to_dict(a) for a in expired],
                    "triggered_by": session.reviewer(),
                },
            )
        )
        logger.warning(
            "Multi-approval round timed out",
            quarantine_id=str(quarantine_id),
            expired_count=len(expired),
        )
        return True

    async def _complete(
        self,
        session: AuthenticatedSession,
        entry: QuarantineEntry,
        notes: str | None,
        now: datetime,
        approval_count: int,
        warnings: list[str],
        approvals_reset: bool,
    ) -> ReviewResult:
        quarantine_id = entry.id
        skill_id = entry.skill_id
        approvals = await self._approval_repo.get_pending_approvals(quarantine_id)
        approver_ids = [a.reviewer_id for a in approvals]
        approver_emails = [a.reviewer_email for a in approvals]

        transitioned = await self._quarantine_repo.finalize_review(
            quarantine_id=quarantine_id,
            status=QuarantineStatus.APPROVED.value,
            reviewed_by=", ".join(approver_ids),
            reviewer_email=", ".join(approver_emails),
            review_notes=f"Multi-approval complete: {len(approvals)} reviewers approved. {notes or ''}".strip(),
        )
        if not transitioned:
            await self._audit_approval(session, entry, approval_count, result="failure")
            raise QuarantineServiceError(
                "Quarantine entry was finalized by a concurrent review",
                ErrorCode.ALREADY_REVIEWED,
                {"quarantine_id": str(quarantine_id)},
            )

        await self._approval_repo.mark_complete(quarantine_id, now)

        await self._audit_approval(session, entry, approval_count)
        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="quarantine.multi_approval.complete",
                actor=session.email,
                resource=skill_id,
                action="complete",
                metadata={
                    "quarantine_id": str(quarantine_id),
                    "approvals": [_approval_to_dict(a) for a in approvals],
                },
            )
        )
        logger.info(
            "Malicious quarantine entry released by multi-approval",
            quarantine_id=str(quarantine_id),
            skill_id=skill_id,
            approvers=approver_emails,
        )

        await self._release_handler.release(entry, approver_emails)

        warnings.append("MALICIOUS skill approved through multi-approval workflow")
        warnings.append(f"Approved by: {', '.join(approver_emails)}")
        return ReviewResult(
            quarantine_id=quarantine_id,
            skill_id=skill_id,
            severity=QuarantineSeverity.MALICIOUS,
            status=QuarantineStatus.APPROVED,
            can_import=True,
            reviewed_by=session.reviewer(),
            warnings=tuple(warnings),
            multi_approval=replace(
                build_status(quarantine_id, approvals, self._required_approvals),
                is_complete=True,
                completed_at=now,
            ),
            approvals_reset=approvals_reset,
        )

    async def _audit_approval(
        self,
        session: AuthenticatedSession,
        entry: QuarantineEntry,
        approval_count: int,
        result: str = "success",
    ) -> None:
        # Written once the outcome of this approval is known
        metadata: dict[str, object] = {
            "quarantine_id": str(entry.id),
            "approval_number": approval_count,
            "required_approvals": self._required_approvals,
            "reviewer": session.reviewer(),
            "session_id": session.session_id,
        }
        if result != "success":
            metadata["reason"] = "finalized by a concurrent review"
        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="quarantine.multi_approval",
                actor=session.email,
                resource=entry.skill_id,
                action="approve",
                result=result,
                metadata=metadata,
            )
        )

    @staticmethod
    def _already_approved(quarantine_id: uuid.UUID, previous_approval_at: datetime | None) -> QuarantineServiceError:
        return QuarantineServiceError(
            "You have already approved this entry",
            ErrorCode.ALREADY_REVIEWED,
            {
                "quarantine_id": str(quarantine_id),
                "previous_approval_at": previous_approval_at.isoformat() if previous_approval_at else "unknown",
            },
        )


def _approval_to_dict(approval: QuarantineApproval) -> dict[str, str]:
    return {
        "reviewer_id": approval.reviewer_id,
        "email": approval.reviewer_email,
        "approved_at": approval.approved_at.isoformat(),
    }
