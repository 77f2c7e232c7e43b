"""Core business logic services for the skill trust engine.

Services:
- QuarantineService: Quarantine lifecycle, review, and multi-approval entry points
- TrustPipeline: Scan, tier, change and update-risk scoring, version recording,
  and automatic quarantine for one piece of skill content
- LoggingReleaseHandler: Default release handler that records the release

All services are async-first. They accept injected repositories and adapters
through their constructors and contain no framework code. Every decision is
written to the audit log through AuditLogger.safe_log after it is made.
"""

import uuid
from collections.abc import Iterable
from typing import Any

from skill_trust_engine.core.approval_workflow import ApprovalWorkflow
from skill_trust_engine.core.audit_logger import AuditLogger
from skill_trust_engine.core.authorization import require_permission
from skill_trust_engine.core.change_classifier import classify_change, declared_version
from skill_trust_engine.core.interfaces import (
    IAdvisoryRepository,
    IApprovalRepository,
    IQuarantineRepository,
    IReleaseHandler,
    ISkillVersionRepository,
    IValidationCapability,
)
from skill_trust_engine.core.models import QuarantineEntry, SkillAdvisory
from skill_trust_engine.core.trust import TrustTierClassifier
from skill_trust_engine.core.types import (
    AuditEvent,
    AuthenticatedSession,
    Finding,
    MultiApprovalStatus,
    Permission,
    PreviousVersion,
    QuarantineSeverity,
    QuarantineStatus,
    Recommendation,
    ReviewDecision,
    ReviewResult,
    SkillEvaluation,
    SkillMetadata,
    TrustTier,
    UpdateRisk,
)
from skill_trust_engine.core.update_risk import compute_update_risk
from skill_trust_engine.errors import ErrorCode, NotFoundError, QuarantineServiceError, ValidationError
from skill_trust_engine.observability import get_logger

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Severity mapping (scan risk score -> quarantine severity)
# ---------------------------------------------------------------------------

_SEVERITY_BY_SCORE: list[tuple[int, QuarantineSeverity]] = [
    (80, QuarantineSeverity.MALICIOUS),
    (60, QuarantineSeverity.HIGH),
    (40, QuarantineSeverity.MEDIUM),
]


def severity_from_score(risk_score: int) -> QuarantineSeverity:
    """Map a scan risk score to a quarantine severity."""
    for lower, severity in _SEVERITY_BY_SCORE:
        if risk_score >= lower:
            return severity
    return QuarantineSeverity.LOW


def advisory_to_dict(advisory: SkillAdvisory) -> dict[str, Any]:
    return {
        "advisory_id": advisory.advisory_id,
        "skill_id": advisory.skill_id,
        "severity": advisory.severity,
        "title": advisory.title,
        "description": advisory.description,
        "affected_versions": advisory.affected_versions,
        "patched_versions": advisory.patched_versions,
        "cwe_ids": list(advisory.cwe_ids or []),
        "references": list(advisory.references or []),
        "published_at": advisory.published_at.isoformat() if advisory.published_at else None,
        "withdrawn_at": advisory.withdrawn_at.isoformat() if advisory.withdrawn_at else None,
    }


def _serialize_findings(findings: Iterable[Finding | dict[str, Any]]) -> list[dict[str, Any]]:
    return [f.to_dict() if isinstance(f, Finding) else dict(f) for f in findings]


class LoggingReleaseHandler:
    """Release handler that records the release and does nothing else.

    Deployments that install skills on release inject their own handler.
    """

    async def release(self, entry: QuarantineEntry, approvers: list[str]) -> None:
        logger.info(
            "Skill released from quarantine",
            quarantine_id=str(entry.id),
            skill_id=entry.skill_id,
            severity=entry.severity,
            approvers=approvers,
        )


class QuarantineService:
    """Quarantine lifecycle management.

    Every operation that takes a session validates it and checks permission
    membership before touching the repository. Malicious-severity approvals are
    delegated to ApprovalWorkflow. Any transition to approved invokes the
    release handler exactly once.

    Args:
        quarantine_repo: Repository for QuarantineEntry persistence.
        approval_repo: Repository for multi-approval rows.
        audit_logger: Audit logger for quarantine events.
        release_handler: Invoked when an entry reaches approved.
        required_approvals: Distinct approvals needed for a malicious entry.
        approval_timeout_hours: Age after which a pending approval round resets.
    """

    def __init__(
        self,
        quarantine_repo: IQuarantineRepository,
        approval_repo: IApprovalRepository,
        audit_logger: AuditLogger,
        release_handler: IReleaseHandler | None = None,
        required_approvals: int = 2,
        approval_timeout_hours: int = 24,
    ) -> None:
        self._quarantine_repo = quarantine_repo
        self._approval_repo = approval_repo
        self._audit_logger = audit_logger
        self._release_handler = release_handler or LoggingReleaseHandler()
        self._workflow = ApprovalWorkflow(
            quarantine_repo=quarantine_repo,
            approval_repo=approval_repo,
            audit_logger=audit_logger,
            release_handler=self._release_handler,
            required_approvals=required_approvals,
            timeout_hours=approval_timeout_hours,
        )

    async def create(
        self,
        skill_id: str,
        severity: QuarantineSeverity | str,
        findings: Iterable[Finding | dict[str, Any]],
        reason: str | None = None,
        session: AuthenticatedSession | None = None,
        risk_score: int | None = None,
        content_hash: str | None = None,
    ) -> QuarantineEntry:
        """Open a pending quarantine entry.

        Args:
            skill_id: Skill to hold.
            severity: low | medium | high | malicious.
            findings: Findings that triggered the quarantine.
            reason: Optional human-readable reason.
            session: Reviewer session for manual quarantines. The automatic
                pipeline path passes None.
            risk_score: Scan risk score, when known.
            content_hash: Hash of the held content, when known.

        Returns:
            The persisted QuarantineEntry.

        Raises:
            QuarantineServiceError: If a supplied session lacks quarantine:create.
            ValidationError: If severity is not recognised.
        """
        if session is not None:
            require_permission(session, Permission.QUARANTINE_CREATE)

        try:
            severity = QuarantineSeverity(severity)
        except ValueError as exc:
            raise ValidationError(f"Unknown quarantine severity: {severity}", field="severity") from exc

        entry = await self._quarantine_repo.create(
            skill_id=skill_id,
            severity=severity.value,
            findings=_serialize_findings(findings),
            reason=reason,
            risk_score=risk_score,
            content_hash=content_hash,
        )

        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="quarantine.created",
                actor=session.email if session else "scanner",
                resource=skill_id,
                action="quarantine",
                result="blocked",
                metadata={
                    "quarantine_id": str(entry.id),
                    "severity": severity.value,
                    "reason": reason,
                    "risk_score": risk_score,
                    "finding_count": len(entry.findings or []),
                },
            )
        )
        logger.info(
            "Skill quarantined",
            quarantine_id=str(entry.id),
            skill_id=skill_id,
            severity=severity.value,
        )
        return entry

    async def review(
        self,
        session: AuthenticatedSession | None,
        quarantine_id: uuid.UUID,
        decision: ReviewDecision | str,
        notes: str | None = None,
    ) -> ReviewResult:
        """Review a pending quarantine entry.

        A single decision on a non-malicious entry is terminal. Approving a
        malicious entry records one approval toward the multi-approval quorum;
        rejecting one is terminal and discards any pending approvals. Both
        require quarantine:review_malicious in addition to quarantine:review.

        Args:
            session: The reviewer's session.
            quarantine_id: Entry to review.
            decision: approved | rejected.
            notes: Optional review notes.

        Returns:
            ReviewResult describing the entry after this call.

        Raises:
            QuarantineServiceError: On session or permission failure, or
                ALREADY_REVIEWED when the entry is no longer pending.
            NotFoundError: If the entry does not exist.
            ValidationError: If the decision is not recognised.
        """
        session = require_permission(session, Permission.QUARANTINE_REVIEW)
        try:
            decision = ReviewDecision(decision)
        except ValueError as exc:
            raise ValidationError(f"Unknown review decision: {decision}", field="decision") from exc

        entry = await self._quarantine_repo.get_for_update(quarantine_id)
        self._require_pending(entry)

        if entry.severity == QuarantineSeverity.MALICIOUS.value:
            require_permission(session, Permission.QUARANTINE_REVIEW_MALICIOUS)
            if decision is ReviewDecision.APPROVED:
                return await self._workflow.approve(session, entry, notes)
            return await self._reject_malicious(session, entry, notes)

        return await self._finalize_single(session, entry, decision, notes)

    async def review_malicious(
        self,
        session: AuthenticatedSession | None,
        quarantine_id: uuid.UUID,
        notes: str | None = None,
    ) -> ReviewResult:
        """Record one approval toward releasing a malicious-severity entry.

        Raises:
            QuarantineServiceError: INVALID_INPUT if the entry is not malicious,
                plus every error `review` raises.
        """
        session = require_permission(session, Permission.QUARANTINE_REVIEW_MALICIOUS)
        entry = await self._quarantine_repo.get_by_id(quarantine_id)
        if entry.severity != QuarantineSeverity.MALICIOUS.value:
            raise QuarantineServiceError(
                "Multi-approval applies to malicious-severity entries only",
                ErrorCode.INVALID_INPUT,
                {"quarantine_id": str(quarantine_id), "severity": entry.severity},
            )
        return await self.review(session, quarantine_id, ReviewDecision.APPROVED, notes)

    async def get(self, session: AuthenticatedSession | None, quarantine_id: uuid.UUID) -> QuarantineEntry:
        require_permission(session, Permission.QUARANTINE_READ)
        return await self._quarantine_repo.get_by_id(quarantine_id)

    async def list_entries(
        self,
        session: AuthenticatedSession | None,
        status: QuarantineStatus | str | None = None,
        severity: QuarantineSeverity | str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> list[QuarantineEntry]:
        require_permission(session, Permission.QUARANTINE_READ)
        return await self._quarantine_repo.list_all(
            status_filter=str(status) if status else None,
            severity_filter=str(severity) if severity else None,
            page=page,
            page_size=page_size,
        )

    async def list_for_skill(self, session: AuthenticatedSession | None, skill_id: str) -> list[QuarantineEntry]:
        require_permission(session, Permission.QUARANTINE_READ)
        return await self._quarantine_repo.list_for_skill(skill_id)

    async def pending_for_content(self, skill_id: str, content_hash: str) -> list[QuarantineEntry]:
        """Pending entries holding this exact content. Internal pipeline use, no session."""
        entries = await self._quarantine_repo.list_for_skill(skill_id)
        return [
            e for e in entries if e.status == QuarantineStatus.PENDING.value and e.content_hash == content_hash
        ]

    async def get_stats(self, session: AuthenticatedSession | None) -> dict[str, Any]:
        require_permission(session, Permission.QUARANTINE_READ)
        return await self._quarantine_repo.get_stats()

    async def get_multi_approval_status(
        self,
        session: AuthenticatedSession | None,
        quarantine_id: uuid.UUID,
    ) -> MultiApprovalStatus:
        """Return approval progress for an entry.

        Raises:
            NotFoundError: If the entry does not exist.
        """
        require_permission(session, Permission.QUARANTINE_READ)
        entry = await self._quarantine_repo.get_by_id(quarantine_id)
        return await self._workflow.status(entry.id)

    async def cancel_multi_approval(self, session: AuthenticatedSession | None, quarantine_id: uuid.UUID) -> bool:
        """Discard the pending approval round for an entry.

        Returns:
            True if a pending round existed and was cancelled, False otherwise.
        """
        session = require_permission(session, Permission.QUARANTINE_ADMIN)
        entry = await self._quarantine_repo.get_by_id(quarantine_id)
        return await self._workflow.cancel(session, entry)

    async def delete(self, session: AuthenticatedSession | None, quarantine_id: uuid.UUID) -> bool:
        """Delete an entry and all of its approval rows.

        Returns:
            True if the entry existed and was deleted.
        """
        session = require_permission(session, Permission.QUARANTINE_DELETE)
        try:
            entry = await self._quarantine_repo.get_by_id(quarantine_id)
        except NotFoundError:
            return False

        skill_id = entry.skill_id
        cleared = await self._approval_repo.delete_for_entry(quarantine_id)
        deleted = await self._quarantine_repo.delete(quarantine_id)

        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="quarantine.deleted",
                actor=session.email,
                resource=skill_id,
                action="delete",
                metadata={
                    "quarantine_id": str(quarantine_id),
                    "approvals_removed": cleared,
                    "deleted_by": session.reviewer(),
                },
            )
        )
        logger.info("Quarantine entry deleted", quarantine_id=str(quarantine_id), skill_id=skill_id)
        return deleted

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _require_pending(entry: QuarantineEntry) -> None:
        if entry.status != QuarantineStatus.PENDING.value:
            raise QuarantineServiceError(
                f"Quarantine entry already reviewed: {entry.status}",
                ErrorCode.ALREADY_REVIEWED,
                {"quarantine_id": str(entry.id), "current_status": entry.status},
            )

    async def _finalize_single(
        self,
        session: AuthenticatedSession,
        entry: QuarantineEntry,
        decision: ReviewDecision,
        notes: str | None,
    ) -> ReviewResult:
        status = QuarantineStatus(decision.value)
        transitioned = await self._quarantine_repo.finalize_review(
            quarantine_id=entry.id,
            status=status.value,
            reviewed_by=session.user_id,
            reviewer_email=session.email,
            review_notes=notes,
        )
        if not transitioned:
            raise QuarantineServiceError(
                "Quarantine entry was finalized by a concurrent review",
                ErrorCode.ALREADY_REVIEWED,
                {"quarantine_id": str(entry.id)},
            )

        can_import = status is QuarantineStatus.APPROVED
        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="quarantine.reviewed",
                actor=session.email,
                resource=entry.skill_id,
                action="review",
                metadata={
                    "quarantine_id": str(entry.id),
                    "decision": decision.value,
                    "severity": entry.severity,
                    "reviewer": session.reviewer(),
                    "session_id": session.session_id,
                    "can_import": can_import,
                },
            )
        )
        logger.info(
            "Quarantine entry reviewed",
            quarantine_id=str(entry.id),
            decision=decision.value,
            severity=entry.severity,
        )

        if can_import:
            await self._release_handler.release(entry, [session.email])

        return ReviewResult(
            quarantine_id=entry.id,
            skill_id=entry.skill_id,
            severity=QuarantineSeverity(entry.severity),
            status=status,
            can_import=can_import,
            reviewed_by=session.reviewer(),
        )

    async def _reject_malicious(
        self,
        session: AuthenticatedSession,
        entry: QuarantineEntry,
        notes: str | None,
    ) -> ReviewResult:
        transitioned = await self._quarantine_repo.finalize_review(
            quarantine_id=entry.id,
            status=QuarantineStatus.REJECTED.value,
            reviewed_by=session.user_id,
            reviewer_email=session.email,
            review_notes=notes,
        )
        if not transitioned:
            raise QuarantineServiceError(
                "Quarantine entry was finalized by a concurrent review",
                ErrorCode.ALREADY_REVIEWED,
                {"quarantine_id": str(entry.id)},
            )

        cleared = await self._approval_repo.clear_approvals(entry.id)
        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="quarantine.reviewed",
                actor=session.email,
                resource=entry.skill_id,
                action="review",
                metadata={
                    "quarantine_id": str(entry.id),
                    "decision": ReviewDecision.REJECTED.value,
                    "severity": entry.severity,
                    "reviewer": session.reviewer(),
                    "session_id": session.session_id,
                    "approvals_discarded": cleared,
                    "can_import": False,
                },
            )
        )
        logger.info("Malicious quarantine entry rejected", quarantine_id=str(entry.id), approvals_discarded=cleared)

        warnings: tuple[str, ...] = ()
        if cleared:
            warnings = (f"Rejection discarded {cleared} pending approval(s)",)
        return ReviewResult(
            quarantine_id=entry.id,
            skill_id=entry.skill_id,
            severity=QuarantineSeverity.MALICIOUS,
            status=QuarantineStatus.REJECTED,
            can_import=False,
            reviewed_by=session.reviewer(),
            warnings=warnings,
        )


class TrustPipeline:
    """Evaluates one piece of skill content end to end.

    scan -> trust tier -> (with a previous version) change type and update
    risk -> version record -> automatic quarantine -> active advisories.

    Args:
        validation: Edition-specific validation capability.
        classifier: Trust tier classifier.
        quarantine_service: Opens quarantine entries on the automatic path.
        version_repo: Version history repository.
        advisory_repo: Advisory repository.
        audit_logger: Audit logger for pipeline decisions.
        quarantine_risk_threshold: Risk score at or above which content is quarantined.
        version_keep_count: Version records retained per skill.
    """

    def __init__(
        self,
        validation: IValidationCapability,
        classifier: TrustTierClassifier,
        quarantine_service: QuarantineService,
        version_repo: ISkillVersionRepository,
        advisory_repo: IAdvisoryRepository,
        audit_logger: AuditLogger,
        quarantine_risk_threshold: int = 30,
        version_keep_count: int = 50,
    ) -> None:
        self._validation = validation
        self._classifier = classifier
        self._quarantine_service = quarantine_service
        self._version_repo = version_repo
        self._advisory_repo = advisory_repo
        self._audit_logger = audit_logger
        self._quarantine_risk_threshold = quarantine_risk_threshold
        self._version_keep_count = version_keep_count

    async def evaluate(
        self,
        skill_id: str,
        content: str,
        metadata: SkillMetadata,
        previous: PreviousVersion | None = None,
        has_local_modifications: bool = False,
        has_changelog: bool = False,
    ) -> SkillEvaluation:
        """Evaluate skill content and quarantine it when warranted.

        Args:
            skill_id: Registry skill identifier.
            content: Skill markdown to evaluate.
            metadata: Publisher signals for the tier classifier.
            previous: Installed version, when this is an update.
            has_local_modifications: Whether the installed copy was edited.
            has_changelog: Whether the update ships a changelog entry.

        Returns:
            SkillEvaluation with every decision made.
        """
        report = self._validation.scan(skill_id, content)
        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="scan.completed",
                actor="scanner",
                resource=skill_id,
                action="scan",
                result="success" if report.passed else "blocked",
                metadata={
                    "edition": self._validation.edition,
                    "risk_score": report.risk_score,
                    "finding_count": len(report.findings),
                    "content_hash": report.content_hash,
                    "truncated": report.truncated,
                    "degraded_categories": list(report.degraded_categories),
                },
            )
        )

        tier = self._classifier.classify(metadata, report)
        await self._audit_logger.safe_log(
            AuditEvent(
                event_type="trust.classified",
                actor="system",
                resource=skill_id,
                action="classify",
                metadata={"trust_tier": tier.value, "namespace": metadata.namespace},
            )
        )

        change_type = None
        update_risk = None
        if previous is not None:
            previous_risk = previous.risk_score
            if previous_risk is None:
                previous_risk = self._validation.scan(skill_id, previous.content).risk_score
            risk_delta = report.risk_score - previous_risk
            change_type = classify_change(previous.content, content, previous_risk, report.risk_score)
            update_risk = compute_update_risk(change_type, risk_delta, has_local_modifications, tier, has_changelog)
            await self._audit_logger.safe_log(
                AuditEvent(
                    event_type="update.risk_scored",
                    actor="system",
                    resource=skill_id,
                    action="score",
                    metadata={
                        "change_type": change_type.value,
                        "risk_delta": risk_delta,
                        "level": update_risk.level.value,
                        "score": update_risk.score,
                        "recommendation": update_risk.recommendation.value,
                    },
                )
            )

        await self._version_repo.record_version(
            skill_id=skill_id,
            content_hash=report.content_hash,
            semver=declared_version(content),
            change_type=change_type.value if change_type else None,
            keep_count=self._version_keep_count,
        )

        quarantine_entry_id = None
        quarantine_severity = None
        if self._should_quarantine(report.risk_score, tier, update_risk):
            entry = await self._open_quarantine(skill_id, report.risk_score, report.content_hash, report.findings)
            quarantine_entry_id = entry.id
            quarantine_severity = QuarantineSeverity(entry.severity)

        advisories = await self._advisory_repo.get_advisories_for_skill(skill_id)

        logger.info(
            "Skill evaluated",
            skill_id=skill_id,
            risk_score=report.risk_score,
            trust_tier=tier.value,
            change_type=change_type.value if change_type else None,
            quarantined=quarantine_entry_id is not None,
        )
        return SkillEvaluation(
            report=report,
            trust_tier=tier,
            change_type=change_type,
            update_risk=update_risk,
            quarantine_entry_id=quarantine_entry_id,
            quarantine_severity=quarantine_severity,
            advisories=tuple(advisory_to_dict(a) for a in advisories),
        )

    def _should_quarantine(self, risk_score: int, tier: TrustTier, update_risk: UpdateRisk | None) -> bool:
        if risk_score >= self._quarantine_risk_threshold:
            return True
        return (
            update_risk is not None
            and update_risk.recommendation is Recommendation.MANUAL_REVIEW_REQUIRED
            and tier is TrustTier.UNVERIFIED
        )

    async def _open_quarantine(
        self,
        skill_id: str,
        risk_score: int,
        content_hash: str,
        findings: tuple[Finding, ...],
    ) -> QuarantineEntry:
        # The same content is held at most once while pending
        for existing in await self._quarantine_service.pending_for_content(skill_id, content_hash):
            logger.info("Content already quarantined", skill_id=skill_id, quarantine_id=str(existing.id))
            return existing

        severity = severity_from_score(risk_score)
        if risk_score >= self._quarantine_risk_threshold:
            reason = f"Risk score {risk_score} reached quarantine threshold {self._quarantine_risk_threshold}"
        else:
            reason = "Update requires manual review for an unverified skill"
        return await self._quarantine_service.create(
            skill_id=skill_id,
            severity=severity,
            findings=findings,
            reason=reason,
            risk_score=risk_score,
            content_hash=content_hash,
        )
