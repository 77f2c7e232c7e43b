"""Pydantic request and response schemas for the skill trust engine API.

All API inputs and outputs use Pydantic models, never raw dicts.
Schemas are grouped by resource type.

Resources:
- Scan and evaluation: content scanning and the full trust pipeline
- Change and update risk: pure classifiers
- QuarantineEntry: review, multi-approval, and administration
- AuditLogEntry: query, export, and retention cleanup
- SkillVersion and SkillAdvisory: version history and advisories
"""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from skill_trust_engine.core.types import (
    ChangeType,
    MultiApprovalStatus,
    QuarantineSeverity,
    Recommendation,
    ReviewDecision,
    ReviewResult,
    RiskLevel,
    ScanReport,
    SkillEvaluation,
    TrustTier,
)


# ---------------------------------------------------------------------------
# Scan and evaluation schemas
# ---------------------------------------------------------------------------


class ScanRequest(BaseModel):
    """Request body for scanning skill content."""

    skill_id: str = Field(description="Registry skill identifier", min_length=1, max_length=255)
    content: str = Field(description="Skill markdown to scan")


class FindingResponse(BaseModel):
    type: str = Field(description="Pattern category that matched")
    severity: str = Field(description="low | medium | high | critical")
    line: int = Field(description="1-indexed line number")
    snippet: str = Field(description="Trimmed excerpt of the matching line")
    rule_id: str = Field(description="Catalogue rule identifier")


class ScanReportResponse(BaseModel):
    """Response schema for a scan report."""

    skill_id: str = Field(description="Scanned skill identifier")
    risk_score: int = Field(description="Saturating severity-weighted score, 0-100")
    passed: bool = Field(description="False when any high or critical finding exists")
    content_hash: str = Field(description="SHA-256 hex digest of the content")
    truncated: bool = Field(description="True when only a prefix of the content was scanned")
    degraded_categories: list[str] = Field(description="Pattern categories disabled at load time")
    scanned_at: datetime = Field(description="Scan timestamp (UTC)")
    findings: list[FindingResponse] = Field(description="Findings ordered by line")

    @classmethod
    def from_report(cls, report: ScanReport) -> "ScanReportResponse":
        return cls.model_validate(report.to_dict())


class SkillMetadataRequest(BaseModel):
    """Publisher signals used for trust tier classification."""

    namespace: str = Field(description="Publisher namespace")
    publisher_signature_verified: bool = Field(default=False, description="Whether the signature checked out")
    created_at: datetime | None = Field(default=None, description="First publication time")
    stars: int = Field(default=0, ge=0, description="Popularity signal")
    documentation_files: list[str] = Field(default_factory=list, description="Files shipped with the skill")


class PreviousVersionRequest(BaseModel):
    content: str = Field(description="Installed skill markdown")
    risk_score: int | None = Field(default=None, description="Risk score of the installed version, if known")


class EvaluateRequest(BaseModel):
    """Request body for running the full trust pipeline."""

    skill_id: str = Field(description="Registry skill identifier", min_length=1, max_length=255)
    content: str = Field(description="Skill markdown to evaluate")
    metadata: SkillMetadataRequest = Field(description="Publisher signals")
    previous: PreviousVersionRequest | None = Field(default=None, description="Installed version, for updates")
    has_local_modifications: bool = Field(default=False, description="Whether the installed copy was edited")
    has_changelog: bool = Field(default=False, description="Whether the update ships a changelog entry")


class UpdateRiskResponse(BaseModel):
    level: RiskLevel = Field(description="low | medium | high | critical")
    score: int = Field(description="Raw additive score")
    recommendation: Recommendation = Field(description="Suggested action")


class EvaluationResponse(BaseModel):
    """Response schema for a pipeline evaluation."""

    report: ScanReportResponse = Field(description="Scan report")
    trust_tier: TrustTier = Field(description="Assigned trust tier")
    change_type: ChangeType | None = Field(description="Change from the previous version")
    update_risk: UpdateRiskResponse | None = Field(description="Risk of applying the update")
    quarantined: bool = Field(description="Whether the content is held for review")
    quarantine_entry_id: uuid.UUID | None = Field(description="Quarantine entry holding the content")
    quarantine_severity: QuarantineSeverity | None = Field(description="Severity of that entry")
    advisories: list[dict[str, Any]] = Field(description="Active advisories against the skill")

    @classmethod
    def from_evaluation(cls, evaluation: SkillEvaluation) -> "EvaluationResponse":
        update_risk = evaluation.update_risk
        return cls(
            report=ScanReportResponse.from_report(evaluation.report),
            trust_tier=evaluation.trust_tier,
            change_type=evaluation.change_type,
            update_risk=(
                UpdateRiskResponse(
                    level=update_risk.level,
                    score=update_risk.score,
                    recommendation=update_risk.recommendation,
                )
                if update_risk
                else None
            ),
            quarantined=evaluation.quarantined,
            quarantine_entry_id=evaluation.quarantine_entry_id,
            quarantine_severity=evaluation.quarantine_severity,
            advisories=list(evaluation.advisories),
        )


# ---------------------------------------------------------------------------
# Change and update risk schemas
# ---------------------------------------------------------------------------


class ClassifyChangeRequest(BaseModel):
    old_content: str = Field(description="Previous skill markdown")
    new_content: str = Field(description="Updated skill markdown")
    old_risk: int | None = Field(default=None, description="Risk score of the previous version")
    new_risk: int | None = Field(default=None, description="Risk score of the updated version")


class ClassifyChangeResponse(BaseModel):
    change_type: ChangeType = Field(description="major | minor | patch | unknown")


class UpdateRiskRequest(BaseModel):
    change_type: ChangeType = Field(description="Classified change")
    risk_delta: int | None = Field(default=None, description="New risk score minus old")
    has_local_modifications: bool = Field(default=False)
    trust_tier: TrustTier = Field(description="Trust tier of the skill")
    has_changelog: bool = Field(default=False)


# ---------------------------------------------------------------------------
# Quarantine schemas
# ---------------------------------------------------------------------------


class QuarantineCreateRequest(BaseModel):
    """Request body for a manual quarantine."""

    skill_id: str = Field(description="Skill to hold", min_length=1, max_length=255)
    severity: QuarantineSeverity = Field(description="low | medium | high | malicious")
    reason: str | None = Field(default=None, description="Why the skill is held")
    findings: list[dict[str, Any]] = Field(default_factory=list, description="Supporting findings")


class QuarantineEntryResponse(BaseModel):
    """Response schema for a quarantine entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(description="Entry UUID")
    skill_id: str = Field(description="Held skill identifier")
    severity: str = Field(description="low | medium | high | malicious")
    status: str = Field(description="pending | approved | rejected")
    reason: str | None = Field(description="Why the entry was opened")
    findings: list[dict[str, Any]] = Field(description="Findings that triggered the quarantine")
    risk_score: int | None = Field(description="Scan risk score at quarantine time")
    content_hash: str | None = Field(description="Hash of the held content")
    quarantined_at: datetime = Field(description="When the entry was opened (UTC)")
    reviewed_by: str | None = Field(description="Reviewer user_id(s) of the terminal decision")
    reviewer_email: str | None = Field(description="Reviewer email(s) of the terminal decision")
    reviewed_at: datetime | None = Field(description="When the terminal decision was made (UTC)")
    review_notes: str | None = Field(description="Notes recorded with the terminal decision")


class QuarantineStatsResponse(BaseModel):
    total: int = Field(description="All entries")
    by_status: dict[str, int] = Field(description="Entry counts per status")
    by_severity: dict[str, int] = Field(description="Entry counts per severity")


class ReviewRequest(BaseModel):
    """Request body for reviewing a quarantine entry."""

    decision: ReviewDecision = Field(description="approved | rejected")
    notes: str | None = Field(default=None, description="Review notes")


class MaliciousReviewRequest(BaseModel):
    notes: str | None = Field(default=None, description="Review notes")


class ApprovalResponse(BaseModel):
    reviewer_id: str
    reviewer_email: str
    approved_at: datetime
    notes: str | None = None


class MultiApprovalStatusResponse(BaseModel):
    """Progress of the multi-reviewer workflow."""

    quarantine_id: uuid.UUID = Field(description="Entry UUID")
    required_approvals: int = Field(description="Approvals required to release")
    approval_count: int = Field(description="Approvals recorded in the current round")
    approvals: list[ApprovalResponse] = Field(description="Approvals, oldest first")
    is_complete: bool = Field(description="Whether quorum was reached")
    started_at: datetime | None = Field(description="Time of the first approval in the round")
    completed_at: datetime | None = Field(description="When quorum was reached")

    @classmethod
    def from_status(cls, status: MultiApprovalStatus) -> "MultiApprovalStatusResponse":
        return cls(
            quarantine_id=status.quarantine_id,
            required_approvals=status.required_approvals,
            approval_count=status.approval_count,
            approvals=[
                ApprovalResponse(
                    reviewer_id=a.reviewer_id,
                    reviewer_email=a.reviewer_email,
                    approved_at=a.approved_at,
                    notes=a.notes,
                )
                for a in status.approvals
            ],
            is_complete=status.is_complete,
            started_at=status.started_at,
            completed_at=status.completed_at,
        )


class ReviewResultResponse(BaseModel):
    """Outcome of a review or approval."""

    quarantine_id: uuid.UUID = Field(description="Reviewed entry")
    skill_id: str = Field(description="Held skill identifier")
    severity: QuarantineSeverity = Field(description="Entry severity")
    status: str = Field(description="Entry status after this call")
    approved: bool = Field(description="Whether the entry is now approved")
    can_import: bool = Field(description="Whether the skill may be released")
    reviewed_by: dict[str, str] = Field(description="Verified identity of the reviewer")
    warnings: list[str] = Field(description="Messages for the reviewer")
    approvals_reset: bool = Field(description="True when stale approvals were discarded by this call")
    multi_approval: MultiApprovalStatusResponse | None = Field(description="Multi-approval progress")

    @classmethod
    def from_result(cls, result: ReviewResult) -> "ReviewResultResponse":
        return cls(
            quarantine_id=result.quarantine_id,
            skill_id=result.skill_id,
            severity=result.severity,
            status=result.status.value,
            approved=result.approved,
            can_import=result.can_import,
            reviewed_by=result.reviewed_by,
            warnings=list(result.warnings),
            approvals_reset=result.approvals_reset,
            multi_approval=(
                MultiApprovalStatusResponse.from_status(result.multi_approval) if result.multi_approval else None
            ),
        )


class CancelResponse(BaseModel):
    cancelled: bool = Field(description="Whether a pending approval round was cancelled")


class DeleteResponse(BaseModel):
    deleted: bool = Field(description="Whether the entry existed and was deleted")


# ---------------------------------------------------------------------------
# Audit schemas
# ---------------------------------------------------------------------------


class AuditLogEntryResponse(BaseModel):
    """Response schema for an audit log entry."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID = Field(description="Entry UUID")
    event_type: str = Field(description="Dot-notation event type")
    actor: str = Field(description="Reviewer email, system, or scanner")
    resource: str = Field(description="Affected resource")
    action: str = Field(description="Short action verb")
    result: str = Field(description="success | failure | blocked")
    details: dict[str, Any] = Field(description="Event-specific payload")
    timestamp: datetime = Field(description="Event timestamp (UTC)")


class AuditCleanupRequest(BaseModel):
    retention_days: int | None = Field(
        default=None,
        description="Retention window in whole days. Defaults to the configured retention.",
    )


class AuditCleanupResponse(BaseModel):
    retention_days: int = Field(description="Applied retention window")
    deleted_count: int = Field(description="Entries purged")


# ---------------------------------------------------------------------------
# Version and advisory schemas
# ---------------------------------------------------------------------------


class SkillVersionResponse(BaseModel):
    """Response schema for a recorded skill version."""

    model_config = ConfigDict(from_attributes=True)

    skill_id: str = Field(description="Registry skill identifier")
    content_hash: str = Field(description="SHA-256 hex digest of the content")
    semver: str | None = Field(description="Declared frontmatter version")
    change_type: str | None = Field(description="Change from the previous version")
    recorded_at: datetime = Field(description="When the version was first observed (UTC)")


class AdvisoryUpsertRequest(BaseModel):
    """Request body for publishing or replacing an advisory."""

    skill_id: str = Field(description="Affected skill identifier", min_length=1, max_length=255)
    severity: str = Field(description="low | medium | high | critical", pattern="^(low|medium|high|critical)$")
    title: str = Field(description="Short advisory headline", min_length=1, max_length=500)
    description: str | None = Field(default=None)
    affected_versions: str | None = Field(default=None, description="Affected range, e.g. <1.4.2")
    patched_versions: str | None = Field(default=None, description="Patched range, e.g. >=1.4.2")
    cwe_ids: list[str] = Field(default_factory=list, description="CWE identifiers")
    references: list[str] = Field(default_factory=list, description="Reference URLs")
    published_at: datetime | None = Field(default=None, description="Publication time. Defaults to now.")


class AdvisoryResponse(BaseModel):
    """Response schema for an advisory."""

    model_config = ConfigDict(from_attributes=True)

    advisory_id: str
    skill_id: str
    severity: str
    title: str
    description: str | None
    affected_versions: str | None
    patched_versions: str | None
    cwe_ids: list[str]
    references: list[str]
    published_at: datetime
    withdrawn_at: datetime | None


class WithdrawResponse(BaseModel):
    withdrawn: bool = Field(description="Whether an active advisory was withdrawn")
