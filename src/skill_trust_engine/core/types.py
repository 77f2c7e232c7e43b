"""Domain value types for the trust pipeline.

Plain enums and frozen dataclasses shared by the scanner, classifiers,
quarantine service, and API layer. Nothing here touches the database.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


# ---------------------------------------------------------------------------
# Scanning
# ---------------------------------------------------------------------------


class FindingType(StrEnum):
    """Pattern categories evaluated by the content scanner."""

    JAILBREAK = "jailbreak"
    SOCIAL_ENGINEERING = "social-engineering"
    PROMPT_LEAK = "prompt-leak"
    EXFILTRATION = "exfiltration"
    PRIVILEGE_ESCALATION = "privilege-escalation"
    SUSPICIOUS_CODE = "suspicious-code"
    SENSITIVE_PATH = "sensitive-path"
    EXTERNAL_URL = "external-url"


class FindingSeverity(StrEnum):
    """Severity of a single finding, lowest to highest."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[FindingSeverity, int] = {
    FindingSeverity.LOW: 0,
    FindingSeverity.MEDIUM: 1,
    FindingSeverity.HIGH: 2,
    FindingSeverity.CRITICAL: 3,
}


@dataclass(frozen=True)
class Finding:
    """A single pattern match.

    Attributes:
        type: Pattern category that matched.
        severity: Severity carried by the matching catalogue rule.
        line: 1-indexed line number of the match.
        snippet: Trimmed excerpt of the matching line.
        rule_id: Catalogue rule identifier, for explainability.
    """

    type: FindingType
    severity: FindingSeverity
    line: int
    snippet: str
    rule_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "line": self.line,
            "snippet": self.snippet,
            "rule_id": self.rule_id,
        }


@dataclass(frozen=True)
class ScanReport:
    """Result of scanning one piece of skill content.

    `scanned_at` is excluded from equality so that identical content always
    produces reports that compare equal.

    Attributes:
        skill_id: Identifier of the scanned skill.
        findings: Findings ordered by line, then catalogue order.
        risk_score: Saturating severity-weighted score in [0, 100].
        content_hash: SHA-256 hex digest of the scanned content.
        truncated: True when only the prefix of oversized content was scanned.
        degraded_categories: Categories that failed open during this scan.
        scanned_at: When the scan ran (UTC).
    """

    skill_id: str
    findings: tuple[Finding, ...]
    risk_score: int
    content_hash: str
    truncated: bool = False
    degraded_categories: tuple[str, ...] = ()
    scanned_at: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    @property
    def has_critical(self) -> bool:
        return any(f.severity is FindingSeverity.CRITICAL for f in self.findings)

    @property
    def passed(self) -> bool:
        """False whenever any high or critical finding exists."""
        return not any(f.severity.rank >= FindingSeverity.HIGH.rank for f in self.findings)

    @property
    def is_clean(self) -> bool:
        """True when nothing at medium severity or above was found."""
        return not any(f.severity.rank >= FindingSeverity.MEDIUM.rank for f in self.findings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "skill_id": self.skill_id,
            "risk_score": self.risk_score,
            "passed": self.passed,
            "content_hash": self.content_hash,
            "truncated": self.truncated,
            "degraded_categories": list(self.degraded_categories),
            "scanned_at": self.scanned_at.isoformat(),
            "findings": [f.to_dict() for f in self.findings],
        }


# ---------------------------------------------------------------------------
# Trust and versioning
# ---------------------------------------------------------------------------


class TrustTier(StrEnum):
    OFFICIAL = "official"
    VERIFIED = "verified"
    COMMUNITY = "community"
    EXPERIMENTAL = "experimental"
    UNVERIFIED = "unverified"


@dataclass(frozen=True)
class SkillMetadata:
    """Publisher signals supplied by the sync collaborator.

    Attributes:
        skill_id: Registry skill identifier.
        namespace: Publisher namespace (GitHub owner or registry org).
        publisher_signature_verified: Whether the publisher signature checked out.
        created_at: When the skill was first published.
        stars: Popularity signal.
        documentation_files: File names shipped alongside the skill.
    """

    skill_id: str
    namespace: str
    publisher_signature_verified: bool = False
    created_at: datetime | None = None
    stars: int = 0
    documentation_files: frozenset[str] = frozenset()

    def age_days(self, now: datetime | None = None) -> int:
        if self.created_at is None:
            return 0
        # Naive timestamps are UTC
        created_at = self.created_at
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=UTC)
        now = now or datetime.now(UTC)
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return max((now - created_at).days, 0)


class ChangeType(StrEnum):
    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    UNKNOWN = "unknown"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Recommendation(StrEnum):
    AUTO_UPDATE = "auto-update"
    REVIEW_THEN_UPDATE = "review-then-update"
    MANUAL_REVIEW_REQUIRED = "manual-review-required"


@dataclass(frozen=True)
class UpdateRisk:
    """Computed risk of applying an update. Never persisted.

    Attributes:
        level: Risk bucket.
        score: Raw additive score (may be negative).
        recommendation: Suggested action for the caller.
    """

    level: RiskLevel
    score: int
    recommendation: Recommendation


@dataclass(frozen=True)
class PreviousVersion:
    """The last known content of a skill, used to classify an update."""

    content: str
    risk_score: int | None = None


# ---------------------------------------------------------------------------
# Quarantine
# ---------------------------------------------------------------------------


class QuarantineSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    MALICIOUS = "malicious"


class QuarantineStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewDecision(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


class Permission(StrEnum):
    QUARANTINE_READ = "quarantine:read"
    QUARANTINE_CREATE = "quarantine:create"
    QUARANTINE_REVIEW = "quarantine:review"
    QUARANTINE_REVIEW_MALICIOUS = "quarantine:review_malicious"
    QUARANTINE_DELETE = "quarantine:delete"
    QUARANTINE_ADMIN = "quarantine:admin"
    AUDIT_READ = "audit:read"
    AUDIT_MANAGE = "audit:manage"


@dataclass(frozen=True)
class AuthenticatedSession:
    """Session supplied by the external auth collaborator. Read-only here.

    Attributes:
        user_id: Reviewer identifier from the auth provider.
        email: Verified reviewer email.
        permissions: Granted permission strings.
        session_id: Session token identifier, recorded in audit metadata.
        expires_at: Session expiry (UTC).
        organization_id: Optional team or organisation identifier.
        display_name: Optional display name.
    """

    user_id: str
    email: str
    permissions: frozenset[str]
    session_id: str
    expires_at: datetime
    organization_id: str | None = None
    display_name: str | None = None

    def reviewer(self) -> dict[str, str]:
        return {"user_id": self.user_id, "email": self.email}


@dataclass(frozen=True)
class ApprovalSummary:
    reviewer_id: str
    reviewer_email: str
    approved_at: datetime
    notes: str | None = None


@dataclass(frozen=True)
class MultiApprovalStatus:
    """Progress of the multi-reviewer workflow for one quarantine entry."""

    quarantine_id: uuid.UUID
    required_approvals: int
    approvals: tuple[ApprovalSummary, ...]
    is_complete: bool
    started_at: datetime | None
    completed_at: datetime | None = None

    @property
    def approval_count(self) -> int:
        return len(self.approvals)


@dataclass(frozen=True)
class ReviewResult:
    """Outcome of a review or approval call.

    Attributes:
        quarantine_id: Reviewed entry.
        skill_id: Skill held by the entry.
        severity: Entry severity.
        status: Entry status after this call.
        can_import: Whether the skill may now be released.
        reviewed_by: Verified identity of the caller.
        warnings: Messages to surface to the reviewer.
        multi_approval: Workflow progress for malicious-severity entries.
        approvals_reset: True when stale approvals were discarded by this call.
    """

    quarantine_id: uuid.UUID
    skill_id: str
    severity: QuarantineSeverity
    status: QuarantineStatus
    can_import: bool
    reviewed_by: dict[str, str]
    warnings: tuple[str, ...] = ()
    multi_approval: MultiApprovalStatus | None = None
    approvals_reset: bool = False

    @property
    def approved(self) -> bool:
        return self.status is QuarantineStatus.APPROVED


@dataclass(frozen=True)
class SkillEvaluation:
    """Everything the pipeline decided about one piece of skill content.

    Attributes:
        report: Scan report for the content.
        trust_tier: Assigned tier.
        change_type: Change from the previous version, None for a first version.
        update_risk: Risk of applying the update, None for a first version.
        quarantine_entry_id: Entry opened for this content, if any.
        quarantine_severity: Severity of that entry, if any.
        advisories: Active advisories against the skill.
    """

    report: ScanReport
    trust_tier: TrustTier
    change_type: ChangeType | None = None
    update_risk: UpdateRisk | None = None
    quarantine_entry_id: uuid.UUID | None = None
    quarantine_severity: QuarantineSeverity | None = None
    advisories: tuple[dict[str, Any], ...] = ()

    @property
    def quarantined(self) -> bool:
        return self.quarantine_entry_id is not None


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditEvent:
    """An audit record to append.

    Attributes:
        event_type: Dot-notation event type, e.g. quarantine.created.
        actor: Reviewer email, "system", or "scanner".
        resource: Affected resource, usually a skill identifier.
        action: Short action verb.
        result: success | failure | blocked.
        metadata: Structured event-specific payload.
        timestamp: Event time. Defaults to now at write time.
    """

    event_type: str
    actor: str
    resource: str
    action: str
    result: str = "success"
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime | None = None
