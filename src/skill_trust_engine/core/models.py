"""SQLAlchemy ORM models for the skill trust engine.

All models use the `trust_` table prefix and extend TrustEngineModel for the
automatic id (UUID), created_at, and updated_at fields.

Models:
- SkillVersionRecord: Content-hash history per skill (pruned to the newest N)
- SkillAdvisory: Security advisories against a skill (soft-withdrawn)
- QuarantineEntry: A skill held for human review
- QuarantineApproval: One reviewer's approval of a malicious-severity entry
- AuditLogEntry: Append-only audit record (written via the audit wall)

Skill identifiers are plain strings. No table carries a foreign key to a skill
table; the skill catalogue belongs to the registry sync collaborator.

IMPORTANT: AuditLogEntry is defined here for ORM mapping purposes but it is
written ONLY via AuditLogStore, which uses the audit wall session factory.
"""

import uuid
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text, TypeDecorator, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware DateTime that always round-trips as UTC.

    Backends without native timezone support return naive values; those are
    interpreted as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Base(DeclarativeBase):
    """Declarative base shared by all skill trust engine tables."""


class TrustEngineModel(Base):
    """Abstract base adding id, created_at, and updated_at columns."""

    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )


class SkillVersionRecord(TrustEngineModel):
    """One observed content version of a skill.

    Recording is idempotent per (skill_id, content_hash). After each record the
    history is pruned so only the newest `version_keep_count` rows remain.

    Attributes:
        skill_id: Registry skill identifier (soft reference).
        content_hash: SHA-256 hex digest of the skill content.
        semver: Declared frontmatter version, when present.
        change_type: Classified change relative to the previous version.
        recorded_at: When this version was first observed.
    """

    __tablename__ = "trust_skill_versions"
    __table_args__ = (UniqueConstraint("skill_id", "content_hash", name="uq_trust_skill_versions_hash"),)

    skill_id: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
        comment="Registry skill identifier, no foreign key",
    )
    content_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        comment="SHA-256 hex digest of the content",
    )
    semver: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Declared frontmatter version, e.g. 1.2.0",
    )
    change_type: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="major | minor | patch | unknown, null for the first version",
    )
    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        index=True,
        comment="When the version was first observed (UTC)",
    )


class SkillAdvisory(TrustEngineModel):
    """A security advisory published against a skill.

    Advisories are never hard-deleted. Withdrawal sets `withdrawn_at` and hides
    the advisory from the active-advisory queries.

    Attributes:
        advisory_id: External advisory identifier, unique.
        skill_id: Affected skill identifier (soft reference).
        severity: low | medium | high | critical.
        title: Short advisory headline.
        description: Full advisory text.
        affected_versions: Affected semver range, e.g. "<1.4.2".
        patched_versions: Patched semver range, e.g. ">=1.4.2".
        cwe_ids: CWE identifiers, e.g. ["CWE-78"].
        references: Reference URLs.
        published_at: Publication time.
        withdrawn_at: Withdrawal time, null while active.
    """

    __tablename__ = "trust_skill_advisories"

    advisory_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        unique=True,
        comment="External advisory identifier",
    )
    skill_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="low | medium | high | critical",
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    affected_versions: Mapped[str | None] = mapped_column(String(255), nullable=True)
    patched_versions: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cwe_ids: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)  # type: ignore[type-arg]
    references: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)  # type: ignore[type-arg]
    published_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    withdrawn_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class QuarantineEntry(TrustEngineModel):
    """A skill held for human review.

    Lifecycle: pending -> approved | rejected. Both outcomes are terminal.
    Partial approval of a malicious-severity entry is not a status; it is
    derived from the number of pending QuarantineApproval rows.

    Attributes:
        skill_id: Held skill identifier (soft reference).
        severity: low | medium | high | malicious.
        status: pending | approved | rejected.
        reason: Why the entry was opened.
        findings: Serialized scan findings that triggered the quarantine.
        risk_score: Scan risk score at quarantine time.
        content_hash: Hash of the quarantined content.
        quarantined_at: When the entry was opened.
        reviewed_by: user_id of the reviewer who made the terminal decision.
        reviewer_email: Email of that reviewer.
        reviewed_at: When the terminal decision was made.
        review_notes: Reviewer notes for the terminal decision.
    """

    __tablename__ = "trust_quarantine_entries"

    skill_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    severity: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,
        comment="low | medium | high | malicious",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
        comment="pending | approved | rejected",
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    findings: Mapped[list] = mapped_column(  # type: ignore[type-arg]
        JSONType,
        nullable=False,
        default=list,
        comment="Serialized findings that triggered the quarantine",
    )
    risk_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    content_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    quarantined_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    reviewed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reviewer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)


class QuarantineApproval(TrustEngineModel):
    """One reviewer's approval toward a malicious-severity release.

    The (quarantine_id, reviewer_id) uniqueness constraint is what makes the
    multi-approval count race-safe: a second approval by the same reviewer
    fails at the database, not in application code.

    Attributes:
        quarantine_id: The quarantine entry being approved.
        reviewer_id: Approving reviewer's user_id.
        reviewer_email: Approving reviewer's email.
        decision: Always approved; rejections are terminal and never pending.
        session_id: Session used to approve, for forensics.
        approved_at: When the approval was recorded.
        notes: Optional reviewer notes.
        completed_at: Set when the workflow completes. Null while pending.
    """

    __tablename__ = "trust_quarantine_approvals"
    __table_args__ = (
        UniqueConstraint("quarantine_id", "reviewer_id", name="uq_trust_quarantine_approvals_reviewer"),
    )

    quarantine_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    reviewer_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reviewer_email: Mapped[str] = mapped_column(String(320), nullable=False)
    decision: Mapped[str] = mapped_column(String(20), nullable=False, default="approved")
    session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class AuditLogEntry(TrustEngineModel):
    """Append-only audit log entry.

    This table has NO UPDATE path. Entries are removed only by retention
    cleanup, which itself writes an audit entry recording how many were removed.

    Attributes:
        event_type: Dot-notation event type, e.g. quarantine.created.
        actor: Reviewer email, "system", or "scanner".
        resource: Affected resource, usually a skill identifier.
        action: Short action verb.
        result: success | failure | blocked.
        details: Structured event-specific payload.
        timestamp: Event timestamp (UTC).
    """

    __tablename__ = "trust_audit_log"

    event_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    actor: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    result: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="success",
        comment="success | failure | blocked",
    )
    details: Mapped[dict] = mapped_column(  # type: ignore[type-arg]
        JSONType,
        nullable=False,
        default=dict,
    )
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=_utcnow,
        index=True,
        comment="Event timestamp (UTC), never modified",
    )
