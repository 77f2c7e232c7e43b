"""Service settings for skill-trust-engine.

All settings use the SKILL_TRUST_ environment prefix and cover:
- Primary database and the optional separate audit database (audit wall)
- Logging
- Edition selection for the validation capability
- Scanner input caps
- Quarantine thresholds and the multi-approval workflow
- Trust tier thresholds
- Version history and audit retention
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings for skill-trust-engine.

    Environment variable prefix: SKILL_TRUST_
    """

    service_name: str = "skill-trust-engine"

    # -------------------------------------------------------------------------
    # Databases
    # -------------------------------------------------------------------------

    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/skill_trust",
        description="SQLAlchemy async URL of the primary store (quarantine, approvals, versions, advisories).",
    )
    audit_db_url: str | None = Field(
        default=None,
        description="Optional separate database for audit entries. Falls back to database_url when unset.",
    )
    db_pool_size: int = Field(default=5, description="Connection pool size per engine.")
    db_max_overflow: int = Field(default=2, description="Max overflow connections above db_pool_size.")
    db_pool_timeout: int = Field(default=30, description="Seconds to wait for a pooled connection.")

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------

    log_level: str = Field(default="INFO", description="Minimum log level.")
    log_json: bool = Field(default=True, description="Render logs as JSON lines.")

    # -------------------------------------------------------------------------
    # Edition: selects the validation capability once at startup
    # -------------------------------------------------------------------------

    edition: str = Field(default="community", description="community | enterprise")
    enterprise_blocked_hosts: list[str] = Field(
        default_factory=list,
        description="Hosts the organisation forbids skills from contacting (enterprise edition only).",
    )

    # -------------------------------------------------------------------------
    # Scanner
    # -------------------------------------------------------------------------

    scan_max_line_length: int = Field(
        default=1000,
        description="Characters of each line evaluated by patterns. Longer lines are truncated.",
    )
    scan_max_bytes: int = Field(
        default=100_000,
        description="Characters of content considered per scan. Beyond this only the prefix is scanned.",
    )

    # -------------------------------------------------------------------------
    # Quarantine and multi-approval
    # -------------------------------------------------------------------------

    quarantine_risk_threshold: int = Field(
        default=30,
        description="Scan risk score at or above which a quarantine entry is opened automatically.",
    )
    malicious_required_approvals: int = Field(
        default=2,
        description="Distinct approvals required to release a malicious-severity entry.",
    )
    approval_timeout_hours: int = Field(
        default=24,
        description="Age of the first pending approval after which pending approvals are discarded.",
    )

    # -------------------------------------------------------------------------
    # Trust tiers
    # -------------------------------------------------------------------------

    official_namespaces: list[str] = Field(
        default_factory=lambda: ["anthropics"],
        description="Publisher namespaces whose skills are labelled official.",
    )
    verified_min_age_days: int = Field(
        default=30,
        description="Minimum skill age for the verified tier. Pending policy-owner confirmation.",
    )
    verified_min_stars: int = Field(
        default=50,
        description="Minimum popularity for the verified tier. Pending policy-owner confirmation.",
    )
    required_documentation_files: list[str] = Field(
        default_factory=lambda: ["SKILL.md", "README.md"],
        description="Documentation files a skill must ship for the community tier.",
    )

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    version_keep_count: int = Field(
        default=50,
        description="Version records retained per skill.",
    )
    audit_retention_days: int = Field(
        default=90,
        description="Default retention window for audit log cleanup.",
    )

    model_config = SettingsConfigDict(env_prefix="SKILL_TRUST_")
