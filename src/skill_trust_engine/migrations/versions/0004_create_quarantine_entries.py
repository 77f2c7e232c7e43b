"""Create trust_quarantine_entries.

Revision ID: 0004
Revises: 0003
Create Date: 2026-03-09
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0004"
down_revision: str | None = "0003"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "trust_quarantine_entries",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("skill_id", sa.String(255), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, comment="low | medium | high | malicious"),
        sa.Column("status", sa.String(20), nullable=False, comment="pending | approved | rejected"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column(
            "findings",
            JSON_TYPE,
            nullable=False,
            comment="Serialized findings that triggered the quarantine",
        ),
        sa.Column("risk_score", sa.Integer(), nullable=True),
        sa.Column("content_hash", sa.String(64), nullable=True),
        sa.Column("quarantined_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("reviewer_email", sa.String(320), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_trust_quarantine_entries_skill_id", "trust_quarantine_entries", ["skill_id"])
    op.create_index("ix_trust_quarantine_entries_severity", "trust_quarantine_entries", ["severity"])
    op.create_index("ix_trust_quarantine_entries_status", "trust_quarantine_entries", ["status"])


def downgrade() -> None:
    op.drop_index("ix_trust_quarantine_entries_status", table_name="trust_quarantine_entries")
    op.drop_index("ix_trust_quarantine_entries_severity", table_name="trust_quarantine_entries")
    op.drop_index("ix_trust_quarantine_entries_skill_id", table_name="trust_quarantine_entries")
    op.drop_table("trust_quarantine_entries")
