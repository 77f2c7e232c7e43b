"""Create trust_quarantine_approvals.

Revision ID: 0005
Revises: 0004
Create Date: 2026-03-24
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0005"
down_revision: str | None = "0004"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "trust_quarantine_approvals",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("quarantine_id", sa.Uuid(), nullable=False),
        sa.Column("reviewer_id", sa.String(255), nullable=False),
        sa.Column("reviewer_email", sa.String(320), nullable=False),
        sa.Column("decision", sa.String(20), nullable=False),
        sa.Column("session_id", sa.String(255), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("quarantine_id", "reviewer_id", name="uq_trust_quarantine_approvals_reviewer"),
    )
    op.create_index("ix_trust_quarantine_approvals_quarantine_id", "trust_quarantine_approvals", ["quarantine_id"])


def downgrade() -> None:
    op.drop_index("ix_trust_quarantine_approvals_quarantine_id", table_name="trust_quarantine_approvals")
    op.drop_table("trust_quarantine_approvals")
