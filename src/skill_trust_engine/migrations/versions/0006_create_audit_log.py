"""Create trust_audit_log.

Revision ID: 0006
Revises: 0005
Create Date: 2026-04-06
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0006"
down_revision: str | None = "0005"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "trust_audit_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("actor", sa.String(320), nullable=False),
        sa.Column("resource", sa.String(255), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("result", sa.String(20), nullable=False, comment="success | failure | blocked"),
        sa.Column("details", JSON_TYPE, nullable=False),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="Event timestamp (UTC), never modified",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_trust_audit_log_event_type", "trust_audit_log", ["event_type"])
    op.create_index("ix_trust_audit_log_actor", "trust_audit_log", ["actor"])
    op.create_index("ix_trust_audit_log_resource", "trust_audit_log", ["resource"])
    op.create_index("ix_trust_audit_log_timestamp", "trust_audit_log", ["timestamp"])


def downgrade() -> None:
    op.drop_index("ix_trust_audit_log_timestamp", table_name="trust_audit_log")
    op.drop_index("ix_trust_audit_log_resource", table_name="trust_audit_log")
    op.drop_index("ix_trust_audit_log_actor", table_name="trust_audit_log")
    op.drop_index("ix_trust_audit_log_event_type", table_name="trust_audit_log")
    op.drop_table("trust_audit_log")
