"""Create trust_skill_advisories.

Revision ID: 0003
Revises: 0002
Create Date: 2026-02-17
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0003"
down_revision: str | None = "0002"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "trust_skill_advisories",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("advisory_id", sa.String(100), nullable=False, comment="External advisory identifier"),
        sa.Column("skill_id", sa.String(255), nullable=False),
        sa.Column("severity", sa.String(20), nullable=False, comment="low | medium | high | critical"),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("affected_versions", sa.String(255), nullable=True),
        sa.Column("patched_versions", sa.String(255), nullable=True),
        sa.Column("cwe_ids", JSON_TYPE, nullable=False),
        sa.Column("references", JSON_TYPE, nullable=False),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("withdrawn_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("advisory_id", name="uq_trust_skill_advisories_advisory_id"),
    )
    op.create_index("ix_trust_skill_advisories_skill_id", "trust_skill_advisories", ["skill_id"])
    op.create_index("ix_trust_skill_advisories_severity", "trust_skill_advisories", ["severity"])


def downgrade() -> None:
    op.drop_index("ix_trust_skill_advisories_severity", table_name="trust_skill_advisories")
    op.drop_index("ix_trust_skill_advisories_skill_id", table_name="trust_skill_advisories")
    op.drop_table("trust_skill_advisories")
