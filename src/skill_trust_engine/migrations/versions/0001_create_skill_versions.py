"""Create trust_skill_versions.

Revision ID: 0001
Revises:
Create Date: 2026-01-12
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "trust_skill_versions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("skill_id", sa.String(255), nullable=False, comment="Registry skill identifier, no foreign key"),
        sa.Column("content_hash", sa.String(64), nullable=False, comment="SHA-256 hex digest of the content"),
        sa.Column("semver", sa.String(64), nullable=True, comment="Declared frontmatter version, e.g. 1.2.0"),
        sa.Column(
            "recorded_at",
            sa.DateTime(timezone=True),
            nullable=False,
            comment="When the version was first observed (UTC)",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("skill_id", "content_hash", name="uq_trust_skill_versions_hash"),
    )
    op.create_index("ix_trust_skill_versions_skill_id", "trust_skill_versions", ["skill_id"])
    op.create_index("ix_trust_skill_versions_recorded_at", "trust_skill_versions", ["recorded_at"])


def downgrade() -> None:
    op.drop_index("ix_trust_skill_versions_recorded_at", table_name="trust_skill_versions")
    op.drop_index("ix_trust_skill_versions_skill_id", table_name="trust_skill_versions")
    op.drop_table("trust_skill_versions")
