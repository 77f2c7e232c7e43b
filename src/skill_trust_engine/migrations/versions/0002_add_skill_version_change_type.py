"""Add change_type to trust_skill_versions.

Revision ID: 0002
Revises: 0001
Create Date: 2026-02-03
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0002"
down_revision: str | None = "0001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "trust_skill_versions",
        sa.Column(
            "change_type",
            sa.String(20),
            nullable=True,
            comment="major | minor | patch | unknown, null for the first version",
        ),
    )


def downgrade() -> None:
    op.drop_column("trust_skill_versions", "change_type")
