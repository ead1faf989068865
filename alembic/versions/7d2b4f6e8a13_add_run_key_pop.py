"""Add run_key_pop: per-run key-pop count independent of snapshot rows

Revision ID: 7d2b4f6e8a13
Revises: 3c5e7a9b1d20
Create Date: 2026-10-18 16:30:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '7d2b4f6e8a13'
down_revision: str | Sequence[str] | None = '3c5e7a9b1d20'
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "run_key_pop",
        sa.Column("run_id", sa.BigInteger, primary_key=True, autoincrement=False),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("key_pop_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_popped_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("key_pop_count >= 0", name="ck_run_key_pop_count"),
    )


def downgrade() -> None:
    op.drop_table("run_key_pop")
