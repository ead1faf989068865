"""Create quota ledger, configuration, snapshot and audit tables

Revision ID: 3c5e7a9b1d20
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '3c5e7a9b1d20'
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

POINTS = sa.Numeric(10, 2)


def _points(name: str, default: str | None = "0") -> sa.Column:
    return sa.Column(
        name, POINTS, nullable=False, server_default=default,
    )


def upgrade() -> None:
    # --- quota_event (ledger) ---
    op.create_table(
        "quota_event",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("actor_user_id", sa.BigInteger, nullable=False),
        sa.Column("action_type", sa.String(30), nullable=False),
        sa.Column("subject_id", sa.String(200), nullable=True),
        sa.Column("dungeon_key", sa.String(64), nullable=True),
        _points("points"),
        _points("quota_points"),
        sa.Column("quantity", sa.Integer, nullable=False, server_default="1"),
        sa.Column("credit", sa.String(20), nullable=False, server_default="organizer"),
        sa.Column(
            "created_at", sa.DateTime(timezone=True),
            nullable=False, server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "action_type IN ('run_completed', 'verify_member')",
            name="ck_quota_event_action_type",
        ),
        sa.CheckConstraint("quantity >= 0", name="ck_quota_event_quantity"),
    )
    op.create_index(
        "uq_quota_event_run_subject", "quota_event", ["guild_id", "subject_id"],
        unique=True,
        postgresql_where=sa.text("action_type = 'run_completed' AND subject_id IS NOT NULL"),
    )
    op.create_index(
        "ix_quota_event_guild_actor_time", "quota_event",
        ["guild_id", "actor_user_id", "created_at"],
    )
    op.create_index("ix_quota_event_guild_time", "quota_event", ["guild_id", "created_at"])

    # --- quota_role_config ---
    op.create_table(
        "quota_role_config",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("role_id", sa.BigInteger, primary_key=True),
        _points("required_points"),
        sa.Column("reset_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        _points("base_exalt_points", "1"),
        _points("base_non_exalt_points", "1"),
        _points("verify_points"),
        _points("warn_points"),
        _points("suspend_points"),
        _points("modmail_reply_points"),
        _points("editname_points"),
        _points("addnote_points"),
        sa.Column("panel_message_id", sa.String(32), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # --- quota_dungeon_override ---
    op.create_table(
        "quota_dungeon_override",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("role_id", sa.BigInteger, primary_key=True),
        sa.Column("dungeon_key", sa.String(64), primary_key=True),
        _points("points", None),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("points >= 0", name="ck_dungeon_override_points"),
    )
    op.create_index(
        "ix_dungeon_override_guild_dungeon", "quota_dungeon_override",
        ["guild_id", "dungeon_key"],
    )

    # --- raider_points_config / key_pop_points_config ---
    for table in ("raider_points_config", "key_pop_points_config"):
        op.create_table(
            table,
            sa.Column("guild_id", sa.BigInteger, primary_key=True),
            sa.Column("dungeon_key", sa.String(64), primary_key=True),
            _points("points", None),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint("points >= 0", name=f"ck_{table}_points"),
        )

    # --- key_pop_snapshot ---
    op.create_table(
        "key_pop_snapshot",
        sa.Column("run_id", sa.BigInteger, primary_key=True),
        sa.Column("key_pop_number", sa.Integer, primary_key=True),
        sa.Column("user_id", sa.BigInteger, primary_key=True),
        sa.Column("class", sa.String(50), nullable=True),
        sa.Column("awarded_completion", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("awarded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("snapshot_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_key_pop_snapshot_pending", "key_pop_snapshot",
        ["run_id", "key_pop_number", "awarded_completion"],
    )

    # --- key_pop (counter store) ---
    op.create_table(
        "key_pop",
        sa.Column("guild_id", sa.BigInteger, primary_key=True),
        sa.Column("user_id", sa.BigInteger, primary_key=True),
        sa.Column("dungeon_key", sa.String(64), primary_key=True),
        sa.Column("key_type", sa.String(32), primary_key=True, server_default="key"),
        sa.Column("count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_popped_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("count >= 0", name="ck_key_pop_count"),
    )

    # --- admin_log ---
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger, nullable=False),
        sa.Column("actor_id", sa.BigInteger, nullable=True),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100), nullable=True),
        sa.Column("before_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("after_snapshot", postgresql.JSONB, nullable=True),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_admin_log_guild_time", "admin_log", ["guild_id", "timestamp"])
    op.create_index(
        "ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"],
    )


def downgrade() -> None:
    op.drop_table("admin_log")
    op.drop_table("key_pop")
    op.drop_table("key_pop_snapshot")
    op.drop_table("key_pop_points_config")
    op.drop_table("raider_points_config")
    op.drop_table("quota_dungeon_override")
    op.drop_table("quota_role_config")
    op.drop_table("quota_event")
