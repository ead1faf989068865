"""
raidquota.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- quota_event            — Append-only points ledger with idempotent insert
- quota_role_config      — Per-role quota requirement, period anchors, base points
- quota_dungeon_override — Per-role, per-dungeon point override
- raider_points_config   — Guild-wide raider completion points per dungeon
- key_pop_points_config  — Guild-wide key-pop points per dungeon
- key_pop_snapshot       — Roster captured at each checkpoint of a run
- run_key_pop            — Number of key pops recorded per run
- key_pop                — Key-pop counters per member and dungeon
- admin_log              — Append-only audit trail for configuration writes
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Point values are DECIMAL(10,2) in storage and floats in Python.
PointsType = Numeric(10, 2, asdecimal=False)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all RaidQuota ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class CreditKind(enum.StrEnum):
    """Accounting channel a ledger row belongs to.

    Derived from the row's subject when it is written, so reductions can
    filter on a column instead of pattern-matching ``subject_id``.
    """
    ORGANIZER = "organizer"      # run:<id>, manual_log_run:…
    RAIDER = "raider"            # raider:<run>[:<checkpoint>]:<user>
    KEY_POP = "key_pop"          # key_pop:<ts>:<user>:<n>
    MODERATION = "moderation"    # verify_member rows
    ADJUSTMENT = "adjustment"    # manual_adjust:… / manual_points:…


# ---------------------------------------------------------------------------
# QuotaEvent — append-only ledger
# ---------------------------------------------------------------------------
class QuotaEvent(Base):
    __tablename__ = "quota_event"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actor_user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(30), nullable=False)
    subject_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    dungeon_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    quota_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    credit: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CreditKind.ORGANIZER
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        # The only uniqueness rule on the ledger: one run_completed row per subject.
        Index(
            "uq_quota_event_run_subject",
            "guild_id",
            "subject_id",
            unique=True,
            postgresql_where=text(
                "action_type = 'run_completed' AND subject_id IS NOT NULL"
            ),
            sqlite_where=text(
                "action_type = 'run_completed' AND subject_id IS NOT NULL"
            ),
        ),
        Index("ix_quota_event_guild_actor_time", "guild_id", "actor_user_id", "created_at"),
        Index("ix_quota_event_guild_time", "guild_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<QuotaEvent id={self.id} actor={self.actor_user_id} "
            f"type={self.action_type} subject={self.subject_id!r}>"
        )


# ---------------------------------------------------------------------------
# QuotaRoleConfig — one per guild × role
# ---------------------------------------------------------------------------
class QuotaRoleConfig(Base):
    __tablename__ = "quota_role_config"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    role_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    required_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    reset_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    base_exalt_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=1)
    base_non_exalt_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=1)
    verify_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    warn_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    suspend_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    modmail_reply_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    editname_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    addnote_points: Mapped[float] = mapped_column(PointsType, nullable=False, default=0)
    panel_message_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<QuotaRoleConfig guild={self.guild_id} role={self.role_id}>"


# ---------------------------------------------------------------------------
# QuotaDungeonOverride — guild × role × dungeon → points
# ---------------------------------------------------------------------------
class QuotaDungeonOverride(Base):
    __tablename__ = "quota_dungeon_override"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    role_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    dungeon_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    points: Mapped[float] = mapped_column(PointsType, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_dungeon_override_guild_dungeon", "guild_id", "dungeon_key"),
    )


# ---------------------------------------------------------------------------
# RaiderPointsConfig / KeyPopPointsConfig — guild × dungeon → points
# ---------------------------------------------------------------------------
class RaiderPointsConfig(Base):
    __tablename__ = "raider_points_config"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    dungeon_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    points: Mapped[float] = mapped_column(PointsType, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class KeyPopPointsConfig(Base):
    __tablename__ = "key_pop_points_config"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    dungeon_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    points: Mapped[float] = mapped_column(PointsType, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


# ---------------------------------------------------------------------------
# KeyPopSnapshot — roster at checkpoint N of a run
# ---------------------------------------------------------------------------
class KeyPopSnapshot(Base):
    __tablename__ = "key_pop_snapshot"

    run_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    key_pop_number: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    class_name: Mapped[str | None] = mapped_column("class", String(50), nullable=True)
    awarded_completion: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    awarded_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    snapshot_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_key_pop_snapshot_pending", "run_id", "key_pop_number", "awarded_completion"),
    )

    def __repr__(self) -> str:
        return (
            f"<KeyPopSnapshot run={self.run_id} pop={self.key_pop_number} "
            f"user={self.user_id} awarded={self.awarded_completion}>"
        )


# ---------------------------------------------------------------------------
# RunKeyPop — checkpoints recorded per run, including empty-roster pops
# ---------------------------------------------------------------------------
class RunKeyPop(Base):
    __tablename__ = "run_key_pop"

    run_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    key_pop_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_popped_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<RunKeyPop run={self.run_id} count={self.key_pop_count}>"


# ---------------------------------------------------------------------------
# KeyPop — key-pop counter store (not part of the ledger)
# ---------------------------------------------------------------------------
class KeyPop(Base):
    __tablename__ = "key_pop"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    dungeon_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    key_type: Mapped[str] = mapped_column(String(32), primary_key=True, default="key")
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_popped_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    actor_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_guild_time", "guild_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"
