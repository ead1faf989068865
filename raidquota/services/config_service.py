"""
raidquota.services.config_service — Quota Configuration
=========================================================

Reads and audited writes for the configuration tables the accounting
engine consumes:

* ``quota_role_config``      — one row per guild × role
* ``quota_dungeon_override`` — guild × role × dungeon → points
* ``raider_points_config``   — guild × dungeon → raider completion points
* ``key_pop_points_config``  — guild × dungeon → key-pop points

Every write follows the pattern:
  1. Begin transaction
  2. Read "before" snapshot
  3. Apply change
  4. Write admin_log with before/after
  5. Commit

Role-config upserts preserve ``created_at`` (the anchor of the current
quota cycle) unless the caller passes a new one explicitly, so editing,
say, the panel message never restarts anybody's quota period.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from raidquota.constants import DEFAULT_BASE_POINTS, DEFAULT_RESET_DAYS
from raidquota.database.models import (
    KeyPopPointsConfig,
    QuotaDungeonOverride,
    QuotaRoleConfig,
    RaiderPointsConfig,
)
from raidquota.services.audit import log_admin_action, row_to_dict

logger = logging.getLogger(__name__)

# Columns a caller may set through upsert_role_config.
ROLE_CONFIG_FIELDS: frozenset[str] = frozenset({
    "required_points",
    "reset_at",
    "created_at",
    "base_exalt_points",
    "base_non_exalt_points",
    "verify_points",
    "warn_points",
    "suspend_points",
    "modmail_reply_points",
    "editname_points",
    "addnote_points",
    "panel_message_id",
})

_NON_NEGATIVE_FIELDS = ROLE_CONFIG_FIELDS - {"reset_at", "created_at", "panel_message_id"}


def _check_points(name: str, value: float) -> None:
    if value is None or value < 0:
        raise ValueError(f"{name} must be a non-negative number, got {value!r}")


# ---------------------------------------------------------------------------
# Role configs
# ---------------------------------------------------------------------------

def get_role_config(engine: Engine, guild_id: int, role_id: int) -> QuotaRoleConfig | None:
    with Session(engine, expire_on_commit=False) as session:
        row = session.get(QuotaRoleConfig, (guild_id, role_id))
        if row is not None:
            session.expunge(row)
        return row


def list_role_configs(engine: Engine, guild_id: int) -> list[QuotaRoleConfig]:
    """Every quota-tracked role in the guild, ordered by role id."""
    with Session(engine) as session:
        rows = session.scalars(
            select(QuotaRoleConfig)
            .where(QuotaRoleConfig.guild_id == guild_id)
            .order_by(QuotaRoleConfig.role_id)
        ).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


def upsert_role_config(
    engine: Engine,
    guild_id: int,
    role_id: int,
    changes: dict[str, Any],
    *,
    actor_id: int | None = None,
    default_reset_days: int = DEFAULT_RESET_DAYS,
    now: datetime | None = None,
) -> QuotaRoleConfig:
    """Create or partially update a role's quota configuration.

    Only keys present in *changes* are written.  A new row gets
    ``created_at = now`` and ``reset_at = now + default_reset_days`` unless
    *changes* says otherwise; an existing row keeps its ``created_at``
    unless *changes* carries one.

    Raises
    ------
    ValueError
        Unknown field, or a negative point value.
    """
    unknown = set(changes) - ROLE_CONFIG_FIELDS
    if unknown:
        raise ValueError(f"Unknown quota config field(s): {', '.join(sorted(unknown))}")
    for key in _NON_NEGATIVE_FIELDS & set(changes):
        _check_points(key, changes[key])

    now = now or datetime.now(UTC)

    with Session(engine, expire_on_commit=False) as session:
        existing = session.get(QuotaRoleConfig, (guild_id, role_id))
        before = row_to_dict(existing)

        if existing is None:
            obj = QuotaRoleConfig(
                guild_id=guild_id,
                role_id=role_id,
                required_points=0,
                reset_at=now + timedelta(days=default_reset_days),
                created_at=now,
                base_exalt_points=DEFAULT_BASE_POINTS,
                base_non_exalt_points=DEFAULT_BASE_POINTS,
                verify_points=0,
                warn_points=0,
                suspend_points=0,
                modmail_reply_points=0,
                editname_points=0,
                addnote_points=0,
            )
            for key, value in changes.items():
                setattr(obj, key, value)
            session.add(obj)
            action = "CREATE"
        else:
            obj = existing
            anchor = changes.get("created_at", existing.created_at)
            for key, value in changes.items():
                setattr(obj, key, value)
            obj.created_at = anchor
            action = "UPDATE"

        session.flush()
        log_admin_action(
            session,
            guild_id=guild_id,
            actor_id=actor_id,
            action_type=action,
            target_table="quota_role_config",
            target_id=str(role_id),
            before=before,
            after=row_to_dict(obj),
        )
        session.commit()
        session.refresh(obj)
        session.expunge(obj)

    logger.info(
        "Quota config %s guild=%s role=%s fields=%s",
        action.lower(), guild_id, role_id, sorted(changes),
    )
    return obj


def delete_role_config(
    engine: Engine, guild_id: int, role_id: int, *, actor_id: int | None = None,
) -> bool:
    """Remove a role from quota tracking, along with its dungeon overrides.

    Returns ``True`` if the role had a config.  Ledger rows are untouched.
    """
    with Session(engine) as session:
        obj = session.get(QuotaRoleConfig, (guild_id, role_id))
        if obj is None:
            return False
        log_admin_action(
            session,
            guild_id=guild_id,
            actor_id=actor_id,
            action_type="DELETE",
            target_table="quota_role_config",
            target_id=str(role_id),
            before=row_to_dict(obj),
            after=None,
        )
        session.delete(obj)
        session.execute(
            delete(QuotaDungeonOverride).where(
                QuotaDungeonOverride.guild_id == guild_id,
                QuotaDungeonOverride.role_id == role_id,
            )
        )
        session.commit()

    logger.info("Quota config deleted guild=%s role=%s", guild_id, role_id)
    return True


# ---------------------------------------------------------------------------
# Dungeon overrides
# ---------------------------------------------------------------------------

def get_dungeon_overrides(engine: Engine, guild_id: int, role_id: int) -> dict[str, float]:
    """``dungeon_key → points`` overrides for one role."""
    with Session(engine) as session:
        rows = session.execute(
            select(QuotaDungeonOverride.dungeon_key, QuotaDungeonOverride.points)
            .where(
                QuotaDungeonOverride.guild_id == guild_id,
                QuotaDungeonOverride.role_id == role_id,
            )
            .order_by(QuotaDungeonOverride.dungeon_key)
        ).all()
    return {key: float(points) for key, points in rows}


def set_dungeon_override(
    engine: Engine,
    guild_id: int,
    role_id: int,
    dungeon_key: str,
    points: float,
    *,
    actor_id: int | None = None,
) -> QuotaDungeonOverride:
    _check_points("points", points)
    return _upsert_points_row(
        engine,
        QuotaDungeonOverride,
        (guild_id, role_id, dungeon_key),
        points,
        table_name="quota_dungeon_override",
        target_id=f"{role_id}:{dungeon_key}",
        actor_id=actor_id,
    )


def delete_dungeon_override(
    engine: Engine,
    guild_id: int,
    role_id: int,
    dungeon_key: str,
    *,
    actor_id: int | None = None,
) -> bool:
    return _delete_points_row(
        engine,
        QuotaDungeonOverride,
        (guild_id, role_id, dungeon_key),
        table_name="quota_dungeon_override",
        target_id=f"{role_id}:{dungeon_key}",
        actor_id=actor_id,
    )


# ---------------------------------------------------------------------------
# Guild-wide raider / key-pop points
# ---------------------------------------------------------------------------

def get_raider_points_config(engine: Engine, guild_id: int) -> dict[str, float]:
    return _points_table(engine, RaiderPointsConfig, guild_id)


def set_raider_points(
    engine: Engine, guild_id: int, dungeon_key: str, points: float,
    *, actor_id: int | None = None,
) -> RaiderPointsConfig:
    _check_points("points", points)
    return _upsert_points_row(
        engine, RaiderPointsConfig, (guild_id, dungeon_key), points,
        table_name="raider_points_config", target_id=dungeon_key, actor_id=actor_id,
    )


def delete_raider_points(
    engine: Engine, guild_id: int, dungeon_key: str, *, actor_id: int | None = None,
) -> bool:
    """Drop the entry; the dungeon falls back to the default value."""
    return _delete_points_row(
        engine, RaiderPointsConfig, (guild_id, dungeon_key),
        table_name="raider_points_config", target_id=dungeon_key, actor_id=actor_id,
    )


def get_key_pop_points_config(engine: Engine, guild_id: int) -> dict[str, float]:
    return _points_table(engine, KeyPopPointsConfig, guild_id)


def set_key_pop_points(
    engine: Engine, guild_id: int, dungeon_key: str, points: float,
    *, actor_id: int | None = None,
) -> KeyPopPointsConfig:
    _check_points("points", points)
    return _upsert_points_row(
        engine, KeyPopPointsConfig, (guild_id, dungeon_key), points,
        table_name="key_pop_points_config", target_id=dungeon_key, actor_id=actor_id,
    )


def delete_key_pop_points(
    engine: Engine, guild_id: int, dungeon_key: str, *, actor_id: int | None = None,
) -> bool:
    return _delete_points_row(
        engine, KeyPopPointsConfig, (guild_id, dungeon_key),
        table_name="key_pop_points_config", target_id=dungeon_key, actor_id=actor_id,
    )


def get_all_configs(engine: Engine, guild_id: int) -> dict[str, Any]:
    """Everything the engine reads for one guild, in one payload."""
    roles = list_role_configs(engine, guild_id)
    return {
        "roles": roles,
        "overrides": {
            role.role_id: get_dungeon_overrides(engine, guild_id, role.role_id)
            for role in roles
        },
        "raider_points": get_raider_points_config(engine, guild_id),
        "key_pop_points": get_key_pop_points_config(engine, guild_id),
    }


# ---------------------------------------------------------------------------
# Generic points-row helpers
# ---------------------------------------------------------------------------

def _points_table(engine: Engine, model_cls: type, guild_id: int) -> dict[str, float]:
    with Session(engine) as session:
        rows = session.execute(
            select(model_cls.dungeon_key, model_cls.points)
            .where(model_cls.guild_id == guild_id)
            .order_by(model_cls.dungeon_key)
        ).all()
    return {key: float(points) for key, points in rows}


def _upsert_points_row(
    engine: Engine,
    model_cls: type,
    pk: tuple,
    points: float,
    *,
    table_name: str,
    target_id: str,
    actor_id: int | None,
) -> Any:
    """Audited insert-or-update of a ``(…pk) → points`` row."""
    guild_id = pk[0]
    with Session(engine, expire_on_commit=False) as session:
        existing = session.get(model_cls, pk)
        before = row_to_dict(existing)
        if existing is None:
            key_names = [col.key for col in model_cls.__table__.primary_key.columns]
            obj = model_cls(**dict(zip(key_names, pk)), points=points)
            session.add(obj)
            action = "CREATE"
        else:
            obj = existing
            obj.points = points
            action = "UPDATE"
        session.flush()
        log_admin_action(
            session,
            guild_id=guild_id,
            actor_id=actor_id,
            action_type=action,
            target_table=table_name,
            target_id=target_id,
            before=before,
            after=row_to_dict(obj),
        )
        session.commit()
        session.refresh(obj)
        session.expunge(obj)

    logger.info("%s %s guild=%s %s → %.2f", table_name, action.lower(), guild_id, target_id, points)
    return obj


def _delete_points_row(
    engine: Engine,
    model_cls: type,
    pk: tuple,
    *,
    table_name: str,
    target_id: str,
    actor_id: int | None,
) -> bool:
    with Session(engine) as session:
        obj = session.get(model_cls, pk)
        if obj is None:
            return False
        log_admin_action(
            session,
            guild_id=pk[0],
            actor_id=actor_id,
            action_type="DELETE",
            target_table=table_name,
            target_id=target_id,
            before=row_to_dict(obj),
            after=None,
        )
        session.delete(obj)
        session.commit()
    return True
