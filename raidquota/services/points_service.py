"""
raidquota.services.points_service — Point Resolution (DB-backed)
==================================================================

Loads a guild's configuration rows and feeds them to the pure policy in
:mod:`raidquota.engine.points`.  A missing config is never an error: every
lookup falls back to its documented default.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from raidquota.constants import (
    DEFAULT_KEY_POP_POINTS,
    DEFAULT_RAIDER_POINTS,
    MODERATION_POINT_FIELDS,
    is_exalt_dungeon,
)
from raidquota.database.models import (
    KeyPopPointsConfig,
    QuotaDungeonOverride,
    QuotaRoleConfig,
    RaiderPointsConfig,
)
from raidquota.engine.points import RoleBase, resolve_points, sum_moderation_points

logger = logging.getLogger(__name__)


def resolve_dungeon_points(
    session: Session,
    guild_id: int,
    dungeon_key: str,
    role_ids: Iterable[int] | None = None,
) -> float:
    """Session-level :func:`resolve_points_for`."""
    overrides = {
        role_id: float(points)
        for role_id, points in session.execute(
            select(QuotaDungeonOverride.role_id, QuotaDungeonOverride.points).where(
                QuotaDungeonOverride.guild_id == guild_id,
                QuotaDungeonOverride.dungeon_key == dungeon_key,
            )
        )
    }
    bases = {
        role_id: RoleBase(exalt=float(exalt), non_exalt=float(non_exalt))
        for role_id, exalt, non_exalt in session.execute(
            select(
                QuotaRoleConfig.role_id,
                QuotaRoleConfig.base_exalt_points,
                QuotaRoleConfig.base_non_exalt_points,
            ).where(QuotaRoleConfig.guild_id == guild_id)
        )
    }
    return resolve_points(
        overrides=overrides,
        bases=bases,
        is_exalt=is_exalt_dungeon(dungeon_key),
        role_ids=role_ids,
    )


def resolve_points_for(
    engine: Engine,
    guild_id: int,
    dungeon_key: str,
    role_ids: Iterable[int] | None = None,
) -> float:
    """Quota points a run of *dungeon_key* is worth to a member with *role_ids*.

    Pass no roles when the member's live roles are unknown (e.g. a run that
    closed itself); the whole guild's configuration is then in scope.
    """
    role_ids = list(role_ids or ())
    with Session(engine) as session:
        points = resolve_dungeon_points(session, guild_id, dungeon_key, role_ids)
    logger.debug(
        "Resolved %s points guild=%s dungeon=%s roles=%s",
        points, guild_id, dungeon_key, role_ids,
    )
    return points


def _dungeon_value(session: Session, model_cls: type, guild_id: int, dungeon_key: str, default: float) -> float:
    row = session.get(model_cls, (guild_id, dungeon_key))
    return float(row.points) if row is not None else default


def resolve_raider_points(engine: Engine, guild_id: int, dungeon_key: str) -> float:
    """Completion credit per raider per checkpoint; 1 when unconfigured."""
    with Session(engine) as session:
        return _dungeon_value(session, RaiderPointsConfig, guild_id, dungeon_key, DEFAULT_RAIDER_POINTS)


def resolve_key_pop_points(engine: Engine, guild_id: int, dungeon_key: str) -> float:
    """Points per key popped; 5 when unconfigured."""
    with Session(engine) as session:
        return _dungeon_value(session, KeyPopPointsConfig, guild_id, dungeon_key, DEFAULT_KEY_POP_POINTS)


def resolve_moderation_points(
    engine: Engine,
    guild_id: int,
    role_ids: Iterable[int],
    command: str,
) -> float:
    """Sum of *command*'s value across the member's configured roles.

    Raises
    ------
    ValueError
        Unknown moderation command.
    """
    field = MODERATION_POINT_FIELDS.get(command)
    if field is None:
        raise ValueError(f"Unknown moderation command: {command!r}")
    role_ids = list(role_ids)
    if not role_ids:
        return 0.0

    column = getattr(QuotaRoleConfig, field)
    with Session(engine) as session:
        values = session.scalars(
            select(column).where(
                QuotaRoleConfig.guild_id == guild_id,
                QuotaRoleConfig.role_id.in_(role_ids),
            )
        ).all()
    return sum_moderation_points(float(v) for v in values)
