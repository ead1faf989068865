"""
raidquota.services.stats_service — Leaderboards & Member Stats
================================================================

Read-side reductions over ``quota_event`` plus the ``key_pop`` counter
store.

Run counts sum ``quota_event.quantity``, so a ``manual_log_run`` batch of
five counts as five runs while every other row counts as one.  Rankings
are ordered by value descending with ties broken by user id ascending, so
repeated queries over unchanged data return the same order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import Engine, and_, case, func, select
from sqlalchemy.orm import Session

from raidquota.constants import LEADERBOARD_CATEGORIES, ActionType, LeaderboardCategory
from raidquota.database.models import CreditKind, KeyPop, QuotaEvent, QuotaRoleConfig
from raidquota.engine.periods import QuotaPeriod, as_utc, current_period

logger = logging.getLogger(__name__)

KEYS_POPPED_DATE_WARNING = (
    "keys_popped is read from the key-pop counters, which have no per-pop "
    "timestamps; the date range was ignored"
)


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    user_id: int
    value: float


@dataclass(slots=True)
class LeaderboardResult:
    category: str
    entries: list[LeaderboardEntry]
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RoleMemberStats:
    user_id: int
    points: float
    runs: int


@dataclass(frozen=True, slots=True)
class RoleQuotaRow:
    user_id: int
    points: float
    runs: int
    met_quota: bool


@dataclass(frozen=True, slots=True)
class RoleQuotaSummary:
    role_id: int
    required_points: float
    period: QuotaPeriod
    members: list[RoleQuotaRow]


@dataclass(frozen=True, slots=True)
class DungeonStats:
    dungeon_key: str
    completed: int
    organized: int
    keys_popped: int


@dataclass(frozen=True, slots=True)
class UserStats:
    user_id: int
    total_points: float
    total_quota_points: float
    runs_organized: int
    verifications: int
    keys_popped: int
    dungeons: list[DungeonStats]


# ---------------------------------------------------------------------------
# Reusable predicates
# ---------------------------------------------------------------------------
_ORGANIZED = and_(
    QuotaEvent.action_type == ActionType.RUN_COMPLETED,
    QuotaEvent.credit == CreditKind.ORGANIZER,
    QuotaEvent.quota_points > 0,
)
_COMPLETED = and_(
    QuotaEvent.action_type == ActionType.RUN_COMPLETED,
    QuotaEvent.credit == CreditKind.RAIDER,
    QuotaEvent.points > 0,
)
_QUOTA_CHANNEL = QuotaEvent.credit != CreditKind.RAIDER


def _sum_where(condition, value) -> object:
    return func.coalesce(func.sum(case((condition, value), else_=0)), 0)


def _normalise_dungeon(dungeon_key: str | None) -> str | None:
    if not dungeon_key or dungeon_key.lower() == "all":
        return None
    return dungeon_key


# ---------------------------------------------------------------------------
# Guild leaderboard
# ---------------------------------------------------------------------------
def leaderboard(
    engine: Engine,
    guild_id: int,
    category: str,
    dungeon_key: str | None = None,
    since: datetime | None = None,
    until: datetime | None = None,
    *,
    limit: int | None = 50,
) -> LeaderboardResult:
    """Rank the guild's members in *category*.

    *since* and *until* are inclusive.  ``keys_popped`` cannot honour
    them; when a range is given for it the result carries a warning.

    Raises
    ------
    ValueError
        Unknown *category*.
    """
    if category not in LEADERBOARD_CATEGORIES:
        raise ValueError(
            f"Unknown leaderboard category {category!r}; "
            f"expected one of {', '.join(LEADERBOARD_CATEGORIES)}"
        )
    dungeon_key = _normalise_dungeon(dungeon_key)
    since = as_utc(since) if since is not None else None
    until = as_utc(until) if until is not None else None

    if category == LeaderboardCategory.KEYS_POPPED:
        return _keys_popped_leaderboard(engine, guild_id, dungeon_key, since, until, limit)

    if category == LeaderboardCategory.RUNS_ORGANIZED:
        value, condition = func.sum(QuotaEvent.quantity), _ORGANIZED
    elif category == LeaderboardCategory.DUNGEON_COMPLETIONS:
        value, condition = func.sum(QuotaEvent.quantity), _COMPLETED
    elif category == LeaderboardCategory.POINTS:
        value, condition = func.sum(QuotaEvent.points), QuotaEvent.points > 0
    else:
        value = func.sum(QuotaEvent.quota_points)
        condition = and_(QuotaEvent.quota_points > 0, _QUOTA_CHANNEL)

    stmt = (
        select(QuotaEvent.actor_user_id, value)
        .where(QuotaEvent.guild_id == guild_id, condition)
        .group_by(QuotaEvent.actor_user_id)
        .having(value > 0)
        .order_by(value.desc(), QuotaEvent.actor_user_id.asc())
    )
    if dungeon_key is not None:
        stmt = stmt.where(QuotaEvent.dungeon_key == dungeon_key)
    if since is not None:
        stmt = stmt.where(QuotaEvent.created_at >= since)
    if until is not None:
        stmt = stmt.where(QuotaEvent.created_at <= until)
    if limit is not None:
        stmt = stmt.limit(limit)

    counted = category in (LeaderboardCategory.RUNS_ORGANIZED, LeaderboardCategory.DUNGEON_COMPLETIONS)
    with Session(engine) as session:
        rows = session.execute(stmt).all()
    entries = [
        LeaderboardEntry(user_id=int(user_id), value=int(total) if counted else float(total))
        for user_id, total in rows
    ]
    return LeaderboardResult(category=category, entries=entries)


def _keys_popped_leaderboard(
    engine: Engine,
    guild_id: int,
    dungeon_key: str | None,
    since: datetime | None,
    until: datetime | None,
    limit: int | None,
) -> LeaderboardResult:
    warnings: list[str] = []
    if since is not None or until is not None:
        logger.warning("Leaderboard guild=%s: %s", guild_id, KEYS_POPPED_DATE_WARNING)
        warnings.append(KEYS_POPPED_DATE_WARNING)

    total = func.sum(KeyPop.count)
    stmt = (
        select(KeyPop.user_id, total)
        .where(KeyPop.guild_id == guild_id)
        .group_by(KeyPop.user_id)
        .having(total > 0)
        .order_by(total.desc(), KeyPop.user_id.asc())
    )
    if dungeon_key is not None:
        stmt = stmt.where(KeyPop.dungeon_key == dungeon_key)
    if limit is not None:
        stmt = stmt.limit(limit)

    with Session(engine) as session:
        rows = session.execute(stmt).all()
    return LeaderboardResult(
        category=LeaderboardCategory.KEYS_POPPED,
        entries=[LeaderboardEntry(user_id=int(u), value=int(c)) for u, c in rows],
        warnings=warnings,
    )


# ---------------------------------------------------------------------------
# Role quota panel
# ---------------------------------------------------------------------------
def leaderboard_for_role(
    engine: Engine,
    guild_id: int,
    member_ids: Iterable[int],
    period_start: datetime,
    period_end: datetime,
    *,
    limit: int | None = None,
) -> list[RoleMemberStats]:
    """Quota points and runs per role member within ``[start, end)``.

    Every member is listed, including those with no activity in the
    period.
    """
    members = set(member_ids)
    if not members:
        return []

    stats = {uid: RoleMemberStats(user_id=uid, points=0.0, runs=0) for uid in members}
    with Session(engine) as session:
        rows = session.execute(
            select(
                QuotaEvent.actor_user_id,
                _sum_where(_QUOTA_CHANNEL, QuotaEvent.quota_points),
                _sum_where(_ORGANIZED, QuotaEvent.quantity),
            )
            .where(
                QuotaEvent.guild_id == guild_id,
                QuotaEvent.actor_user_id.in_(members),
                QuotaEvent.created_at >= as_utc(period_start),
                QuotaEvent.created_at < as_utc(period_end),
            )
            .group_by(QuotaEvent.actor_user_id)
        ).all()
    for user_id, points, runs in rows:
        stats[int(user_id)] = RoleMemberStats(user_id=int(user_id), points=float(points), runs=int(runs))

    ranked = sorted(stats.values(), key=lambda s: (-s.points, -s.runs, s.user_id))
    return ranked[:limit] if limit is not None else ranked


def role_quota_summary(
    engine: Engine,
    guild_id: int,
    role_id: int,
    member_ids: Iterable[int],
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> RoleQuotaSummary | None:
    """Current-period standings for a quota role; ``None`` if it isn't tracked."""
    with Session(engine) as session:
        config = session.get(QuotaRoleConfig, (guild_id, role_id))
        if config is None:
            return None
        period = current_period(config, now)
        required = float(config.required_points)

    rows = leaderboard_for_role(engine, guild_id, member_ids, period.start, period.end, limit=limit)
    return RoleQuotaSummary(
        role_id=role_id,
        required_points=required,
        period=period,
        members=[
            RoleQuotaRow(
                user_id=r.user_id,
                points=r.points,
                runs=r.runs,
                met_quota=r.points >= required,
            )
            for r in rows
        ],
    )


# ---------------------------------------------------------------------------
# Member stats
# ---------------------------------------------------------------------------
def user_stats(engine: Engine, guild_id: int, user_id: int) -> UserStats:
    """All-time totals for one member plus a per-dungeon breakdown.

    The breakdown merges ledger-derived completion/organizing counts with
    the key-pop counters; a dungeon present in either source is listed.
    """
    mine = and_(QuotaEvent.guild_id == guild_id, QuotaEvent.actor_user_id == user_id)
    with Session(engine) as session:
        points, quota, organized, verifications = session.execute(
            select(
                func.coalesce(func.sum(QuotaEvent.points), 0),
                _sum_where(_QUOTA_CHANNEL, QuotaEvent.quota_points),
                _sum_where(_ORGANIZED, QuotaEvent.quantity),
                _sum_where(QuotaEvent.action_type == ActionType.VERIFY_MEMBER, 1),
            ).where(mine)
        ).one()

        per_dungeon = session.execute(
            select(
                QuotaEvent.dungeon_key,
                _sum_where(_COMPLETED, QuotaEvent.quantity),
                _sum_where(_ORGANIZED, QuotaEvent.quantity),
            )
            .where(mine, QuotaEvent.dungeon_key.isnot(None))
            .group_by(QuotaEvent.dungeon_key)
        ).all()

        keys = session.execute(
            select(KeyPop.dungeon_key, func.sum(KeyPop.count))
            .where(KeyPop.guild_id == guild_id, KeyPop.user_id == user_id)
            .group_by(KeyPop.dungeon_key)
        ).all()

    merged: dict[str, list[int]] = {}
    for dungeon, completed, organized_here in per_dungeon:
        merged[dungeon] = [int(completed), int(organized_here), 0]
    for dungeon, count in keys:
        merged.setdefault(dungeon, [0, 0, 0])[2] = int(count or 0)

    dungeons = [
        DungeonStats(dungeon_key=d, completed=c, organized=o, keys_popped=k)
        for d, (c, o, k) in merged.items()
        if c or o or k
    ]
    dungeons.sort(key=lambda s: (-(s.completed + s.organized + s.keys_popped), s.dungeon_key))

    return UserStats(
        user_id=user_id,
        total_points=float(points),
        total_quota_points=float(quota),
        runs_organized=int(organized),
        verifications=int(verifications),
        keys_popped=sum(s.keys_popped for s in dungeons),
        dungeons=dungeons,
    )
