"""
raidquota.services.adjustment_service — Manual Corrections & Moderation Credit
================================================================================

Staff-driven writes to the ledger.  Corrections never edit existing rows;
each one is a new row with its own subject:

* ``log_runs``            — ``manual_log_run:<ts>:<user>:<count>`` batch
* ``log_keys``            — key-pop counter + ``key_pop:<ts>:<user>:<n>``
* ``adjust_quota_points`` — ``manual_adjust:<ts>:<user>``
* ``adjust_points``       — ``manual_points:<ts>:<user>``
* ``award_moderation``    — ``<command>:<ts>:<user>`` (``verify_member``)

Negative corrections are clamped so a member's total never drops below
zero.  Staff corrections are recorded in ``admin_log`` alongside the
ledger row.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import Engine, case, func, select
from sqlalchemy.orm import Session

from raidquota.constants import MODERATION_POINT_FIELDS, ActionType
from raidquota.database.engine import get_session
from raidquota.database.models import CreditKind, KeyPop, QuotaEvent
from raidquota.engine.subjects import (
    key_pop_subject,
    manual_adjust_subject,
    manual_log_run_subject,
    manual_points_subject,
    moderation_subject,
)
from raidquota.services import ledger_service, points_service
from raidquota.services.audit import log_admin_action, row_to_dict
from raidquota.services.ledger_service import LogResult

logger = logging.getLogger(__name__)

DEFAULT_KEY_TYPE = "key"


@dataclass(frozen=True, slots=True)
class RunLogResult:
    event: QuotaEvent | None
    logged: int           # runs recorded (absolute value)
    quota_points: float   # signed quota points written


@dataclass(frozen=True, slots=True)
class KeyLogResult:
    event: QuotaEvent | None
    logged: int           # keys added or removed (absolute value)
    new_total: int
    points_awarded: float


@dataclass(frozen=True, slots=True)
class AdjustmentResult:
    event: QuotaEvent | None
    applied: float        # after clamping; 0 means nothing was written
    new_total: float


# ---------------------------------------------------------------------------
# Totals used for clamping
# ---------------------------------------------------------------------------
def member_totals(session: Session, guild_id: int, user_id: int) -> tuple[float, float]:
    """``(points, quota_points)`` for a member across the whole ledger.

    Raider completion rows carry their value in both columns; only their
    ``points`` count toward the member's totals.
    """
    points, quota = session.execute(
        select(
            func.coalesce(func.sum(QuotaEvent.points), 0),
            func.coalesce(func.sum(case(
                (QuotaEvent.credit != CreditKind.RAIDER, QuotaEvent.quota_points),
                else_=0,
            )), 0),
        ).where(
            QuotaEvent.guild_id == guild_id,
            QuotaEvent.actor_user_id == user_id,
        )
    ).one()
    return float(points), float(quota)


def _clamp(current: float, delta: float) -> float:
    """Shrink a negative *delta* so ``current + delta`` stays >= 0."""
    if current + delta < 0:
        return -current
    return delta


# ---------------------------------------------------------------------------
# Key-pop counter store
# ---------------------------------------------------------------------------
def bump_key_counter(
    session: Session,
    guild_id: int,
    user_id: int,
    dungeon_key: str,
    delta: int,
    *,
    key_type: str = DEFAULT_KEY_TYPE,
) -> tuple[int, int]:
    """Add *delta* keys to a member's counter, never going below zero.

    Returns ``(new_count, applied_delta)``.
    """
    row = session.get(KeyPop, (guild_id, user_id, dungeon_key, key_type))
    current = row.count if row is not None else 0
    applied = int(_clamp(current, delta))
    if row is None:
        row = KeyPop(
            guild_id=guild_id,
            user_id=user_id,
            dungeon_key=dungeon_key,
            key_type=key_type,
            count=0,
        )
        session.add(row)
    row.count = current + applied
    row.last_popped_at = datetime.now(UTC)
    session.flush()
    return row.count, applied


# ---------------------------------------------------------------------------
# Manual run / key logging
# ---------------------------------------------------------------------------
def log_runs(
    engine: Engine,
    guild_id: int,
    organizer_id: int,
    dungeon_key: str,
    amount: int = 1,
    *,
    role_ids: Iterable[int] | None = None,
    actor_id: int | None = None,
) -> RunLogResult:
    """Credit (or, with a negative *amount*, remove) several runs at once.

    Each run is worth the organizer's resolved dungeon points.  A removal
    larger than the organizer's quota total is shrunk to the number of runs
    that brings the total to exactly zero.
    """
    if amount == 0:
        raise ValueError("amount must be non-zero")

    role_ids = list(role_ids or ())
    with get_session(engine) as session:
        per_run = points_service.resolve_dungeon_points(session, guild_id, dungeon_key, role_ids)
        _, current = member_totals(session, guild_id, organizer_id)

        count = amount
        quota = per_run * amount
        if current + quota < 0:
            quota = -current
            count = -math.ceil(current / per_run) if per_run > 0 else 0

        result = ledger_service.write_event(
            session,
            guild_id,
            organizer_id,
            ActionType.RUN_COMPLETED,
            manual_log_run_subject(organizer_id, abs(count)),
            dungeon_key,
            quota_points=quota,
        )
        if result.event is not None:
            log_admin_action(
                session,
                guild_id=guild_id,
                actor_id=actor_id,
                action_type="LOG_RUNS",
                target_table="quota_event",
                target_id=str(result.event.id),
                before=None,
                after=row_to_dict(result.event),
            )

    logger.info(
        "Manually logged %d run(s) of %s for %s in guild %s (%.2f quota points)",
        count, dungeon_key, organizer_id, guild_id, quota,
    )
    return RunLogResult(
        event=result.event,
        logged=abs(count) if result.event is not None else 0,
        quota_points=quota if result.event is not None else 0.0,
    )


def log_keys(
    engine: Engine,
    guild_id: int,
    user_id: int,
    dungeon_key: str,
    amount: int = 1,
    *,
    actor_id: int | None = None,
) -> KeyLogResult:
    """Add or remove key pops for a member and credit their key-pop points."""
    if amount == 0:
        raise ValueError("amount must be non-zero")

    per_key = points_service.resolve_key_pop_points(engine, guild_id, dungeon_key)
    event = None
    awarded = 0.0
    with get_session(engine) as session:
        new_total, applied = bump_key_counter(session, guild_id, user_id, dungeon_key, amount)

        if per_key > 0 and applied != 0:
            current_points, _ = member_totals(session, guild_id, user_id)
            delta = _clamp(current_points, per_key * applied)
            if delta != 0:
                result = ledger_service.write_event(
                    session,
                    guild_id,
                    user_id,
                    ActionType.RUN_COMPLETED,
                    key_pop_subject(user_id, applied),
                    dungeon_key,
                    quota_points=0,
                    points=delta,
                )
                event = result.event
                awarded = delta if event is not None else 0.0

        log_admin_action(
            session,
            guild_id=guild_id,
            actor_id=actor_id,
            action_type="LOG_KEYS",
            target_table="key_pop",
            target_id=f"{user_id}:{dungeon_key}",
            before=None,
            after={"count": new_total, "applied": applied, "points": awarded},
        )

    logger.info(
        "Manually logged %d key(s) of %s for %s in guild %s (total %d, %.2f points)",
        applied, dungeon_key, user_id, guild_id, new_total, awarded,
    )
    return KeyLogResult(event=event, logged=abs(applied), new_total=new_total, points_awarded=awarded)


# ---------------------------------------------------------------------------
# Point adjustments
# ---------------------------------------------------------------------------
def _adjust(
    engine: Engine,
    guild_id: int,
    user_id: int,
    amount: float,
    *,
    quota_channel: bool,
    actor_id: int | None,
    reason: str | None,
) -> AdjustmentResult:
    if amount == 0:
        raise ValueError("amount must be non-zero")

    with get_session(engine) as session:
        points, quota = member_totals(session, guild_id, user_id)
        current = quota if quota_channel else points
        delta = _clamp(current, amount)
        if delta == 0:
            return AdjustmentResult(event=None, applied=0.0, new_total=current)

        if quota_channel:
            subject = manual_adjust_subject(user_id)
            kwargs = {"quota_points": delta}
        else:
            subject = manual_points_subject(user_id)
            kwargs = {"quota_points": 0, "points": delta}

        result = ledger_service.write_event(
            session, guild_id, user_id, ActionType.RUN_COMPLETED, subject, None, **kwargs,
        )
        if result.event is None:
            return AdjustmentResult(event=None, applied=0.0, new_total=current)

        log_admin_action(
            session,
            guild_id=guild_id,
            actor_id=actor_id,
            action_type="ADJUST_QUOTA_POINTS" if quota_channel else "ADJUST_POINTS",
            target_table="quota_event",
            target_id=str(result.event.id),
            before={"total": current},
            after={"total": current + delta, "event": row_to_dict(result.event)},
            reason=reason,
        )

    logger.info(
        "Adjusted %s for %s in guild %s by %.2f (requested %.2f)",
        "quota points" if quota_channel else "points", user_id, guild_id, delta, amount,
    )
    return AdjustmentResult(event=result.event, applied=delta, new_total=current + delta)


def adjust_quota_points(
    engine: Engine,
    guild_id: int,
    user_id: int,
    amount: float,
    *,
    actor_id: int | None = None,
    reason: str | None = None,
) -> AdjustmentResult:
    """Add or remove organizer quota points without logging a run."""
    return _adjust(
        engine, guild_id, user_id, amount,
        quota_channel=True, actor_id=actor_id, reason=reason,
    )


def adjust_points(
    engine: Engine,
    guild_id: int,
    user_id: int,
    amount: float,
    *,
    actor_id: int | None = None,
    reason: str | None = None,
) -> AdjustmentResult:
    """Add or remove raider points without logging a completion."""
    return _adjust(
        engine, guild_id, user_id, amount,
        quota_channel=False, actor_id=actor_id, reason=reason,
    )


# ---------------------------------------------------------------------------
# Moderation credit
# ---------------------------------------------------------------------------
def award_moderation(
    engine: Engine,
    guild_id: int,
    actor_id: int,
    role_ids: Iterable[int],
    command: str,
) -> LogResult:
    """Credit a staff member for a moderation command.

    Always writes exactly one ``verify_member`` row, even when none of the
    member's roles award anything for *command* (the row then carries 0
    quota points and still counts as a verification in stats).
    """
    if command not in MODERATION_POINT_FIELDS:
        raise ValueError(f"Unknown moderation command: {command!r}")

    points = points_service.resolve_moderation_points(engine, guild_id, role_ids, command)
    return ledger_service.log_event(
        engine,
        guild_id,
        actor_id,
        ActionType.VERIFY_MEMBER,
        moderation_subject(command, actor_id),
        None,
        quota_points=points,
    )
