"""
raidquota.services.ledger_service — Event Ledger
==================================================

Append-only write path for ``quota_event``.

* Rows are never updated or deleted; corrections are new rows with new
  subjects.
* ``run_completed`` rows with a subject are unique per guild (partial
  unique index).  A second insert for the same subject is a *duplicate*:
  a normal outcome reported through :class:`LogResult`, never an error.
* No locks.  Concurrent writers race on the index; the loser's SAVEPOINT
  is rolled back and it observes the winner's row.

All public functions are synchronous; async callers go through
``await run_db(log_event, engine, ...)``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import Engine, exists, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from raidquota.constants import ACTION_TYPES, DEFAULT_ACTION_QUOTA_POINTS, ActionType
from raidquota.database.engine import get_session
from raidquota.database.models import QuotaEvent
from raidquota.engine.subjects import classify, quantity_for, run_subject

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class LogResult:
    """Outcome of a ledger write: the stored event, or a duplicate marker."""
    event: QuotaEvent | None
    duplicate: bool = False


DUPLICATE = LogResult(event=None, duplicate=True)


# ---------------------------------------------------------------------------
# Insert-if-absent
# ---------------------------------------------------------------------------
def _find_run_subject(session: Session, guild_id: int, subject_id: str) -> QuotaEvent | None:
    return session.scalar(
        select(QuotaEvent).where(
            QuotaEvent.guild_id == guild_id,
            QuotaEvent.subject_id == subject_id,
            QuotaEvent.action_type == ActionType.RUN_COMPLETED,
        )
    )


def insert_if_absent(session: Session, event: QuotaEvent) -> tuple[QuotaEvent, bool]:
    """Insert *event* unless its dedup key is already taken.

    Returns ``(row, was_inserted)``.  When the key is taken, ``row`` is the
    existing ledger row.  Events outside the dedup rule (``verify_member``
    or no subject) are always inserted.

    The insert runs in a SAVEPOINT so the surrounding transaction survives
    a unique-index violation.  Any other integrity error propagates.
    """
    try:
        with session.begin_nested():   # SAVEPOINT
            session.add(event)
            session.flush()
    except IntegrityError:
        if event.action_type != ActionType.RUN_COMPLETED or not event.subject_id:
            raise
        existing = _find_run_subject(session, event.guild_id, event.subject_id)
        if existing is None:
            raise
        return existing, False
    return event, True


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def write_event(
    session: Session,
    guild_id: int,
    actor_user_id: int,
    action_type: str,
    subject_id: str | None = None,
    dungeon_key: str | None = None,
    quota_points: float | None = None,
    *,
    points: float = 0.0,
) -> LogResult:
    """Session-level :func:`log_event` for callers composing a transaction.

    *points* is raider credit.  Only the completion-award path and the
    manual point corrections set it; every other caller leaves it at 0.

    Raises
    ------
    ValueError
        Unknown *action_type*.
    MalformedSubjectError
        A ``manual_log_run`` subject without a valid run count.
    """
    if action_type not in ACTION_TYPES:
        raise ValueError(f"Unknown action type: {action_type!r}")

    if quota_points is None:
        quota_points = DEFAULT_ACTION_QUOTA_POINTS[action_type]

    event = QuotaEvent(
        guild_id=guild_id,
        actor_user_id=actor_user_id,
        action_type=action_type,
        subject_id=subject_id,
        dungeon_key=dungeon_key,
        points=points,
        quota_points=quota_points,
        quantity=quantity_for(action_type, subject_id),
        credit=classify(action_type, subject_id),
        created_at=datetime.now(UTC),
    )

    row, inserted = insert_if_absent(session, event)
    if not inserted:
        logger.debug(
            "Duplicate ledger event guild=%s subject=%s (existing id=%s)",
            guild_id, subject_id, row.id,
        )
        return DUPLICATE
    return LogResult(event=row)


def log_event(
    engine: Engine,
    guild_id: int,
    actor_user_id: int,
    action_type: str,
    subject_id: str | None = None,
    dungeon_key: str | None = None,
    quota_points: float | None = None,
    *,
    points: float = 0.0,
) -> LogResult:
    """Record one point-earning action in the ledger.

    ``quota_points`` defaults to 1 for either action type.  Storage errors
    propagate unchanged; a duplicate subject returns :data:`DUPLICATE`.
    Safe to retry: a replay with the same subject is a no-op.
    """
    with get_session(engine) as session:
        result = write_event(
            session, guild_id, actor_user_id, action_type,
            subject_id, dungeon_key, quota_points, points=points,
        )

    if result.event is not None:
        logger.info(
            "Ledger event #%s guild=%s actor=%s type=%s subject=%s quota=%.2f points=%.2f",
            result.event.id, guild_id, actor_user_id, action_type, subject_id,
            result.event.quota_points, result.event.points,
        )
    return result


def is_already_logged(engine: Engine, guild_id: int, run_id: int) -> bool:
    """True when organizer credit for *run_id* is already in the ledger."""
    with Session(engine) as session:
        return bool(session.scalar(
            select(exists().where(
                QuotaEvent.guild_id == guild_id,
                QuotaEvent.subject_id == run_subject(run_id),
                QuotaEvent.action_type == ActionType.RUN_COMPLETED,
            ))
        ))


def list_events(
    engine: Engine,
    guild_id: int,
    *,
    actor_user_id: int | None = None,
    limit: int = 50,
) -> list[QuotaEvent]:
    """Most recent ledger rows for a guild, optionally for one member."""
    with Session(engine, expire_on_commit=False) as session:
        stmt = select(QuotaEvent).where(QuotaEvent.guild_id == guild_id)
        if actor_user_id is not None:
            stmt = stmt.where(QuotaEvent.actor_user_id == actor_user_id)
        stmt = stmt.order_by(QuotaEvent.created_at.desc(), QuotaEvent.id.desc()).limit(limit)
        rows = list(session.scalars(stmt))
        session.expunge_all()
        return rows
