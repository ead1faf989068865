"""
raidquota.services.snapshot_service — Key-Pop Snapshots & Completion Awards
=============================================================================

Raider credit is attributed per checkpoint ("key pop") of a run:

1. **Snapshot** — when checkpoint N happens, the current roster is stored
   as ``key_pop_snapshot(run_id, N, user_id)`` rows, unawarded.
2. **Award** — when checkpoint N closes (checkpoint N+1 happens, or the
   run ends with N as its latest), every unawarded row at N gets a ledger
   event with subject ``raider:<run>:<N>:<user>`` and is flagged awarded.

A raider who joins after checkpoint N was snapshotted is never credited
for N, and one present for several checkpoints earns one credit each.

Runs without checkpoints use :func:`award_on_completion`, the same
algorithm over the final roster with subject ``raider:<run>:<user>``.

Each raider is written in its own transaction.  A storage failure for
one raider is logged and recorded in that raider's :class:`RaiderAward`;
the rest of the checkpoint is still awarded, and a retry picks up exactly
the raiders that are still unawarded.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from raidquota.constants import ActionType
from raidquota.database.engine import get_session
from raidquota.database.models import KeyPopSnapshot, RunKeyPop
from raidquota.engine.subjects import raider_subject
from raidquota.services import ledger_service, points_service

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RosterEntry:
    """One joined raider as reported by the run's roster."""
    user_id: int
    class_name: str | None = None


class AwardStatus(enum.StrEnum):
    AWARDED = "awarded"
    DUPLICATE = "duplicate"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class RaiderAward:
    user_id: int
    status: AwardStatus
    event_id: int | None = None
    error: str | None = None


@dataclass(slots=True)
class AwardSummary:
    run_id: int
    key_pop_number: int | None  # None for whole-run awards
    points: float
    skipped_zero_points: bool = False
    results: list[RaiderAward] = field(default_factory=list)

    @property
    def awarded_count(self) -> int:
        return sum(1 for r in self.results if r.status is AwardStatus.AWARDED)

    @property
    def failures(self) -> list[RaiderAward]:
        return [r for r in self.results if r.status is AwardStatus.FAILED]


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------
def latest_key_pop_number(session: Session, run_id: int) -> int:
    """Highest checkpoint recorded for *run_id*, or 0 when none.

    The per-run counter also covers key pops whose roster was empty and so
    left no snapshot rows.
    """
    snapshotted = session.scalar(
        select(func.coalesce(func.max(KeyPopSnapshot.key_pop_number), 0))
        .where(KeyPopSnapshot.run_id == run_id)
    ) or 0
    counter = session.get(RunKeyPop, run_id)
    return max(snapshotted, counter.key_pop_count if counter is not None else 0)


def record_key_pop(session: Session, guild_id: int, run_id: int) -> int:
    """Count one more key pop for *run_id* and return its checkpoint number."""
    counter = session.get(RunKeyPop, run_id, with_for_update=True)
    number = latest_key_pop_number(session, run_id) + 1
    if counter is None:
        counter = RunKeyPop(run_id=run_id, guild_id=guild_id)
        session.add(counter)
    counter.key_pop_count = number
    counter.last_popped_at = datetime.now(UTC)
    session.flush()
    return counter.key_pop_count


def get_latest_key_pop_number(engine: Engine, run_id: int) -> int:
    with Session(engine) as session:
        return latest_key_pop_number(session, run_id)


def snapshot_key_pop(
    engine: Engine,
    run_id: int,
    key_pop_number: int,
    roster: Iterable[RosterEntry],
) -> int:
    """Record who is present at checkpoint *key_pop_number* of *run_id*.

    Re-snapshotting is harmless: raiders already recorded for the
    checkpoint are skipped (their award state is left alone).  Returns the
    number of rows inserted.
    """
    if key_pop_number < 1:
        raise ValueError(f"key_pop_number must be >= 1, got {key_pop_number}")

    entries: dict[int, RosterEntry] = {}
    for entry in roster:
        entries.setdefault(entry.user_id, entry)

    inserted = 0
    with get_session(engine) as session:
        present = set(session.scalars(
            select(KeyPopSnapshot.user_id).where(
                KeyPopSnapshot.run_id == run_id,
                KeyPopSnapshot.key_pop_number == key_pop_number,
            )
        ))
        for user_id, entry in entries.items():
            if user_id in present:
                continue
            try:
                with session.begin_nested():   # SAVEPOINT
                    session.add(KeyPopSnapshot(
                        run_id=run_id,
                        key_pop_number=key_pop_number,
                        user_id=user_id,
                        class_name=entry.class_name,
                        awarded_completion=False,
                    ))
                    session.flush()
            except IntegrityError:
                # A concurrent snapshot of the same checkpoint got there first.
                continue
            inserted += 1

    logger.info(
        "Snapshot run=%s key_pop=%s: %d raider(s) recorded (%d already present)",
        run_id, key_pop_number, inserted, len(entries) - inserted,
    )
    return inserted


def get_snapshot(engine: Engine, run_id: int, key_pop_number: int) -> list[KeyPopSnapshot]:
    with Session(engine) as session:
        rows = session.scalars(
            select(KeyPopSnapshot)
            .where(
                KeyPopSnapshot.run_id == run_id,
                KeyPopSnapshot.key_pop_number == key_pop_number,
            )
            .order_by(KeyPopSnapshot.user_id)
        ).all()
        for r in rows:
            session.expunge(r)
        return list(rows)


# ---------------------------------------------------------------------------
# Awards
# ---------------------------------------------------------------------------
def _award_raider(
    engine: Engine,
    *,
    guild_id: int,
    user_id: int,
    subject_id: str,
    dungeon_key: str,
    points: float,
    on_awarded: Callable[[Session], None] | None = None,
) -> RaiderAward:
    """Write one raider's credit; storage errors become a FAILED result."""
    try:
        with get_session(engine) as session:
            result = ledger_service.write_event(
                session,
                guild_id,
                user_id,
                ActionType.RUN_COMPLETED,
                subject_id,
                dungeon_key,
                quota_points=points,
                points=points,
            )
            # Flag the snapshot row even when the credit already exists.
            if on_awarded is not None:
                on_awarded(session)
            if result.duplicate:
                return RaiderAward(user_id=user_id, status=AwardStatus.DUPLICATE)
            event_id = result.event.id
    except SQLAlchemyError as exc:
        logger.exception(
            "Failed to award raider %s (subject=%s guild=%s)", user_id, subject_id, guild_id,
        )
        return RaiderAward(user_id=user_id, status=AwardStatus.FAILED, error=str(exc))
    return RaiderAward(user_id=user_id, status=AwardStatus.AWARDED, event_id=event_id)


def _mark_awarded(run_id: int, key_pop_number: int, user_id: int) -> Callable[[Session], None]:
    def mark(session: Session) -> None:
        session.execute(
            update(KeyPopSnapshot)
            .where(
                KeyPopSnapshot.run_id == run_id,
                KeyPopSnapshot.key_pop_number == key_pop_number,
                KeyPopSnapshot.user_id == user_id,
            )
            .values(awarded_completion=True, awarded_at=datetime.now(UTC))
        )
    return mark


def award_key_pop(
    engine: Engine,
    guild_id: int,
    run_id: int,
    key_pop_number: int,
    dungeon_key: str,
) -> AwardSummary:
    """Close checkpoint *key_pop_number*: credit everyone snapshotted there.

    A dungeon worth 0 raider points writes nothing and leaves every
    snapshot row unawarded (``skipped_zero_points``).
    """
    points = points_service.resolve_raider_points(engine, guild_id, dungeon_key)
    summary = AwardSummary(run_id=run_id, key_pop_number=key_pop_number, points=points)
    if points == 0:
        summary.skipped_zero_points = True
        logger.debug(
            "Skipping key pop award run=%s key_pop=%s: %s is worth 0 points",
            run_id, key_pop_number, dungeon_key,
        )
        return summary

    with Session(engine) as session:
        pending = session.scalars(
            select(KeyPopSnapshot.user_id)
            .where(
                KeyPopSnapshot.run_id == run_id,
                KeyPopSnapshot.key_pop_number == key_pop_number,
                KeyPopSnapshot.awarded_completion.is_(False),
            )
            .order_by(KeyPopSnapshot.user_id)
        ).all()

    for user_id in pending:
        summary.results.append(_award_raider(
            engine,
            guild_id=guild_id,
            user_id=user_id,
            subject_id=raider_subject(run_id, user_id, key_pop_number),
            dungeon_key=dungeon_key,
            points=points,
            on_awarded=_mark_awarded(run_id, key_pop_number, user_id),
        ))

    logger.info(
        "Key pop award run=%s key_pop=%s dungeon=%s points=%.2f: %d awarded, %d failed, %d pending before",
        run_id, key_pop_number, dungeon_key, points,
        summary.awarded_count, len(summary.failures), len(pending),
    )
    return summary


def award_on_completion(
    engine: Engine,
    guild_id: int,
    run_id: int,
    dungeon_key: str,
    roster: Iterable[RosterEntry],
) -> AwardSummary:
    """Credit everyone on the final roster of a run that had no key pops."""
    points = points_service.resolve_raider_points(engine, guild_id, dungeon_key)
    summary = AwardSummary(run_id=run_id, key_pop_number=None, points=points)
    if points == 0:
        summary.skipped_zero_points = True
        logger.debug("Skipping completion award run=%s: %s is worth 0 points", run_id, dungeon_key)
        return summary

    user_ids = sorted({entry.user_id for entry in roster})
    for user_id in user_ids:
        summary.results.append(_award_raider(
            engine,
            guild_id=guild_id,
            user_id=user_id,
            subject_id=raider_subject(run_id, user_id),
            dungeon_key=dungeon_key,
            points=points,
        ))

    logger.info(
        "Completion award run=%s dungeon=%s points=%.2f: %d awarded of %d raider(s)",
        run_id, dungeon_key, points, summary.awarded_count, len(user_ids),
    )
    return summary
