"""
raidquota.services.run_service — Run Lifecycle Awards
=======================================================

Entry points the run-lifecycle collaborator (the bot) calls at the three
transitions that move points:

* ``award_organizer`` — organizer credit, subject ``run:<run_id>``.
* ``pop_key``         — close the latest checkpoint, snapshot the next.
* ``end_run``         — organizer credit plus raider credit for whatever
  is still open: the latest checkpoint when the run had key pops,
  otherwise the final roster.

Every step is idempotent, so the bot may retry any of them after a crash.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import Engine

from raidquota.constants import ActionType
from raidquota.database.engine import get_session
from raidquota.engine.subjects import run_subject
from raidquota.services import ledger_service, points_service, snapshot_service
from raidquota.services.adjustment_service import bump_key_counter
from raidquota.services.ledger_service import LogResult
from raidquota.services.snapshot_service import AwardSummary, RosterEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class KeyPopOutcome:
    key_pop_number: int
    snapshotted: int
    closed: AwardSummary | None  # award of the previous checkpoint, if any


@dataclass(frozen=True, slots=True)
class RunEndOutcome:
    organizer: LogResult
    raiders: AwardSummary


def award_organizer(
    engine: Engine,
    guild_id: int,
    run_id: int,
    organizer_id: int,
    dungeon_key: str,
    role_ids: Iterable[int] | None = None,
) -> LogResult:
    """Credit the organizer of *run_id* once, at their resolved dungeon value."""
    points = points_service.resolve_points_for(engine, guild_id, dungeon_key, role_ids)
    return ledger_service.log_event(
        engine,
        guild_id,
        organizer_id,
        ActionType.RUN_COMPLETED,
        run_subject(run_id),
        dungeon_key,
        quota_points=points,
    )


def pop_key(
    engine: Engine,
    guild_id: int,
    run_id: int,
    dungeon_key: str,
    roster: Iterable[RosterEntry],
    *,
    popper_id: int | None = None,
) -> KeyPopOutcome:
    """Record a key pop: checkpoint N closes and checkpoint N+1 opens."""
    roster = list(roster)
    with get_session(engine) as session:
        # Counted even when the roster is empty and no snapshot rows follow.
        number = snapshot_service.record_key_pop(session, guild_id, run_id)
        if popper_id is not None:
            total, _ = bump_key_counter(session, guild_id, popper_id, dungeon_key, 1)
            logger.debug("Key popper %s now has %d %s key(s)", popper_id, total, dungeon_key)

    closed = None
    if number > 1:
        closed = snapshot_service.award_key_pop(engine, guild_id, run_id, number - 1, dungeon_key)

    snapshotted = snapshot_service.snapshot_key_pop(engine, run_id, number, roster)

    return KeyPopOutcome(key_pop_number=number, snapshotted=snapshotted, closed=closed)


def end_run(
    engine: Engine,
    guild_id: int,
    run_id: int,
    dungeon_key: str,
    organizer_id: int,
    roster: Iterable[RosterEntry],
    *,
    organizer_role_ids: Iterable[int] | None = None,
) -> RunEndOutcome:
    """Finalise a run's credit."""
    organizer = award_organizer(
        engine, guild_id, run_id, organizer_id, dungeon_key, organizer_role_ids,
    )

    latest = snapshot_service.get_latest_key_pop_number(engine, run_id)
    if latest > 0:
        raiders = snapshot_service.award_key_pop(engine, guild_id, run_id, latest, dungeon_key)
    else:
        raiders = snapshot_service.award_on_completion(
            engine, guild_id, run_id, dungeon_key, roster,
        )

    logger.info(
        "Run %s ended in guild %s: organizer %s, %d raider award(s)",
        run_id, guild_id,
        "credited" if organizer.event is not None else "already credited",
        raiders.awarded_count,
    )
    return RunEndOutcome(organizer=organizer, raiders=raiders)
