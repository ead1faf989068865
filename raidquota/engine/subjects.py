"""
raidquota.engine.subjects — subject_id Wire Format
====================================================

``quota_event.subject_id`` doubles as the ledger's deduplication key and is
shared with the bot, so its shapes are fixed:

    run:<run_id>                               organizer credit for a run
    manual_log_run:<ts>:<user_id>:<count>      <count> runs logged at once
    raider:<run_id>:<checkpoint>:<user_id>     raider credit per key pop
    raider:<run_id>:<user_id>                  raider credit, whole run
    key_pop:<ts>:<user_id>:<amount>            manually logged key pops
    manual_adjust:<ts>:<user_id>               quota-point adjustment
    manual_points:<ts>:<user_id>               raider-point adjustment
    <command>:<ts>:<user_id>                   moderation action

Everything here is pure; the ledger calls :func:`classify` and
:func:`quantity_for` once at write time so no read path ever has to parse
a subject again.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass

from raidquota.constants import ActionType
from raidquota.database.models import CreditKind

RUN_PREFIX = "run:"
MANUAL_LOG_RUN_PREFIX = "manual_log_run:"
RAIDER_PREFIX = "raider:"
KEY_POP_PREFIX = "key_pop:"
MANUAL_ADJUST_PREFIX = "manual_adjust:"
MANUAL_POINTS_PREFIX = "manual_points:"


class MalformedSubjectError(ValueError):
    """A subject_id claims a structured shape but its payload doesn't parse."""


@dataclass(frozen=True, slots=True)
class RaiderSubject:
    run_id: int
    user_id: int
    checkpoint: int | None = None


_last_ts = 0
_ts_lock = threading.Lock()


def timestamp_ms() -> int:
    """Milliseconds since the epoch, the ``<ts>`` field of manual subjects.

    Strictly increasing within the process, so two corrections for the same
    member in the same millisecond still get distinct subjects.
    """
    global _last_ts
    with _ts_lock:
        _last_ts = max(time.time_ns() // 1_000_000, _last_ts + 1)
        return _last_ts


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------
def run_subject(run_id: int) -> str:
    return f"{RUN_PREFIX}{run_id}"


def raider_subject(run_id: int, user_id: int, checkpoint: int | None = None) -> str:
    if checkpoint is None:
        return f"{RAIDER_PREFIX}{run_id}:{user_id}"
    return f"{RAIDER_PREFIX}{run_id}:{checkpoint}:{user_id}"


def manual_log_run_subject(user_id: int, count: int, ts: int | None = None) -> str:
    if count < 0:
        raise MalformedSubjectError(f"run count must be non-negative, got {count}")
    return f"{MANUAL_LOG_RUN_PREFIX}{ts or timestamp_ms()}:{user_id}:{count}"


def key_pop_subject(user_id: int, amount: int, ts: int | None = None) -> str:
    return f"{KEY_POP_PREFIX}{ts or timestamp_ms()}:{user_id}:{amount}"


def manual_adjust_subject(user_id: int, ts: int | None = None) -> str:
    return f"{MANUAL_ADJUST_PREFIX}{ts or timestamp_ms()}:{user_id}"


def manual_points_subject(user_id: int, ts: int | None = None) -> str:
    return f"{MANUAL_POINTS_PREFIX}{ts or timestamp_ms()}:{user_id}"


def moderation_subject(command: str, user_id: int, ts: int | None = None) -> str:
    return f"{command}:{ts or timestamp_ms()}:{user_id}"


# ---------------------------------------------------------------------------
# Decoders
# ---------------------------------------------------------------------------
def parse_batch_count(subject_id: str) -> int:
    """Return the ``<count>`` of a ``manual_log_run`` subject.

    Raises :class:`MalformedSubjectError` when the subject has the batch
    prefix but not the ``<ts>:<user>:<count>`` payload, or the count is not
    a non-negative integer.
    """
    parts = subject_id.split(":")
    if len(parts) != 4 or parts[0] != MANUAL_LOG_RUN_PREFIX[:-1]:
        raise MalformedSubjectError(f"malformed batch subject: {subject_id!r}")
    try:
        count = int(parts[3])
    except ValueError:
        raise MalformedSubjectError(
            f"batch subject has a non-integer count: {subject_id!r}"
        ) from None
    if count < 0:
        raise MalformedSubjectError(f"batch subject has a negative count: {subject_id!r}")
    return count


def parse_raider_subject(subject_id: str) -> RaiderSubject:
    """Decode ``raider:<run>[:<checkpoint>]:<user>``."""
    if not subject_id.startswith(RAIDER_PREFIX):
        raise MalformedSubjectError(f"not a raider subject: {subject_id!r}")
    parts = subject_id[len(RAIDER_PREFIX):].split(":")
    try:
        if len(parts) == 2:
            return RaiderSubject(run_id=int(parts[0]), user_id=int(parts[1]))
        if len(parts) == 3:
            return RaiderSubject(
                run_id=int(parts[0]), checkpoint=int(parts[1]), user_id=int(parts[2])
            )
    except ValueError:
        pass
    raise MalformedSubjectError(f"malformed raider subject: {subject_id!r}")


def classify(action_type: str, subject_id: str | None) -> CreditKind:
    """Accounting channel for a ledger row."""
    if action_type == ActionType.VERIFY_MEMBER:
        return CreditKind.MODERATION
    if not subject_id:
        return CreditKind.ORGANIZER
    if subject_id.startswith(RAIDER_PREFIX):
        return CreditKind.RAIDER
    if subject_id.startswith(KEY_POP_PREFIX):
        return CreditKind.KEY_POP
    if subject_id.startswith((MANUAL_ADJUST_PREFIX, MANUAL_POINTS_PREFIX)):
        return CreditKind.ADJUSTMENT
    return CreditKind.ORGANIZER


def quantity_for(action_type: str, subject_id: str | None) -> int:
    """Number of runs a row stands for: the batch count, otherwise 1."""
    if (
        action_type == ActionType.RUN_COMPLETED
        and subject_id
        and subject_id.startswith(MANUAL_LOG_RUN_PREFIX)
    ):
        return parse_batch_count(subject_id)
    return 1
