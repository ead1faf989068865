"""
raidquota.engine.periods — Quota Period Window
================================================

A role's quota is summed over ``[period_start, period_end)``, computed on
read from two stored instants:

* ``created_at`` — where the current cycle was anchored.
* ``reset_at``   — the configured next reset.

While ``reset_at`` is still ahead, the window is ``[created_at, reset_at)``.
Once it has passed, the window is anchored at ``reset_at`` and ends *now*,
so it keeps growing until an administrator moves ``reset_at`` (and usually
``created_at``) forward.  Nothing advances ``reset_at`` automatically.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol


class PeriodAnchors(Protocol):
    reset_at: datetime
    created_at: datetime


@dataclass(frozen=True, slots=True)
class QuotaPeriod:
    start: datetime
    end: datetime
    open_ended: bool  # True once reset_at has passed


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite hands them back naive)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def period_start(config: PeriodAnchors, now: datetime | None = None) -> datetime:
    now = as_utc(now) if now else datetime.now(UTC)
    reset_at = as_utc(config.reset_at)
    if reset_at > now:
        return as_utc(config.created_at)
    return reset_at


def period_end(config: PeriodAnchors, now: datetime | None = None) -> datetime:
    now = as_utc(now) if now else datetime.now(UTC)
    reset_at = as_utc(config.reset_at)
    if reset_at > now:
        return reset_at
    return now


def current_period(config: PeriodAnchors, now: datetime | None = None) -> QuotaPeriod:
    """Both bounds evaluated against the same *now*."""
    now = as_utc(now) if now else datetime.now(UTC)
    return QuotaPeriod(
        start=period_start(config, now),
        end=period_end(config, now),
        open_ended=as_utc(config.reset_at) <= now,
    )
