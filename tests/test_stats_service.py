"""
tests/test_stats_service — Leaderboards, role panels and member stats
======================================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from raidquota.constants import ActionType, LeaderboardCategory
from raidquota.database.models import KeyPop, QuotaEvent
from raidquota.engine.subjects import classify, quantity_for
from raidquota.services import config_service, stats_service
from raidquota.services.stats_service import KEYS_POPPED_DATE_WARNING, LeaderboardEntry

GUILD = 1000
NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)
A, B, C, Z = 101, 102, 103, 199
DUNGEON = "SHATTERS"
RUN = ActionType.RUN_COMPLETED


def _event(
    engine,
    user: int,
    subject: str | None,
    *,
    quota: float = 1.0,
    points: float = 0.0,
    dungeon: str | None = DUNGEON,
    at: datetime = NOW,
    action: str = RUN,
    guild: int = GUILD,
) -> None:
    with Session(engine) as session:
        session.add(QuotaEvent(
            guild_id=guild,
            actor_user_id=user,
            action_type=action,
            subject_id=subject,
            dungeon_key=dungeon,
            points=points,
            quota_points=quota,
            quantity=quantity_for(action, subject),
            credit=classify(action, subject),
            created_at=at,
        ))
        session.commit()


def _raider(engine, user: int, run_id: int, checkpoint: int | None = None, **kw) -> None:
    points = kw.pop("points", 1.0)
    subject = f"raider:{run_id}:{user}" if checkpoint is None else f"raider:{run_id}:{checkpoint}:{user}"
    _event(engine, user, subject, quota=points, points=points, **kw)


def _keys(engine, user: int, dungeon: str, count: int) -> None:
    with Session(engine) as session:
        session.add(KeyPop(guild_id=GUILD, user_id=user, dungeon_key=dungeon, key_type="key", count=count))
        session.commit()


def _pairs(result) -> list[tuple[int, float]]:
    return [(e.user_id, e.value) for e in result.entries]


class TestLeaderboardCategories:
    def test_runs_organized_counts_batches(self, engine):
        _event(engine, A, "run:1")
        _event(engine, A, "run:2")
        _event(engine, B, f"manual_log_run:1700000000000:{B}:5", quota=5)
        _raider(engine, C, 1)

        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.RUNS_ORGANIZED)
        assert _pairs(result) == [(B, 5), (A, 2)]

    def test_removed_runs_do_not_count(self, engine):
        _event(engine, A, "run:1")
        _event(engine, A, f"manual_log_run:1700000000000:{A}:1", quota=-1)
        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.RUNS_ORGANIZED)
        assert _pairs(result) == [(A, 1)]

    def test_dungeon_completions(self, engine):
        _raider(engine, A, 1, 1)
        _raider(engine, A, 1, 2)
        _raider(engine, B, 2)
        _raider(engine, C, 3, points=0)
        _event(engine, C, "run:3")

        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.DUNGEON_COMPLETIONS)
        assert _pairs(result) == [(A, 2), (B, 1)]

    def test_points(self, engine):
        _raider(engine, A, 1, points=3)
        _event(engine, B, "key_pop:1:102:1", quota=0, points=5)
        _event(engine, C, "run:1", quota=4)

        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.POINTS)
        assert _pairs(result) == [(B, 5.0), (A, 3.0)]

    def test_quota_points_excludes_raider_credit(self, engine):
        _event(engine, A, "run:1", quota=2)
        _raider(engine, B, 1, points=3)
        _event(engine, C, "verify:1:103", action=ActionType.VERIFY_MEMBER, dungeon=None, quota=0.5)

        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.QUOTA_POINTS)
        assert _pairs(result) == [(A, 2.0), (C, 0.5)]

    def test_zero_totals_are_excluded(self, engine):
        _event(engine, A, "verify:1:101", action=ActionType.VERIFY_MEMBER, dungeon=None, quota=0)
        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.QUOTA_POINTS)
        assert result.entries == []

    def test_keys_popped(self, engine):
        _keys(engine, A, DUNGEON, 2)
        _keys(engine, A, "NEST", 1)
        _keys(engine, B, DUNGEON, 4)
        _keys(engine, C, DUNGEON, 0)

        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.KEYS_POPPED)
        assert _pairs(result) == [(B, 4), (A, 3)]
        assert result.warnings == []

        nest = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.KEYS_POPPED, "NEST")
        assert _pairs(nest) == [(A, 1)]

    def test_keys_popped_ignores_dates_with_warning(self, engine):
        _keys(engine, A, DUNGEON, 2)
        result = stats_service.leaderboard(
            engine, GUILD, LeaderboardCategory.KEYS_POPPED,
            since=NOW + timedelta(days=100),
        )
        assert _pairs(result) == [(A, 2)]
        assert result.warnings == [KEYS_POPPED_DATE_WARNING]

    def test_unknown_category(self, engine):
        with pytest.raises(ValueError, match="Unknown leaderboard category"):
            stats_service.leaderboard(engine, GUILD, "kills")


class TestLeaderboardFilters:
    def test_ties_break_on_user_id(self, engine):
        _event(engine, C, "run:1")
        _event(engine, A, "run:2")
        _event(engine, B, "run:3")
        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.RUNS_ORGANIZED)
        assert [e.user_id for e in result.entries] == [A, B, C]

    def test_stable_across_calls(self, engine):
        for i, user in enumerate((C, A, B, A)):
            _event(engine, user, f"run:{i}")
        first = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.QUOTA_POINTS)
        second = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.QUOTA_POINTS)
        assert first.entries == second.entries
        assert first.entries[0] == LeaderboardEntry(user_id=A, value=2.0)

    def test_dungeon_filter_and_all(self, engine):
        _event(engine, A, "run:1", dungeon="NEST")
        _event(engine, B, "run:2", dungeon=DUNGEON)

        nest = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.RUNS_ORGANIZED, "NEST")
        assert _pairs(nest) == [(A, 1)]
        every = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.RUNS_ORGANIZED, "all")
        assert {e.user_id for e in every.entries} == {A, B}

    def test_date_bounds_are_inclusive(self, engine):
        _event(engine, A, "run:1", at=NOW - timedelta(days=2))
        _event(engine, B, "run:2", at=NOW)
        _event(engine, C, "run:3", at=NOW + timedelta(days=2))

        result = stats_service.leaderboard(
            engine, GUILD, LeaderboardCategory.RUNS_ORGANIZED, since=NOW, until=NOW,
        )
        assert _pairs(result) == [(B, 1)]

    def test_other_guilds_ignored(self, engine):
        _event(engine, A, "run:1", guild=2000)
        assert stats_service.leaderboard(engine, GUILD, LeaderboardCategory.RUNS_ORGANIZED).entries == []

    def test_limit(self, engine):
        for i, user in enumerate((A, B, C)):
            _event(engine, user, f"run:{i}")
        result = stats_service.leaderboard(engine, GUILD, LeaderboardCategory.RUNS_ORGANIZED, limit=2)
        assert len(result.entries) == 2


class TestRoleLeaderboard:
    START = NOW - timedelta(days=7)

    def test_includes_inactive_members(self, engine):
        _event(engine, A, "run:1", quota=2, at=NOW - timedelta(days=1))
        _raider(engine, A, 1, points=3, at=NOW - timedelta(days=1))
        _event(engine, B, "run:2", at=self.START - timedelta(seconds=1))
        _event(engine, B, "run:3", at=NOW)
        _event(engine, C, "run:4", at=NOW - timedelta(days=1))

        rows = stats_service.leaderboard_for_role(engine, GUILD, [A, B, Z], self.START, NOW)

        assert [(r.user_id, r.points, r.runs) for r in rows] == [
            (A, 2.0, 1),
            (B, 0.0, 0),
            (Z, 0.0, 0),
        ]

    def test_start_is_inclusive(self, engine):
        _event(engine, A, "run:1", at=self.START)
        rows = stats_service.leaderboard_for_role(engine, GUILD, [A], self.START, NOW)
        assert rows[0].runs == 1

    def test_ranked_by_points_then_runs(self, engine):
        at = NOW - timedelta(days=1)
        _event(engine, A, f"manual_log_run:1:{A}:2", quota=2, at=at)
        _event(engine, B, "run:1", quota=2, at=at)
        _event(engine, C, "run:2", quota=3, at=at)
        rows = stats_service.leaderboard_for_role(engine, GUILD, [A, B, C], self.START, NOW)
        assert [r.user_id for r in rows] == [C, A, B]

    def test_no_members(self, engine):
        assert stats_service.leaderboard_for_role(engine, GUILD, [], self.START, NOW) == []


class TestRoleQuotaSummary:
    def test_current_period_standings(self, engine):
        config_service.upsert_role_config(
            engine, GUILD, 10,
            {"required_points": 2, "created_at": NOW - timedelta(days=3), "reset_at": NOW + timedelta(days=4)},
        )
        _event(engine, A, "run:1", quota=2, at=NOW - timedelta(days=1))
        _event(engine, B, "run:2", quota=5, at=NOW - timedelta(days=5))

        summary = stats_service.role_quota_summary(engine, GUILD, 10, [A, B], now=NOW)

        assert summary.required_points == 2.0
        assert summary.period.open_ended is False
        assert [(m.user_id, m.points, m.met_quota) for m in summary.members] == [
            (A, 2.0, True),
            (B, 0.0, False),
        ]

    def test_untracked_role(self, engine):
        assert stats_service.role_quota_summary(engine, GUILD, 10, [A], now=NOW) is None


class TestUserStats:
    def test_merges_ledger_and_key_counters(self, engine):
        _event(engine, A, "run:1", quota=2)
        _raider(engine, A, 2, points=1)
        _raider(engine, A, 3, points=1, dungeon="NEST")
        _raider(engine, A, 4, points=0, dungeon="MAD_LAB")
        _event(engine, A, "verify:1:101", action=ActionType.VERIFY_MEMBER, dungeon=None)
        _keys(engine, A, DUNGEON, 2)
        _keys(engine, A, "ICE_CAVE", 1)

        stats = stats_service.user_stats(engine, GUILD, A)

        assert stats.total_points == 2.0
        assert stats.total_quota_points == 3.0
        assert stats.runs_organized == 1
        assert stats.verifications == 1
        assert stats.keys_popped == 3
        assert [(d.dungeon_key, d.completed, d.organized, d.keys_popped) for d in stats.dungeons] == [
            (DUNGEON, 1, 1, 2),
            ("ICE_CAVE", 0, 0, 1),
            ("NEST", 1, 0, 0),
        ]

    def test_unknown_member(self, engine):
        stats = stats_service.user_stats(engine, GUILD, Z)
        assert stats.total_points == 0.0
        assert stats.dungeons == []
