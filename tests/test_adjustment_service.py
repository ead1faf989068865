"""
tests/test_adjustment_service — Manual corrections & moderation credit
=======================================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from raidquota.constants import ActionType
from raidquota.database.models import AdminLog, CreditKind, QuotaEvent
from raidquota.services import adjustment_service, config_service, ledger_service
from raidquota.services.adjustment_service import member_totals

GUILD = 1000
USER = 501
ADMIN = 99999
ROLE = 10
DUNGEON = "SHATTERS"


def _totals(engine) -> tuple[float, float]:
    with Session(engine) as session:
        return member_totals(session, GUILD, USER)


def _audit_actions(engine) -> list[str]:
    with Session(engine) as session:
        return list(session.scalars(select(AdminLog.action_type).order_by(AdminLog.id)))


class TestMemberTotals:
    def test_raider_credit_only_counts_as_points(self, engine):
        ledger_service.log_event(engine, GUILD, USER, ActionType.RUN_COMPLETED, "run:1", DUNGEON, 2)
        ledger_service.log_event(
            engine, GUILD, USER, ActionType.RUN_COMPLETED, "raider:9:1:501", DUNGEON, 3, points=3,
        )
        assert _totals(engine) == (3.0, 2.0)


class TestLogRuns:
    def test_batch_is_one_row(self, engine):
        config_service.upsert_role_config(engine, GUILD, ROLE, {"base_exalt_points": 2})
        result = adjustment_service.log_runs(
            engine, GUILD, USER, DUNGEON, 5, role_ids=[ROLE], actor_id=ADMIN,
        )
        assert result.logged == 5
        assert result.quota_points == 10.0
        assert result.event.quantity == 5
        assert result.event.subject_id.startswith("manual_log_run:")
        assert result.event.subject_id.endswith(f":{USER}:5")
        assert _audit_actions(engine) == ["CREATE", "LOG_RUNS"]

    def test_removal_clamped_to_zero(self, engine):
        adjustment_service.log_runs(engine, GUILD, USER, DUNGEON, 3)
        result = adjustment_service.log_runs(engine, GUILD, USER, DUNGEON, -10)
        assert result.logged == 3
        assert result.quota_points == -3.0
        assert _totals(engine)[1] == 0.0

    def test_zero_amount_rejected(self, engine):
        with pytest.raises(ValueError):
            adjustment_service.log_runs(engine, GUILD, USER, DUNGEON, 0)


class TestLogKeys:
    def test_adds_keys_and_points(self, engine):
        result = adjustment_service.log_keys(engine, GUILD, USER, DUNGEON, 2, actor_id=ADMIN)
        assert result.new_total == 2
        assert result.logged == 2
        assert result.points_awarded == 10.0
        assert result.event.credit == CreditKind.KEY_POP
        assert result.event.quota_points == 0.0
        assert _totals(engine) == (10.0, 0.0)
        assert _audit_actions(engine) == ["LOG_KEYS"]

    def test_removal_clamped(self, engine):
        config_service.set_key_pop_points(engine, GUILD, DUNGEON, 1)
        adjustment_service.log_keys(engine, GUILD, USER, DUNGEON, 1)
        result = adjustment_service.log_keys(engine, GUILD, USER, DUNGEON, -5)
        assert result.new_total == 0
        assert result.logged == 1
        assert result.points_awarded == -1.0
        assert _totals(engine)[0] == 0.0

    def test_zero_key_points_only_counts(self, engine):
        config_service.set_key_pop_points(engine, GUILD, DUNGEON, 0)
        result = adjustment_service.log_keys(engine, GUILD, USER, DUNGEON, 3)
        assert result.new_total == 3
        assert result.event is None
        assert result.points_awarded == 0.0


class TestAdjustments:
    def test_quota_adjustment(self, engine):
        result = adjustment_service.adjust_quota_points(
            engine, GUILD, USER, 4.5, actor_id=ADMIN, reason="missed run",
        )
        assert result.applied == 4.5
        assert result.new_total == 4.5
        assert result.event.credit == CreditKind.ADJUSTMENT
        assert result.event.quantity == 1
        assert _totals(engine) == (0.0, 4.5)
        with Session(engine) as session:
            log = session.scalars(select(AdminLog)).one()
            assert log.reason == "missed run"
            assert log.action_type == "ADJUST_QUOTA_POINTS"

    def test_points_adjustment(self, engine):
        result = adjustment_service.adjust_points(engine, GUILD, USER, 2)
        assert result.event.points == 2.0
        assert result.event.quota_points == 0.0
        assert _totals(engine) == (2.0, 0.0)

    def test_negative_adjustment_clamped(self, engine):
        adjustment_service.adjust_quota_points(engine, GUILD, USER, 3)
        result = adjustment_service.adjust_quota_points(engine, GUILD, USER, -10)
        assert result.applied == -3.0
        assert result.new_total == 0.0

    def test_nothing_to_remove_writes_nothing(self, engine):
        result = adjustment_service.adjust_points(engine, GUILD, USER, -5)
        assert result.event is None
        assert result.applied == 0.0
        with Session(engine) as session:
            assert session.scalars(select(QuotaEvent)).all() == []


class TestModeration:
    def test_credits_summed_role_values(self, engine):
        config_service.upsert_role_config(engine, GUILD, ROLE, {"warn_points": 0.5})
        config_service.upsert_role_config(engine, GUILD, 20, {"warn_points": 1})
        result = adjustment_service.award_moderation(engine, GUILD, USER, [ROLE, 20], "warn")
        assert result.event.action_type == ActionType.VERIFY_MEMBER
        assert result.event.quota_points == 1.5
        assert result.event.subject_id.startswith("warn:")

    def test_unconfigured_still_writes_a_row(self, engine):
        result = adjustment_service.award_moderation(engine, GUILD, USER, [], "verify")
        assert result.event.quota_points == 0.0
        assert result.event.credit == CreditKind.MODERATION

    def test_unknown_command(self, engine):
        with pytest.raises(ValueError):
            adjustment_service.award_moderation(engine, GUILD, USER, [ROLE], "ban")
