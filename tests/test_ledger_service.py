"""
tests/test_ledger_service — Event ledger writes
================================================
Covers the idempotent insert on run_completed subjects, the unconditional
verify_member path, write-time classification and batch quantities.
"""

from __future__ import annotations

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from raidquota.constants import ActionType
from raidquota.database.models import CreditKind, QuotaEvent
from raidquota.engine.subjects import MalformedSubjectError
from raidquota.services import ledger_service

GUILD = 1000
ORGANIZER = 501
RUN = ActionType.RUN_COMPLETED
VERIFY = ActionType.VERIFY_MEMBER


def _count(engine, **filters) -> int:
    with Session(engine) as session:
        stmt = select(func.count()).select_from(QuotaEvent)
        for column, value in filters.items():
            stmt = stmt.where(getattr(QuotaEvent, column) == value)
        return session.scalar(stmt)


class TestLogEvent:
    def test_defaults(self, engine):
        result = ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, "run:1", "FUNGAL_CAVERN")
        assert not result.duplicate
        event = result.event
        assert event.id is not None
        assert event.quota_points == 1.0
        assert event.points == 0.0
        assert event.quantity == 1
        assert event.credit == CreditKind.ORGANIZER
        assert event.created_at is not None

    def test_explicit_quota_points(self, engine):
        result = ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, "run:1", "FUNGAL_CAVERN", 2.5)
        assert result.event.quota_points == 2.5

    def test_verify_member_defaults_to_one(self, engine):
        result = ledger_service.log_event(engine, GUILD, ORGANIZER, VERIFY, "verify:1:501")
        assert result.event.quota_points == 1.0
        assert result.event.credit == CreditKind.MODERATION

    def test_unknown_action_type(self, engine):
        with pytest.raises(ValueError, match="Unknown action type"):
            ledger_service.log_event(engine, GUILD, ORGANIZER, "run_started", "run:1")
        assert _count(engine) == 0


class TestIdempotency:
    def test_same_run_subject_is_a_duplicate(self, engine):
        first = ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, "run:7", "FUNGAL_CAVERN")
        second = ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, "run:7", "FUNGAL_CAVERN")
        assert first.event is not None
        assert second.duplicate is True
        assert second.event is None
        assert _count(engine, subject_id="run:7") == 1

    def test_duplicate_from_another_actor(self, engine):
        ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, "run:7")
        again = ledger_service.log_event(engine, GUILD, 999, RUN, "run:7")
        assert again.duplicate
        assert _count(engine) == 1

    def test_same_subject_in_another_guild_is_fine(self, engine):
        ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, "run:7")
        other = ledger_service.log_event(engine, 2000, ORGANIZER, RUN, "run:7")
        assert not other.duplicate
        assert _count(engine) == 2

    def test_no_subject_always_inserts(self, engine):
        ledger_service.log_event(engine, GUILD, ORGANIZER, RUN)
        ledger_service.log_event(engine, GUILD, ORGANIZER, RUN)
        assert _count(engine) == 2

    def test_verify_member_is_never_deduplicated(self, engine):
        ledger_service.log_event(engine, GUILD, ORGANIZER, VERIFY, "verify:1:501")
        again = ledger_service.log_event(engine, GUILD, ORGANIZER, VERIFY, "verify:1:501")
        assert not again.duplicate
        assert _count(engine, action_type=VERIFY) == 2

    def test_duplicate_keeps_the_surrounding_transaction(self, engine):
        with Session(engine) as session:
            ledger_service.write_event(session, GUILD, ORGANIZER, RUN, "run:1")
            dup = ledger_service.write_event(session, GUILD, ORGANIZER, RUN, "run:1")
            fresh = ledger_service.write_event(session, GUILD, ORGANIZER, RUN, "run:2")
            session.commit()
        assert dup.duplicate
        assert fresh.event is not None
        assert _count(engine) == 2

    def test_insert_if_absent_returns_existing_row(self, engine):
        with Session(engine) as session:
            original = ledger_service.write_event(session, GUILD, ORGANIZER, RUN, "run:3").event
            row, inserted = ledger_service.insert_if_absent(session, QuotaEvent(
                guild_id=GUILD,
                actor_user_id=ORGANIZER,
                action_type=RUN,
                subject_id="run:3",
                points=0,
                quota_points=1,
                quantity=1,
                credit=CreditKind.ORGANIZER,
            ))
            assert inserted is False
            assert row.id == original.id
            session.rollback()


class TestWriteTimeClassification:
    def test_batch_quantity(self, engine):
        result = ledger_service.log_event(
            engine, GUILD, ORGANIZER, RUN, "manual_log_run:1700000000000:501:5", "FUNGAL_CAVERN", 5,
        )
        assert result.event.quantity == 5
        assert result.event.credit == CreditKind.ORGANIZER

    def test_malformed_batch_rejected(self, engine):
        with pytest.raises(MalformedSubjectError):
            ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, "manual_log_run:garbage")
        assert _count(engine) == 0

    def test_raider_credit_columns(self, engine):
        result = ledger_service.log_event(
            engine, GUILD, 42, RUN, "raider:5:1:42", "FUNGAL_CAVERN", 3, points=3,
        )
        assert result.event.credit == CreditKind.RAIDER
        assert result.event.points == 3.0
        assert result.event.quota_points == 3.0


class TestReads:
    def test_is_already_logged(self, engine):
        assert ledger_service.is_already_logged(engine, GUILD, 9) is False
        ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, "run:9")
        assert ledger_service.is_already_logged(engine, GUILD, 9) is True
        assert ledger_service.is_already_logged(engine, 2000, 9) is False

    def test_raider_rows_do_not_mark_run_logged(self, engine):
        ledger_service.log_event(engine, GUILD, 42, RUN, "raider:9:42", points=1)
        assert ledger_service.is_already_logged(engine, GUILD, 9) is False

    def test_list_events_newest_first(self, engine):
        for run_id in (1, 2, 3):
            ledger_service.log_event(engine, GUILD, ORGANIZER, RUN, f"run:{run_id}")
        ledger_service.log_event(engine, GUILD, 777, RUN, "run:4")

        rows = ledger_service.list_events(engine, GUILD, limit=2)
        assert [r.subject_id for r in rows] == ["run:4", "run:3"]

        mine = ledger_service.list_events(engine, GUILD, actor_user_id=ORGANIZER)
        assert {r.subject_id for r in mine} == {"run:1", "run:2", "run:3"}
