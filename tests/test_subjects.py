"""
tests/test_subjects — subject_id encoding, parsing and classification
======================================================================
"""

from __future__ import annotations

import pytest

from raidquota.constants import ActionType
from raidquota.database.models import CreditKind
from raidquota.engine.subjects import (
    MalformedSubjectError,
    RaiderSubject,
    classify,
    key_pop_subject,
    manual_adjust_subject,
    manual_log_run_subject,
    manual_points_subject,
    moderation_subject,
    parse_batch_count,
    parse_raider_subject,
    quantity_for,
    raider_subject,
    run_subject,
    timestamp_ms,
)

RUN = ActionType.RUN_COMPLETED


class TestEncoders:
    def test_run_subject(self):
        assert run_subject(42) == "run:42"

    def test_raider_subject_with_checkpoint(self):
        assert raider_subject(5, 100, 1) == "raider:5:1:100"

    def test_raider_subject_whole_run(self):
        assert raider_subject(5, 100) == "raider:5:100"

    def test_manual_subjects_embed_timestamp(self):
        assert manual_log_run_subject(7, 5, ts=1700000000000) == "manual_log_run:1700000000000:7:5"
        assert key_pop_subject(7, 2, ts=123) == "key_pop:123:7:2"
        assert manual_adjust_subject(7, ts=123) == "manual_adjust:123:7"
        assert manual_points_subject(7, ts=123) == "manual_points:123:7"
        assert moderation_subject("verify", 7, ts=123) == "verify:123:7"

    def test_generated_timestamp_is_milliseconds(self):
        ts = int(manual_adjust_subject(7).split(":")[1])
        assert ts > 10**12

    def test_timestamps_strictly_increase(self):
        stamps = [timestamp_ms() for _ in range(50)]
        assert stamps == sorted(set(stamps))

    def test_negative_batch_count_rejected(self):
        with pytest.raises(MalformedSubjectError):
            manual_log_run_subject(7, -1)


class TestBatchCount:
    def test_parses_count(self):
        assert parse_batch_count("manual_log_run:1700000000000:7:5") == 5

    def test_zero_count(self):
        assert parse_batch_count("manual_log_run:1:7:0") == 0

    @pytest.mark.parametrize("subject", [
        "manual_log_run:1700000000000:7",
        "manual_log_run:1:7:five",
        "manual_log_run:1:7:-3",
        "manual_log_run:1:7:5:extra",
    ])
    def test_malformed_raises(self, subject):
        with pytest.raises(MalformedSubjectError):
            parse_batch_count(subject)

    def test_malformed_subject_is_a_value_error(self):
        with pytest.raises(ValueError):
            parse_batch_count("manual_log_run:oops")


class TestRaiderSubject:
    def test_checkpoint_form(self):
        assert parse_raider_subject("raider:5:2:100") == RaiderSubject(run_id=5, user_id=100, checkpoint=2)

    def test_whole_run_form(self):
        assert parse_raider_subject("raider:5:100") == RaiderSubject(run_id=5, user_id=100)

    @pytest.mark.parametrize("subject", ["run:5", "raider:5", "raider:a:b", "raider:1:2:3:4"])
    def test_rejects_other_shapes(self, subject):
        with pytest.raises(MalformedSubjectError):
            parse_raider_subject(subject)


class TestClassify:
    @pytest.mark.parametrize("subject, expected", [
        ("run:1", CreditKind.ORGANIZER),
        ("manual_log_run:1:7:5", CreditKind.ORGANIZER),
        (None, CreditKind.ORGANIZER),
        ("raider:5:1:100", CreditKind.RAIDER),
        ("raider:5:100", CreditKind.RAIDER),
        ("key_pop:1:7:2", CreditKind.KEY_POP),
        ("manual_adjust:1:7", CreditKind.ADJUSTMENT),
        ("manual_points:1:7", CreditKind.ADJUSTMENT),
    ])
    def test_run_completed_channels(self, subject, expected):
        assert classify(RUN, subject) == expected

    def test_verify_member_is_moderation(self):
        assert classify(ActionType.VERIFY_MEMBER, "verify:1:7") == CreditKind.MODERATION
        assert classify(ActionType.VERIFY_MEMBER, None) == CreditKind.MODERATION


class TestQuantity:
    def test_batch_counts_its_runs(self):
        assert quantity_for(RUN, "manual_log_run:1:7:5") == 5

    def test_everything_else_counts_once(self):
        assert quantity_for(RUN, "run:1") == 1
        assert quantity_for(RUN, None) == 1
        assert quantity_for(RUN, "raider:5:1:100") == 1
        assert quantity_for(ActionType.VERIFY_MEMBER, "manual_log_run:1:7:5") == 1

    def test_malformed_batch_raises(self):
        with pytest.raises(MalformedSubjectError):
            quantity_for(RUN, "manual_log_run:bad")
