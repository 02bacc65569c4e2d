"""Tests for dialer status normalization and outcome field writes."""

from __future__ import annotations

from datetime import date, datetime
from zoneinfo import ZoneInfo

import pytest

from clinic_outreach import models
from clinic_outreach.models import Outcome
from clinic_outreach.scheduling.outcomes import dispatch_fields, normalize_status, skip_fields

NOW = datetime(2025, 6, 16, 10, 0, tzinfo=ZoneInfo("America/Jamaica"))


class TestNormalizeStatus:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("voicemail_reached", Outcome.LEFT_VOICEMAIL),
            ("Machine detected", Outcome.LEFT_VOICEMAIL),
            ("dial_no_answer", Outcome.NO_ANSWER),
            ("dial_busy", Outcome.NO_ANSWER),
            ("no-answer", Outcome.NO_ANSWER),
            ("cancelled", Outcome.CANCELLED),
            ("dial_failed", Outcome.DIAL_ERROR),
            ("error_inbound_webhook", Outcome.DIAL_ERROR),
            ("invalid_destination", Outcome.DIAL_ERROR),
            ("user_hangup", Outcome.COMPLETED),
            ("agent_hangup", Outcome.COMPLETED),
            ("ended", Outcome.COMPLETED),
            ("COMPLETED", Outcome.COMPLETED),
        ],
    )
    def test_known_statuses(self, raw, expected):
        assert normalize_status(raw) is expected

    @pytest.mark.parametrize("raw", ["registered", "ongoing", "queued", "", None, "   "])
    def test_pending_or_unknown_is_call_placed(self, raw):
        assert normalize_status(raw) is Outcome.CALL_PLACED

    def test_voicemail_beats_ended(self):
        assert normalize_status("ended_voicemail") is Outcome.LEFT_VOICEMAIL


class TestFieldWrites:
    def test_skip_writes_only_outcome_and_time(self):
        fields = skip_fields(Outcome.SKIPPED_PAUSED, NOW)
        assert fields == {
            models.F_LAST_OUTCOME: Outcome.SKIPPED_PAUSED,
            models.F_LAST_OUTCOME_AT: NOW,
        }

    @pytest.mark.parametrize("deferred", [date(2025, 6, 16), date(2025, 6, 12)])
    def test_skip_clears_a_due_or_stale_deferral(self, deferred):
        fields = skip_fields(Outcome.SKIPPED_OPT_OUT, NOW, deferred_until=deferred)
        assert fields[models.F_DEFERRED_UNTIL] is None

    def test_skip_leaves_a_future_deferral(self):
        fields = skip_fields(Outcome.SKIPPED_PAUSED, NOW, deferred_until=date(2025, 6, 17))
        assert models.F_DEFERRED_UNTIL not in fields

    def test_outside_window_keeps_todays_deferral(self):
        fields = skip_fields(Outcome.SKIPPED_OUTSIDE_WINDOW, NOW, deferred_until=date(2025, 6, 16))
        assert models.F_DEFERRED_UNTIL not in fields

    def test_completed_stamps_period_key(self):
        fields = dispatch_fields(Outcome.COMPLETED, NOW, dial_reference="call_1", period_key="2025")
        assert fields[models.F_LAST_CONTACT_PERIOD_KEY] == "2025"
        assert fields[models.F_DIAL_REFERENCE] == "call_1"

    @pytest.mark.parametrize(
        "outcome", [Outcome.CALL_PLACED, Outcome.NO_ANSWER, Outcome.LEFT_VOICEMAIL, Outcome.DIAL_ERROR]
    )
    def test_other_outcomes_leave_period_key_alone(self, outcome):
        fields = dispatch_fields(outcome, NOW, period_key="2025")
        assert models.F_LAST_CONTACT_PERIOD_KEY not in fields

    def test_no_reference_means_no_reference_write(self):
        assert models.F_DIAL_REFERENCE not in dispatch_fields(Outcome.DIAL_ERROR, NOW)
