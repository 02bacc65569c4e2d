"""Tests for the operator CLI."""

from __future__ import annotations

import json
from datetime import datetime
from unittest.mock import MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

from clinic_outreach import main as cli
from clinic_outreach.clock import Clock
from clinic_outreach.models import CampaignKind
from clinic_outreach.scheduling.scheduler import PassSummary

TZ = ZoneInfo("America/Jamaica")


@pytest.fixture(autouse=True)
def quiet_logging():
    with patch.object(cli, "_configure_logging"):
        yield


class TestRunCommand:
    def _patch_pass(self, summary):
        scheduler = MagicMock()
        scheduler.run_pass.return_value = summary
        return (
            patch.object(cli, "SheetsRecordStore"),
            patch.object(cli, "RetellClient"),
            patch.object(cli, "ContactScheduler", return_value=scheduler),
        )

    def test_prints_summary(self, capsys):
        summary = PassSummary(campaign="birthday", started_at=datetime(2025, 6, 16, 10, tzinfo=TZ))
        store_p, retell_p, sched_p = self._patch_pass(summary)
        with store_p as mock_store, retell_p as mock_retell, sched_p:
            assert cli.main(["run", "birthday"]) == 0
        mock_store.assert_called_once_with("Birthdays")
        mock_store.return_value.close.assert_called_once()
        mock_retell.return_value.close.assert_called_once()
        assert json.loads(capsys.readouterr().out)["campaign"] == "birthday"

    def test_failed_pass_exit_code(self, capsys):
        summary = PassSummary(
            campaign="post_visit_followup",
            started_at=datetime(2025, 6, 16, 10, tzinfo=TZ),
            error="load failed: boom",
        )
        store_p, retell_p, sched_p = self._patch_pass(summary)
        with store_p, retell_p, sched_p:
            assert cli.main(["--debug", "run", CampaignKind.POST_VISIT_FOLLOWUP.value]) == 1

    def test_unknown_campaign_is_rejected(self):
        with pytest.raises(SystemExit):
            cli.main(["run", "anniversary"])


class TestBranchStatus:
    def test_open_branch(self, capsys):
        clock = Clock.fixed(datetime(2025, 6, 16, 10, 0), "America/Jamaica")
        with patch.object(cli, "Clock", return_value=clock):
            assert cli.main(["branch-status", "kingston"]) == 0
        assert capsys.readouterr().out.strip() == "Kingston is open (+18766488257)"

    def test_closed_branch(self, capsys):
        clock = Clock.fixed(datetime(2025, 6, 15, 10, 0), "America/Jamaica")
        with patch.object(cli, "Clock", return_value=clock):
            cli.main(["branch-status", "ardenne"])
        assert capsys.readouterr().out.strip() == "Ardenne is closed; opens tomorrow at 09:00"

    def test_unknown_branch(self, capsys):
        assert cli.main(["branch-status", "mobay"]) == 2
        assert "Unknown branch" in capsys.readouterr().err
