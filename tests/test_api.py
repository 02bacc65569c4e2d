"""Tests for the FastAPI endpoints."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from clinic_outreach.clock import Clock
from clinic_outreach.models import CallNotRecordedError, CampaignKind, Outcome, StoreError
from clinic_outreach.scheduling.scheduler import PassSummary
from clinic_outreach.server import app

TZ = ZoneInfo("America/Jamaica")
SECRET = {"X-Outreach-Secret": "test-trigger-secret"}


def _summary(**overrides) -> PassSummary:
    fields = {
        "campaign": "birthday",
        "started_at": datetime(2025, 6, 16, 10, 0, tzinfo=TZ),
        "total": 4,
        "due": 2,
        "dispatched": 1,
        "skipped": 1,
        "writes": 5,
        "outcomes": Counter({"call_placed": 1, "skipped_opt_out": 1}),
    }
    fields.update(overrides)
    return PassSummary(**fields)


@pytest.fixture
def birthday_scheduler():
    """A mock scheduler attached to app state (mirrors the lifespan)."""
    scheduler = MagicMock()
    scheduler.run_pass.return_value = _summary()
    scheduler.apply_call_result.return_value = Outcome.COMPLETED

    app.state.schedulers = {CampaignKind.BIRTHDAY: scheduler}
    app.state.clock = Clock.fixed(datetime(2025, 6, 16, 10, 0), "America/Jamaica")
    yield scheduler
    app.state.schedulers = None
    app.state.clock = None


@pytest.fixture
def client(birthday_scheduler):
    return TestClient(app)


class TestHealthEndpoint:
    def test_health_returns_ok(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "service": "clinic-outreach"}

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/api/health"


class TestRunCampaign:
    def test_runs_a_pass(self, client, birthday_scheduler):
        response = client.post("/api/campaigns/birthday/run", headers=SECRET)
        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["dispatched"] == 1
        assert data["outcomes"] == {"call_placed": 1, "skipped_opt_out": 1}
        assert data["started_at"] == "2025-06-16T10:00:00-05:00"
        birthday_scheduler.run_pass.assert_called_once()

    def test_secret_as_query_parameter(self, client):
        response = client.post("/api/campaigns/birthday/run", params={"token": "test-trigger-secret"})
        assert response.status_code == 200

    def test_wrong_secret(self, client, birthday_scheduler):
        response = client.post("/api/campaigns/birthday/run", headers={"X-Outreach-Secret": "nope"})
        assert response.status_code == 401
        birthday_scheduler.run_pass.assert_not_called()

    def test_missing_secret(self, client):
        assert client.post("/api/campaigns/birthday/run").status_code == 401

    def test_unknown_campaign(self, client):
        assert client.post("/api/campaigns/anniversary/run", headers=SECRET).status_code == 404

    def test_unconfigured_campaign(self, client):
        response = client.post("/api/campaigns/post_visit_followup/run", headers=SECRET)
        assert response.status_code == 404

    def test_failed_pass_returns_502_with_summary(self, client, birthday_scheduler):
        birthday_scheduler.run_pass.return_value = _summary(
            error="load failed: Sheets API returned 403", writes=0,
        )
        response = client.post("/api/campaigns/birthday/run", headers=SECRET)
        assert response.status_code == 502
        assert response.json()["error"] == "load failed: Sheets API returned 403"
        assert response.json()["ok"] is False

    def test_not_ready(self, client):
        app.state.schedulers = None
        assert client.post("/api/campaigns/birthday/run", headers=SECRET).status_code == 503


def _call_ended(**call):
    body = {
        "call_id": "call_8f2e",
        "call_status": "ended",
        "disconnection_reason": "user_hangup",
        "metadata": {"record_id": "2", "campaign_kind": "birthday", "period_key": "2025"},
    }
    body.update(call)
    return {"event": "call_ended", "call": body}


class TestRetellWebhook:
    def test_records_call_result(self, client, birthday_scheduler):
        response = client.post("/api/webhooks/retell", params={"token": "test-trigger-secret"}, json=_call_ended())
        assert response.status_code == 200
        assert response.json() == {"ok": True, "outcome": "completed", "note": None}
        birthday_scheduler.apply_call_result.assert_called_once_with(
            "2", "user_hangup", dial_reference="call_8f2e", period_key="2025",
        )

    def test_falls_back_to_call_status(self, client, birthday_scheduler):
        client.post("/api/webhooks/retell", headers=SECRET, json=_call_ended(disconnection_reason=None))
        assert birthday_scheduler.apply_call_result.call_args[0][1] == "ended"

    def test_other_events_are_ignored(self, client, birthday_scheduler):
        body = _call_ended()
        body["event"] = "call_started"
        response = client.post("/api/webhooks/retell", headers=SECRET, json=body)
        assert response.json()["note"] == "event call_started ignored"
        birthday_scheduler.apply_call_result.assert_not_called()

    def test_call_without_metadata(self, client):
        response = client.post("/api/webhooks/retell", headers=SECRET, json=_call_ended(metadata={}))
        assert response.json()["note"] == "not an outreach call"

    def test_duplicate_delivery(self, client, birthday_scheduler):
        birthday_scheduler.apply_call_result.return_value = None
        response = client.post("/api/webhooks/retell", headers=SECRET, json=_call_ended())
        assert response.json()["note"] == "ignored"

    def test_store_outage_asks_for_redelivery(self, client, birthday_scheduler):
        birthday_scheduler.apply_call_result.side_effect = StoreError("Sheets API returned 503", 503)
        response = client.post("/api/webhooks/retell", headers=SECRET, json=_call_ended())
        assert response.status_code == 503

    def test_call_not_yet_recorded_asks_for_redelivery(self, client, birthday_scheduler):
        birthday_scheduler.apply_call_result.side_effect = CallNotRecordedError(
            "Record 2 does not show call call_abc"
        )
        response = client.post("/api/webhooks/retell", headers=SECRET, json=_call_ended())
        assert response.status_code == 409

    def test_requires_secret(self, client):
        assert client.post("/api/webhooks/retell", json=_call_ended()).status_code == 401

    def test_validates_body(self, client):
        assert client.post("/api/webhooks/retell", headers=SECRET, json={"call": {}}).status_code == 422


class TestBranchHandoff:
    def test_open_branch_transfers(self, client):
        response = client.post(
            "/api/retell/action",
            json={"action_type": "handoff_branch", "payload": {"branch": "Kingston"}},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["action"] == "transfer"
        assert data["phone_number"] == "+18766488257"

    def test_closed_branch_says_when_it_opens(self, client):
        app.state.clock = Clock.fixed(datetime(2025, 6, 16, 19, 0), "America/Jamaica")
        response = client.post("/api/retell/action", json={"action": "handoff_branch", "branch": "ardenne"})
        data = response.json()
        assert data["action"] == "message"
        assert data["next_open"] == "tomorrow at 09:00"
        assert data["message"] == "The Ardenne branch is closed right now. It opens tomorrow at 09:00."

    def test_branch_without_number(self, client):
        response = client.post("/api/retell/action", json={"action_type": "handoff_branch", "branch": "sav"})
        assert response.status_code == 400

    def test_other_actions(self, client):
        response = client.post("/api/retell/action", json={"action_type": "lookup_hours"})
        assert response.json()["message"] == "no action taken"
        assert response.json()["action"] is None


class TestRequestId:
    def test_generated_when_absent(self, client):
        response = client.get("/api/health")
        assert response.headers["X-Request-ID"]

    def test_echoes_caller_request_id(self, client):
        response = client.get("/api/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
