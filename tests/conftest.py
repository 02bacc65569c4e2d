"""Shared test fixtures for the clinic outreach test suite."""

from __future__ import annotations

import dataclasses
import os
from datetime import datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest

TZ = ZoneInfo("America/Jamaica")


def pytest_configure(config):
    """Set test environment variables BEFORE collection starts.

    This runs before any imports, so config.py won't fail on module load.
    """
    os.environ.setdefault("RETELL_API_KEY", "test-retell-key-123")
    os.environ.setdefault("GOOGLE_SHEETS_ACCESS_TOKEN", "test-sheets-token-456")
    os.environ.setdefault("OUTREACH_TRIGGER_SECRET", "test-trigger-secret")
    os.environ.setdefault("RETELL_FROM_NUMBER", "+18765550100")
    os.environ.setdefault("SHEETS_SPREADSHEET_ID", "test-sheet-id")
    os.environ.setdefault("CLINIC_TIMEZONE", "America/Jamaica")
    os.environ.setdefault(
        "BRANCH_PHONE_NUMBERS", "kingston=+18766488257,portmore=+18767042739,ardenne=+18769082658",
    )
    os.environ["METRICS_ENABLED"] = "false"


def local(text: str) -> datetime:
    """``"2025-06-16 10:00"`` as a clinic-local aware datetime."""
    return datetime.fromisoformat(text).replace(tzinfo=TZ)


class FakeStore:
    """In-memory record store that applies patches like the sheet would."""

    def __init__(self, records=None):
        self.records = {r.record_id: r for r in (records or [])}
        self.batches: list[list] = []
        self.load_error: Exception | None = None
        self.patch_error: Exception | None = None

    def load_all(self):
        if self.load_error:
            raise self.load_error
        return [dataclasses.replace(r) for r in self.records.values()]

    def apply_patches(self, patches):
        if self.patch_error:
            raise self.patch_error
        patches = list(patches)
        self.batches.append(patches)
        for patch in patches:
            setattr(self.records[patch.record_id], patch.field, patch.value)
        return len(patches)

    @property
    def patches(self):
        return [p for batch in self.batches for p in batch]


class FakeDispatcher:
    """Returns queued statuses (or raises queued exceptions) in order."""

    def __init__(self, *results):
        self.results = list(results) or ["registered"]
        self.calls: list[dict] = []

    def dispatch(self, phone, campaign_kind, variables, metadata=None):
        from clinic_outreach.models import DispatchResult

        self.calls.append(
            {"phone": phone, "campaign_kind": campaign_kind, "variables": dict(variables),
             "metadata": dict(metadata or {})}
        )
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return DispatchResult(status=result, reference=f"call_{len(self.calls)}")


@pytest.fixture
def make_record():
    """Factory fixture for contact records with sensible defaults."""
    from clinic_outreach.models import ContactRecord

    counter = iter(range(2, 10_000))

    def _make(**overrides):
        fields = {
            "record_id": str(next(counter)),
            "full_name": "Marcia Campbell",
            "phone": "+18765551234",
            "branch": "kingston",
        }
        fields.update(overrides)
        return ContactRecord(**fields)

    return _make


@pytest.fixture
def fake_store():
    return FakeStore


@pytest.fixture
def fake_dispatcher():
    return FakeDispatcher


@pytest.fixture
def clock_at():
    """Factory fixture for a clock frozen at a clinic-local time."""
    from clinic_outreach.clock import Clock

    def _make(text: str) -> Clock:
        return Clock.fixed(local(text), "America/Jamaica")

    return _make


@pytest.fixture
def mock_http_response():
    """Factory fixture for creating mock httpx responses."""

    def _make(data: dict, status_code: int = 200):
        mock = MagicMock()
        mock.status_code = status_code
        mock.json.return_value = data
        mock.text = str(data)
        return mock

    return _make
