"""Centralized configuration for the clinic outreach backend.

Secret resolution order (per variable):
  1. Environment variable / ``.env`` file  (local dev)
  2. AWS SSM Parameter Store SecureString  (when ``AWS_EXECUTION_ENV`` is set)

The SSM paths follow the convention ``/clinic-outreach/<VARIABLE_NAME>``.
"""

from __future__ import annotations

import logging
import os
from datetime import date

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# ── Feature flag: running on AWS? ────────────────────────────────────
_ON_AWS = bool(os.getenv("AWS_EXECUTION_ENV"))

_WEEKDAY_NAMES = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


# ── Secret resolution ────────────────────────────────────────────────

def _get_ssm_parameter(name: str) -> str | None:
    """Fetch a SecureString from SSM Parameter Store.

    Returns ``None`` if the parameter does not exist or boto3 is
    unavailable.  Errors are logged but never raised so that local-dev
    fallback still works.
    """
    try:
        import boto3  # noqa: PLC0415  lazy import to avoid boto3 dep in tests

        ssm = boto3.client("ssm")
        resp = ssm.get_parameter(Name=f"/clinic-outreach/{name}", WithDecryption=True)
        return resp["Parameter"]["Value"]
    except Exception:
        logger.debug("SSM lookup for %s failed (expected locally)", name)
        return None


def _require_env(name: str) -> str:
    """Return a config value from env-var or SSM, or raise a clear error."""
    value = os.getenv(name)
    if value and not value.startswith("your_"):
        return value

    if _ON_AWS:
        ssm_value = _get_ssm_parameter(name)
        if ssm_value:
            return ssm_value

    raise OSError(
        f"Missing required configuration: {name}. "
        f"Set it in .env (local) or SSM Parameter Store /clinic-outreach/{name} (AWS)."
    )


# ── Parsers for the structured settings ─────────────────────────────

def parse_weekdays(raw: str) -> frozenset[int]:
    """Parse ``"sat,sun"`` into Python weekday numbers (Monday=0)."""
    days: set[int] = set()
    for token in raw.split(","):
        token = token.strip().lower()[:3]
        if not token:
            continue
        if token not in _WEEKDAY_NAMES:
            raise ValueError(f"Unknown weekday name: {token!r}")
        days.add(_WEEKDAY_NAMES.index(token))
    return frozenset(days)


def parse_hhmm(raw: str) -> int:
    """Parse ``"08:30"`` into minutes since midnight."""
    hours, _, minutes = raw.strip().partition(":")
    value = int(hours) * 60 + int(minutes or 0)
    if not 0 <= value <= 24 * 60:
        raise ValueError(f"Time of day out of range: {raw!r}")
    return value


def parse_window(raw: str) -> tuple[int, int]:
    """Parse ``"08:00-18:00"`` into a ``(start, end)`` minute pair."""
    start, sep, end = raw.partition("-")
    if not sep:
        raise ValueError(f"Window must look like HH:MM-HH:MM, got {raw!r}")
    return parse_hhmm(start), parse_hhmm(end)


def parse_offsets(raw: str) -> frozenset[int]:
    """Parse ``"7,3,1"`` into a set of signed day offsets."""
    return frozenset(int(token) for token in raw.split(",") if token.strip())


def parse_dates(raw: str) -> frozenset[date]:
    return frozenset(
        date.fromisoformat(token.strip()) for token in raw.split(",") if token.strip()
    )


def parse_mapping(raw: str) -> dict[str, str]:
    """Parse ``"kingston=+1876...,portmore=+1876..."`` into a dict."""
    result: dict[str, str] = {}
    for pair in raw.split(","):
        key, sep, value = pair.partition("=")
        if sep and key.strip():
            result[key.strip().lower()] = value.strip()
    return result


# ── Clinic ──────────────────────────────────────────────────────────
CLINIC_TIMEZONE: str = os.getenv("CLINIC_TIMEZONE", "America/Jamaica")
BRANCH_PHONE_NUMBERS: dict[str, str] = parse_mapping(os.getenv("BRANCH_PHONE_NUMBERS", ""))

# ── Outbound calling policy ─────────────────────────────────────────
CALLING_WINDOW: tuple[int, int] = parse_window(os.getenv("CALLING_WINDOW", "08:00-18:00"))
CALLING_CLOSED_WEEKDAYS: frozenset[int] = parse_weekdays(
    os.getenv("CALLING_CLOSED_WEEKDAYS", "sun")
)
RETRY_CLOSED_WEEKDAYS: frozenset[int] = parse_weekdays(
    os.getenv("RETRY_CLOSED_WEEKDAYS", "sat,sun")
)
CLINIC_HOLIDAYS: frozenset[date] = parse_dates(os.getenv("CLINIC_HOLIDAYS", ""))
MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "2"))
PRE_VISIT_OFFSETS: frozenset[int] = parse_offsets(os.getenv("PRE_VISIT_OFFSETS", "7,3,1"))
POST_VISIT_OFFSETS: frozenset[int] = parse_offsets(os.getenv("POST_VISIT_OFFSETS", "-1"))

# ── Retell (outbound dispatch) ──────────────────────────────────────
RETELL_API_KEY: str = _require_env("RETELL_API_KEY")
RETELL_BASE_URL: str = os.getenv("RETELL_BASE_URL", "https://api.retellai.com")
RETELL_FROM_NUMBER: str = os.getenv("RETELL_FROM_NUMBER", "")
RETELL_AGENT_IDS: dict[str, str] = {
    kind: os.getenv(f"RETELL_AGENT_ID_{kind.upper()}", "")
    for kind in ("birthday", "pre_visit_reminder", "post_visit_followup")
}

# ── Google Sheets (contact records) ─────────────────────────────────
GOOGLE_SHEETS_ACCESS_TOKEN: str = _require_env("GOOGLE_SHEETS_ACCESS_TOKEN")
SHEETS_BASE_URL: str = "https://sheets.googleapis.com/v4"
SHEETS_SPREADSHEET_ID: str = os.getenv("SHEETS_SPREADSHEET_ID", "")
SHEETS_TABS: dict[str, str] = {
    "birthday": os.getenv("SHEETS_TAB_BIRTHDAY", "Birthdays"),
    "pre_visit_reminder": os.getenv("SHEETS_TAB_PRE_VISIT_REMINDER", "Reminders"),
    "post_visit_followup": os.getenv("SHEETS_TAB_POST_VISIT_FOLLOWUP", "Follow-ups"),
}

# ── Trigger surface ─────────────────────────────────────────────────
OUTREACH_TRIGGER_SECRET: str = _require_env("OUTREACH_TRIGGER_SECRET")

# ── Server ──────────────────────────────────────────────────────────
SERVER_HOST: str = os.getenv("SERVER_HOST", "0.0.0.0")
SERVER_PORT: int = int(os.getenv("SERVER_PORT", "8080"))
CORS_ORIGINS: list[str] = os.getenv(
    "CORS_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")
