"""Domain types shared by the scheduler, the store adapter and the API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time
from enum import StrEnum
from typing import Any


class CampaignKind(StrEnum):
    BIRTHDAY = "birthday"
    PRE_VISIT_REMINDER = "pre_visit_reminder"
    POST_VISIT_FOLLOWUP = "post_visit_followup"


class AdministrativeHold(StrEnum):
    NONE = "none"
    DO_NOT_CONTACT = "do_not_contact"
    INACTIVE = "inactive"


class Outcome(StrEnum):
    """Closed vocabulary written to ``last_outcome``."""

    CALL_PLACED = "call_placed"
    COMPLETED = "completed"
    LEFT_VOICEMAIL = "left_voicemail"
    NO_ANSWER = "no_answer"
    CANCELLED = "cancelled"
    DIAL_ERROR = "dial_error"
    SKIPPED_OPT_OUT = "skipped_opt_out"
    SKIPPED_DO_NOT_CONTACT = "skipped_do_not_contact"
    SKIPPED_INACTIVE = "skipped_inactive"
    SKIPPED_PAUSED = "skipped_paused"
    SKIPPED_DEFERRED = "skipped_deferred"
    SKIPPED_OUTSIDE_WINDOW = "skipped_outside_window"
    SKIPPED_MISSING_PHONE = "skipped_missing_phone"
    SKIPPED_ALREADY_CONTACTED = "skipped_already_contacted"

    @property
    def is_skip(self) -> bool:
        return self.value.startswith("skipped_")


# Outcomes produced by an actual dial attempt (as opposed to a skip).
DISPATCH_OUTCOMES = frozenset(o for o in Outcome if not o.is_skip)

DEFAULT_FAILURE_OUTCOMES = frozenset(
    {Outcome.LEFT_VOICEMAIL, Outcome.NO_ANSWER, Outcome.DIAL_ERROR}
)


# Store field names.  These are the column headers of the contact sheet
# and the keys used in ``FieldPatch``.
F_FULL_NAME = "full_name"
F_PHONE = "phone"
F_EVENT_DATE = "event_date"
F_BRANCH = "branch"
F_CAMPAIGN_KIND = "campaign_kind"
F_OPT_OUT = "opt_out"
F_ADMINISTRATIVE_HOLD = "administrative_hold"
F_PAUSE_UNTIL = "pause_until"
F_DEFERRED_UNTIL = "deferred_until"
F_LAST_CONTACT_PERIOD_KEY = "last_contact_period_key"
F_LAST_OUTCOME = "last_outcome"
F_LAST_OUTCOME_AT = "last_outcome_at"
F_RETRY_COUNT = "retry_count"
F_DIAL_REFERENCE = "dial_reference"
F_NOTES = "notes"


@dataclass
class ContactRecord:
    """One person tracked for outbound contact (one row of the store)."""

    record_id: str
    full_name: str = ""
    phone: str = ""
    event_date: date | None = None
    event_time: time | None = None
    branch: str = ""
    campaign_kind: CampaignKind | None = None
    opt_out: bool = False
    administrative_hold: AdministrativeHold = AdministrativeHold.NONE
    pause_until: date | None = None
    deferred_until: date | None = None
    last_contact_period_key: str = ""
    last_outcome: Outcome | None = None
    last_outcome_at: datetime | None = None
    retry_count: int = 0
    dial_reference: str = ""
    notes: str = ""


@dataclass(frozen=True)
class FieldPatch:
    """A single cell write: set *field* of row *record_id* to *value*.

    ``value`` is a Python value (date, datetime, bool, int, str, enum or
    ``None`` to blank the cell); the store adapter serialises it.
    """

    record_id: str
    field: str
    value: Any


@dataclass(frozen=True)
class DispatchResult:
    """What the dialer reported when the call was requested."""

    status: str
    reference: str = ""


class DispatchError(Exception):
    """Raised when an outbound call could not be requested."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class StoreError(Exception):
    """Raised when the contact store cannot be read or written."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class CallNotRecordedError(Exception):
    """Raised when a call result names a call the record does not show yet.

    The dial may still be on its way to the store; the caller should ask
    the dialer to redeliver the result later.
    """
