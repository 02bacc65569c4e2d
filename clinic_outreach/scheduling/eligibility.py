"""Eligibility checks for a record that is due today.

The checks run in a fixed order and the first failure wins, so an opted-out
patient is always reported as ``skipped_opt_out`` no matter what else is
wrong with the row.
"""

from __future__ import annotations

from datetime import date

from clinic_outreach.models import (
    DISPATCH_OUTCOMES,
    AdministrativeHold,
    ContactRecord,
    Outcome,
)

_HOLD_OUTCOMES = {
    AdministrativeHold.DO_NOT_CONTACT: Outcome.SKIPPED_DO_NOT_CONTACT,
    AdministrativeHold.INACTIVE: Outcome.SKIPPED_INACTIVE,
}


def check_eligibility(
    record: ContactRecord,
    today: date,
    *,
    period_key: str,
    in_calling_window: bool,
) -> Outcome | None:
    """Return the skip outcome for *record*, or ``None`` if it may be dialled."""
    if record.opt_out:
        return Outcome.SKIPPED_OPT_OUT

    hold_outcome = _HOLD_OUTCOMES.get(record.administrative_hold)
    if hold_outcome is not None:
        return hold_outcome

    if record.pause_until is not None and record.pause_until > today:
        return Outcome.SKIPPED_PAUSED

    if record.deferred_until is not None and record.deferred_until > today:
        return Outcome.SKIPPED_DEFERRED

    if not in_calling_window:
        return Outcome.SKIPPED_OUTSIDE_WINDOW

    if not record.phone.strip():
        return Outcome.SKIPPED_MISSING_PHONE

    if period_key and period_key == record.last_contact_period_key:
        return Outcome.SKIPPED_ALREADY_CONTACTED

    return None


def attempted_today(record: ContactRecord, today: date) -> bool:
    """True when a dial attempt for this record was already made today.

    Covers calls still in flight (``call_placed`` until the webhook lands)
    and attempts that exhausted their retries, neither of which sets the
    period key.  A retry scheduled for today was by definition last tried
    on an earlier day.
    """
    if record.last_outcome not in DISPATCH_OUTCOMES or record.last_outcome_at is None:
        return False
    if record.deferred_until == today:
        return False
    return record.last_outcome_at.date() == today
