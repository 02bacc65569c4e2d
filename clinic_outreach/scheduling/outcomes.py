"""Map dialer status strings onto the ``Outcome`` vocabulary and build the
field writes that record an outcome."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from clinic_outreach import models
from clinic_outreach.models import Outcome

# Checked in order; the first group with a token contained in the status wins.
# Retell reports e.g. "voicemail_reached", "dial_no_answer", "dial_busy",
# "dial_failed", "user_hangup", "agent_hangup", "ended".
STATUS_KEYWORDS: tuple[tuple[Outcome, tuple[str, ...]], ...] = (
    (Outcome.LEFT_VOICEMAIL, ("voicemail", "voice_mail", "machine")),
    (Outcome.NO_ANSWER, ("no_answer", "noanswer", "not_answered", "unanswered", "busy")),
    (Outcome.CANCELLED, ("cancel",)),
    (Outcome.DIAL_ERROR, ("error", "fail", "invalid", "rejected")),
    (Outcome.COMPLETED, ("complete", "hangup", "ended", "success", "answered")),
)


def normalize_status(raw: str | None) -> Outcome:
    """Normalize a provider status.  Unknown statuses mean "still pending"."""
    status = "_".join((raw or "").strip().lower().replace("-", " ").split())
    if not status:
        return Outcome.CALL_PLACED
    for outcome, tokens in STATUS_KEYWORDS:
        if any(token in status for token in tokens):
            return outcome
    return Outcome.CALL_PLACED


# Skips that leave a due deferral in place: the retry can still happen
# later today (window) or has not come due yet.
_DEFERRAL_KEEPING_SKIPS = frozenset({Outcome.SKIPPED_OUTSIDE_WINDOW, Outcome.SKIPPED_DEFERRED})


def skip_fields(
    outcome: Outcome,
    moment: datetime,
    *,
    deferred_until: date | None = None,
) -> dict[str, Any]:
    """Fields written for a skip.  A deferral that is due or stale is
    cleared along with the outcome, except for the skips above."""
    fields: dict[str, Any] = {
        models.F_LAST_OUTCOME: outcome,
        models.F_LAST_OUTCOME_AT: moment,
    }
    if (
        deferred_until is not None
        and deferred_until <= moment.date()
        and outcome not in _DEFERRAL_KEEPING_SKIPS
    ):
        fields[models.F_DEFERRED_UNTIL] = None
    return fields


def dispatch_fields(
    outcome: Outcome,
    moment: datetime,
    *,
    dial_reference: str = "",
    period_key: str = "",
) -> dict[str, Any]:
    """Fields written after a dial attempt.

    The period key is only stamped for ``completed``: that is what counts
    as having reached the patient for this birthday / offset.
    """
    fields: dict[str, Any] = {
        models.F_LAST_OUTCOME: outcome,
        models.F_LAST_OUTCOME_AT: moment,
    }
    if dial_reference:
        fields[models.F_DIAL_REFERENCE] = dial_reference
    if outcome is Outcome.COMPLETED and period_key:
        fields[models.F_LAST_CONTACT_PERIOD_KEY] = period_key
    return fields
