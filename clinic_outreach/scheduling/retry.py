"""Business-level retry policy for failed contact attempts.

A failed attempt (voicemail, no answer, dial error) re-arms the record for
the next open weekday by setting ``deferred_until`` and bumping
``retry_count``.  After ``max_retries`` re-arms the record is left alone
with a note for staff.  This is separate from the transport retries inside
the HTTP clients.
"""

from __future__ import annotations

import logging
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from clinic_outreach import config, models
from clinic_outreach.clock import day_of_week
from clinic_outreach.models import DEFAULT_FAILURE_OUTCOMES, ContactRecord, Outcome

logger = logging.getLogger(__name__)

# Closed weekdays plus holidays can never block more than a couple of
# weeks; anything longer is a misconfiguration.
_MAX_SCAN_DAYS = 31


def next_open_weekday(
    today: date,
    closed_weekdays: Collection[int],
    holidays: Collection[date] = (),
) -> date:
    """First date strictly after *today* that is neither closed nor a holiday."""
    for ahead in range(1, _MAX_SCAN_DAYS + 1):
        candidate = today + timedelta(days=ahead)
        if day_of_week(candidate) in closed_weekdays or candidate in holidays:
            continue
        return candidate
    raise ValueError("No open weekday within a month; check the closed-weekday set")


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 2
    closed_weekdays: frozenset[int] = frozenset({5, 6})
    holidays: frozenset[date] = frozenset()
    failure_outcomes: frozenset[Outcome] = field(default=DEFAULT_FAILURE_OUTCOMES)

    @classmethod
    def from_config(cls) -> RetryPolicy:
        return cls(
            max_retries=config.MAX_RETRIES,
            closed_weekdays=config.RETRY_CLOSED_WEEKDAYS,
            holidays=config.CLINIC_HOLIDAYS,
        )

    def is_failure(self, outcome: Outcome) -> bool:
        return outcome in self.failure_outcomes

    def fields_after(
        self,
        record: ContactRecord,
        outcome: Outcome,
        today: date,
        *,
        fresh_period: bool,
    ) -> dict[str, Any]:
        """Retry-state writes that follow a dial attempt with *outcome*.

        ``fresh_period`` marks the first attempt for a new birthday or
        offset (as opposed to a deferred retry); the attempt counter starts
        over for it.
        """
        fields: dict[str, Any] = {}
        retry_count = record.retry_count
        if fresh_period and retry_count:
            retry_count = 0
            fields[models.F_RETRY_COUNT] = 0

        if outcome is Outcome.CALL_PLACED:
            # Pending; the webhook decides.  A consumed deferral is done with.
            if record.deferred_until is not None and record.deferred_until <= today:
                fields[models.F_DEFERRED_UNTIL] = None
            return fields

        if not self.is_failure(outcome):
            if record.deferred_until is not None:
                fields[models.F_DEFERRED_UNTIL] = None
            return fields

        if retry_count < self.max_retries:
            retry_on = next_open_weekday(today, self.closed_weekdays, self.holidays)
            fields[models.F_DEFERRED_UNTIL] = retry_on
            fields[models.F_RETRY_COUNT] = retry_count + 1
            logger.info(
                "Record %s: %s, retry %d/%d on %s",
                record.record_id, outcome, retry_count + 1, self.max_retries, retry_on,
            )
            return fields

        fields[models.F_DEFERRED_UNTIL] = None
        note = f"{today.isoformat()}: retries exhausted after {outcome} ({retry_count}/{self.max_retries})"
        fields[models.F_NOTES] = f"{record.notes}\n{note}" if record.notes.strip() else note
        logger.info("Record %s: retries exhausted (%s)", record.record_id, outcome)
        return fields
