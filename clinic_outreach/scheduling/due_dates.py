"""Due-date policies: is a record's event "today" for its campaign?

* ``AnnualPolicy``: birthdays.  Due on the month/day anniversary of
  ``event_date``; the period key is the anniversary's year.
* ``OffsetPolicy``: appointment reminders and follow-ups.  Due when the
  signed day count from today to the appointment is one of the configured
  offsets (7 = a week before, -1 = the day after); the period key is the
  matched offset.

Either policy also treats a record whose ``deferred_until`` is today as
due: that is a scheduled retry of an earlier failed attempt.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Protocol

from clinic_outreach.clock import days_between, is_leap_year, month_day
from clinic_outreach.models import ContactRecord


@dataclass(frozen=True)
class DueCheck:
    due: bool
    period_key: str = ""
    via_deferral: bool = False
    # True on an event day (anniversary or configured offset); a retry that
    # lands on one starts that period with a fresh attempt count.
    fresh_period: bool = False


NOT_DUE = DueCheck(due=False)


class DuePolicy(Protocol):
    def resolve(self, record: ContactRecord, today: date) -> DueCheck: ...


def _deferral_due(record: ContactRecord, today: date) -> bool:
    return record.deferred_until is not None and record.deferred_until == today


class AnnualPolicy:
    """Yearly recurrence on the month/day of ``event_date``.

    A 29 February date is celebrated on 28 February in common years.
    """

    def anniversary(self, event: date, year: int) -> date:
        if event.month == 2 and event.day == 29 and not is_leap_year(year):
            return date(year, 2, 28)
        return event.replace(year=year)

    def period_key(self, event: date | None, today: date) -> str:
        """Year of the most recent anniversary on or before *today*.

        A retry deferred past New Year still belongs to last year's
        birthday, so it must not suppress this year's call.
        """
        if event is None:
            return str(today.year)
        if self.anniversary(event, today.year) <= today:
            return str(today.year)
        return str(today.year - 1)

    def resolve(self, record: ContactRecord, today: date) -> DueCheck:
        event = record.event_date
        matches = event is not None and month_day(self.anniversary(event, today.year)) == month_day(today)
        deferred = _deferral_due(record, today)
        if not (matches or deferred):
            return NOT_DUE
        return DueCheck(
            due=True,
            period_key=self.period_key(event, today),
            via_deferral=deferred,
            fresh_period=matches,
        )


class OffsetPolicy:
    """Countdown / count-up offsets relative to ``event_date``.

    ``days_between(today, event_date)`` is positive before the appointment
    and negative after it.
    """

    def __init__(self, offsets: frozenset[int] | set[int]):
        if not offsets:
            raise ValueError("OffsetPolicy needs at least one offset")
        self.offsets = frozenset(offsets)

    def _retry_offset(self, delta: int) -> int | None:
        """The offset a retry on a day *delta* from the event belongs to:
        the closest configured offset that has already gone by."""
        passed = [o for o in self.offsets if o > delta]
        return min(passed) if passed else None

    def resolve(self, record: ContactRecord, today: date) -> DueCheck:
        deferred = _deferral_due(record, today)
        if record.event_date is None:
            return DueCheck(due=True, via_deferral=True) if deferred else NOT_DUE

        delta = days_between(today, record.event_date)
        if delta in self.offsets:
            return DueCheck(
                due=True, period_key=str(delta), via_deferral=deferred, fresh_period=True,
            )
        if not deferred:
            return NOT_DUE

        offset = self._retry_offset(delta)
        return DueCheck(
            due=True,
            period_key="" if offset is None else str(offset),
            via_deferral=True,
        )
