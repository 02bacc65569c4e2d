"""Time-of-day gates.

Two related but independent gates share the minute-of-day model here:

* ``CallingWindow``: when outbound calls may be placed at all (one daily
  interval plus closed weekdays, same for every branch).
* ``BranchSchedule``: when a physical branch accepts a live inbound
  transfer (per-weekday hours, Sunday always closed).

All moments are clinic-local datetimes (see ``clinic_outreach.clock``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from clinic_outreach import config
from clinic_outreach.clock import day_of_week, minutes_since_midnight

SUNDAY = 6
LOOKAHEAD_DAYS = 7

Interval = tuple[int, int]


def format_minutes(minute: int) -> str:
    return f"{minute // 60:02d}:{minute % 60:02d}"


@dataclass(frozen=True)
class CallingWindow:
    """Daily ``[start, end)`` interval for outbound calls."""

    start_minute: int
    end_minute: int
    closed_weekdays: frozenset[int] = frozenset()

    def allows(self, moment: datetime) -> bool:
        if day_of_week(moment) in self.closed_weekdays:
            return False
        return self.start_minute <= minutes_since_midnight(moment) < self.end_minute

    @classmethod
    def from_config(cls) -> CallingWindow:
        start, end = config.CALLING_WINDOW
        return cls(start, end, config.CALLING_CLOSED_WEEKDAYS)


@dataclass(frozen=True)
class BranchSchedule:
    """Weekly opening hours; weekdays missing from *hours* are closed."""

    hours: Mapping[int, Interval] = field(default_factory=dict)

    def window_for(self, day: date) -> Interval | None:
        weekday = day_of_week(day)
        if weekday == SUNDAY:
            return None
        return self.hours.get(weekday)

    def is_open(self, moment: datetime) -> bool:
        window = self.window_for(moment.date())
        if window is None:
            return False
        opens, closes = window
        return opens <= minutes_since_midnight(moment) < closes

    def next_open(self, moment: datetime) -> str | None:
        """Describe when the branch next takes calls, or ``None`` if it has
        no opening hours within the coming week."""
        minute = minutes_since_midnight(moment)
        today = moment.date()

        window = self.window_for(today)
        if window is not None:
            opens, closes = window
            if opens <= minute < closes:
                return f"now, until {format_minutes(closes)}"
            if minute < opens:
                return f"today at {format_minutes(opens)}"

        for ahead in range(1, LOOKAHEAD_DAYS + 1):
            day = today + timedelta(days=ahead)
            window = self.window_for(day)
            if window is None:
                continue
            when = "tomorrow" if ahead == 1 else day.strftime("%A %d %B")
            return f"{when} at {format_minutes(window[0])}"
        return None
