"""Civil-time helpers bound to the clinic's timezone.

Every scheduling decision is made in one fixed civil timezone, never in
the server's local time or UTC.  ``Clock`` is injected wherever "now" is
needed so tests can pin the moment.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

from clinic_outreach.config import CLINIC_TIMEZONE


class Clock:
    """Source of "now" in a fixed IANA timezone.

    ``now_fn`` returns any aware datetime (it is converted to the clinic
    zone); naive datetimes are taken to already be clinic-local.
    """

    def __init__(
        self,
        tz_name: str | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ) -> None:
        self.tz = ZoneInfo(tz_name or CLINIC_TIMEZONE)
        self._now_fn = now_fn or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        moment = self._now_fn()
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.tz)
        return moment.astimezone(self.tz)

    @classmethod
    def fixed(cls, moment: datetime, tz_name: str | None = None) -> Clock:
        """A clock frozen at *moment* (handy for tests and replays)."""
        return cls(tz_name, now_fn=lambda: moment)


def day_of_week(moment: date | datetime) -> int:
    """Weekday number, Monday=0 … Sunday=6."""
    return moment.weekday()


def minutes_since_midnight(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def days_between(a: date, b: date) -> int:
    """Signed whole civil days from *a* to *b* (``b - a``)."""
    return (_as_date(b) - _as_date(a)).days


def month_day(value: date) -> str:
    """``"MM-DD"`` for a date, used to match annual anniversaries."""
    return _as_date(value).strftime("%m-%d")


def is_leap_year(year: int) -> bool:
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value
