"""Branch table: transfer numbers and opening hours for each clinic branch.

Phone numbers come from ``BRANCH_PHONE_NUMBERS`` (``key=+1876…`` pairs) so
they can change without a deploy; hours are fixed here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from clinic_outreach.config import BRANCH_PHONE_NUMBERS
from clinic_outreach.scheduling.windows import BranchSchedule

WEEKDAY_HOURS = (9 * 60, 17 * 60)
SATURDAY_HOURS = (9 * 60, 13 * 60)

_WEEKDAYS_ONLY = BranchSchedule({day: WEEKDAY_HOURS for day in range(5)})
_WITH_SATURDAY = BranchSchedule({**{day: WEEKDAY_HOURS for day in range(5)}, 5: SATURDAY_HOURS})


@dataclass(frozen=True)
class Branch:
    key: str
    name: str
    schedule: BranchSchedule

    @property
    def phone(self) -> str:
        return BRANCH_PHONE_NUMBERS.get(self.key, "")


BRANCHES: dict[str, Branch] = {
    branch.key: branch
    for branch in (
        Branch("kingston", "Kingston", _WITH_SATURDAY),
        Branch("portmore", "Portmore", _WITH_SATURDAY),
        Branch("portmore_alt", "Portmore (backup line)", _WITH_SATURDAY),
        Branch("ardenne", "Ardenne", _WEEKDAYS_ONLY),
        Branch("sav", "Savanna-la-Mar", _WEEKDAYS_ONLY),
    )
}


def get_branch(key: str) -> Branch | None:
    return BRANCHES.get((key or "").strip().lower())


def is_open(branch_key: str, moment: datetime) -> bool:
    """Whether *branch_key* is taking live transfers at *moment*."""
    branch = get_branch(branch_key)
    return branch is not None and branch.schedule.is_open(moment)


def next_open(branch_key: str, moment: datetime) -> str | None:
    branch = get_branch(branch_key)
    if branch is None:
        return None
    return branch.schedule.next_open(moment)
