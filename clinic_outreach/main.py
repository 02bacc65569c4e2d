"""Operator CLI for the outreach scheduler.

Runs a single pass without going through the HTTP trigger, or checks a
branch's opening hours.  Handy from cron on a box without the API server,
and for checking a sheet after staff edits.

Usage:
    uv run python -m clinic_outreach.main run birthday
    uv run python -m clinic_outreach.main --debug run pre_visit_reminder
    uv run python -m clinic_outreach.main branch-status kingston
"""

from __future__ import annotations

import argparse
import json
import logging
import sys

from dotenv import load_dotenv

from clinic_outreach.branches import BRANCHES, get_branch
from clinic_outreach.clock import Clock
from clinic_outreach.config import SHEETS_TABS
from clinic_outreach.models import CampaignKind
from clinic_outreach.scheduling.scheduler import CampaignConfig, ContactScheduler
from clinic_outreach.services.retell_client import RetellClient
from clinic_outreach.services.sheets_store import SheetsRecordStore

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("clinic_outreach").setLevel(logging.DEBUG if debug else logging.INFO)


def run_campaign(kind: CampaignKind) -> int:
    store = SheetsRecordStore(SHEETS_TABS[kind.value])
    dispatcher = RetellClient()
    try:
        scheduler = ContactScheduler(CampaignConfig.for_kind(kind), store, dispatcher)
        summary = scheduler.run_pass()
    finally:
        store.close()
        dispatcher.close()

    print(json.dumps(summary.as_dict(), indent=2))
    return 0 if summary.ok else 1


def branch_status(key: str) -> int:
    branch = get_branch(key)
    if branch is None:
        print(f"Unknown branch {key!r}. Known: {', '.join(BRANCHES)}", file=sys.stderr)
        return 2
    now = Clock().now()
    if branch.schedule.is_open(now):
        print(f"{branch.name} is open ({branch.phone or 'no number configured'})")
    else:
        opens = branch.schedule.next_open(now) or "not within the next week"
        print(f"{branch.name} is closed; opens {opens}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Clinic outreach scheduler CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Run one scheduler pass for a campaign")
    run.add_argument("campaign", choices=[k.value for k in CampaignKind])

    status = sub.add_parser("branch-status", help="Show whether a branch is open now")
    status.add_argument("branch")

    args = parser.parse_args(argv)

    load_dotenv()
    _configure_logging(debug=args.debug)

    if args.command == "run":
        return run_campaign(CampaignKind(args.campaign))
    return branch_status(args.branch)


if __name__ == "__main__":
    sys.exit(main())
