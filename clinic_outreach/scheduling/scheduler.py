"""The outbound contact scheduler.

One ``ContactScheduler`` is built per campaign.  ``run_pass`` walks every
record of the campaign's store once:

    due-date policy → eligibility (incl. calling window) → dispatch
        → outcome normalization → retry policy

and produces at most one set of field writes per record.  A dialled
record is written as soon as the dial returns, so the call webhook (which
can arrive while the pass is still running) always finds the call.  Skip
outcomes are flushed in one batch at the end of the pass, including when
the pass is cut short by an unexpected error.

Passes for the same campaign must not overlap: nothing here locks a
record against a concurrent pass, so the trigger (cron, scheduler, load
balancer) has to serialize runs.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from clinic_outreach import config
from clinic_outreach.branches import get_branch
from clinic_outreach.clock import Clock
from clinic_outreach.models import (
    CallNotRecordedError,
    CampaignKind,
    ContactRecord,
    DispatchError,
    DispatchResult,
    FieldPatch,
    Outcome,
)
from clinic_outreach.scheduling.due_dates import AnnualPolicy, DuePolicy, OffsetPolicy
from clinic_outreach.scheduling.eligibility import attempted_today, check_eligibility
from clinic_outreach.scheduling.outcomes import dispatch_fields, normalize_status, skip_fields
from clinic_outreach.scheduling.retry import RetryPolicy
from clinic_outreach.scheduling.windows import CallingWindow
from clinic_outreach.services.metrics import metrics

logger = logging.getLogger(__name__)


# ── Collaborator interfaces ──────────────────────────────────────────


class RecordStore(Protocol):
    def load_all(self) -> list[ContactRecord]: ...

    def apply_patches(self, patches: Sequence[FieldPatch]) -> int: ...


class Dispatcher(Protocol):
    def dispatch(
        self,
        phone: str,
        campaign_kind: CampaignKind,
        variables: Mapping[str, str],
        metadata: Mapping[str, str] | None = None,
    ) -> DispatchResult: ...


# ── Configuration and results ────────────────────────────────────────


@dataclass(frozen=True)
class CampaignConfig:
    kind: CampaignKind
    policy: DuePolicy
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    @classmethod
    def for_kind(cls, kind: CampaignKind, retry: RetryPolicy | None = None) -> CampaignConfig:
        """Default configuration for *kind* from the environment."""
        retry = retry or RetryPolicy.from_config()
        if kind is CampaignKind.BIRTHDAY:
            return cls(kind, AnnualPolicy(), retry)
        if kind is CampaignKind.PRE_VISIT_REMINDER:
            return cls(kind, OffsetPolicy(config.PRE_VISIT_OFFSETS), retry)
        return cls(kind, OffsetPolicy(config.POST_VISIT_OFFSETS), retry)


@dataclass
class RecordResult:
    record_id: str
    due: bool = False
    outcome: Outcome | None = None
    dispatched: bool = False
    fields: dict[str, Any] = field(default_factory=dict)

    def patches(self) -> list[FieldPatch]:
        return [FieldPatch(self.record_id, name, value) for name, value in self.fields.items()]


@dataclass
class PassSummary:
    campaign: str
    started_at: datetime
    total: int = 0
    due: int = 0
    dispatched: int = 0
    skipped: int = 0
    writes: int = 0
    outcomes: Counter = field(default_factory=Counter)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def add(self, result: RecordResult) -> None:
        if not result.due:
            return
        self.due += 1
        if result.dispatched:
            self.dispatched += 1
        elif result.outcome is not None and result.outcome.is_skip:
            self.skipped += 1
        if result.outcome is not None:
            self.outcomes[str(result.outcome)] += 1

    def as_dict(self) -> dict[str, Any]:
        return {
            "campaign": self.campaign,
            "started_at": self.started_at.isoformat(timespec="seconds"),
            "ok": self.ok,
            "total": self.total,
            "due": self.due,
            "dispatched": self.dispatched,
            "skipped": self.skipped,
            "writes": self.writes,
            "outcomes": dict(self.outcomes),
            "error": self.error,
        }


# ── Scheduler ────────────────────────────────────────────────────────


class ContactScheduler:
    """Decides who to call for one campaign and records what happened."""

    def __init__(
        self,
        campaign: CampaignConfig,
        store: RecordStore,
        dispatcher: Dispatcher,
        *,
        clock: Clock | None = None,
        window: CallingWindow | None = None,
    ):
        self.campaign = campaign
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock or Clock()
        self._window = window or CallingWindow.from_config()

    # ── Per-record pipeline ──────────────────────────────────────────

    def _belongs(self, record: ContactRecord) -> bool:
        # Rows without a campaign column belong to whichever campaign's tab they sit in.
        return record.campaign_kind in (None, self.campaign.kind)

    def template_variables(self, record: ContactRecord) -> dict[str, str]:
        branch = get_branch(record.branch)
        variables = {
            "recipient_name": record.full_name,
            "first_name": record.full_name.split(" ")[0] if record.full_name else "",
            "branch": branch.name if branch else record.branch,
            "campaign": str(self.campaign.kind),
        }
        if self.campaign.kind is not CampaignKind.BIRTHDAY and record.event_date is not None:
            variables["appointment_date"] = record.event_date.strftime("%A %d %B %Y")
            if record.event_time is not None:
                variables["appointment_time"] = record.event_time.strftime("%H:%M")
        return variables

    def evaluate(self, record: ContactRecord, now: datetime) -> RecordResult:
        """Run the full pipeline for one record, dialling if it qualifies."""
        today = now.date()
        result = RecordResult(record.record_id)

        check = self.campaign.policy.resolve(record, today)
        if not check.due or attempted_today(record, today):
            return result
        result.due = True

        skip = check_eligibility(
            record,
            today,
            period_key=check.period_key,
            in_calling_window=self._window.allows(now),
        )
        if skip is not None:
            result.outcome = skip
            if skip is not Outcome.SKIPPED_DEFERRED:
                result.fields = skip_fields(skip, now, deferred_until=record.deferred_until)
            logger.debug("Record %s skipped: %s", record.record_id, skip)
            return result

        reference = ""
        try:
            dispatch = self._dispatcher.dispatch(
                record.phone,
                self.campaign.kind,
                self.template_variables(record),
                {"record_id": record.record_id, "period_key": check.period_key},
            )
            outcome = normalize_status(dispatch.status)
            reference = dispatch.reference
        except DispatchError as exc:
            logger.warning("Dispatch failed for record %s: %s", record.record_id, exc)
            outcome = Outcome.DIAL_ERROR

        result.dispatched = True
        result.outcome = outcome
        result.fields = dispatch_fields(
            outcome, now, dial_reference=reference, period_key=check.period_key,
        )
        result.fields.update(
            self.campaign.retry.fields_after(
                record, outcome, today, fresh_period=check.fresh_period,
            )
        )
        return result

    # ── Pass ─────────────────────────────────────────────────────────

    def run_pass(self) -> PassSummary:
        """Process every record once.  Never raises; failures land in
        ``PassSummary.error``."""
        now = self._clock.now()
        summary = PassSummary(campaign=str(self.campaign.kind), started_at=now)

        try:
            records = self._store.load_all()
        except Exception as exc:
            logger.exception("Pass %s aborted: could not load records", self.campaign.kind)
            summary.error = f"load failed: {exc}"
            metrics.record_pass(summary.campaign, summary.outcomes, failed=True)
            return summary

        patches: list[FieldPatch] = []
        try:
            for record in records:
                if not self._belongs(record):
                    continue
                summary.total += 1
                result = self.evaluate(record, now)
                summary.add(result)
                if not result.dispatched:
                    patches.extend(result.patches())
                elif not self._record_dial(result, summary):
                    break
        except Exception as exc:
            logger.exception("Pass %s interrupted after %d records", self.campaign.kind, summary.total)
            summary.error = f"pass interrupted: {exc}"
        finally:
            self._flush(patches, summary)

        logger.info(
            "Pass %s: %d records, %d due, %d dispatched, %d skipped, %d writes%s",
            summary.campaign, summary.total, summary.due, summary.dispatched,
            summary.skipped, summary.writes,
            f" (error: {summary.error})" if summary.error else "",
        )
        metrics.record_pass(summary.campaign, summary.outcomes, failed=not summary.ok)
        return summary

    def _record_dial(self, result: RecordResult, summary: PassSummary) -> bool:
        """Write a dialled record straight away so the call webhook finds it.

        Returns ``False`` (and stops the pass) when the write fails: more
        dials would go unrecorded.
        """
        try:
            summary.writes += self._store.apply_patches(result.patches())
        except Exception as exc:
            logger.exception(
                "Pass %s: failed to record dial for record %s", self.campaign.kind, result.record_id,
            )
            summary.error = f"write failed: {exc}"
            return False
        return True

    def _flush(self, patches: list[FieldPatch], summary: PassSummary) -> None:
        if not patches:
            return
        try:
            summary.writes += self._store.apply_patches(patches)
        except Exception as exc:
            logger.exception(
                "Pass %s: failed to write %d outcome cells", self.campaign.kind, len(patches),
            )
            message = f"write failed: {exc}"
            summary.error = f"{summary.error}; {message}" if summary.error else message

    # ── Webhook results ──────────────────────────────────────────────

    def apply_call_result(
        self,
        record_id: str,
        raw_status: str,
        *,
        dial_reference: str = "",
        period_key: str = "",
    ) -> Outcome | None:
        """Record the final result of a call reported by the dialer's webhook.

        Returns the normalized outcome, or ``None`` when the event was
        ignored (unknown record or a duplicate delivery).

        Raises:
            CallNotRecordedError: The record does not show this call (yet);
                the dialer should redeliver the result.
            StoreError: The record could not be read or written.
        """
        record = next((r for r in self._store.load_all() if r.record_id == record_id), None)
        if record is None:
            logger.warning("Call result for unknown record %s ignored", record_id)
            return None
        if dial_reference and record.dial_reference != dial_reference:
            logger.warning(
                "Call result %s does not match record %s (current call %s)",
                dial_reference, record_id, record.dial_reference or "none",
            )
            raise CallNotRecordedError(
                f"Record {record_id} does not show call {dial_reference}"
            )
        if record.last_outcome is not Outcome.CALL_PLACED:
            logger.info("Call result for record %s already recorded; ignored", record_id)
            return None

        outcome = normalize_status(raw_status)
        if outcome is Outcome.CALL_PLACED:
            return outcome

        now = self._clock.now()
        fields = dispatch_fields(outcome, now, dial_reference=dial_reference, period_key=period_key)
        fields.update(
            self.campaign.retry.fields_after(record, outcome, now.date(), fresh_period=False)
        )
        self._store.apply_patches([FieldPatch(record_id, k, v) for k, v in fields.items()])
        logger.info("Record %s: call %s finished as %s", record_id, dial_reference or "?", outcome)
        return outcome
