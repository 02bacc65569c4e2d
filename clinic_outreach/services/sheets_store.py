"""Contact record store backed by a Google Sheets tab.

Uses the Sheets REST API v4 directly over ``httpx``:

* ``GET  /spreadsheets/{id}/values/{tab}`` reads the whole tab; row 1 holds
  the headers, every following row is one ``ContactRecord``.
* ``POST /spreadsheets/{id}/values:batchUpdate`` writes a pass's patches in
  a single request, so a batch is applied entirely or not at all.

Column letters exist only inside this module.  The scheduler sees named
fields and opaque row handles (the sheet row number as a string).

Sheets API docs: https://developers.google.com/sheets/api/reference/rest
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Sequence
from datetime import date, datetime, time as dtime
from enum import Enum
from typing import Any

import httpx

from clinic_outreach import models
from clinic_outreach.config import (
    GOOGLE_SHEETS_ACCESS_TOKEN,
    SHEETS_BASE_URL,
    SHEETS_SPREADSHEET_ID,
)
from clinic_outreach.models import (
    AdministrativeHold,
    CampaignKind,
    ContactRecord,
    FieldPatch,
    Outcome,
    StoreError,
)
from clinic_outreach.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 15.0

FIRST_DATA_ROW = 2  # row 1 is the header row

# Columns the scheduler writes back.  Without them the period, retry and
# in-flight guards cannot be stored, so a tab missing any is refused.
WRITTEN_COLUMNS = (
    models.F_LAST_OUTCOME,
    models.F_LAST_OUTCOME_AT,
    models.F_DEFERRED_UNTIL,
    models.F_RETRY_COUNT,
    models.F_LAST_CONTACT_PERIOD_KEY,
    models.F_DIAL_REFERENCE,
    models.F_NOTES,
)

# Header spellings clinic staff actually use, mapped to field names.
HEADER_ALIASES = {
    "name": models.F_FULL_NAME,
    "patient": models.F_FULL_NAME,
    "patient_name": models.F_FULL_NAME,
    "phone_number": models.F_PHONE,
    "mobile": models.F_PHONE,
    "birthday": models.F_EVENT_DATE,
    "birthdate": models.F_EVENT_DATE,
    "date_of_birth": models.F_EVENT_DATE,
    "appointment": models.F_EVENT_DATE,
    "appointment_date": models.F_EVENT_DATE,
    "campaign": models.F_CAMPAIGN_KIND,
    "hold": models.F_ADMINISTRATIVE_HOLD,
    "status": models.F_ADMINISTRATIVE_HOLD,
}

_TRUTHY = {"true", "yes", "y", "1", "x", "✓"}

_DATETIME_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%Y/%m/%d %H:%M",
)
_DATE_FORMATS = ("%m/%d/%Y", "%Y/%m/%d")


# ── A1 notation helpers ─────────────────────────────────────────────


def column_letter(index: int) -> str:
    """Zero-based column index to A1 letters (0 → A, 25 → Z, 26 → AA)."""
    if index < 0:
        raise ValueError(f"Column index must be >= 0, got {index}")
    letters = ""
    index += 1
    while index:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def normalize_header(header: str) -> str:
    key = "_".join(header.strip().lower().replace("-", " ").split())
    return HEADER_ALIASES.get(key, key)


def _quote_tab(tab: str) -> str:
    return "'" + tab.replace("'", "''") + "'"


# ── Cell parsing ────────────────────────────────────────────────────


def parse_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUTHY


def parse_date_cell(raw: str) -> tuple[date | None, dtime | None]:
    """Parse a date or date-time cell.  Unparseable text reads as absent."""
    text = raw.strip()
    if not text:
        return None, None
    try:
        parsed = datetime.fromisoformat(text)
        has_time = "T" in text or " " in text
        return parsed.date(), (parsed.time() if has_time else None)
    except ValueError:
        pass
    for fmt in _DATETIME_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
            return parsed.date(), parsed.time()
        except ValueError:
            continue
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date(), None
        except ValueError:
            continue
    logger.debug("Unparseable date cell %r treated as empty", text)
    return None, None


def parse_timestamp(raw: str) -> datetime | None:
    text = raw.strip()
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.debug("Unparseable timestamp cell %r treated as empty", text)
        return None


def _enum_key(raw: str) -> str:
    return "_".join(raw.strip().lower().replace("-", " ").split())


def parse_hold(raw: str) -> AdministrativeHold:
    key = _enum_key(raw)
    if key in ("do_not_contact", "do_not_call", "dnc"):
        return AdministrativeHold.DO_NOT_CONTACT
    if key == "inactive":
        return AdministrativeHold.INACTIVE
    return AdministrativeHold.NONE


def parse_campaign_kind(raw: str) -> CampaignKind | None:
    try:
        return CampaignKind(_enum_key(raw))
    except ValueError:
        return None


def parse_outcome(raw: str) -> Outcome | None:
    try:
        return Outcome(_enum_key(raw))
    except ValueError:
        return None


def parse_int(raw: str) -> int:
    try:
        return max(0, int(float(raw.strip())))
    except (ValueError, OverflowError):
        return 0


def row_to_record(record_id: str, row: dict[str, str]) -> ContactRecord:
    """Build a ``ContactRecord`` from a ``{field_name: cell_text}`` dict."""

    def cell(name: str) -> str:
        return str(row.get(name, "") or "")

    event_date, event_time = parse_date_cell(cell(models.F_EVENT_DATE))
    pause_until, _ = parse_date_cell(cell(models.F_PAUSE_UNTIL))
    deferred_until, _ = parse_date_cell(cell(models.F_DEFERRED_UNTIL))

    return ContactRecord(
        record_id=record_id,
        full_name=cell(models.F_FULL_NAME).strip(),
        phone=cell(models.F_PHONE).strip(),
        event_date=event_date,
        event_time=event_time,
        branch=cell(models.F_BRANCH).strip().lower(),
        campaign_kind=parse_campaign_kind(cell(models.F_CAMPAIGN_KIND)),
        opt_out=parse_bool(cell(models.F_OPT_OUT)),
        administrative_hold=parse_hold(cell(models.F_ADMINISTRATIVE_HOLD)),
        pause_until=pause_until,
        deferred_until=deferred_until,
        last_contact_period_key=cell(models.F_LAST_CONTACT_PERIOD_KEY).strip(),
        last_outcome=parse_outcome(cell(models.F_LAST_OUTCOME)),
        last_outcome_at=parse_timestamp(cell(models.F_LAST_OUTCOME_AT)),
        retry_count=parse_int(cell(models.F_RETRY_COUNT)),
        dial_reference=cell(models.F_DIAL_REFERENCE).strip(),
        notes=cell(models.F_NOTES),
    )


def serialize_value(value: Any) -> Any:
    """Python value → cell value for a RAW write."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat(timespec="seconds")
    if isinstance(value, date):
        return value.isoformat()
    return value


# ── Store ───────────────────────────────────────────────────────────


class SheetsRecordStore:
    """One sheet tab exposed as a list of ``ContactRecord`` rows.

    The header row is re-read on every ``load_all`` so staff can reorder
    or add columns between passes; ``apply_patches`` uses the column map
    from the most recent load.
    """

    def __init__(
        self,
        tab: str,
        spreadsheet_id: str | None = None,
        token: str | None = None,
        base_url: str | None = None,
    ):
        self._tab = tab
        self._spreadsheet_id = spreadsheet_id or SHEETS_SPREADSHEET_ID
        self._client = httpx.Client(
            base_url=base_url or SHEETS_BASE_URL,
            headers={
                "Authorization": f"Bearer {token or GOOGLE_SHEETS_ACCESS_TOKEN}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
        self._columns: dict[str, int] | None = None

    def close(self) -> None:
        self._client.close()

    # ── Internal helpers ─────────────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Execute an HTTP request with exponential-backoff retries."""
        operation = f"{method} {path.split('/')[-1].split(':')[-1]}"
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.request(method, path, params=params, json=json_body)
                if response.status_code >= 500 or response.status_code == 429:
                    raise StoreError(
                        f"Sheets server error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                if response.status_code >= 400:
                    raise StoreError(
                        f"Sheets client error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                metrics.record_success(
                    "sheets", operation, latency_ms=(time.perf_counter() - t0) * 1000,
                )
                return response.json()

            except (httpx.TimeoutException, httpx.ConnectError) as exc:
                last_error = exc
                metrics.record_failure(
                    "sheets", operation, error_type=type(exc).__name__,
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                logger.warning(
                    "Sheets API attempt %d/%d failed (%s). Retrying in %.1fs…",
                    attempt,
                    MAX_RETRIES,
                    type(exc).__name__,
                    INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)),
                )
            except StoreError as exc:
                metrics.record_failure(
                    "sheets", operation, error_type=f"http_{exc.status_code}",
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                if exc.status_code == 429 or (exc.status_code and exc.status_code >= 500):
                    last_error = exc
                    logger.warning(
                        "Sheets API error %s on attempt %d/%d. Retrying…",
                        exc.status_code,
                        attempt,
                        MAX_RETRIES,
                    )
                else:
                    raise

            if attempt < MAX_RETRIES:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise StoreError(f"Sheets API request failed after {MAX_RETRIES} attempts: {last_error}")

    def _values_path(self) -> str:
        return f"/spreadsheets/{self._spreadsheet_id}/values/{_quote_tab(self._tab)}"

    # ── Public API ───────────────────────────────────────────────────

    def load_all(self) -> list[ContactRecord]:
        """Read every data row of the tab.  Blank rows are skipped."""
        data = self._request("GET", self._values_path())
        rows: list[list[str]] = data.get("values", [])
        if not rows:
            self._columns = {}
            return []

        columns: dict[str, int] = {}
        for index, header in enumerate(rows[0]):
            name = normalize_header(str(header))
            if name and name not in columns:
                columns[name] = index
        missing = [name for name in WRITTEN_COLUMNS if name not in columns]
        if missing:
            raise StoreError(f"Tab {self._tab} is missing columns: {', '.join(missing)}")
        self._columns = columns

        records: list[ContactRecord] = []
        for offset, raw in enumerate(rows[1:]):
            if not any(str(cell).strip() for cell in raw):
                continue
            cells = {
                name: (raw[index] if index < len(raw) else "")
                for name, index in columns.items()
            }
            records.append(row_to_record(str(FIRST_DATA_ROW + offset), cells))

        logger.info("Loaded %d contact records from tab %s", len(records), self._tab)
        return records

    def apply_patches(self, patches: Sequence[FieldPatch]) -> int:
        """Write *patches* in one batch request.  Returns cells written.

        The whole batch goes out in a single ``batchUpdate``.  A patch naming
        a column the tab does not have fails the batch before anything is
        sent.

        Raises:
            StoreError: Unknown column, or the request failed.
        """
        if not patches:
            return 0
        if self._columns is None:
            self.load_all()

        data = list(self._build_value_ranges(patches))
        self._request(
            "POST",
            f"/spreadsheets/{self._spreadsheet_id}/values:batchUpdate",
            json_body={"valueInputOption": "RAW", "data": data},
        )
        logger.info("Wrote %d cells to tab %s", len(data), self._tab)
        return len(data)

    def _build_value_ranges(self, patches: Iterable[FieldPatch]) -> Iterable[dict[str, Any]]:
        columns = self._columns or {}
        for patch in patches:
            index = columns.get(patch.field)
            if index is None:
                raise StoreError(
                    f"Tab {self._tab} has no {patch.field!r} column (row {patch.record_id})"
                )
            cell = f"{_quote_tab(self._tab)}!{column_letter(index)}{patch.record_id}"
            yield {"range": cell, "values": [[serialize_value(patch.value)]]}
