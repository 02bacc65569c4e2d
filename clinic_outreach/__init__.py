"""Clinic Outreach — outbound patient calls and branch handoff for a clinic.

Architecture Overview
=====================

The core is a **contact scheduler** that runs once per campaign per
trigger (cron hitting ``POST /api/campaigns/{kind}/run``):

1. **Load** every row of the campaign's Google Sheets tab as a
   ``ContactRecord``.
2. **Due-date policy** decides whether the record's event is today:
   annual for birthdays, day offsets for appointment reminders and
   follow-ups.  Records that are not due are left untouched.
3. **Eligibility** skips opted-out, held, paused, deferred, phoneless and
   already-contacted records, and anything outside the calling window.
4. **Dispatch** asks Retell to place the call with the campaign's agent.
5. **Outcome + retry**: the dialer status is normalized to an ``Outcome``;
   failures re-arm the record for the next open weekday until
   ``MAX_RETRIES`` is used up.
6. **Write**: a dialled record goes back to the sheet as soon as the dial
   returns; skip outcomes are written in one batch at the end of the pass.

Final call results arrive later on ``POST /api/webhooks/retell`` and go
through the same outcome + retry step.  The inbound voice agent uses
``POST /api/retell/action`` to hand callers to a branch while it is open.

Package Structure
-----------------
- ``clinic_outreach/config.py`` — configuration from environment / SSM
- ``clinic_outreach/clock.py`` — clinic-timezone clock and date arithmetic
- ``clinic_outreach/models.py`` — records, outcomes, patches, errors
- ``clinic_outreach/branches.py`` — branch numbers and opening hours
- ``clinic_outreach/scheduling/`` — due dates, eligibility, windows,
  outcomes, retry policy and the scheduler pass
- ``clinic_outreach/services/`` — Google Sheets store, Retell client, metrics
- ``clinic_outreach/api/`` — FastAPI routes and Pydantic schemas
- ``clinic_outreach/server.py`` — FastAPI application
- ``clinic_outreach/main.py`` — operator CLI
"""
