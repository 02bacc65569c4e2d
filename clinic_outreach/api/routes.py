"""FastAPI route definitions for the outreach API."""

from __future__ import annotations

import asyncio
import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from clinic_outreach import branches
from clinic_outreach.api.schemas import (
    ActionRequest,
    ActionResponse,
    HealthResponse,
    RetellWebhook,
    RunResponse,
    WebhookResponse,
)
from clinic_outreach.clock import Clock
from clinic_outreach.config import OUTREACH_TRIGGER_SECRET
from clinic_outreach.models import CallNotRecordedError, CampaignKind, StoreError
from clinic_outreach.scheduling.scheduler import ContactScheduler

logger = logging.getLogger(__name__)

router = APIRouter()


def require_secret(
    x_outreach_secret: str | None = Header(default=None),
    token: str | None = Query(default=None),
) -> None:
    """Shared-secret check for the trigger and webhook endpoints.

    The secret may come as the ``X-Outreach-Secret`` header or, for
    callers that cannot set headers (webhook URLs), a ``token`` query
    parameter.
    """
    supplied = x_outreach_secret or token or ""
    if not hmac.compare_digest(supplied.encode(), OUTREACH_TRIGGER_SECRET.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing outreach secret.")


def _get_scheduler(request: Request, kind: str) -> ContactScheduler:
    """Look up the scheduler for *kind* built during the FastAPI lifespan."""
    schedulers = getattr(request.app.state, "schedulers", None)
    if schedulers is None:
        raise HTTPException(
            status_code=503,
            detail="The service is still starting up. Please try again in a moment.",
        )
    try:
        campaign = CampaignKind(kind)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown campaign '{kind}'.") from None
    scheduler = schedulers.get(campaign)
    if scheduler is None:
        raise HTTPException(status_code=404, detail=f"Campaign '{kind}' is not configured.")
    return scheduler


# ── Endpoints ────────────────────────────────────────────────────────


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse()


@router.post(
    "/campaigns/{kind}/run",
    response_model=RunResponse,
    dependencies=[Depends(require_secret)],
)
async def run_campaign(kind: str, http_request: Request):
    """Run one scheduler pass for a campaign now.

    Safe to call repeatedly: records already contacted, in flight or
    deferred are skipped.  Responds 502 with the same summary body when the
    pass could not read or write the contact store.
    """
    scheduler = _get_scheduler(http_request, kind)
    request_id = getattr(http_request.state, "request_id", "?")

    # The pass makes blocking HTTP calls; keep the event loop free.
    summary = await asyncio.to_thread(scheduler.run_pass)
    body = RunResponse(**summary.as_dict())
    if not summary.ok:
        logger.error("[%s] Campaign %s pass failed: %s", request_id, kind, summary.error)
        return JSONResponse(status_code=502, content=body.model_dump())
    return body


@router.post(
    "/webhooks/retell",
    response_model=WebhookResponse,
    dependencies=[Depends(require_secret)],
)
async def retell_webhook(event: RetellWebhook, http_request: Request):
    """Receive Retell call lifecycle events and record final call results.

    Only ``call_ended`` is acted on.  The call's metadata names the record
    and campaign it was placed for.
    """
    request_id = getattr(http_request.state, "request_id", "?")
    if event.event != "call_ended":
        return WebhookResponse(note=f"event {event.event} ignored")

    metadata = event.call.metadata
    record_id = str(metadata.get("record_id") or "")
    kind = str(metadata.get("campaign_kind") or "")
    if not record_id or not kind:
        logger.warning("[%s] Call %s has no outreach metadata", request_id, event.call.call_id)
        return WebhookResponse(note="not an outreach call")

    scheduler = _get_scheduler(http_request, kind)
    try:
        outcome = await asyncio.to_thread(
            scheduler.apply_call_result,
            record_id,
            event.call.raw_status,
            dial_reference=event.call.call_id,
            period_key=str(metadata.get("period_key") or ""),
        )
    except CallNotRecordedError as e:
        # Retell redelivers on a non-2xx; by then the dial has been written.
        logger.warning("[%s] %s; asking for redelivery", request_id, e)
        raise HTTPException(status_code=409, detail="Call not recorded yet.") from e
    except StoreError as e:
        # A non-2xx makes Retell redeliver the event later.
        logger.exception("[%s] Could not record call %s", request_id, event.call.call_id)
        raise HTTPException(status_code=503, detail="Contact store unavailable.") from e

    if outcome is None:
        return WebhookResponse(note="ignored")
    return WebhookResponse(outcome=str(outcome))


@router.post("/retell/action", response_model=ActionResponse)
async def retell_action(action: ActionRequest, http_request: Request):
    """Handle a live-call action from the voice agent.

    ``handoff_branch`` returns a transfer directive to the branch's number
    while the branch is open, or a message saying when it next opens.
    """
    request_id = getattr(http_request.state, "request_id", "?")
    logger.info("[%s] Agent action %r from %s", request_id, action.name, action.from_number or "?")

    if action.name != "handoff_branch":
        return ActionResponse(message="no action taken")

    branch = branches.get_branch(action.branch_key)
    if branch is None or not branch.phone:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown branch '{action.branch_key}'. Configure BRANCH_PHONE_NUMBERS.",
        )

    clock = getattr(http_request.app.state, "clock", None) or Clock()
    now = clock.now()
    if branches.is_open(branch.key, now):
        return ActionResponse(
            action="transfer",
            phone_number=branch.phone,
            message=f"Transfer caller to {branch.name} ({branch.phone})",
        )

    opens = branches.next_open(branch.key, now)
    message = f"The {branch.name} branch is closed right now."
    if opens:
        message += f" It opens {opens}."
    return ActionResponse(action="message", message=message, next_open=opens)
