"""Pydantic schemas for the FastAPI endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    service: str = "clinic-outreach"


class RunResponse(BaseModel):
    """Summary of one scheduler pass."""

    campaign: str
    started_at: str
    ok: bool
    total: int = Field(0, description="Records belonging to the campaign")
    due: int = Field(0, description="Records whose event falls on today")
    dispatched: int = Field(0, description="Calls requested this pass")
    skipped: int = Field(0, description="Due records that were not eligible")
    writes: int = Field(0, description="Cells written back to the store")
    outcomes: dict[str, int] = Field(default_factory=dict)
    error: str | None = None


class RetellCall(BaseModel):
    """The subset of Retell's call object the webhook needs."""

    call_id: str = ""
    call_status: str = ""
    disconnection_reason: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def raw_status(self) -> str:
        return self.disconnection_reason or self.call_status


class RetellWebhook(BaseModel):
    event: str
    call: RetellCall


class WebhookResponse(BaseModel):
    ok: bool = True
    outcome: str | None = None
    note: str | None = None


class ActionRequest(BaseModel):
    """Custom action invoked by the voice agent during a live call.

    Different agent configurations send the fields either at the top level
    or nested under ``payload``.
    """

    action_type: str = ""
    action: str = ""
    branch: str = ""
    from_number: str = ""
    payload: dict[str, Any] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.action_type or self.action

    @property
    def branch_key(self) -> str:
        return str(self.payload.get("branch") or self.branch).strip().lower()


class ActionResponse(BaseModel):
    ok: bool = True
    action: str | None = None
    phone_number: str | None = None
    message: str = ""
    next_open: str | None = None
