"""Outbound call dispatch through the Retell REST API.

``POST /v2/create-phone-call`` asks Retell to dial a patient with the
campaign's voice agent.  The response only says the call was registered;
the real result arrives later on the ``call_ended`` webhook, which carries
back the ``metadata`` we attach here (record id, campaign, period key).

Retell API docs: https://docs.retellai.com/api-references/create-phone-call
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

import httpx

from clinic_outreach.config import (
    RETELL_AGENT_IDS,
    RETELL_API_KEY,
    RETELL_BASE_URL,
    RETELL_FROM_NUMBER,
)
from clinic_outreach.models import CampaignKind, DispatchError, DispatchResult
from clinic_outreach.services.metrics import metrics

logger = logging.getLogger(__name__)

# ── Retry configuration ─────────────────────────────────────────────
# Creating a call is not idempotent, so only failures where the request
# never reached Retell (connect errors) or was explicitly throttled are
# retried.  A timeout may already have dialled the patient.
MAX_RETRIES = 2
INITIAL_BACKOFF_SECONDS = 1.0
REQUEST_TIMEOUT_SECONDS = 10.0

CREATE_CALL_PATH = "/v2/create-phone-call"


class RetellClient:
    """Thin wrapper around Retell's create-phone-call endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        from_number: str | None = None,
        agent_ids: Mapping[str, str] | None = None,
    ):
        self._from_number = from_number or RETELL_FROM_NUMBER
        self._agent_ids = dict(agent_ids if agent_ids is not None else RETELL_AGENT_IDS)
        self._client = httpx.Client(
            base_url=base_url or RETELL_BASE_URL,
            headers={
                "Authorization": f"Bearer {api_key or RETELL_API_KEY}",
                "Content-Type": "application/json",
            },
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    def close(self) -> None:
        self._client.close()

    def _post(self, path: str, json_body: dict[str, Any]) -> dict[str, Any]:
        last_error: Exception | None = None
        for attempt in range(1, MAX_RETRIES + 1):
            t0 = time.perf_counter()
            try:
                response = self._client.post(path, json=json_body)
            except httpx.ConnectError as exc:
                last_error = exc
                metrics.record_failure("retell", f"POST {path}", error_type="ConnectError")
                logger.warning(
                    "Retell connect failed on attempt %d/%d (%s)", attempt, MAX_RETRIES, exc,
                )
            except httpx.HTTPError as exc:
                metrics.record_failure(
                    "retell", f"POST {path}", error_type=type(exc).__name__,
                    latency_ms=(time.perf_counter() - t0) * 1000,
                )
                raise DispatchError(f"Retell request failed: {type(exc).__name__}: {exc}") from exc
            else:
                elapsed = (time.perf_counter() - t0) * 1000
                if response.status_code == 429:
                    last_error = DispatchError("Retell rate limit hit", status_code=429)
                    metrics.record_failure("retell", f"POST {path}", "http_429", elapsed)
                    logger.warning("Retell throttled attempt %d/%d", attempt, MAX_RETRIES)
                elif response.status_code >= 400:
                    metrics.record_failure(
                        "retell", f"POST {path}", f"http_{response.status_code}", elapsed,
                    )
                    raise DispatchError(
                        f"Retell error {response.status_code}: {response.text}",
                        status_code=response.status_code,
                    )
                else:
                    metrics.record_success("retell", f"POST {path}", latency_ms=elapsed)
                    return response.json()

            if attempt < MAX_RETRIES:
                time.sleep(INITIAL_BACKOFF_SECONDS * (2 ** (attempt - 1)))

        raise DispatchError(f"Retell request failed after {MAX_RETRIES} attempts: {last_error}")

    def dispatch(
        self,
        phone: str,
        campaign_kind: CampaignKind,
        variables: Mapping[str, str],
        metadata: Mapping[str, str] | None = None,
    ) -> DispatchResult:
        """Request an outbound call to *phone* for *campaign_kind*.

        Args:
            phone: E.164 destination number.
            campaign_kind: Selects the Retell agent that runs the call.
            variables: Template variables the agent's prompt refers to
                (recipient name, branch, appointment date/time).
            metadata: Correlation data echoed back on the call webhook.

        Returns:
            The registration status and Retell's ``call_id``.

        Raises:
            DispatchError: The call could not be requested.
        """
        if not self._from_number:
            raise DispatchError("RETELL_FROM_NUMBER is not configured")

        payload: dict[str, Any] = {
            "from_number": self._from_number,
            "to_number": phone,
            "retell_llm_dynamic_variables": {k: str(v) for k, v in variables.items()},
            "metadata": {"campaign_kind": str(campaign_kind), **(metadata or {})},
        }
        agent_id = self._agent_ids.get(str(campaign_kind))
        if agent_id:
            payload["override_agent_id"] = agent_id

        data = self._post(CREATE_CALL_PATH, payload)
        reference = str(data.get("call_id") or "")
        status = str(data.get("call_status") or data.get("status") or "")
        logger.info("Retell call %s requested for %s (%s)", reference or "?", campaign_kind, status)
        return DispatchResult(status=status, reference=reference)
