"""CloudWatch custom metrics for the outreach backend.

Two families of data points:

* ``ExternalAPI/*``: count, latency and errors for every call to an
  external collaborator (``sheets``, ``retell``).
* ``Outreach/*``: per-campaign outcome counts emitted once per scheduler
  pass, so a dashboard can show how many patients were reached, skipped
  or deferred each run.

Data points are buffered in memory and pushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS`` when ``METRICS_ENABLED=true``.  Otherwise they
are only logged at DEBUG level.

Usage
-----
>>> from clinic_outreach.services.metrics import metrics
>>> metrics.record_success("retell", "POST /v2/create-phone-call", latency_ms=210.0)
>>> metrics.record_pass("birthday", {"completed": 3, "skipped_opt_out": 1})
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
import time
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "ClinicOutreach"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._cw_client = None

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── External API calls ───────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        now = datetime.now(UTC)
        service_dim = {"Name": "Service", "Value": service}
        self._append(
            _point(
                "ExternalAPI/RequestCount", 1, "Count", now,
                [service_dim, {"Name": "Status", "Value": "success"}],
            )
        )
        self._append(
            _point(
                "ExternalAPI/Latency", latency_ms, "Milliseconds", now,
                [service_dim, {"Name": "Operation", "Value": operation}],
            )
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        now = datetime.now(UTC)
        service_dim = {"Name": "Service", "Value": service}
        self._append(
            _point(
                "ExternalAPI/RequestCount", 1, "Count", now,
                [service_dim, {"Name": "Status", "Value": "failure"}],
            )
        )
        self._append(
            _point(
                "ExternalAPI/ErrorCount", 1, "Count", now,
                [service_dim, {"Name": "ErrorType", "Value": error_type}],
            )
        )
        if latency_ms > 0:
            self._append(
                _point(
                    "ExternalAPI/Latency", latency_ms, "Milliseconds", now,
                    [service_dim, {"Name": "Operation", "Value": operation}],
                )
            )
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    # ── Scheduler passes ─────────────────────────────────────────────

    def record_pass(
        self,
        campaign: str,
        outcome_counts: Mapping[str, int],
        *,
        failed: bool = False,
    ) -> None:
        """Record one data point per outcome plus a pass counter."""
        now = datetime.now(UTC)
        campaign_dim = {"Name": "Campaign", "Value": campaign}
        self._append(
            _point(
                "Outreach/PassCount", 1, "Count", now,
                [campaign_dim, {"Name": "Status", "Value": "failure" if failed else "success"}],
            )
        )
        for outcome, count in outcome_counts.items():
            if count <= 0:
                continue
            self._append(
                _point(
                    "Outreach/OutcomeCount", count, "Count", now,
                    [campaign_dim, {"Name": "Outcome", "Value": outcome}],
                )
            )
        logger.debug("Metric: pass %s failed=%s outcomes=%s", campaign, failed, dict(outcome_counts))

    # ── Flushing ─────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            if not self._buffer:
                return 0
            batch = self._buffer[:]
            self._buffer.clear()

        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for i in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[i : i + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch")
        return sent

    def _append(self, metric_data: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.append(metric_data)

    def _start_flush_thread(self) -> None:
        def _loop():
            while True:
                time.sleep(FLUSH_INTERVAL_SECONDS)
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        t = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        t.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


def _point(
    name: str,
    value: float,
    unit: str,
    timestamp: datetime,
    dimensions: list[dict[str, str]],
) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": dimensions,
        "Timestamp": timestamp,
        "Value": value,
        "Unit": unit,
    }


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
