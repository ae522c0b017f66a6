"""CloudWatch custom metrics emitter with background batching.

Publishes per-call metrics (count, latency, errors) for every external
collaborator the secretary talks to (Anthropic, OpenAI, WhatsApp, Google
Calendar, Supabase, Redis) plus operational events such as rate-limit
rejections, budget exhaustion and store degradation.

Data points are buffered in memory and pushed by a daemon thread every
``FLUSH_INTERVAL_SECONDS``.  With ``METRICS_ENABLED`` unset the buffer is
still filled (so tests can inspect it) but flushing only logs and drops it.

>>> from secretary.services.metrics import metrics
>>> metrics.record_success("anthropic", "classify", latency_ms=123.4)
>>> metrics.record_event("RateLimited", threshold="5")
"""

from __future__ import annotations

import atexit
import logging
import os
import threading
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

NAMESPACE = "NepqSecretary"
FLUSH_INTERVAL_SECONDS = 60
MAX_BATCH_SIZE = 1_000  # CloudWatch API limit per PutMetricData call

Dimensions = list[dict[str, str]]


def _dims(**pairs: str) -> Dimensions:
    return [{"Name": name, "Value": str(value)} for name, value in pairs.items()]


def _datum(
    name: str,
    dimensions: Dimensions,
    value: float = 1,
    unit: str = "Count",
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    return {
        "MetricName": name,
        "Dimensions": dimensions,
        "Timestamp": timestamp or datetime.now(UTC),
        "Value": value,
        "Unit": unit,
    }


class MetricsClient:
    """Batched CloudWatch metrics publisher."""

    def __init__(self) -> None:
        self._enabled = os.getenv("METRICS_ENABLED", "false").lower() == "true"
        self._buffer: list[dict[str, Any]] = []
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._cw_client = None  # lazy-init

        if self._enabled:
            self._start_flush_thread()

    def _get_cw_client(self):
        if self._cw_client is None:
            import boto3

            self._cw_client = boto3.client("cloudwatch")
        return self._cw_client

    # ── External calls ────────────────────────────────────────────────

    def record_success(self, service: str, operation: str, latency_ms: float) -> None:
        """Record a successful call to an external service."""
        now = datetime.now(UTC)
        self._append(
            _datum("ExternalCall/RequestCount", _dims(Service=service, Status="success"), timestamp=now),
            _datum(
                "ExternalCall/Latency", _dims(Service=service, Operation=operation),
                latency_ms, "Milliseconds", now,
            ),
        )
        logger.debug("Metric: %s %s success latency=%.1fms", service, operation, latency_ms)

    def record_failure(
        self,
        service: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0,
    ) -> None:
        """Record a failed call; latency is only published when it was measured."""
        now = datetime.now(UTC)
        points = [
            _datum("ExternalCall/RequestCount", _dims(Service=service, Status="failure"), timestamp=now),
            _datum("ExternalCall/ErrorCount", _dims(Service=service, ErrorType=error_type), timestamp=now),
        ]
        if latency_ms > 0:
            points.append(_datum(
                "ExternalCall/Latency", _dims(Service=service, Operation=operation),
                latency_ms, "Milliseconds", now,
            ))
        self._append(*points)
        logger.debug(
            "Metric: %s %s failure error=%s latency=%.1fms",
            service, operation, error_type, latency_ms,
        )

    # ── Operational events ────────────────────────────────────────────

    def record_event(self, name: str, **dimensions: str) -> None:
        """Count one occurrence of ``Events/<name>``; keyword names become dimension names."""
        self._append(_datum(
            f"Events/{name}",
            _dims(**{key.capitalize(): value for key, value in dimensions.items()}),
        ))
        logger.debug("Metric: event %s %s", name, dimensions)

    # ── Publishing ────────────────────────────────────────────────────

    def flush(self) -> int:
        """Send buffered metrics to CloudWatch.  Returns count sent."""
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return 0
        if not self._enabled:
            logger.debug("Metrics flush skipped (not enabled): %d items", len(batch))
            return 0

        sent = 0
        try:
            cw = self._get_cw_client()
            for start in range(0, len(batch), MAX_BATCH_SIZE):
                chunk = batch[start : start + MAX_BATCH_SIZE]
                cw.put_metric_data(Namespace=NAMESPACE, MetricData=chunk)
                sent += len(chunk)
            logger.info("Flushed %d metrics to CloudWatch", sent)
        except Exception:
            logger.exception("Failed to flush metrics to CloudWatch (%d dropped)", len(batch) - sent)
        return sent

    def close(self) -> None:
        """Stop the flush thread and push whatever is still buffered."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None
        self.flush()

    def _append(self, *points: dict[str, Any]) -> None:
        with self._lock:
            self._buffer.extend(points)

    def _start_flush_thread(self) -> None:
        def _loop():
            while not self._stop.wait(FLUSH_INTERVAL_SECONDS):
                try:
                    self.flush()
                except Exception:
                    logger.exception("Metrics flush thread error")

        self._thread = threading.Thread(target=_loop, daemon=True, name="metrics-flush")
        self._thread.start()
        atexit.register(self.flush)
        logger.info("Metrics flush thread started (interval=%ds)", FLUSH_INTERVAL_SECONDS)


# ── Module-level singleton ──────────────────────────────────────────
metrics = MetricsClient()
