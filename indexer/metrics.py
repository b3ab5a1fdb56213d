"""
Prometheus metrics for the indexer.

Exposes indexing progress and health via an HTTP /metrics endpoint.

Environment Variables:
    METRICS_ENABLED: Enable metrics server (true/false) - default: false
    METRICS_PORT: HTTP port for /metrics endpoint - default: 8080

Usage:
    from indexer.metrics import start_metrics_server, track_event_applied

    start_metrics_server(enabled=True, port=8080)
    track_event_applied("SingleTransfer")

    with track_range_duration("property_share"):
        ...

All track_* helpers are no-ops until init_metrics() has run, so library code
can call them unconditionally.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Generator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

logger = logging.getLogger(__name__)

EVENTS_APPLIED: "Counter" = None  # type: ignore
EVENTS_SKIPPED: "Counter" = None  # type: ignore
RANGE_DURATION: "Histogram" = None  # type: ignore
CHECKPOINT_BLOCK: "Gauge" = None  # type: ignore
DRIFT_CORRECTIONS: "Counter" = None  # type: ignore
LEDGER_RETRIES: "Counter" = None  # type: ignore

_metrics_initialized = False
_metrics_lock = threading.Lock()


def init_metrics() -> None:
    """
    Initialize Prometheus metrics (call once at startup).

    Thread-safe via module-level lock; later calls are no-ops.
    """
    global EVENTS_APPLIED, EVENTS_SKIPPED, RANGE_DURATION
    global CHECKPOINT_BLOCK, DRIFT_CORRECTIONS, LEDGER_RETRIES
    global _metrics_initialized

    with _metrics_lock:
        if _metrics_initialized:
            return

        EVENTS_APPLIED = Counter(
            "indexer_events_applied_total",
            "Decoded events applied to the projection",
            labelnames=["event_type"],
        )

        # reason: duplicate, decode_error, missing_dependency, invalid_transition
        EVENTS_SKIPPED = Counter(
            "indexer_events_skipped_total",
            "Events not applied, by reason",
            labelnames=["reason"],
        )

        RANGE_DURATION = Histogram(
            "indexer_range_duration_seconds",
            "Duration of one committed block range",
            labelnames=["source"],
            buckets=(0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0),
        )

        CHECKPOINT_BLOCK = Gauge(
            "indexer_checkpoint_block",
            "Highest fully applied block",
            labelnames=["source"],
        )

        DRIFT_CORRECTIONS = Counter(
            "indexer_drift_corrections_total",
            "Holder balances overwritten from the ledger",
        )

        LEDGER_RETRIES = Counter(
            "indexer_ledger_retries_total",
            "Ledger calls retried after a transient failure",
            labelnames=["operation"],
        )

        _metrics_initialized = True
        logger.info("Prometheus metrics initialized")


def start_metrics_server(enabled: bool, port: int) -> None:
    """
    Start Prometheus metrics HTTP server in background thread.

    Args:
        enabled: Whether to start metrics server (from METRICS_ENABLED env var)
        port: HTTP port for /metrics endpoint (from METRICS_PORT env var)
    """
    if not enabled:
        logger.info("Metrics server disabled (METRICS_ENABLED=false)")
        return

    init_metrics()

    try:
        start_http_server(port, addr="0.0.0.0")
        logger.info(f"Metrics server started on http://0.0.0.0:{port}/metrics")
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")


def track_event_applied(event_type: str) -> None:
    if EVENTS_APPLIED is not None:
        EVENTS_APPLIED.labels(event_type=event_type).inc()


def track_event_skipped(reason: str) -> None:
    if EVENTS_SKIPPED is not None:
        EVENTS_SKIPPED.labels(reason=reason).inc()


@contextmanager
def track_range_duration(source: str) -> Generator[None, None, None]:
    """
    Context manager timing one block range.

    Usage:
        with track_range_duration("marketplace"):
            coordinator.run(...)
    """
    if RANGE_DURATION is None:
        yield
        return

    with RANGE_DURATION.labels(source=source).time():
        yield


def set_checkpoint_block(source: str, block_number: int) -> None:
    if CHECKPOINT_BLOCK is not None:
        CHECKPOINT_BLOCK.labels(source=source).set(block_number)


def track_drift_correction() -> None:
    if DRIFT_CORRECTIONS is not None:
        DRIFT_CORRECTIONS.inc()


def track_ledger_retry(operation: str) -> None:
    if LEDGER_RETRIES is not None:
        LEDGER_RETRIES.labels(operation=operation).inc()
