"""Prometheus metrics for the call relay.

Provides metrics for monitoring turn outcomes, per-stage latency, and the
health of the transcription channel.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# =============================================================================
# Counters
# =============================================================================

CALL_TOTAL = Counter(
    "callrelay_call_total",
    "Total calls handled",
    ["outcome"],
)

TURN_TOTAL = Counter(
    "callrelay_turn_total",
    "Turns by outcome (completed, failed, dropped, empty)",
    ["outcome"],
)

PENDING_FRAMES_DROPPED = Counter(
    "callrelay_pending_frames_dropped_total",
    "Frames dropped from the pre-connect buffer on overflow",
)

KEEPALIVE_FRAMES = Counter(
    "callrelay_keepalive_frames_total",
    "Silent keepalive frames sent to the transcription provider",
)

CODEC_ERRORS = Counter(
    "callrelay_codec_errors_total",
    "Inbound frames dropped because the payload was malformed",
)

# =============================================================================
# Gauges
# =============================================================================

ACTIVE_CALLS = Gauge(
    "callrelay_active_calls",
    "Currently active calls",
)

# =============================================================================
# Histograms
# =============================================================================

CALL_DURATION = Histogram(
    "callrelay_call_duration_seconds",
    "Call duration in seconds",
    buckets=[10, 30, 60, 120, 300, 600, 900, 1800],
)

STAGE_LATENCY = Histogram(
    "callrelay_stage_latency_seconds",
    "Latency of a pipeline stage (generation, synthesis, full turn)",
    ["stage", "outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0, 10.0],
)

# =============================================================================
# Helper Functions
# =============================================================================


def record_stage_latency(stage: str, duration_ms: float, *, ok: bool = True) -> None:
    """Record one measured stage.

    Args:
        stage: Stage label, e.g. "generation"
        duration_ms: Elapsed time in milliseconds
        ok: False when the stage raised
    """
    STAGE_LATENCY.labels(stage=stage, outcome="ok" if ok else "error").observe(
        duration_ms / 1000
    )


def record_turn(outcome: str) -> None:
    """Count a turn outcome: completed, failed, dropped or empty."""
    TURN_TOTAL.labels(outcome=outcome).inc()


def record_call_metrics(outcome: str, duration_seconds: float) -> None:
    """Record metrics for a completed call.

    Args:
        outcome: Call outcome (completed, rejected, error, shutdown)
        duration_seconds: Total call duration
    """
    CALL_TOTAL.labels(outcome=outcome).inc()
    CALL_DURATION.observe(duration_seconds)


def get_metrics() -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics.

    Returns:
        Content-Type header value for Prometheus metrics.
    """
    return CONTENT_TYPE_LATEST
