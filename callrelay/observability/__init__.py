"""Observability module for metrics."""

from callrelay.observability.metrics import (
    ACTIVE_CALLS,
    CALL_DURATION,
    CALL_TOTAL,
    STAGE_LATENCY,
    TURN_TOTAL,
    record_call_metrics,
    record_stage_latency,
    record_turn,
)

__all__ = [
    "CALL_TOTAL",
    "CALL_DURATION",
    "ACTIVE_CALLS",
    "STAGE_LATENCY",
    "TURN_TOTAL",
    "record_call_metrics",
    "record_stage_latency",
    "record_turn",
]
