"""Per-stage latency measurement."""

from __future__ import annotations

import time
from collections.abc import Awaitable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from callrelay.logging_config import get_logger
from callrelay.observability.metrics import record_stage_latency

logger: Any = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class StageTiming:
    """One completed measurement."""

    stage: str
    duration_ms: float
    ok: bool = True


class LatencySpan:
    """A running measurement, closed with :meth:`end`."""

    def __init__(self, stage: str, recorder: LatencyRecorder) -> None:
        self._stage = stage
        self._recorder = recorder
        self._start = time.perf_counter()
        self._duration_ms: float | None = None

    @property
    def stage(self) -> str:
        return self._stage

    def end(self, *, ok: bool = True) -> float:
        """Stop the clock and report. Repeated calls return the first result."""
        if self._duration_ms is None:
            self._duration_ms = (time.perf_counter() - self._start) * 1000
            self._recorder.report(self._stage, self._duration_ms, ok=ok)
        return self._duration_ms


@dataclass
class LatencyRecorder:
    """Measures pipeline stages for one call and reports each one.

    Every measurement is logged, observed in the stage latency histogram
    and kept for the end-of-call summary.
    """

    call_id: str = ""
    timings: list[StageTiming] = field(default_factory=list)

    def start(self, stage: str) -> LatencySpan:
        """Begin measuring a stage that spans several awaits."""
        return LatencySpan(stage, self)

    async def track(self, stage: str, operation: Awaitable[T]) -> T:
        """Await ``operation``, measuring it whether it succeeds or raises."""
        span = self.start(stage)
        try:
            result = await operation
        except BaseException:
            span.end(ok=False)
            raise
        span.end()
        return result

    def report(self, stage: str, duration_ms: float, *, ok: bool = True) -> None:
        self.timings.append(StageTiming(stage=stage, duration_ms=duration_ms, ok=ok))
        record_stage_latency(stage, duration_ms, ok=ok)
        if ok:
            logger.info(f"[Latency] {stage}: {duration_ms:.0f} ms ({self.call_id})")
        else:
            logger.error(f"[Latency] {stage} FAILED after {duration_ms:.0f} ms ({self.call_id})")

    def summary(self) -> dict[str, float]:
        """Average successful duration per stage, in milliseconds."""
        totals: dict[str, list[float]] = {}
        for timing in self.timings:
            if timing.ok:
                totals.setdefault(timing.stage, []).append(timing.duration_ms)
        return {stage: sum(values) / len(values) for stage, values in totals.items()}
