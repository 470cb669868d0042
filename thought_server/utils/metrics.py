"""Per-engine processing metrics.

Each engine owns one ``MetricsAggregator``. Samples live in bounded deques so
memory stays flat on long chains, and every statistic is recomputed from the
retained window: replaying the same samples always yields the same snapshot.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any

# Thresholds used by assess()
LOW_SUCCESS_RATE = 0.7
SLOW_PROCESSING_MS = 1000.0


@dataclass(frozen=True)
class ChainMetrics:
    """Immutable snapshot of an engine's processing statistics."""

    total_steps: int = 0
    average_processing_time: float = 0.0
    success_rate: float = 1.0
    last_confidence: float | None = None
    processing_times: tuple[float, ...] = ()
    resource_usage: float = 0.0
    peak_resource_usage: float = 0.0
    efficiency: float | None = None
    window_size: int = 0

    def to_dict(self, *, include_samples: bool = False) -> dict[str, Any]:
        """Convert to the camelCase wire representation."""
        data: dict[str, Any] = {
            "totalSteps": self.total_steps,
            "averageProcessingTime": round(self.average_processing_time, 3),
            "successRate": round(self.success_rate, 4),
            "lastConfidence": self.last_confidence,
            "resourceUsage": round(self.resource_usage, 3),
            "peakResourceUsage": round(self.peak_resource_usage, 3),
            "efficiency": self.efficiency,
            "windowSize": self.window_size,
        }
        if include_samples:
            data["processingTimes"] = list(self.processing_times)
        return data


@dataclass
class Recommendation:
    """An adaptation suggested by the metrics window."""

    action: str
    reason: str
    value: float

    def to_dict(self) -> dict[str, Any]:
        return {"action": self.action, "reason": self.reason, "value": round(self.value, 4)}


@dataclass
class MetricsAggregator:
    """Accumulates timing, resource and success samples for one engine.

    Example:
        agg = MetricsAggregator(window=3)
        agg.record(10.0, 1.5, True, 0.8)
        agg.snapshot().average_processing_time  # 10.0

    """

    window: int = 1000
    _times: deque[float] = field(init=False, repr=False)
    _outcomes: deque[bool] = field(init=False, repr=False)
    _total: int = field(default=0, init=False)
    _last_confidence: float | None = field(default=None, init=False)
    _last_resource: float = field(default=0.0, init=False)
    _peak_resource: float = field(default=0.0, init=False)
    _efficiency: float | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        if self.window < 1:
            raise ValueError(f"window must be positive, got {self.window}")
        self._times = deque(maxlen=self.window)
        self._outcomes = deque(maxlen=self.window)

    def record(
        self,
        processing_time_ms: float,
        resource_estimate: float,
        success: bool,
        confidence: float | None,
        *,
        efficiency: float | None = None,
    ) -> ChainMetrics:
        """Record one processed step and return the updated snapshot.

        Args:
            processing_time_ms: Wall time spent on the step.
            resource_estimate: Synthetic resource figure (KiB of chain content).
            success: Whether the step was accepted without a validation failure.
            confidence: Effective confidence of the step, None when rejected early.
            efficiency: Branching or drafting efficiency after the step, if known.

        """
        if processing_time_ms < 0:
            raise ValueError(f"processing_time_ms must be non-negative, got {processing_time_ms}")
        self._times.append(float(processing_time_ms))
        self._outcomes.append(bool(success))
        self._total += 1
        self._last_resource = float(resource_estimate)
        self._peak_resource = max(self._peak_resource, self._last_resource)
        if confidence is not None:
            self._last_confidence = confidence
        if efficiency is not None:
            self._efficiency = efficiency
        return self.snapshot()

    def snapshot(self) -> ChainMetrics:
        """Return the current statistics without recording anything."""
        count = len(self._times)
        if count:
            average = sum(self._times) / count
            success_rate = sum(1 for ok in self._outcomes if ok) / count
        else:
            average = 0.0
            success_rate = 1.0
        return ChainMetrics(
            total_steps=self._total,
            average_processing_time=average,
            success_rate=success_rate,
            last_confidence=self._last_confidence,
            processing_times=tuple(self._times),
            resource_usage=self._last_resource,
            peak_resource_usage=self._peak_resource,
            efficiency=self._efficiency,
            window_size=count,
        )

    def assess(self) -> list[Recommendation]:
        """Suggest adaptations based on the current window."""
        if not self._times:
            return []
        snapshot = self.snapshot()
        recommendations = []
        if snapshot.success_rate < LOW_SUCCESS_RATE:
            recommendations.append(
                Recommendation(
                    action="raise_confidence_threshold",
                    reason="success rate below 0.7",
                    value=snapshot.success_rate,
                )
            )
        if snapshot.average_processing_time > SLOW_PROCESSING_MS:
            recommendations.append(
                Recommendation(
                    action="disable_parallel_tasks",
                    reason="average processing time above 1000 ms",
                    value=snapshot.average_processing_time,
                )
            )
        return recommendations

    def reset(self) -> None:
        """Clear all samples."""
        self._times.clear()
        self._outcomes.clear()
        self._total = 0
        self._last_confidence = None
        self._last_resource = 0.0
        self._peak_resource = 0.0
        self._efficiency = None
