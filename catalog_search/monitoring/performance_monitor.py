"""
Performance Monitoring Service
Tracks pipeline stage timings, degradations and slow requests.
"""

import logging
from collections import Counter, defaultdict, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


class PerformanceThreshold(Enum):
    """End-to-end latency levels (ms)."""

    EXCELLENT = 250
    GOOD = 500
    ACCEPTABLE = 1000  # Target p95
    SLOW = 3000
    CRITICAL = 10000


@dataclass
class StageMetric:
    """Single stage execution metric."""

    stage: str
    duration_ms: float
    timestamp: datetime
    request_id: Optional[str] = None
    outcome: str = "ok"  # ok, degraded, error
    detail: Optional[str] = None


def _percentiles(durations: List[float]) -> Dict[str, float]:
    if not durations:
        return {"count": 0, "p50": 0.0, "p95": 0.0, "p99": 0.0, "mean": 0.0, "min": 0.0, "max": 0.0}

    ordered = sorted(durations)
    count = len(ordered)
    return {
        "count": count,
        "p50": ordered[int(count * 0.5)],
        "p95": ordered[min(int(count * 0.95), count - 1)],
        "p99": ordered[min(int(count * 0.99), count - 1)],
        "mean": sum(ordered) / count,
        "min": ordered[0],
        "max": ordered[-1],
    }


class PerformanceMonitor:
    """
    Performance monitoring for search pipeline runs.

    Records every stage duration and the final state of each request.
    """

    REQUEST_STAGE = "request"

    def __init__(self, max_history: int = 10000, slow_threshold_ms: float = 3000):
        """
        Initialize performance monitor.

        Args:
            max_history: Maximum number of metrics kept in memory (per stage and overall)
            slow_threshold_ms: Requests slower than this are logged and tracked
        """
        self.max_history = max_history
        self.slow_threshold_ms = slow_threshold_ms

        self.metrics: Deque[StageMetric] = deque(maxlen=max_history)
        self.stage_durations: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=max_history))
        self.outcomes: Dict[str, Counter] = defaultdict(Counter)
        self.final_states: Counter = Counter()

        self.slow_requests: Deque[StageMetric] = deque(maxlen=1000)
        self.degradations: Deque[StageMetric] = deque(maxlen=1000)

        logger.info("Performance monitor initialized")

    def record_stage(
        self,
        stage: str,
        duration_ms: float,
        request_id: Optional[str] = None,
        outcome: str = "ok",
        detail: Optional[str] = None,
    ) -> None:
        """
        Record a stage metric.

        Args:
            stage: Stage name (e.g. "extracting", "searching")
            duration_ms: Duration in milliseconds
            request_id: Request identifier
            outcome: ok, degraded or error
            detail: Degradation reason or error message
        """
        metric = StageMetric(
            stage=stage,
            duration_ms=duration_ms,
            timestamp=datetime.now(timezone.utc),
            request_id=request_id,
            outcome=outcome,
            detail=detail,
        )
        self.metrics.append(metric)
        self.stage_durations[stage].append(duration_ms)
        self.outcomes[stage][outcome] += 1

        if outcome != "ok":
            self.degradations.append(metric)

    def record_request(
        self, duration_ms: float, final_state: str, request_id: Optional[str] = None
    ) -> None:
        """Record an end-to-end pipeline run."""
        self.record_stage(self.REQUEST_STAGE, duration_ms, request_id=request_id)
        self.final_states[final_state] += 1

        if duration_ms > self.slow_threshold_ms:
            self.slow_requests.append(self.metrics[-1])
            logger.warning(
                f"Slow search request {request_id}: {duration_ms:.2f}ms (final_state={final_state})"
            )

    def get_stage_stats(self, stage: str) -> Dict[str, float]:
        """
        Get statistics for one stage.

        Returns:
            Stats dict with count, p50, p95, p99, mean, min, max
        """
        return _percentiles(list(self.stage_durations.get(stage, [])))

    def get_degradations(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent degraded or errored stage executions."""
        return [asdict(m) for m in list(self.degradations)[-limit:]]

    def get_performance_summary(self) -> Dict[str, Any]:
        """
        Get comprehensive performance summary.

        Returns:
            Overall request latency, per-stage breakdown and health indicator
        """
        overall = self.get_stage_stats(self.REQUEST_STAGE)

        p95 = overall["p95"]
        if p95 < PerformanceThreshold.EXCELLENT.value:
            health = "excellent"
        elif p95 < PerformanceThreshold.GOOD.value:
            health = "good"
        elif p95 < PerformanceThreshold.ACCEPTABLE.value:
            health = "acceptable"
        elif p95 < PerformanceThreshold.SLOW.value:
            health = "slow"
        else:
            health = "critical"

        stages = {
            stage: {**self.get_stage_stats(stage), "outcomes": dict(self.outcomes[stage])}
            for stage in self.stage_durations
            if stage != self.REQUEST_STAGE
        }

        return {
            "overall": overall,
            "health": health,
            "target_p95_ms": PerformanceThreshold.ACCEPTABLE.value,
            "meeting_target": p95 < PerformanceThreshold.ACCEPTABLE.value,
            "stages": stages,
            "final_states": dict(self.final_states),
            "slow_request_count": len(self.slow_requests),
            "degradation_count": len(self.degradations),
            "metrics_tracked": len(self.metrics),
        }

    def reset(self) -> None:
        """Reset all metrics."""
        self.metrics.clear()
        self.stage_durations.clear()
        self.outcomes.clear()
        self.final_states.clear()
        self.slow_requests.clear()
        self.degradations.clear()
        logger.info("Performance metrics reset")


# Global singleton
_performance_monitor: Optional[PerformanceMonitor] = None


def get_performance_monitor() -> PerformanceMonitor:
    """Get global performance monitor instance."""
    global _performance_monitor
    if _performance_monitor is None:
        _performance_monitor = PerformanceMonitor()
    return _performance_monitor
