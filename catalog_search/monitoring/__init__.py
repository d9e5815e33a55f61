"""
Monitoring Module
Pipeline stage timing and health summaries.
"""

from .performance_monitor import (
    PerformanceMonitor,
    PerformanceThreshold,
    StageMetric,
    get_performance_monitor,
)

__all__ = ["PerformanceMonitor", "PerformanceThreshold", "StageMetric", "get_performance_monitor"]
