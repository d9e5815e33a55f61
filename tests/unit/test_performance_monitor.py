"""
Tests for the performance monitor.
"""

import logging

from catalog_search.monitoring import PerformanceMonitor, get_performance_monitor


def test_stage_stats():
    monitor = PerformanceMonitor()
    for duration in [10.0, 20.0, 30.0, 40.0]:
        monitor.record_stage("searching", duration)

    stats = monitor.get_stage_stats("searching")

    assert stats["count"] == 4
    assert stats["min"] == 10.0
    assert stats["max"] == 40.0
    assert stats["mean"] == 25.0
    assert stats["p50"] == 30.0


def test_unknown_stage_is_empty():
    assert PerformanceMonitor().get_stage_stats("fusing")["count"] == 0


def test_degradations_are_tracked():
    monitor = PerformanceMonitor()
    monitor.record_stage("extracting", 5.0, request_id="r1")
    monitor.record_stage("searching", 50.0, request_id="r1", outcome="degraded", detail="aliases")

    degradations = monitor.get_degradations()

    assert len(degradations) == 1
    assert degradations[0]["stage"] == "searching"
    assert degradations[0]["detail"] == "aliases"


def test_summary(caplog):
    monitor = PerformanceMonitor(slow_threshold_ms=100)
    monitor.record_stage("searching", 40.0, outcome="degraded")
    monitor.record_request(80.0, "completed", request_id="r1")

    with caplog.at_level(logging.WARNING):
        monitor.record_request(150.0, "errored", request_id="r2")

    summary = monitor.get_performance_summary()

    assert summary["overall"]["count"] == 2
    assert summary["health"] == "excellent"
    assert summary["final_states"] == {"completed": 1, "errored": 1}
    assert summary["stages"]["searching"]["outcomes"] == {"degraded": 1}
    assert "request" not in summary["stages"]
    assert summary["slow_request_count"] == 1
    assert "Slow search request r2" in caplog.text


def test_reset():
    monitor = PerformanceMonitor()
    monitor.record_request(10.0, "completed")

    monitor.reset()

    assert monitor.get_performance_summary()["final_states"] == {}


def test_global_monitor_is_shared():
    assert get_performance_monitor() is get_performance_monitor()
