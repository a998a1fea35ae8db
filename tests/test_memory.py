import pytest

from semantic.memory import MemoryMonitor


def test_monitor_operation_records_last_run():
    monitor = MemoryMonitor(enable_logging=False)
    with monitor.monitor_operation("query", "session_facts") as stats:
        assert stats.name == "query"

    assert stats.duration >= 0
    assert stats.peak_mb >= monitor.current_usage > 0
    report = monitor.report()
    assert report["last_operations"]["query"]["subject"] == "session_facts"


def test_failed_operation_is_still_recorded():
    monitor = MemoryMonitor(enable_logging=False)
    with pytest.raises(RuntimeError):
        with monitor.monitor_operation("profile"):
            raise RuntimeError("boom")
    assert "profile" in monitor.last_operations
