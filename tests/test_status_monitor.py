"""Tests for StatusMonitor

These tests cover:
- Dispatch counters and scheduler counts
- Thread safety
- File writing, including write failures
"""

import json
import threading
from unittest.mock import patch

import pytest

from utils.status_monitor import StatusMonitor


@pytest.fixture
def monitor(tmp_path):
    return StatusMonitor(status_file=tmp_path / "status.json")


class TestStatusMonitorCounters:
    def test_initial_file_written(self, monitor, assert_valid_json):
        data = assert_valid_json(monitor.status_file)

        assert data["service"]["status"] == "STARTING"
        assert data["dispatch"]["total"] == 0

    def test_record_dispatch(self, monitor):
        monitor.record_dispatch("success", {"x": True, "bluesky": True})
        monitor.record_dispatch("partial", {"x": True, "mastodon": False})
        monitor.record_dispatch("failed", {"x": False})

        dispatch = monitor.get_status()["dispatch"]
        assert dispatch["total"] == 3
        assert dispatch["success"] == 1
        assert dispatch["partial"] == 1
        assert dispatch["failed"] == 1
        assert dispatch["last_deliveries"] == {"x": False}

    def test_update_scheduler(self, monitor):
        monitor.update_scheduler({"scheduled": 2, "failed": 1})

        data = json.loads(monitor.status_file.read_text())
        assert data["scheduler"]["jobs"] == {"scheduled": 2, "failed": 1}
        assert data["scheduler"]["last_tick_time"] is not None

    def test_record_error(self, monitor):
        monitor.record_error("Mastodon instance unreachable")

        errors = monitor.get_status()["errors"]
        assert errors["count"] == 1
        assert errors["last_error"] == "Mastodon instance unreachable"

    def test_set_status_and_shutdown(self, monitor):
        monitor.set_status("RUNNING")
        assert json.loads(monitor.status_file.read_text())["service"]["status"] == "RUNNING"

        monitor.shutdown()
        assert json.loads(monitor.status_file.read_text())["service"]["status"] == "STOPPED"

    def test_get_status_is_a_copy(self, monitor):
        snapshot = monitor.get_status()
        snapshot["dispatch"]["total"] = 99

        assert monitor.get_status()["dispatch"]["total"] == 0


class TestStatusMonitorThreadSafety:
    def test_concurrent_dispatch_records(self, monitor):
        def record():
            for _ in range(20):
                monitor.record_dispatch("success", {"x": True})

        threads = [threading.Thread(target=record) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert monitor.get_status()["dispatch"]["total"] == 100
        assert json.loads(monitor.status_file.read_text())["dispatch"]["total"] == 100


class TestStatusMonitorWriteFailures:
    def test_write_errors_are_swallowed(self, monitor):
        with patch("builtins.open", side_effect=PermissionError("read-only")):
            monitor.record_dispatch("success")

        assert monitor.get_status()["dispatch"]["total"] == 1

    def test_monitoring_disabled_after_repeated_failures(self, monitor):
        with patch("builtins.open", side_effect=OSError("disk gone")):
            for _ in range(10):
                monitor.set_status("RUNNING")

        assert monitor._monitoring_enabled is False
