"""
Status Monitor for crosspost

Keeps a small health/telemetry document up to date and writes it to
status.json after every change, so an operator (or a dashboard) can see
whether the scheduler is alive and how dispatches are going.

Usage:
    from utils.status_monitor import StatusMonitor

    monitor = StatusMonitor(Path("status.json"))
    monitor.set_status("RUNNING")
    monitor.record_dispatch("partial", {"x": True, "mastodon": False})
    monitor.update_scheduler({"scheduled": 2, "running": 0, ...})
    monitor.record_error("Mastodon instance unreachable")
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class StatusMonitor:
    """Monitor and track service health, dispatch counters and scheduler state."""

    def __init__(self, status_file: Optional[Path] = None):
        """
        Initialize the StatusMonitor.

        Args:
            status_file: Path to the JSON file where status will be written.
                        Defaults to 'status.json' in the current directory.
        """
        self.status_file = Path(status_file) if status_file else Path("status.json")
        self.lock = Lock()
        self.start_time = datetime.now()

        self._consecutive_write_failures = 0
        self._max_consecutive_failures = 10
        self._monitoring_enabled = True

        self.status: Dict[str, Any] = {
            "service": {
                "status": "STARTING",
                "start_time": self.start_time.isoformat(),
                "last_update": None,
                "uptime_seconds": 0,
            },
            "dispatch": {
                "total": 0,
                "success": 0,
                "partial": 0,
                "failed": 0,
                "last_dispatch_time": None,
                "last_deliveries": None,
            },
            "scheduler": {
                "jobs": {},
                "last_tick_time": None,
            },
            "errors": {
                "count": 0,
                "last_error": None,
                "last_error_time": None,
            },
        }

        self._write_status()
        logger.info("StatusMonitor initialized, writing to %s", self.status_file)

    def record_dispatch(self, overall: str, deliveries: Optional[Dict[str, bool]] = None) -> None:
        """
        Record one dispatch.

        Args:
            overall: "success", "partial" or "failed"
            deliveries: platform -> whether that target succeeded
        """
        with self.lock:
            dispatch = self.status["dispatch"]
            dispatch["total"] += 1
            if overall in ("success", "partial", "failed"):
                dispatch[overall] += 1
            dispatch["last_dispatch_time"] = datetime.now().isoformat()
            dispatch["last_deliveries"] = dict(deliveries or {})
            self._write_status()

    def update_scheduler(self, counts: Dict[str, int]) -> None:
        """Store the per-status job counts from the latest tick."""
        with self.lock:
            self.status["scheduler"]["jobs"] = dict(counts)
            self.status["scheduler"]["last_tick_time"] = datetime.now().isoformat()
            self._write_status()

    def record_error(self, error_message: str) -> None:
        with self.lock:
            self.status["errors"]["count"] += 1
            self.status["errors"]["last_error"] = error_message
            self.status["errors"]["last_error_time"] = datetime.now().isoformat()
            self._write_status()

        logger.warning("Error recorded: %s", error_message)

    def set_status(self, status: str) -> None:
        """
        Set the service's current status.

        Args:
            status: Status string (STARTING, RUNNING, ERROR, STOPPED)
        """
        with self.lock:
            self.status["service"]["status"] = status
            self._write_status()

    def get_status(self) -> Dict[str, Any]:
        """Get a copy of the current status."""
        with self.lock:
            return json.loads(json.dumps(self.status))

    @staticmethod
    def read(status_file: Path) -> Optional[Dict[str, Any]]:
        """
        Read the status document another process keeps up to date.

        Never writes. Returns None when there is no readable status file,
        e.g. because no scheduler has been started yet.
        """
        try:
            with open(status_file, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning("Could not read status file %s: %s", status_file, e)
            return None

    def shutdown(self) -> None:
        with self.lock:
            self.status["service"]["status"] = "STOPPED"
            self._write_status()
        logger.info("StatusMonitor shutdown complete")

    def _write_status(self) -> None:
        """Write status to JSON file; failures are logged, never raised."""
        if not self._monitoring_enabled:
            return

        try:
            now = datetime.now()
            self.status["service"]["last_update"] = now.isoformat()
            self.status["service"]["uptime_seconds"] = int((now - self.start_time).total_seconds())

            # Write to file atomically
            temp_file = self.status_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(self.status, f, indent=2)
            temp_file.replace(self.status_file)

            self._consecutive_write_failures = 0

        except OSError as e:
            self._consecutive_write_failures += 1
            logger.error(
                "OS error writing status file (failure %d): %s", self._consecutive_write_failures, e
            )
            self._check_disable_monitoring()

        except (TypeError, ValueError) as e:
            self._consecutive_write_failures += 1
            logger.error(
                "Could not serialize status (failure %d): %s",
                self._consecutive_write_failures,
                e,
                exc_info=True,
            )
            self._check_disable_monitoring()

    def _check_disable_monitoring(self) -> None:
        """Disable monitoring if too many consecutive failures."""
        if self._consecutive_write_failures >= self._max_consecutive_failures:
            self._monitoring_enabled = False
            logger.critical(
                "Monitoring disabled after %d consecutive write failures. "
                "Service keeps running but status.json will be stale.",
                self._max_consecutive_failures,
            )
