"""JSONL logging service for upload events.

Every event goes to the standard ``logging`` tree. When a log directory is
configured, it is also appended as one JSON object per line to
hive-partitioned daily files:

    <log_directory>/json/year=2026/month=02/day=08/events.jsonl
"""

import json
import logging
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from bucket_uploader.config import get_settings

logger = logging.getLogger("bucket_uploader.events")

_LEVELS = {
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class LogService:
    """JSONL event log with thread-safe file writes.

    File errors are reported through the stdlib logger and never raised.
    """

    def __init__(self) -> None:
        """Initialize the log service."""
        self._write_lock = threading.Lock()

    def _get_log_dir(self) -> Path | None:
        """Get the configured log directory, creating it if needed."""
        log_dir = get_settings().log_directory
        if log_dir is None:
            return None
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def _get_hive_dir(self, log_dir: Path, dt: datetime) -> Path:
        """Build a hive-partitioned directory path and create it.

        Returns:
            Path like logs/json/year=2026/month=02/day=08/
        """
        hive_dir = (
            log_dir
            / "json"
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
        )
        hive_dir.mkdir(parents=True, exist_ok=True)
        return hive_dir

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an event.

        Args:
            level: Log level (INFO, WARNING, ERROR)
            category: Event category (upload, multipart, delete)
            event: Machine-readable event name (snake_case)
            message: Human-readable message
            metadata: Optional additional data
        """
        now = datetime.now(UTC)
        entry: dict[str, Any] = {
            "timestamp": now.isoformat(),
            "level": level.upper(),
            "category": category,
            "event": event,
            "message": message,
        }
        if metadata:
            entry["metadata"] = metadata

        logger.log(
            _LEVELS.get(entry["level"], logging.INFO),
            "[%s] %s: %s",
            category,
            event,
            message,
        )

        line = json.dumps(entry, default=str)
        try:
            log_dir = self._get_log_dir()
            if log_dir is None:
                return
            with self._write_lock:
                log_file = self._get_hive_dir(log_dir, now) / "events.jsonl"
                with open(log_file, "a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError:
            logger.exception("Failed to write event %s to the JSONL log", event)

    def info(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an INFO-level event."""
        self.log("INFO", category, event, message, metadata)

    def warning(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log a WARNING-level event."""
        self.log("WARNING", category, event, message, metadata)

    def error(
        self,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Log an ERROR-level event."""
        self.log("ERROR", category, event, message, metadata)


# Module-level singleton accessor
_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
