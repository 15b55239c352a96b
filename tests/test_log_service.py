"""Tests for the JSONL log service."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from bucket_uploader.services.log_service import LogService, get_log_service


@pytest.fixture
def log_dir(event_log_settings: MagicMock, tmp_path: Path) -> Path:
    """Point the event log at a temporary directory."""
    event_log_settings.log_directory = tmp_path
    return tmp_path


@pytest.fixture
def log_service() -> LogService:
    return LogService()


def _find_event_files(log_dir: Path) -> list[Path]:
    """Find all events.jsonl files under the hive-partitioned json/ directory."""
    json_dir = log_dir / "json"
    if not json_dir.exists():
        return []
    return list(json_dir.rglob("events.jsonl"))


class TestLogServiceWrite:
    """Tests for writing log entries."""

    def test_log_creates_file(self, log_service: LogService, log_dir: Path) -> None:
        """Test that log() creates a JSONL file in hive-partitioned structure."""
        log_service.log("INFO", "upload", "upload_started", "Uploading a.jpg")

        files = _find_event_files(log_dir)
        assert len(files) == 1
        assert "year=" in str(files[0])

    def test_log_entry_format(self, log_service: LogService, log_dir: Path) -> None:
        """Test that log entries have the correct JSON schema."""
        log_service.log(
            "info", "upload", "upload_completed", "Uploaded a.jpg", {"file_size": 1024}
        )

        entry = json.loads(_find_event_files(log_dir)[0].read_text().strip())

        assert "timestamp" in entry
        assert entry["level"] == "INFO"
        assert entry["category"] == "upload"
        assert entry["event"] == "upload_completed"
        assert entry["message"] == "Uploaded a.jpg"
        assert entry["metadata"] == {"file_size": 1024}

    def test_convenience_levels(self, log_service: LogService, log_dir: Path) -> None:
        """Test the info/warning/error helpers."""
        log_service.info("upload", "a", "first")
        log_service.warning("multipart", "b", "second")
        log_service.error("delete", "c", "third")

        lines = _find_event_files(log_dir)[0].read_text().strip().split("\n")
        assert [json.loads(line)["level"] for line in lines] == ["INFO", "WARNING", "ERROR"]

    def test_no_metadata_omits_field(self, log_service: LogService, log_dir: Path) -> None:
        """Test that entries without metadata have no metadata key."""
        log_service.info("upload", "a", "no metadata")

        entry = json.loads(_find_event_files(log_dir)[0].read_text().strip())
        assert "metadata" not in entry

    def test_hive_path_uses_current_date(self, log_service: LogService, log_dir: Path) -> None:
        """Test that the file lands in today's partition."""
        now = datetime.now(UTC)

        log_service.info("upload", "a", "dated")

        expected = (
            log_dir / "json" / f"year={now.year:04d}" / f"month={now.month:02d}"
            / f"day={now.day:02d}" / "events.jsonl"
        )
        assert expected.exists()

    def test_no_directory_writes_nothing(
        self, log_service: LogService, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that without a log directory events only reach the logging tree."""
        with caplog.at_level(logging.INFO, logger="bucket_uploader.events"):
            log_service.warning("multipart", "part_retry", "Part 2/3 failed")

        assert _find_event_files(tmp_path) == []
        assert "[multipart] part_retry: Part 2/3 failed" in caplog.text
        assert caplog.records[0].levelno == logging.WARNING

    def test_unwritable_directory_does_not_raise(
        self,
        log_service: LogService,
        event_log_settings: MagicMock,
        tmp_path: Path,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        """Test that a log directory that is really a file is reported, not raised."""
        not_a_dir = tmp_path / "not_a_dir"
        not_a_dir.write_text("occupied")
        event_log_settings.log_directory = not_a_dir

        with caplog.at_level(logging.ERROR, logger="bucket_uploader.events"):
            log_service.info("upload", "upload_completed", "Uploaded a.jpg")

        assert not_a_dir.read_text() == "occupied"
        assert "Failed to write event upload_completed" in caplog.text


class TestSingleton:
    """Tests for the accessor."""

    def test_get_log_service_is_singleton(self) -> None:
        """Test that the accessor returns one shared instance."""
        assert get_log_service() is get_log_service()
