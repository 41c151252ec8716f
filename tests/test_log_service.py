"""Tests for the JSONL log service."""

import json
import threading
from datetime import UTC, datetime
from pathlib import Path

from folder_uploader.services.log_service import LogService, get_log_service


def _find_event_files(log_dir: Path) -> list[Path]:
    """Find all events.jsonl files under the hive-partitioned json/ directory."""
    json_dir = log_dir / "json"
    if not json_dir.exists():
        return []
    return list(json_dir.rglob("events.jsonl"))


class TestLogServiceWrite:
    """Tests for writing log entries."""

    def test_log_creates_hive_file(self, log_service: LogService, tmp_path: Path) -> None:
        """Test that log() creates a JSONL file in hive-partitioned structure."""
        log_service.log("INFO", "app", "test_event", "Test message")

        files = _find_event_files(tmp_path / "logs")
        assert len(files) == 1
        assert "year=" in str(files[0])
        assert "month=" in str(files[0])

    def test_log_entry_format(self, log_service: LogService, tmp_path: Path) -> None:
        """Test that log entries have the correct JSON schema."""
        log_service.log("info", "upload", "file_upload_completed", "Uploaded a.txt", {"size": 1})

        entry = json.loads(_find_event_files(tmp_path / "logs")[0].read_text().strip())

        assert entry["level"] == "INFO"
        assert entry["category"] == "upload"
        assert entry["event"] == "file_upload_completed"
        assert entry["message"] == "Uploaded a.txt"
        assert entry["metadata"] == {"size": 1}
        assert "timestamp" in entry

    def test_metadata_omitted_when_empty(self, log_service: LogService, tmp_path: Path) -> None:
        """Test entries without metadata have no metadata key."""
        log_service.info("run", "run_started", "Started")

        entry = json.loads(_find_event_files(tmp_path / "logs")[0].read_text().strip())
        assert "metadata" not in entry

    def test_level_helpers(self, log_service: LogService) -> None:
        """Test info/warning/error set their levels."""
        log_service.info("app", "a", "info message")
        log_service.warning("app", "b", "warning message")
        log_service.error("app", "c", "error message")

        levels = {e["event"]: e["level"] for e in log_service.read_log_entries()["entries"]}
        assert levels == {"a": "INFO", "b": "WARNING", "c": "ERROR"}

    def test_concurrent_writes_keep_lines_intact(self, log_service: LogService) -> None:
        """Test many threads appending produce one valid JSON object per line."""

        def write(n: int) -> None:
            for i in range(20):
                log_service.info("upload", "tick", f"thread {n} line {i}")

        threads = [threading.Thread(target=write, args=(n,)) for n in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert log_service.read_log_entries(limit=1000)["total"] == 100

    def test_default_directory_from_settings(self, isolated_settings: Path) -> None:
        """Test the singleton writes under the configured log directory."""
        get_log_service().info("app", "app_started", "hello")

        assert _find_event_files(isolated_settings / "logs")


class TestReadLogEntries:
    """Tests for filtering and paging log entries."""

    def test_filters(self, log_service: LogService) -> None:
        """Test level, category and search filters combine."""
        log_service.info("upload", "file_upload_completed", "Uploaded a.txt")
        log_service.error("upload", "file_upload_failed", "Failed to upload b.txt")
        log_service.info("run", "run_completed", "Run completed")

        assert log_service.read_log_entries(level="error")["total"] == 1
        assert log_service.read_log_entries(category="upload")["total"] == 2
        assert log_service.read_log_entries(search="B.TXT")["total"] == 1
        assert log_service.read_log_entries(search="run_completed")["total"] == 1

    def test_run_id_filter(self, log_service: LogService) -> None:
        """Test only the events of one run are returned."""
        log_service.info("run", "run_started", "Started", {"run_id": "first"})
        log_service.info("upload", "file_upload_completed", "Uploaded", {"run_id": "first"})
        log_service.info("run", "run_started", "Started", {"run_id": "second"})
        log_service.info("app", "app_started", "No run")

        result = log_service.read_log_entries(run_id="first")

        assert result["total"] == 2
        assert {e["metadata"]["run_id"] for e in result["entries"]} == {"first"}

    def test_search_matches_source_path(self, log_service: LogService) -> None:
        """Test a search finds events by the uploaded file's path."""
        log_service.info(
            "upload",
            "file_upload_completed",
            "Uploaded 1 file",
            {"source_path": "/data/Flight-07/imu.csv"},
        )
        log_service.info("upload", "file_upload_completed", "Uploaded 1 file", {"source_path": "/x"})

        assert log_service.read_log_entries(search="flight-07")["total"] == 1

    def test_pagination_newest_first(self, log_service: LogService) -> None:
        """Test offset and limit apply to entries sorted newest first."""
        for i in range(5):
            log_service.info("app", f"event_{i}", f"message {i}")

        page = log_service.read_log_entries(offset=1, limit=2)

        assert page["total"] == 5
        assert len(page["entries"]) == 2
        timestamps = [e["timestamp"] for e in page["entries"]]
        assert timestamps == sorted(timestamps, reverse=True)

    def test_date_filter(self, log_service: LogService) -> None:
        """Test filtering by today's date and by a date with no logs."""
        log_service.info("app", "a", "today")
        today = datetime.now(UTC).strftime("%Y-%m-%d")

        assert log_service.read_log_entries(date=today)["total"] == 1
        assert log_service.read_log_entries(date="1999-01-01")["total"] == 0
        assert log_service.read_log_entries(date="not-a-date")["total"] == 0

    def test_skips_corrupt_lines(self, log_service: LogService, tmp_path: Path) -> None:
        """Test invalid JSON lines are ignored."""
        log_service.info("app", "a", "valid")
        log_file = _find_event_files(tmp_path / "logs")[0]
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("{broken\n\n")

        assert log_service.read_log_entries()["total"] == 1

    def test_empty_directory(self, log_service: LogService) -> None:
        """Test reading with no logs returns an empty page."""
        result = log_service.read_log_entries()

        assert result == {"entries": [], "total": 0, "offset": 0, "limit": 100}


class TestRunSummaries:
    """Tests for per-run summary files."""

    def test_save_run_jsonl(self, log_service: LogService) -> None:
        """Test the summary is written as one JSON line and listed."""
        completed_at = datetime(2026, 2, 8, 12, 0, tzinfo=UTC)

        path = log_service.save_run_jsonl("abc123", {"succeeded": 3}, completed_at)

        assert path.name == "run-abc123.jsonl"
        assert "year=2026" in str(path)
        assert json.loads(path.read_text()) == {"succeeded": 3}

        runs = log_service.list_run_summaries()
        assert len(runs) == 1
        assert runs[0]["date"] == "2026-02-08"

    def test_run_summaries_not_counted_as_events(self, log_service: LogService) -> None:
        """Test summary files are not read as event entries."""
        log_service.save_run_jsonl("abc123", {"event": "run_completed"}, datetime.now(UTC))

        assert log_service.read_log_entries()["total"] == 0
