"""JSONL event log for upload runs.

Writes one JSON object per line to hive-partitioned daily .jsonl files:
logs/json/year=YYYY/month=MM/day=DD/events.jsonl
"""

import json
import re
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from folder_uploader.config import get_settings

LOG_CATEGORIES = frozenset({"app", "run", "discovery", "upload", "progress", "settings"})


class LogService:
    """JSONL log service with thread-safe file writes."""

    def __init__(self, log_dir: Path | None = None) -> None:
        """
        Args:
            log_dir: Fixed log directory; defaults to the configured log_directory
        """
        self._write_lock = threading.Lock()
        self._log_dir = log_dir

    def _get_log_dir(self) -> Path:
        """Get the log directory, creating it if needed."""
        log_dir = self._log_dir or get_settings().log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def _get_hive_dir_path(self, dt: datetime) -> Path:
        """Hive-partitioned directory path like logs/json/year=2026/month=02/day=08/."""
        return (
            self._get_log_dir()
            / "json"
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
        )

    def _get_hive_dir(self, dt: datetime) -> Path:
        """Hive directory for a timestamp, created if needed."""
        hive_dir = self._get_hive_dir_path(dt)
        hive_dir.mkdir(parents=True, exist_ok=True)
        return hive_dir

    @staticmethod
    def _extract_date_from_hive_path(path: Path) -> str | None:
        """Extract a YYYY-MM-DD date string from a hive-partitioned path."""
        match = re.search(r"year=(\d{4})[/\\]month=(\d{2})[/\\]day=(\d{2})", str(path))
        if match:
            return f"{match.group(1)}-{match.group(2)}-{match.group(3)}"
        return None

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append a log entry to the current day's JSONL file.

        Args:
            level: Log level (INFO, WARNING, ERROR)
            category: Event category, one of LOG_CATEGORIES
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

        line = json.dumps(entry, default=str)

        with self._write_lock:
            log_file = self._get_hive_dir(now) / "events.jsonl"
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

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

    def save_run_jsonl(
        self,
        run_id: str,
        summary: dict[str, Any],
        completed_at: datetime,
    ) -> Path:
        """Write a per-run JSONL summary file next to that day's events.

        Returns:
            Path to the written file
        """
        out_path = self._get_hive_dir(completed_at) / f"run-{run_id}.jsonl"
        line = json.dumps(summary, default=str)
        with self._write_lock:
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(line + "\n")
        return out_path

    def _event_files(self, date: str | None) -> list[Path]:
        """Daily event files for one YYYY-MM-DD date, or every day newest first."""
        json_dir = self._get_log_dir() / "json"
        if not date:
            return sorted(json_dir.rglob("events.jsonl"), reverse=True)

        try:
            day = datetime.strptime(date, "%Y-%m-%d")
        except ValueError:
            return []
        events_file = self._get_hive_dir_path(day) / "events.jsonl"
        return [events_file] if events_file.exists() else []

    @staticmethod
    def _matches(
        entry: dict[str, Any],
        level: str | None,
        category: str | None,
        run_id: str | None,
        search: str | None,
    ) -> bool:
        if level and str(entry.get("level", "")).upper() != level.upper():
            return False
        if category and entry.get("category") != category:
            return False

        metadata = entry.get("metadata") or {}
        if run_id and metadata.get("run_id") != run_id:
            return False
        if search:
            # Uploaded paths live in metadata, so a file name search finds its events
            haystack = " ".join(
                str(part)
                for part in (
                    entry.get("message", ""),
                    entry.get("event", ""),
                    metadata.get("source_path", ""),
                )
            )
            if search.lower() not in haystack.lower():
                return False
        return True

    def read_log_entries(
        self,
        date: str | None = None,
        level: str | None = None,
        category: str | None = None,
        run_id: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> dict[str, Any]:
        """Filter logged events, newest first, and return one page.

        Args:
            date: Only this day (YYYY-MM-DD); an unparseable date matches nothing
            level: INFO, WARNING or ERROR, case-insensitive
            category: One of LOG_CATEGORIES
            run_id: Only events of one upload run
            search: Case-insensitive text in the message, event name or source path
            offset: Number of matching entries to skip
            limit: Maximum entries to return

        Returns:
            Dict with entries, total, offset and limit
        """
        matched: list[dict[str, Any]] = []
        for events_file in self._event_files(date):
            try:
                lines = events_file.read_text(encoding="utf-8").splitlines()
            except OSError:
                continue
            for line in lines:
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if self._matches(entry, level, category, run_id, search):
                    matched.append(entry)

        matched.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
        return {
            "entries": matched[offset : offset + limit],
            "total": len(matched),
            "offset": offset,
            "limit": limit,
        }

    def list_run_summaries(self) -> list[dict[str, Any]]:
        """List per-run summary files, newest first."""
        json_dir = self._get_log_dir() / "json"
        if not json_dir.exists():
            return []

        result: list[dict[str, Any]] = []
        for f in sorted(json_dir.rglob("run-*.jsonl"), reverse=True):
            result.append({
                "date": self._extract_date_from_hive_path(f),
                "filename": f.name,
                "relative_path": str(f.relative_to(self._get_log_dir())),
                "size_bytes": f.stat().st_size,
            })
        return result


# Module-level singleton accessor
_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
