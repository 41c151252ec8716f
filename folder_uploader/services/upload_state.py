"""Thread-safe run state shared between the upload pipeline and its observers."""

import copy
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from folder_uploader.services.utils import format_elapsed, format_file_size

logger = logging.getLogger(__name__)


@dataclass
class FolderProgress:
    """Progress of one pre-enumerated folder."""

    folder_path: str
    display_name: str
    total_files: int
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    is_current: bool = False

    @property
    def processed(self) -> int:
        return self.succeeded + self.skipped + self.failed

    @property
    def is_completed(self) -> bool:
        return self.processed >= self.total_files

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "folder_path": self.folder_path,
            "display_name": self.display_name,
            "total_files": self.total_files,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "processed": self.processed,
            "is_current": self.is_current,
            "is_completed": self.is_completed,
        }


@dataclass
class RunState:
    """Aggregate counters and current item of an upload run."""

    source_folders: list[str] = field(default_factory=list)
    destination: str = ""
    total_discovered: int = 0
    total_folders: int = 0
    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    current_file: str = ""
    current_file_size: int = 0
    session_started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    throttle_delay_ms: int = 0
    is_completed: bool = False
    last_error: str | None = None
    is_enumerating: bool = False
    enumeration_status: str = ""
    folders: list[FolderProgress] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.succeeded + self.skipped + self.failed

    @property
    def elapsed_seconds(self) -> float:
        return (datetime.now(UTC) - self.session_started_at).total_seconds()

    @property
    def files_per_second(self) -> float:
        elapsed = self.elapsed_seconds
        return self.processed / elapsed if elapsed > 0 else 0.0

    @property
    def progress_percent(self) -> float:
        if self.total_discovered == 0:
            return 0.0
        return round(min(self.processed / self.total_discovered, 1.0) * 100, 1)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "source_folders": self.source_folders,
            "destination": self.destination,
            "total_discovered": self.total_discovered,
            "total_folders": self.total_folders,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "processed": self.processed,
            "progress_percent": self.progress_percent,
            "current_file": self.current_file,
            "current_file_size": self.current_file_size,
            "current_file_size_formatted": format_file_size(self.current_file_size),
            "session_started_at": self.session_started_at.isoformat(),
            "elapsed": format_elapsed(self.elapsed_seconds),
            "files_per_second": round(self.files_per_second, 2),
            "throttle_delay_ms": self.throttle_delay_ms,
            "is_completed": self.is_completed,
            "last_error": self.last_error,
            "is_enumerating": self.is_enumerating,
            "enumeration_status": self.enumeration_status,
            "folders": [f.to_dict() for f in self.folders],
        }


StateListener = Callable[[], None]


class UploadStateService:
    """Owns the RunState; every mutation goes through a method holding the lock.

    Listeners are notified after the lock is released, so a listener may call
    current_state() without deadlocking.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = RunState()
        self._listeners: list[StateListener] = []

    def current_state(self) -> RunState:
        """Return a deep copy of the run state, safe to read while the run continues."""
        with self._lock:
            return copy.deepcopy(self._state)

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener()
            except Exception:
                logger.warning("State listener raised", exc_info=True)

    def _find_folder(self, folder_path: str | None) -> FolderProgress | None:
        if folder_path is None:
            return None
        for folder in self._state.folders:
            if folder.folder_path == folder_path:
                return folder
        return None

    def initialize(
        self,
        source_folders: Iterable[str],
        destination: str,
        throttle_delay_ms: int,
    ) -> None:
        """Reset all counters and start a new session clock."""
        with self._lock:
            self._state = RunState(
                source_folders=list(source_folders),
                destination=destination,
                throttle_delay_ms=throttle_delay_ms,
                session_started_at=datetime.now(UTC),
            )
        self._notify()

    def update_discovered(self, count: int) -> None:
        with self._lock:
            self._state.total_discovered = count
        self._notify()

    def set_current_file(self, file_path: str, file_size: int) -> None:
        with self._lock:
            self._state.current_file = file_path
            self._state.current_file_size = file_size
        self._notify()

    def record_success(self, folder_path: str | None = None) -> None:
        with self._lock:
            self._state.succeeded += 1
            self._state.last_error = None
            folder = self._find_folder(folder_path)
            if folder is not None:
                folder.succeeded += 1
        self._notify()

    def record_skipped(self, folder_path: str | None = None) -> None:
        with self._lock:
            self._state.skipped += 1
            folder = self._find_folder(folder_path)
            if folder is not None:
                folder.skipped += 1
        self._notify()

    def record_failed(
        self,
        error_message: str | None = None,
        folder_path: str | None = None,
    ) -> None:
        with self._lock:
            self._state.failed += 1
            self._state.last_error = error_message
            folder = self._find_folder(folder_path)
            if folder is not None:
                folder.failed += 1
        self._notify()

    def set_completed(self) -> None:
        """Mark the run terminal and clear the current file."""
        with self._lock:
            self._state.is_completed = True
            self._state.current_file = ""
            self._state.current_file_size = 0
        self._notify()

    def set_enumerating(self, is_enumerating: bool, status: str | None = None) -> None:
        with self._lock:
            self._state.is_enumerating = is_enumerating
            self._state.enumeration_status = status or ""
        self._notify()

    def set_enumeration_counts(
        self,
        total_folders: int,
        total_files: int,
        folders: Iterable[FolderProgress],
    ) -> None:
        """Publish pre-enumeration totals; the folder list is copied, not shared."""
        with self._lock:
            self._state.total_folders = total_folders
            self._state.total_discovered = total_files
            self._state.folders = [copy.copy(f) for f in folders]
        self._notify()

    def set_current_folder(self, folder_path: str) -> None:
        """Flag exactly one folder as current."""
        with self._lock:
            for folder in self._state.folders:
                folder.is_current = folder.folder_path == folder_path
        self._notify()


# Global state instance
_upload_state: UploadStateService | None = None


def get_upload_state() -> UploadStateService:
    """Get the global upload state instance."""
    global _upload_state
    if _upload_state is None:
        _upload_state = UploadStateService()
    return _upload_state
