"""Upload manager: runs the discover, check, upload and record pipeline."""

import logging
import threading
import uuid
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from folder_uploader.config import Settings, get_settings
from folder_uploader.errors import ConfigurationError, PersistenceError, UploadCancelled
from folder_uploader.services import s3_service
from folder_uploader.services.discovery import DiscoveredFile, FileDiscovery, FileFilters
from folder_uploader.services.log_service import LogService, get_log_service
from folder_uploader.services.progress_store import ProgressRecord, ProgressStore
from folder_uploader.services.upload_executor import BlobStore, UploadExecutor, UploadOutcome
from folder_uploader.services.upload_state import (
    FolderProgress,
    UploadStateService,
    get_upload_state,
)
from folder_uploader.services.utils import format_file_size, truncate_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunSummary:
    """Counters reported when a run ends."""

    run_id: str
    discovered: int
    succeeded: int
    skipped: int
    failed: int
    cancelled: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "run_id": self.run_id,
            "discovered": self.discovered,
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "cancelled": self.cancelled,
        }


def build_discovery(settings: Settings) -> FileDiscovery:
    """Discovery engine configured from settings."""
    return FileDiscovery(
        settings.source_folders,
        recursive=settings.scan_recursively,
        filters=FileFilters.from_lists(
            settings.include_extensions,
            settings.exclude_extensions,
            settings.exclude_file_names,
        ),
    )


def build_s3_blob_store(settings: Settings) -> s3_service.S3BlobStore:
    """Create the S3 blob store and check the bucket is reachable.

    Raises:
        ConfigurationError: if the client cannot be created or the bucket is not accessible
    """
    try:
        client = s3_service.create_s3_client(settings.aws_profile, settings.aws_region)
    except Exception as e:
        raise ConfigurationError([f"Failed to create S3 client: {e}"]) from e

    result = s3_service.validate_bucket_access(client, settings.s3_bucket)
    if not result["success"]:
        raise ConfigurationError([result["error"]])

    return s3_service.S3BlobStore(client, settings.s3_bucket)


class UploadPipeline:
    """One sequential pass over the configured source folders."""

    def __init__(
        self,
        settings: Settings,
        blob_store: BlobStore,
        store: ProgressStore,
        state: UploadStateService | None = None,
        log: LogService | None = None,
        discovery: FileDiscovery | None = None,
        cancel_event: threading.Event | None = None,
        executor: UploadExecutor | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.state = state or get_upload_state()
        self.log = log or get_log_service()
        self.discovery = discovery or build_discovery(settings)
        self.cancel_event = cancel_event or threading.Event()
        self.executor = executor or UploadExecutor(
            blob_store,
            max_retries=settings.max_retries,
            blob_prefix=settings.blob_prefix,
            cancel_event=self.cancel_event,
        )
        self.run_id = uuid.uuid4().hex[:12]

        self.discovered = 0
        self.succeeded = 0
        self.skipped = 0
        self.failed = 0

    def run(self) -> RunSummary:
        """Run the pipeline to completion or cancellation.

        Raises:
            ConfigurationError: before any file is processed
            PersistenceError: when progress cannot be saved; the run stops
        """
        self.settings.validate()

        self.state.initialize(
            self.settings.source_folders,
            self.settings.destination_label,
            self.settings.delay_between_files_ms,
        )

        try:
            cancelled = self._run_files()
        except PersistenceError as e:
            logger.error("Fatal error during upload process: %s", e)
            self.log.error(
                "progress",
                "progress_save_failed",
                f"Fatal error during upload process: {e}",
                {"run_id": self.run_id, "error": str(e)},
            )
            raise
        finally:
            self.state.set_completed()

        return self._finish(cancelled)

    def _run_files(self) -> bool:
        """Load progress and process every discovered file; returns True when cancelled."""
        self.log.info(
            "run",
            "run_started",
            f"Upload run started to {self.settings.destination_label}",
            {
                "run_id": self.run_id,
                "source_folders": self.settings.source_folders,
                "destination": self.settings.destination_label,
            },
        )

        # Loading first sets a corrupt database aside before the legacy import writes to it
        record = self.store.load()
        migrated = self.store.migrate_legacy_json(self.settings.legacy_progress_file)
        if migrated:
            self.log.info(
                "progress",
                "legacy_progress_migrated",
                f"Imported {migrated} entries from legacy progress file",
                {"run_id": self.run_id, "entries": migrated},
            )
            record = self.store.load()
        record.started_at = datetime.now(UTC)
        record.completed_at = None

        cancelled = False
        try:
            for folder_path, file in self._iter_files():
                if self.cancel_event.is_set():
                    raise UploadCancelled("Cancellation requested")
                self._process_file(record, file, folder_path)
        except UploadCancelled as e:
            cancelled = True
            self.state.set_enumerating(False)
            logger.warning("Upload operation was cancelled: %s", e)
            self.log.warning(
                "run",
                "run_cancelled",
                "Upload operation was cancelled",
                {"run_id": self.run_id},
            )

        if not cancelled:
            record.completed_at = datetime.now(UTC)
        self.store.save(record)
        return cancelled

    def _iter_files(self) -> Iterator[tuple[str | None, DiscoveredFile]]:
        """Yield (folder_path, file) in upload order, reporting discovery into the state."""
        if not self.settings.pre_enumerate:
            logger.info("Starting file discovery...")
            for file in self.discovery.discover():
                self.discovered += 1
                self.state.update_discovered(self.discovered)
                yield None, file
            return

        self.state.set_enumerating(True, "Scanning source folders...")

        def on_folder_visited(folder_path: str, folders_visited: int, files_found: int) -> None:
            self.state.set_enumerating(
                True,
                f"Scanned {folders_visited} folders, {files_found} files: "
                f"{truncate_path(folder_path, 60)}",
            )
            if self.cancel_event.is_set():
                raise UploadCancelled("Cancellation requested during enumeration")

        enumeration = self.discovery.pre_enumerate_all(on_folder_visited)
        self.discovered = enumeration.total_files
        self.state.set_enumeration_counts(
            enumeration.total_folders,
            enumeration.total_files,
            [
                FolderProgress(
                    folder_path=folder.folder_path,
                    display_name=folder.display_name,
                    total_files=len(folder.files),
                )
                for folder in enumeration.folders
            ],
        )
        self.state.set_enumerating(False)
        self.log.info(
            "discovery",
            "enumeration_completed",
            f"Found {enumeration.total_files} files in {enumeration.total_folders} folders",
            {
                "run_id": self.run_id,
                "total_files": enumeration.total_files,
                "total_folders": enumeration.total_folders,
            },
        )

        for folder in enumeration.folders:
            self.state.set_current_folder(folder.folder_path)
            for file in folder.files:
                yield folder.folder_path, file

    def _process_file(
        self,
        record: ProgressRecord,
        file: DiscoveredFile,
        folder_path: str | None,
    ) -> None:
        self.state.set_current_file(file.full_path, file.size)

        try:
            file = FileDiscovery.with_fingerprint(file)
        except OSError as e:
            # Unreadable content still gets a failed record keyed by an empty fingerprint
            outcome = UploadOutcome(
                success=False,
                source_path=file.full_path,
                blob_name=self.executor.blob_name_for(file),
                fingerprint="",
                error_message=f"Failed to read file: {e}",
                attempts=0,
            )
            self._record_outcome(record, file, outcome, folder_path)
            return

        if self.store.is_completed(record, file):
            logger.debug("Skipping already completed file: %s", file.full_path)
            self.skipped += 1
            self.state.record_skipped(folder_path)
            return

        logger.info(
            "Processing file %s (%s)",
            file.file_name,
            format_file_size(file.size),
        )
        outcome = self.executor.upload(file)
        self._record_outcome(record, file, outcome, folder_path)

        delay_ms = self.settings.delay_between_files_ms
        if delay_ms > 0 and self.cancel_event.wait(delay_ms / 1000):
            raise UploadCancelled("Cancelled during throttle delay")

    def _record_outcome(
        self,
        record: ProgressRecord,
        file: DiscoveredFile,
        outcome: UploadOutcome,
        folder_path: str | None,
    ) -> None:
        """Stage the outcome, make it durable, then reflect it into the run state."""
        if outcome.success:
            self.store.mark_completed(record, outcome)
        else:
            self.store.mark_failed(record, outcome)
        self.store.save(record)

        if outcome.success:
            self.succeeded += 1
            self.state.record_success(folder_path)
            self.log.info(
                "upload",
                "file_upload_completed",
                f"Uploaded {file.file_name}",
                {
                    "run_id": self.run_id,
                    "source_path": outcome.source_path,
                    "blob_name": outcome.blob_name,
                    "file_size": file.size,
                    "attempts": outcome.attempts,
                },
            )
        else:
            self.failed += 1
            self.state.record_failed(outcome.error_message, folder_path)
            self.log.error(
                "upload",
                "file_upload_failed",
                f"Failed to upload {file.file_name}: {outcome.error_message}",
                {
                    "run_id": self.run_id,
                    "source_path": outcome.source_path,
                    "blob_name": outcome.blob_name,
                    "error": outcome.error_message,
                    "attempts": outcome.attempts,
                },
            )

    def _finish(self, cancelled: bool) -> RunSummary:
        summary = RunSummary(
            run_id=self.run_id,
            discovered=self.discovered,
            succeeded=self.succeeded,
            skipped=self.skipped,
            failed=self.failed,
            cancelled=cancelled,
        )

        logger.info(
            "Upload Summary: %d files discovered, %d uploaded, "
            "%d skipped (already done), %d failed",
            summary.discovered,
            summary.succeeded,
            summary.skipped,
            summary.failed,
        )
        self.log.info(
            "run",
            "run_completed",
            f"Upload run {'cancelled' if cancelled else 'completed'}: "
            f"{summary.succeeded} uploaded, {summary.skipped} skipped, {summary.failed} failed",
            summary.to_dict(),
        )

        completed_at = datetime.now(UTC)
        try:
            self.log.save_run_jsonl(
                self.run_id,
                {
                    "timestamp": completed_at.isoformat(),
                    "event": "run_completed",
                    "destination": self.settings.destination_label,
                    **summary.to_dict(),
                },
                completed_at,
            )
        except OSError:
            logger.warning("Failed to save run JSONL summary", exc_info=True)

        return summary


class UploadManager:
    """Runs at most one pipeline at a time on a background thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._cancel_event = threading.Event()
        self.last_summary: RunSummary | None = None
        self.last_error: str | None = None

    def is_running(self) -> bool:
        with self._lock:
            return self._thread is not None and self._thread.is_alive()

    def start_run(self, blob_store: BlobStore | None = None) -> bool:
        """Start a run in the background.

        Returns:
            False if a run is already active
        """
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return False
            self._cancel_event = threading.Event()
            self.last_error = None
            self._thread = threading.Thread(
                target=self._run,
                args=(blob_store, self._cancel_event),
                name="upload-run",
                daemon=True,
            )
            self._thread.start()
        return True

    def cancel_run(self) -> bool:
        """Signal the active run to stop; returns False when nothing is running."""
        if not self.is_running():
            return False
        self._cancel_event.set()
        get_log_service().warning("run", "run_cancel_requested", "Cancellation requested")
        return True

    def wait(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _run(self, blob_store: BlobStore | None, cancel_event: threading.Event) -> None:
        try:
            self._execute(blob_store, cancel_event)
        except (ConfigurationError, PersistenceError) as e:
            self.last_error = str(e)
            logger.error("Upload run failed: %s", e)
        except Exception as e:
            self.last_error = str(e)
            logger.exception("Unexpected error during upload run")

    def _execute(self, blob_store: BlobStore | None, cancel_event: threading.Event) -> RunSummary:
        settings = get_settings()
        settings.validate()
        store = ProgressStore(settings.progress_database)
        try:
            pipeline = UploadPipeline(
                settings,
                blob_store or build_s3_blob_store(settings),
                store,
                cancel_event=cancel_event,
            )
            summary = pipeline.run()
        finally:
            store.close()
        self.last_summary = summary
        return summary


_upload_manager: UploadManager | None = None


def get_upload_manager() -> UploadManager:
    """Get the singleton upload manager."""
    global _upload_manager
    if _upload_manager is None:
        _upload_manager = UploadManager()
    return _upload_manager
