"""SQLite progress store recording which file versions were uploaded or failed.

A file version is identified by (source_path, fingerprint). Outcomes are staged
on the in-memory ProgressRecord by mark_completed()/mark_failed() and become
durable only when save() commits them in a single transaction, so a crash in
between leaves the previous durable state untouched.
"""

import json
import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from folder_uploader.errors import PersistenceError
from folder_uploader.services.discovery import DiscoveredFile
from folder_uploader.services.upload_executor import UploadOutcome

logger = logging.getLogger(__name__)

ProgressKey = tuple[str, str]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        logger.debug("Unparseable timestamp %r", value)
        return None
    # Handle naive timestamps (treat as UTC)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class ProgressEntry:
    """A completed or failed upload of one file version."""

    source_path: str
    blob_name: str
    fingerprint: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    error_message: str | None = None

    @property
    def key(self) -> ProgressKey:
        return (self.source_path, self.fingerprint)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "source_path": self.source_path,
            "blob_name": self.blob_name,
            "fingerprint": self.fingerprint,
            "timestamp": self.timestamp.isoformat(),
            "error_message": self.error_message,
        }


@dataclass
class ProgressRecord:
    """In-memory view of the progress store plus mutations not yet saved."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    completed_at: datetime | None = None
    completed: dict[ProgressKey, ProgressEntry] = field(default_factory=dict)
    failed: dict[ProgressKey, ProgressEntry] = field(default_factory=dict)
    pending: list[tuple[str, ProgressEntry]] = field(default_factory=list, repr=False)

    @property
    def has_pending(self) -> bool:
        return bool(self.pending)


class ProgressStore:
    """Durable upload progress backed by SQLite, guarded by a single lock."""

    def __init__(self, database_path: str | Path) -> None:
        self._db_path = Path(database_path)
        self._lock = threading.Lock()
        self._connection: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get the shared database connection, creating the schema on first use."""
        if self._connection is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                timeout=30.0,
            )
            conn.row_factory = sqlite3.Row
            try:
                self._init_db(conn)
            except sqlite3.Error:
                conn.close()
                raise
            self._connection = conn
        return self._connection

    @staticmethod
    def _init_db(conn: sqlite3.Connection) -> None:
        """Initialize the database schema."""
        cursor = conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=FULL")

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS upload_sessions (
                id INTEGER PRIMARY KEY,
                started_at TEXT NOT NULL,
                completed_at TEXT
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS completed_files (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_path TEXT NOT NULL,
                blob_name TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                UNIQUE(source_path, fingerprint)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS failed_files (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                source_path TEXT NOT NULL,
                blob_name TEXT NOT NULL,
                fingerprint TEXT NOT NULL,
                timestamp TEXT NOT NULL,
                error_message TEXT,
                UNIQUE(source_path, fingerprint)
            )
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_completed_path ON completed_files(source_path)
        """)

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_failed_path ON failed_files(source_path)
        """)

        conn.commit()

    def load(self) -> ProgressRecord:
        """Load the durable progress into a fresh record.

        A missing database yields an empty record. A corrupt database is moved
        aside and replaced by an empty one: re-uploading is always safe because
        uploads overwrite the target object. A database that cannot be opened
        or is locked is left untouched.

        Raises:
            PersistenceError: if the database cannot be opened or read
        """
        with self._lock:
            try:
                record = self._read_record()
            except sqlite3.DatabaseError as e:
                self._recover_from(e)
                try:
                    record = self._read_record()
                except sqlite3.Error as retry_error:
                    raise PersistenceError(
                        f"Cannot initialize progress database {self._db_path}: {retry_error}"
                    ) from retry_error

        logger.info(
            "Loaded progress: %d completed, %d failed",
            len(record.completed),
            len(record.failed),
        )
        return record

    def _read_record(self) -> ProgressRecord:
        conn = self._get_connection()
        cursor = conn.cursor()
        record = ProgressRecord()

        cursor.execute("SELECT started_at, completed_at FROM upload_sessions WHERE id = 1")
        row = cursor.fetchone()
        if row is not None:
            record.started_at = _parse_timestamp(row["started_at"]) or record.started_at
            record.completed_at = _parse_timestamp(row["completed_at"])

        cursor.execute(
            "SELECT source_path, blob_name, fingerprint, timestamp FROM completed_files"
        )
        for row in cursor.fetchall():
            entry = ProgressEntry(
                source_path=row["source_path"],
                blob_name=row["blob_name"],
                fingerprint=row["fingerprint"],
                timestamp=_parse_timestamp(row["timestamp"]) or datetime.now(UTC),
            )
            record.completed[entry.key] = entry

        cursor.execute(
            """
            SELECT source_path, blob_name, fingerprint, timestamp, error_message
            FROM failed_files
            """
        )
        for row in cursor.fetchall():
            entry = ProgressEntry(
                source_path=row["source_path"],
                blob_name=row["blob_name"],
                fingerprint=row["fingerprint"],
                timestamp=_parse_timestamp(row["timestamp"]) or datetime.now(UTC),
                error_message=row["error_message"],
            )
            record.failed[entry.key] = entry

        return record

    def _recover_from(self, error: sqlite3.DatabaseError) -> None:
        """Quarantine a corrupt database; any other database error is fatal.

        OperationalError covers unopenable, locked and read-only databases, whose
        contents are still valid and must not be moved aside.

        Raises:
            PersistenceError: for operational errors, or if quarantining fails
        """
        if isinstance(error, sqlite3.OperationalError):
            self._close_connection()
            raise PersistenceError(
                f"Cannot open progress database {self._db_path}: {error}"
            ) from error

        logger.warning("Progress database %s is corrupt, starting fresh: %s",
                       self._db_path, error)
        self._quarantine_database()

    def _close_connection(self) -> None:
        if self._connection is not None:
            try:
                self._connection.close()
            except sqlite3.Error:
                logger.debug("Closing progress database failed", exc_info=True)
            self._connection = None

    def _quarantine_database(self) -> None:
        """Close and rename a corrupt database (and its WAL files) out of the way."""
        self._close_connection()

        stamp = datetime.now(UTC).strftime("%Y%m%d%H%M%S")
        for suffix in ("", "-wal", "-shm"):
            path = Path(f"{self._db_path}{suffix}")
            if not path.exists():
                continue
            try:
                path.replace(Path(f"{self._db_path}.corrupt-{stamp}{suffix}"))
            except OSError as e:
                raise PersistenceError(
                    f"Cannot move corrupt progress database {path} aside: {e}"
                ) from e

    @staticmethod
    def is_completed(record: ProgressRecord, file: DiscoveredFile) -> bool:
        """True when this exact file version (path and fingerprint) was already uploaded."""
        if file.fingerprint is None:
            return False
        return (file.full_path, file.fingerprint) in record.completed

    @staticmethod
    def mark_completed(record: ProgressRecord, outcome: UploadOutcome) -> None:
        """Stage a successful upload; supersedes failed and older completed entries of the path."""
        entry = ProgressEntry(
            source_path=outcome.source_path,
            blob_name=outcome.blob_name,
            fingerprint=outcome.fingerprint,
        )
        for key in [k for k in record.failed if k[0] == entry.source_path]:
            del record.failed[key]
        for key in [
            k for k in record.completed if k[0] == entry.source_path and k != entry.key
        ]:
            del record.completed[key]

        record.completed[entry.key] = entry
        record.pending.append(("completed", entry))

    @staticmethod
    def mark_failed(record: ProgressRecord, outcome: UploadOutcome) -> None:
        """Stage a failed upload with its error message."""
        entry = ProgressEntry(
            source_path=outcome.source_path,
            blob_name=outcome.blob_name,
            fingerprint=outcome.fingerprint,
            error_message=outcome.error_message,
        )
        for key in [k for k in record.failed if k[0] == entry.source_path]:
            del record.failed[key]
        record.completed.pop(entry.key, None)

        record.failed[entry.key] = entry
        record.pending.append(("failed", entry))

    def save(self, record: ProgressRecord) -> None:
        """Commit staged mutations and the session row in one transaction.

        Raises:
            PersistenceError: if the transaction cannot be committed
        """
        with self._lock:
            try:
                conn = self._get_connection()
                with conn:
                    cursor = conn.cursor()
                    for kind, entry in record.pending:
                        if kind == "completed":
                            self._write_completed(cursor, entry)
                        else:
                            self._write_failed(cursor, entry)
                    cursor.execute(
                        """
                        INSERT INTO upload_sessions (id, started_at, completed_at)
                        VALUES (1, ?, ?)
                        ON CONFLICT(id) DO UPDATE SET
                            started_at = excluded.started_at,
                            completed_at = excluded.completed_at
                        """,
                        (
                            record.started_at.isoformat(),
                            record.completed_at.isoformat() if record.completed_at else None,
                        ),
                    )
            except sqlite3.Error as e:
                logger.error("Failed to save progress to %s: %s", self._db_path, e)
                raise PersistenceError(f"Failed to save progress: {e}") from e

            record.pending.clear()

    @staticmethod
    def _write_completed(cursor: sqlite3.Cursor, entry: ProgressEntry) -> None:
        cursor.execute("DELETE FROM failed_files WHERE source_path = ?", (entry.source_path,))
        cursor.execute(
            "DELETE FROM completed_files WHERE source_path = ? AND fingerprint != ?",
            (entry.source_path, entry.fingerprint),
        )
        cursor.execute(
            """
            INSERT INTO completed_files (source_path, blob_name, fingerprint, timestamp)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(source_path, fingerprint) DO UPDATE SET
                blob_name = excluded.blob_name,
                timestamp = excluded.timestamp
            """,
            (entry.source_path, entry.blob_name, entry.fingerprint, entry.timestamp.isoformat()),
        )

    @staticmethod
    def _write_failed(cursor: sqlite3.Cursor, entry: ProgressEntry) -> None:
        cursor.execute(
            "DELETE FROM failed_files WHERE source_path = ? AND fingerprint != ?",
            (entry.source_path, entry.fingerprint),
        )
        cursor.execute(
            "DELETE FROM completed_files WHERE source_path = ? AND fingerprint = ?",
            (entry.source_path, entry.fingerprint),
        )
        cursor.execute(
            """
            INSERT INTO failed_files
                (source_path, blob_name, fingerprint, timestamp, error_message)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(source_path, fingerprint) DO UPDATE SET
                blob_name = excluded.blob_name,
                timestamp = excluded.timestamp,
                error_message = excluded.error_message
            """,
            (
                entry.source_path,
                entry.blob_name,
                entry.fingerprint,
                entry.timestamp.isoformat(),
                entry.error_message,
            ),
        )

    def failed_entries(self, limit: int = 1000, offset: int = 0) -> list[ProgressEntry]:
        """Durably recorded failures, newest first."""
        with self._lock:
            try:
                cursor = self._get_connection().cursor()
                cursor.execute(
                    """
                    SELECT source_path, blob_name, fingerprint, timestamp, error_message
                    FROM failed_files
                    ORDER BY timestamp DESC
                    LIMIT ? OFFSET ?
                    """,
                    (limit, offset),
                )
                rows = cursor.fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to read progress: {e}") from e

        return [
            ProgressEntry(
                source_path=row["source_path"],
                blob_name=row["blob_name"],
                fingerprint=row["fingerprint"],
                timestamp=_parse_timestamp(row["timestamp"]) or datetime.now(UTC),
                error_message=row["error_message"],
            )
            for row in rows
        ]

    def get_stats(self) -> dict[str, Any]:
        """Counts and session timestamps from the durable store."""
        with self._lock:
            try:
                cursor = self._get_connection().cursor()
                cursor.execute("SELECT COUNT(*) FROM completed_files")
                completed_count = cursor.fetchone()[0]
                cursor.execute("SELECT COUNT(*) FROM failed_files")
                failed_count = cursor.fetchone()[0]
                cursor.execute("SELECT started_at, completed_at FROM upload_sessions WHERE id = 1")
                session = cursor.fetchone()
            except sqlite3.Error as e:
                raise PersistenceError(f"Failed to read progress: {e}") from e

        return {
            "completed_count": completed_count,
            "failed_count": failed_count,
            "started_at": session["started_at"] if session else None,
            "completed_at": session["completed_at"] if session else None,
            "database": str(self._db_path),
        }

    def migrate_legacy_json(self, json_path: str | Path) -> int:
        """Import a flat-file JSON progress document once, then rename it *.migrated.

        Accepts both camelCase and PascalCase keys, and "fingerprint" or "checksum"
        for the digest. An unreadable document is logged and left in place.

        Returns:
            Number of entries imported
        """
        path = Path(json_path)
        if not path.exists():
            return 0

        try:
            with open(path, encoding="utf-8") as f:
                document = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Failed to read legacy progress file %s: %s", path, e)
            return 0

        record = ProgressRecord()
        started_at = _parse_timestamp(_pick(document, "startedAt", "StartedAt"))
        if started_at:
            record.started_at = started_at
        record.completed_at = _parse_timestamp(_pick(document, "completedAt", "CompletedAt"))

        imported = 0
        for raw in _pick(document, "completedFiles", "CompletedFiles") or []:
            entry = _legacy_entry(raw)
            if entry is None:
                continue
            record.completed[entry.key] = entry
            record.pending.append(("completed", entry))
            imported += 1

        for raw in _pick(document, "failedFiles", "FailedFiles") or []:
            entry = _legacy_entry(raw)
            if entry is None or entry.key in record.completed:
                continue
            record.pending.append(("failed", entry))
            imported += 1

        with self._lock:
            try:
                self._get_connection()
            except sqlite3.DatabaseError as e:
                self._recover_from(e)
        self.save(record)
        path.replace(path.with_name(path.name + ".migrated"))

        logger.info("Migrated %d entries from legacy progress file %s", imported, path)
        return imported

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def _pick(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _legacy_entry(raw: dict[str, Any]) -> ProgressEntry | None:
    source_path = _pick(raw, "sourcePath", "SourcePath")
    fingerprint = _pick(raw, "fingerprint", "checksum", "Checksum")
    if not source_path or not fingerprint:
        return None
    return ProgressEntry(
        source_path=source_path,
        blob_name=_pick(raw, "blobName", "BlobName") or "",
        fingerprint=fingerprint,
        timestamp=_parse_timestamp(_pick(raw, "timestamp", "Timestamp")) or datetime.now(UTC),
        error_message=_pick(raw, "error", "errorMessage", "ErrorMessage"),
    )
