"""Single-file upload with bounded exponential-backoff retry.

The retry policy is an explicit state machine. ``next_state()`` is a pure
function of (retries used, error classification, max retries); the executor
only performs the side effects each state calls for: the upload call itself
and the backoff sleep.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Protocol, runtime_checkable

from folder_uploader.errors import TransientStorageError, UploadCancelled
from folder_uploader.services.discovery import DiscoveredFile

logger = logging.getLogger(__name__)


@runtime_checkable
class BlobStore(Protocol):
    """Remote storage capability used by the executor.

    Implementations raise TransientStorageError for overload, rate limiting and
    5xx-class faults. Any other exception is treated as permanent.
    """

    def upload_blob(self, blob_name: str, stream: BinaryIO) -> None:
        """Upload the stream's bytes to blob_name, overwriting any existing object."""
        ...


class Classification(Enum):
    """Result of one upload attempt."""

    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class RetryState(Enum):
    """States of a single file's upload."""

    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    SUCCEEDED = "succeeded"
    PERMANENTLY_FAILED = "permanently_failed"
    RETRIES_EXHAUSTED = "retries_exhausted"


TERMINAL_STATES = frozenset(
    {RetryState.SUCCEEDED, RetryState.PERMANENTLY_FAILED, RetryState.RETRIES_EXHAUSTED}
)


def next_state(retries_used: int, classification: Classification, max_retries: int) -> RetryState:
    """Decide what follows an attempt.

    Args:
        retries_used: Retries already performed before this attempt (0 on the first)
        classification: How the attempt ended
        max_retries: Configured retry cap

    Returns:
        BACKOFF while transient failures have retries left, otherwise a terminal state
    """
    if classification is Classification.SUCCESS:
        return RetryState.SUCCEEDED
    if classification is Classification.PERMANENT:
        return RetryState.PERMANENTLY_FAILED
    if retries_used < max_retries:
        return RetryState.BACKOFF
    return RetryState.RETRIES_EXHAUSTED


def backoff_delay(retry_number: int) -> float:
    """Seconds to wait before retry number ``retry_number`` (starting at 1)."""
    return float(2**retry_number)


def classify(error: BaseException | None) -> Classification:
    if error is None:
        return Classification.SUCCESS
    if isinstance(error, TransientStorageError):
        return Classification.TRANSIENT
    return Classification.PERMANENT


def build_blob_name(file_name: str, prefix: str | None) -> str:
    """Join an optional prefix and a file name with exactly one '/'."""
    if not prefix or not prefix.strip():
        return file_name
    return f"{prefix.rstrip('/')}/{file_name}"


@dataclass(frozen=True)
class UploadOutcome:
    """Immutable result of uploading one file, after retries."""

    success: bool
    source_path: str
    blob_name: str
    fingerprint: str
    error_message: str | None = None
    attempts: int = 1


class UploadExecutor:
    """Drives one file at a time through the blob store."""

    def __init__(
        self,
        blob_store: BlobStore,
        max_retries: int = 3,
        blob_prefix: str | None = None,
        cancel_event: threading.Event | None = None,
        sleep: Callable[[float], bool] | None = None,
    ) -> None:
        """
        Args:
            blob_store: Remote storage to upload into
            max_retries: Retries allowed after the first attempt for transient failures
            blob_prefix: Optional key prefix ("virtual folder")
            cancel_event: Set to abandon an in-flight backoff
            sleep: Waits the given seconds and returns True if cancelled during the
                wait; defaults to cancel_event.wait
        """
        self.blob_store = blob_store
        self.max_retries = max_retries
        self.blob_prefix = blob_prefix
        self.cancel_event = cancel_event or threading.Event()
        self._sleep = sleep or self.cancel_event.wait

    def blob_name_for(self, file: DiscoveredFile) -> str:
        return build_blob_name(file.file_name, self.blob_prefix)

    def upload(self, file: DiscoveredFile) -> UploadOutcome:
        """Upload a fingerprinted file, retrying transient failures.

        Raises:
            ValueError: if the file has no fingerprint attached
            UploadCancelled: if cancellation is requested during a backoff wait
        """
        if file.fingerprint is None:
            raise ValueError(f"File has no fingerprint: {file.full_path}")

        blob_name = self.blob_name_for(file)
        retries_used = 0
        attempts = 0
        state = RetryState.ATTEMPTING
        last_error: BaseException | None = None

        while state not in TERMINAL_STATES:
            if state is RetryState.BACKOFF:
                retries_used += 1
                delay = backoff_delay(retries_used)
                logger.warning(
                    "Transient error uploading %s, retrying in %.0fs (attempt %d/%d): %s",
                    blob_name,
                    delay,
                    retries_used + 1,
                    self.max_retries + 1,
                    last_error,
                )
                if self._sleep(delay):
                    raise UploadCancelled(f"Cancelled while waiting to retry {blob_name}")
                state = RetryState.ATTEMPTING
                continue

            attempts += 1
            last_error = self._attempt(file, blob_name, attempts)
            state = next_state(retries_used, classify(last_error), self.max_retries)

        if state is RetryState.SUCCEEDED:
            logger.info("Successfully uploaded %s (%d bytes)", blob_name, file.size)
            return UploadOutcome(
                success=True,
                source_path=file.full_path,
                blob_name=blob_name,
                fingerprint=file.fingerprint,
                attempts=attempts,
            )

        if state is RetryState.RETRIES_EXHAUSTED:
            message = f"Max retries ({self.max_retries}) exceeded"
        else:
            message = str(last_error) or type(last_error).__name__

        logger.error("Failed to upload %s to %s: %s", file.full_path, blob_name, message)
        return UploadOutcome(
            success=False,
            source_path=file.full_path,
            blob_name=blob_name,
            fingerprint=file.fingerprint,
            error_message=message,
            attempts=attempts,
        )

    def _attempt(self, file: DiscoveredFile, blob_name: str, attempt: int) -> Exception | None:
        """Make one upload call; return the error it raised, or None on success."""
        logger.info(
            "Uploading %s to blob %s (attempt %d/%d)",
            file.full_path,
            blob_name,
            attempt,
            self.max_retries + 1,
        )
        try:
            with open(file.full_path, "rb") as stream:
                self.blob_store.upload_blob(blob_name, stream)
        except Exception as e:
            return e
        return None
