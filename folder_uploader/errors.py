"""Exception types shared across folder_uploader services."""


class UploaderError(Exception):
    """Base class for folder_uploader errors."""


class ConfigurationError(UploaderError):
    """Raised when settings are missing or invalid. Fatal before any file is processed."""

    def __init__(self, problems: list[str]) -> None:
        self.problems = problems
        super().__init__("; ".join(problems))


class PersistenceError(UploaderError):
    """Raised when upload progress cannot be recorded durably. Fatal to the run."""


class StorageError(UploaderError):
    """Raised by a blob store when an upload call fails."""


class TransientStorageError(StorageError):
    """Remote overload, rate limiting or a 5xx-class fault. Safe to retry."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UploadCancelled(UploaderError):  # noqa: N818
    """Raised when the shared cancel event is observed mid-run."""
