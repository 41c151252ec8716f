"""Configuration management for folder_uploader"""

import copy
import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from folder_uploader.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Settings, .env and the default progress database live in the working directory
# unless FOLDER_UPLOADER_HOME points elsewhere
BASE_DIR = Path(os.environ.get("FOLDER_UPLOADER_HOME", os.getcwd())).resolve()

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = BASE_DIR / "settings.json"
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = Path(__file__).resolve().parent.parent / "pyproject.toml"

# Environment variable names for configuration
ENV_AWS_PROFILE = "FOLDER_UPLOADER_AWS_PROFILE"
ENV_AWS_REGION = "FOLDER_UPLOADER_AWS_REGION"
ENV_S3_BUCKET = "FOLDER_UPLOADER_S3_BUCKET"
ENV_BLOB_PREFIX = "FOLDER_UPLOADER_BLOB_PREFIX"
ENV_SOURCE_FOLDERS = "FOLDER_UPLOADER_SOURCE_FOLDERS"
ENV_SCAN_RECURSIVELY = "FOLDER_UPLOADER_SCAN_RECURSIVELY"
ENV_DELAY_MS = "FOLDER_UPLOADER_DELAY_MS"
ENV_MAX_RETRIES = "FOLDER_UPLOADER_MAX_RETRIES"
ENV_PROGRESS_DATABASE = "FOLDER_UPLOADER_PROGRESS_DATABASE"
ENV_LOG_DIRECTORY = "FOLDER_UPLOADER_LOG_DIRECTORY"

DEFAULT_SETTINGS: dict[str, Any] = {
    "aws_profile": "default",
    "aws_region": "us-west-2",
    "s3_bucket": "",
    "blob_prefix": "",
    "source_folders": [],
    "scan_recursively": True,
    "include_extensions": [],
    "exclude_extensions": [],
    "exclude_file_names": [],
    "delay_between_files_ms": 100,
    "max_retries": 3,
    "progress_database": "upload-progress.db",
    "legacy_progress_file": "upload-progress.json",
    "pre_enumerate": True,
    "log_directory": "logs",
}

STRING_SETTINGS = frozenset(
    {
        "aws_profile",
        "aws_region",
        "s3_bucket",
        "blob_prefix",
        "progress_database",
        "legacy_progress_file",
        "log_directory",
    }
)
BOOL_SETTINGS = frozenset({"scan_recursively", "pre_enumerate"})
INT_SETTINGS = frozenset({"delay_between_files_ms", "max_retries"})
LIST_SETTINGS = frozenset(
    {"source_folders", "include_extensions", "exclude_extensions", "exclude_file_names"}
)


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


def check_setting_types(data: dict[str, Any]) -> list[str]:
    """Describe every value in data whose JSON type does not fit its setting."""
    problems: list[str] = []
    for key, value in data.items():
        if key in STRING_SETTINGS and not isinstance(value, str):
            problems.append(f"{key} must be a string")
        elif key in BOOL_SETTINGS and not isinstance(value, bool):
            problems.append(f"{key} must be true or false")
        elif key in INT_SETTINGS and (isinstance(value, bool) or not isinstance(value, int)):
            problems.append(f"{key} must be an integer")
        elif key in LIST_SETTINGS and (
            not isinstance(value, list) or not all(isinstance(v, str) for v in value)
        ):
            problems.append(f"{key} must be a list of strings")
    return problems


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_overrides() -> dict[str, Any]:
    """Collect settings from environment variables, converted to their setting types."""
    overrides: dict[str, Any] = {}

    for key, env_name in (
        ("aws_profile", ENV_AWS_PROFILE),
        ("aws_region", ENV_AWS_REGION),
        ("s3_bucket", ENV_S3_BUCKET),
        ("blob_prefix", ENV_BLOB_PREFIX),
        ("progress_database", ENV_PROGRESS_DATABASE),
        ("log_directory", ENV_LOG_DIRECTORY),
    ):
        value = os.environ.get(env_name)
        if value is not None:
            overrides[key] = value

    folders = os.environ.get(ENV_SOURCE_FOLDERS)
    if folders is not None:
        overrides["source_folders"] = [f for f in folders.split(os.pathsep) if f.strip()]

    recursive = os.environ.get(ENV_SCAN_RECURSIVELY)
    if recursive is not None:
        overrides["scan_recursively"] = _parse_bool(recursive)

    for key, env_name in (
        ("delay_between_files_ms", ENV_DELAY_MS),
        ("max_retries", ENV_MAX_RETRIES),
    ):
        value = os.environ.get(env_name)
        if value is None:
            continue
        try:
            overrides[key] = int(value)
        except ValueError:
            logger.warning("Ignoring non-integer %s=%r", env_name, value)

    return overrides


class Settings:
    """Manages application settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        settings = copy.deepcopy(DEFAULT_SETTINGS)

        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                settings.update(json.load(f))

        if SETTINGS_FILE.exists():
            with open(SETTINGS_FILE, encoding="utf-8") as f:
                settings.update(json.load(f))

        settings.update(_env_overrides())

        self._settings = settings

        # Save settings.json if it doesn't exist
        if not SETTINGS_FILE.exists():
            self._save_settings()

    def _save_settings(self) -> None:
        """Save current settings to file."""
        with open(SETTINGS_FILE, "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=4)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a setting value and save to file."""
        self._settings[key] = value
        self._save_settings()

    def update(self, data: dict[str, Any]) -> None:
        """Update multiple settings at once."""
        self._settings.update(data)
        self._save_settings()

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary."""
        return self._settings.copy()

    def reload(self) -> None:
        """Reload settings from file."""
        self._load_settings()

    def validate(self) -> None:
        """Check the settings a run depends on.

        Raises:
            ConfigurationError: listing every problem found
        """
        problems = check_setting_types(self._settings)
        if problems:
            raise ConfigurationError(problems)

        if not self.s3_bucket.strip():
            problems.append("s3_bucket is not configured")
        if not self.source_folders:
            problems.append("No source folders configured")
        if self.max_retries < 0:
            problems.append("max_retries must be zero or greater")
        if self.delay_between_files_ms < 0:
            problems.append("delay_between_files_ms must be zero or greater")

        for folder in self.source_folders:
            if not Path(folder).is_dir():
                logger.warning("Source folder does not exist: %s", folder)

        if problems:
            raise ConfigurationError(problems)

    @property
    def aws_profile(self) -> str:
        """Get the AWS profile name."""
        return str(self._settings.get("aws_profile", "default"))

    @property
    def aws_region(self) -> str:
        """Get the AWS region."""
        return str(self._settings.get("aws_region", "us-west-2"))

    @property
    def s3_bucket(self) -> str:
        """Get the S3 bucket name."""
        return str(self._settings.get("s3_bucket", ""))

    @property
    def blob_prefix(self) -> str:
        """Get the optional object key prefix."""
        return str(self._settings.get("blob_prefix") or "")

    @property
    def destination_label(self) -> str:
        """Human-readable destination, e.g. s3://bucket/prefix."""
        prefix = self.blob_prefix.rstrip("/")
        return f"s3://{self.s3_bucket}/{prefix}" if prefix else f"s3://{self.s3_bucket}"

    @property
    def source_folders(self) -> list[str]:
        """Get the configured source folders."""
        return [str(f) for f in self._settings.get("source_folders") or []]

    @property
    def scan_recursively(self) -> bool:
        return bool(self._settings.get("scan_recursively", True))

    @property
    def include_extensions(self) -> list[str]:
        return list(self._settings.get("include_extensions") or [])

    @property
    def exclude_extensions(self) -> list[str]:
        return list(self._settings.get("exclude_extensions") or [])

    @property
    def exclude_file_names(self) -> list[str]:
        return list(self._settings.get("exclude_file_names") or [])

    @property
    def delay_between_files_ms(self) -> int:
        return int(self._settings.get("delay_between_files_ms", 100))

    @property
    def max_retries(self) -> int:
        return int(self._settings.get("max_retries", 3))

    @property
    def pre_enumerate(self) -> bool:
        return bool(self._settings.get("pre_enumerate", True))

    @property
    def progress_database(self) -> Path:
        """Get the SQLite progress database path (relative paths resolve under BASE_DIR)."""
        return self._resolve(str(self._settings.get("progress_database", "upload-progress.db")))

    @property
    def legacy_progress_file(self) -> Path:
        """Get the flat-file JSON progress path imported once on startup."""
        return self._resolve(
            str(self._settings.get("legacy_progress_file", "upload-progress.json"))
        )

    @property
    def log_directory(self) -> Path:
        """Get the event log directory."""
        return self._resolve(str(self._settings.get("log_directory", "logs")))

    @staticmethod
    def _resolve(value: str) -> Path:
        path = Path(value).expanduser()
        return path if path.is_absolute() else BASE_DIR / path


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()
