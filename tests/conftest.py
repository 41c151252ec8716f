"""Pytest configuration and fixtures for the folder_uploader tests."""

import os
import threading
from collections.abc import Generator
from pathlib import Path
from typing import BinaryIO

import pytest
from flask import Flask
from flask.testing import FlaskClient

import folder_uploader.config as config_module
import folder_uploader.services.log_service as log_module
import folder_uploader.services.upload_manager as manager_module
import folder_uploader.services.upload_state as state_module
from folder_uploader import create_app
from folder_uploader.config import Settings
from folder_uploader.errors import StorageError, TransientStorageError
from folder_uploader.services.log_service import LogService
from folder_uploader.services.progress_store import ProgressStore
from folder_uploader.services.upload_state import UploadStateService


class FakeBlobStore:
    """In-memory blob store that can be told to fail specific attempts."""

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.failures: list[Exception] = []
        self._lock = threading.Lock()

    def fail_next(self, *errors: Exception) -> None:
        """Queue errors raised by the next upload calls, in order."""
        self.failures.extend(errors)

    def upload_blob(self, blob_name: str, stream: BinaryIO) -> None:
        with self._lock:
            self.calls.append(blob_name)
            if self.failures:
                raise self.failures.pop(0)
            self.blobs[blob_name] = stream.read()


@pytest.fixture(autouse=True)
def isolated_settings(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> Path:
    """Point settings, progress database and logs at a temporary home directory."""
    home = tmp_path_factory.mktemp("home")
    monkeypatch.setattr(config_module, "BASE_DIR", home)
    monkeypatch.setattr(config_module, "SETTINGS_FILE", home / "settings.json")
    monkeypatch.setattr(config_module, "SETTINGS_DEFAULT_FILE", home / "settings.default.json")
    for name in list(os.environ):
        if name.startswith("FOLDER_UPLOADER_"):
            monkeypatch.delenv(name)

    monkeypatch.setattr(Settings, "_instance", None)
    monkeypatch.setattr(log_module, "_log_service", None)
    monkeypatch.setattr(state_module, "_upload_state", None)
    monkeypatch.setattr(manager_module, "_upload_manager", None)
    return home


@pytest.fixture
def source_tree(tmp_path: Path) -> Path:
    """Create a small source folder.

    Layout:
        source/a.json, source/b.txt, source/c.csv
        source/sub/d.txt
        source/sub/skip.log
    """
    root = tmp_path / "source"
    (root / "sub").mkdir(parents=True)
    (root / "a.json").write_text('{"a": 1}')
    (root / "b.txt").write_text("bravo")
    (root / "c.csv").write_text("x,y\n1,2\n")
    (root / "sub" / "d.txt").write_text("delta")
    (root / "sub" / "skip.log").write_text("ignored")
    return root


@pytest.fixture
def settings(isolated_settings: Path, source_tree: Path) -> Settings:
    """Settings configured for the source tree with no throttle delay."""
    s = config_module.get_settings()
    s.update(
        {
            "s3_bucket": "test-bucket",
            "source_folders": [str(source_tree)],
            "delay_between_files_ms": 0,
            "max_retries": 2,
        }
    )
    return s


@pytest.fixture
def progress_db(tmp_path: Path) -> Path:
    """Path for a temporary progress database."""
    return tmp_path / "progress" / "upload-progress.db"


@pytest.fixture
def progress_store(progress_db: Path) -> Generator[ProgressStore, None, None]:
    """Progress store on a temporary database, closed after the test."""
    store = ProgressStore(progress_db)
    yield store
    store.close()


@pytest.fixture
def blob_store() -> FakeBlobStore:
    """Fresh in-memory blob store."""
    return FakeBlobStore()


@pytest.fixture
def log_service(tmp_path: Path) -> LogService:
    """Log service writing into a temporary directory."""
    return LogService(tmp_path / "logs")


@pytest.fixture
def upload_state() -> UploadStateService:
    """Fresh state aggregator."""
    return UploadStateService()


@pytest.fixture
def transient_error() -> TransientStorageError:
    return TransientStorageError("503 Slow Down", status_code=503)


@pytest.fixture
def permanent_error() -> StorageError:
    return StorageError("AccessDenied")


@pytest.fixture
def app(settings: Settings) -> Generator[Flask, None, None]:
    """Create application for testing."""
    app = create_app()
    app.config["TESTING"] = True
    yield app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()

