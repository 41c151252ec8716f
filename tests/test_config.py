"""Tests for settings loading and validation."""

import json
import logging
import os
from pathlib import Path

import pytest

from folder_uploader.config import DEFAULT_SETTINGS, Settings, get_package_version, get_settings
from folder_uploader.errors import ConfigurationError


class TestLoading:
    """Tests for the settings layers."""

    def test_defaults_written_on_first_load(self, isolated_settings: Path) -> None:
        """Test a missing settings.json is created from the defaults."""
        settings = get_settings()

        assert settings.all() == DEFAULT_SETTINGS
        assert json.loads((isolated_settings / "settings.json").read_text()) == DEFAULT_SETTINGS

    def test_singleton(self) -> None:
        """Test get_settings returns one instance."""
        assert get_settings() is get_settings()

    def test_settings_file_over_default_file(self, isolated_settings: Path) -> None:
        """Test settings.json wins over settings.default.json."""
        (isolated_settings / "settings.default.json").write_text(
            json.dumps({"s3_bucket": "from-default", "max_retries": 7})
        )
        (isolated_settings / "settings.json").write_text(json.dumps({"s3_bucket": "from-user"}))

        settings = get_settings()

        assert settings.s3_bucket == "from-user"
        assert settings.max_retries == 7

    def test_environment_wins(
        self, isolated_settings: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test environment variables override the settings file."""
        (isolated_settings / "settings.json").write_text(json.dumps({"s3_bucket": "from-file"}))
        monkeypatch.setenv("FOLDER_UPLOADER_S3_BUCKET", "from-env")
        monkeypatch.setenv("FOLDER_UPLOADER_SOURCE_FOLDERS", os.pathsep.join(["/a", "/b"]))
        monkeypatch.setenv("FOLDER_UPLOADER_SCAN_RECURSIVELY", "no")
        monkeypatch.setenv("FOLDER_UPLOADER_DELAY_MS", "250")

        settings = get_settings()

        assert settings.s3_bucket == "from-env"
        assert settings.source_folders == ["/a", "/b"]
        assert settings.scan_recursively is False
        assert settings.delay_between_files_ms == 250

    def test_non_integer_environment_ignored(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a malformed integer falls back to the file value with a warning."""
        monkeypatch.setenv("FOLDER_UPLOADER_MAX_RETRIES", "lots")

        with caplog.at_level(logging.WARNING):
            settings = get_settings()

        assert settings.max_retries == 3
        assert "FOLDER_UPLOADER_MAX_RETRIES" in caplog.text

    def test_update_persists(self, isolated_settings: Path) -> None:
        """Test update() writes through to settings.json."""
        get_settings().update({"blob_prefix": "backups/"})

        saved = json.loads((isolated_settings / "settings.json").read_text())
        assert saved["blob_prefix"] == "backups/"

    def test_reload(self, isolated_settings: Path) -> None:
        """Test reload() picks up external edits."""
        settings = get_settings()
        (isolated_settings / "settings.json").write_text(json.dumps({"max_retries": 9}))

        settings.reload()

        assert settings.max_retries == 9


class TestProperties:
    """Tests for typed accessors."""

    def test_relative_paths_resolve_under_home(self, isolated_settings: Path) -> None:
        """Test progress database and log directory resolve relative to the home."""
        settings = get_settings()

        assert settings.progress_database == isolated_settings / "upload-progress.db"
        assert settings.legacy_progress_file == isolated_settings / "upload-progress.json"
        assert settings.log_directory == isolated_settings / "logs"

    def test_absolute_paths_kept(self, tmp_path: Path) -> None:
        """Test absolute paths are used as given."""
        settings = get_settings()
        settings.set("progress_database", str(tmp_path / "p.db"))

        assert settings.progress_database == tmp_path / "p.db"

    @pytest.mark.parametrize(
        ("prefix", "expected"),
        [("", "s3://bucket"), ("backups/", "s3://bucket/backups"), ("a/b", "s3://bucket/a/b")],
    )
    def test_destination_label(self, prefix: str, expected: str) -> None:
        """Test the destination label joins bucket and prefix."""
        settings = get_settings()
        settings.update({"s3_bucket": "bucket", "blob_prefix": prefix})

        assert settings.destination_label == expected


class TestValidate:
    """Tests for Settings.validate."""

    def test_valid_settings(self, settings: Settings) -> None:
        """Test a configured bucket and existing folder validate."""
        settings.validate()

    def test_lists_every_problem(self) -> None:
        """Test all problems are reported together."""
        settings = get_settings()
        settings.update({"max_retries": -1, "delay_between_files_ms": -5})

        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate()

        assert len(exc_info.value.problems) == 4
        assert "s3_bucket" in str(exc_info.value)

    def test_mistyped_values_are_problems(self, settings: Settings) -> None:
        """Test values of the wrong JSON type are reported instead of crashing."""
        settings.update({"max_retries": "three", "source_folders": "/data", "pre_enumerate": 1})

        with pytest.raises(ConfigurationError) as exc_info:
            settings.validate()

        assert sorted(exc_info.value.problems) == [
            "max_retries must be an integer",
            "pre_enumerate must be true or false",
            "source_folders must be a list of strings",
        ]

    def test_missing_folder_only_warns(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test a source folder that does not exist is a warning, not an error."""
        settings = get_settings()
        settings.update({"s3_bucket": "bucket", "source_folders": [str(tmp_path / "missing")]})

        with caplog.at_level(logging.WARNING):
            settings.validate()

        assert "does not exist" in caplog.text


def test_package_version() -> None:
    """Test the version is read from pyproject.toml."""
    assert get_package_version() == "1.0.0"


def test_settings_class_is_singleton() -> None:
    """Test constructing Settings twice yields the same object."""
    assert Settings() is Settings()
