"""Tests for the command-line entry point."""

from unittest.mock import MagicMock, patch

import pytest

from folder_uploader.cli import build_parser, format_progress_line, main
from folder_uploader.config import Settings
from folder_uploader.services.upload_manager import RunSummary
from folder_uploader.services.upload_state import RunState


class TestFormatProgressLine:
    """Tests for the console progress line."""

    def test_running(self) -> None:
        """Test counters and the current file are shown."""
        state = RunState(
            total_discovered=4,
            succeeded=1,
            skipped=1,
            current_file="/data/file.bin",
        )

        line = format_progress_line(state)

        assert "2/4 (50.0%)" in line
        assert "ok=1 skipped=1 failed=0" in line
        assert line.endswith("/data/file.bin")

    def test_enumerating(self) -> None:
        """Test the scan status is shown while enumerating."""
        state = RunState(is_enumerating=True, enumeration_status="Scanned 3 folders")

        assert format_progress_line(state) == "[scanning] Scanned 3 folders"


class TestParser:
    """Tests for argument parsing."""

    def test_command_required(self) -> None:
        """Test running without a command is an error."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_run_flags(self) -> None:
        """Test the run command accepts --no-progress."""
        args = build_parser().parse_args(["run", "--no-progress"])
        assert args.no_progress is True

    def test_serve_defaults(self) -> None:
        """Test serve defaults to localhost."""
        args = build_parser().parse_args(["serve"])
        assert args.host == "127.0.0.1"
        assert args.port == 5000


class TestRunCommand:
    """Tests for the run command exit codes."""

    def test_invalid_configuration_exits_2(self) -> None:
        """Test missing configuration exits before starting a run."""
        with patch("folder_uploader.cli.get_upload_manager") as mock_get_manager:
            assert main(["run", "--no-progress"]) == 2

        mock_get_manager.return_value.start_run.assert_not_called()

    @patch("folder_uploader.cli.get_upload_manager")
    def test_successful_run_exits_0(
        self, mock_get_manager: MagicMock, settings: Settings
    ) -> None:
        """Test a run that finishes cleanly exits 0."""
        manager = mock_get_manager.return_value
        manager.is_running.return_value = False
        manager.last_error = None
        manager.last_summary = RunSummary("abc", 5, 5, 0, 0)

        assert main(["run", "--no-progress"]) == 0
        manager.start_run.assert_called_once_with()

    @patch("folder_uploader.cli.get_upload_manager")
    def test_failed_run_exits_1(self, mock_get_manager: MagicMock, settings: Settings) -> None:
        """Test a run that stopped on an error exits 1."""
        manager = mock_get_manager.return_value
        manager.is_running.return_value = False
        manager.last_error = "Failed to save progress: disk full"

        assert main(["run", "--no-progress"]) == 1
