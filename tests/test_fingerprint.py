"""Tests for the content fingerprint helpers."""

import base64
import hashlib
import io
from pathlib import Path

import pytest

from folder_uploader.services.fingerprint import fingerprint_file, fingerprint_stream


class TestFingerprintStream:
    """Tests for fingerprint_stream."""

    def test_matches_base64_md5(self) -> None:
        """Test the digest is the base64 of the MD5 of the content."""
        data = b"hello world" * 1000
        expected = base64.b64encode(hashlib.md5(data).digest()).decode("ascii")  # noqa: S324

        assert fingerprint_stream(io.BytesIO(data)) == expected

    def test_length_is_24_characters(self) -> None:
        """Test a 128-bit digest encodes to 24 base64 characters."""
        assert len(fingerprint_stream(io.BytesIO(b"abc"))) == 24

    def test_chunk_size_does_not_change_result(self) -> None:
        """Test small chunks give the same digest as one read."""
        data = bytes(range(256)) * 50

        assert fingerprint_stream(io.BytesIO(data), chunk_size=7) == fingerprint_stream(
            io.BytesIO(data)
        )

    def test_empty_stream(self) -> None:
        """Test the empty input has the well-known MD5 digest."""
        assert fingerprint_stream(io.BytesIO(b"")) == "1B2M2Y8AsgTpgAmY7PhCfg=="


class TestFingerprintFile:
    """Tests for fingerprint_file."""

    def test_same_content_same_fingerprint(self, tmp_path: Path) -> None:
        """Test two files with identical bytes share a fingerprint."""
        a = tmp_path / "a.bin"
        b = tmp_path / "b.bin"
        a.write_bytes(b"payload")
        b.write_bytes(b"payload")

        assert fingerprint_file(a) == fingerprint_file(b)

    def test_changed_content_changes_fingerprint(self, tmp_path: Path) -> None:
        """Test editing a file changes its fingerprint."""
        path = tmp_path / "a.bin"
        path.write_bytes(b"one")
        before = fingerprint_file(path)
        path.write_bytes(b"two")

        assert fingerprint_file(path) != before

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """Test a missing file raises OSError."""
        with pytest.raises(OSError):
            fingerprint_file(tmp_path / "missing.bin")
