"""Content fingerprints used to decide whether a file version was already uploaded."""

import base64
import hashlib
from pathlib import Path
from typing import BinaryIO

CHUNK_SIZE = 8 * 1024 * 1024


def fingerprint_stream(stream: BinaryIO, chunk_size: int = CHUNK_SIZE) -> str:
    """Compute the MD5 digest of a byte stream in chunks.

    Args:
        stream: Readable binary stream, consumed to EOF
        chunk_size: Read chunk size in bytes (default 8MB)

    Returns:
        Base64-encoded 128-bit digest (24 characters)
    """
    md5 = hashlib.md5()  # noqa: S324
    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        md5.update(chunk)
    return base64.b64encode(md5.digest()).decode("ascii")


def fingerprint_file(file_path: str | Path, chunk_size: int = CHUNK_SIZE) -> str:
    """Fingerprint a file on disk. OSError (missing file, permissions) propagates."""
    with open(file_path, "rb") as f:
        return fingerprint_stream(f, chunk_size)
