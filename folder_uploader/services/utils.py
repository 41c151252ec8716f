"""Shared formatting helpers for services and routes."""

import os


def format_file_size(size_bytes: int) -> str:
    """Format a file size in bytes to a human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.5 GB")
    """
    size_float = float(size_bytes)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_float) < 1024.0:
            return f"{size_float:.1f} {unit}"
        size_float = size_float / 1024.0
    return f"{size_float:.1f} PB"


def format_elapsed(seconds: float) -> str:
    """Format a duration as HH:MM:SS."""
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def truncate_path(path: str, max_length: int) -> str:
    """Shorten a path for display, keeping the file name intact where possible.

    Args:
        path: Full path
        max_length: Maximum length of the result

    Returns:
        The path itself when short enough, otherwise a shortened form such as
        "/data/exp.../file.bin" or "...ng_file_name.bin"
    """
    if not path or len(path) <= max_length:
        return path

    file_name = os.path.basename(path)
    if len(file_name) >= max_length - 3:
        return "..." + file_name[-(max_length - 3) :]

    remaining = max_length - len(file_name) - 4
    if remaining <= 0:
        return "..." + file_name

    directory = os.path.dirname(path)
    return directory[:remaining] + ".../" + file_name
