"""File discovery for configured source folders.

Two modes share the same walk and filter rules:

- ``discover()`` lazily yields files, one directory at a time.
- ``pre_enumerate_all()`` materializes the whole walk up front, grouped by
  directory, so totals and per-folder progress can be reported before the
  first upload starts.

Fingerprints are never computed here except by ``with_fingerprint()``; hashing
is only worth paying for files that are actually going to be checked or uploaded.
"""

import dataclasses
import logging
import os
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass, field

from folder_uploader.services.fingerprint import fingerprint_file

logger = logging.getLogger(__name__)

JSON_EXTENSION = ".json"


@dataclass(frozen=True)
class DiscoveredFile:
    """A candidate file found during discovery."""

    full_path: str
    file_name: str
    size: int
    fingerprint: str | None = None


@dataclass(frozen=True)
class FolderFiles:
    """Accepted files of a single directory, in upload order."""

    folder_path: str
    source_folder: str
    files: list[DiscoveredFile] = field(default_factory=list)

    @property
    def display_name(self) -> str:
        """Path relative to its source folder, or the source folder's own name."""
        relative = os.path.relpath(self.folder_path, self.source_folder)
        if relative == ".":
            return os.path.basename(os.path.normpath(self.source_folder)) or self.folder_path
        return relative


@dataclass(frozen=True)
class EnumerationResult:
    """Fully materialized discovery walk."""

    total_folders: int
    total_files: int
    folders: list[FolderFiles]


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    if ext and not ext.startswith("."):
        ext = "." + ext
    return ext


@dataclass(frozen=True)
class FileFilters:
    """Include/exclude rules applied to each file name."""

    include_extensions: frozenset[str] = frozenset()
    exclude_extensions: frozenset[str] = frozenset()
    exclude_file_names: frozenset[str] = frozenset()

    @classmethod
    def from_lists(
        cls,
        include_extensions: Iterable[str] = (),
        exclude_extensions: Iterable[str] = (),
        exclude_file_names: Iterable[str] = (),
    ) -> "FileFilters":
        """Build filters from config lists; extensions may be given with or without a dot."""
        return cls(
            include_extensions=frozenset(
                _normalize_extension(e) for e in include_extensions if e.strip()
            ),
            exclude_extensions=frozenset(
                _normalize_extension(e) for e in exclude_extensions if e.strip()
            ),
            exclude_file_names=frozenset(n.strip().lower() for n in exclude_file_names),
        )

    def should_include(self, file_name: str) -> bool:
        """Apply the filter rules in precedence order.

        1. file name excluded (case-insensitive exact match) -> reject
        2. extension excluded -> reject
        3. include list configured and extension not in it -> reject
        4. otherwise accept
        """
        if file_name.lower() in self.exclude_file_names:
            return False

        extension = os.path.splitext(file_name)[1].lower()
        if extension in self.exclude_extensions:
            return False

        if self.include_extensions and extension not in self.include_extensions:
            return False

        return True


def _sort_key(path: str) -> str:
    # Ordinal comparison of upper-cased text, so "_" sorts after letters
    return path.upper()


class FileDiscovery:
    """Walks source folders in a deterministic order."""

    def __init__(
        self,
        source_folders: Iterable[str],
        recursive: bool = True,
        filters: FileFilters | None = None,
    ) -> None:
        self.source_folders = list(source_folders)
        self.recursive = recursive
        self.filters = filters or FileFilters()

    def discover(self) -> Iterator[DiscoveredFile]:
        """Lazily yield every accepted file across all source folders.

        Each call starts a fresh walk, so the generator can be restarted.
        """
        for _, directory in self._iter_directories():
            yield from self._list_directory(directory)

    def pre_enumerate_all(
        self,
        on_folder_visited: Callable[[str, int, int], None] | None = None,
    ) -> EnumerationResult:
        """Walk everything up front without fingerprinting.

        Args:
            on_folder_visited: Called as (folder_path, folders_visited, files_found)
                after each directory is listed

        Returns:
            EnumerationResult listing directories that hold at least one accepted file
        """
        folders: list[FolderFiles] = []
        folders_visited = 0
        files_found = 0

        for source_folder, directory in self._iter_directories():
            files = list(self._list_directory(directory))
            folders_visited += 1
            files_found += len(files)
            if files:
                folders.append(
                    FolderFiles(folder_path=directory, source_folder=source_folder, files=files)
                )
            if on_folder_visited:
                on_folder_visited(directory, folders_visited, files_found)

        return EnumerationResult(
            total_folders=len(folders),
            total_files=files_found,
            folders=folders,
        )

    @staticmethod
    def with_fingerprint(file: DiscoveredFile) -> DiscoveredFile:
        """Return the file with its content fingerprint attached (no-op if already set)."""
        if file.fingerprint is not None:
            return file
        return dataclasses.replace(file, fingerprint=fingerprint_file(file.full_path))

    def _iter_directories(self) -> Iterator[tuple[str, str]]:
        """Yield (source_folder, directory) pairs: each root first, then sorted descendants."""
        for folder in self.source_folders:
            if not os.path.isdir(folder):
                logger.warning("Source folder does not exist: %s", folder)
                continue

            yield folder, folder

            if not self.recursive:
                continue

            for subdir in sorted(self._walk_subdirectories(folder), key=_sort_key):
                yield folder, subdir

    @staticmethod
    def _walk_subdirectories(folder: str) -> list[str]:
        def on_error(error: OSError) -> None:
            logger.warning("Access denied to directory: %s (%s)", error.filename, error)

        subdirectories: list[str] = []
        for dirpath, dirnames, _ in os.walk(folder, onerror=on_error):
            subdirectories.extend(os.path.join(dirpath, d) for d in dirnames)
        return subdirectories

    def _list_directory(self, directory: str) -> Iterator[DiscoveredFile]:
        """Yield accepted files of one directory: non-JSON first, then JSON, each sorted."""
        candidates: list[tuple[str, str, int]] = []
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if not entry.is_file() or not self.filters.should_include(entry.name):
                        continue
                    try:
                        size = entry.stat().st_size
                    except OSError as e:
                        logger.warning("Skipping unreadable file: %s (%s)", entry.path, e)
                        continue
                    candidates.append((entry.path, entry.name, size))
        except OSError as e:
            logger.warning("Access denied to directory: %s (%s)", directory, e)
            return

        candidates.sort(key=lambda c: _sort_key(c[0]))
        non_json = [c for c in candidates if not c[1].lower().endswith(JSON_EXTENSION)]
        json_files = [c for c in candidates if c[1].lower().endswith(JSON_EXTENSION)]

        for path, name, size in non_json + json_files:
            yield DiscoveredFile(full_path=path, file_name=name, size=size)
