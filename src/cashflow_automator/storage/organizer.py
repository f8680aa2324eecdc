"""
Date-folder organisation and folder maintenance.

- organize_files: move grouped documents into YYYY-MM-DD folders
- organize_all_files: group root PDFs by the date in their names
- get_folder_stats / cleanup_empty_folders: date folder maintenance
- find_duplicate_files / remove_duplicate_files: name-based sweep over
  the whole hierarchy (first occurrence kept)
"""

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

from ..schemas.keys import DATE_FOLDER_PATTERN
from .folder_store import LocalFolderStore, StorageError, StoredFile

logger = logging.getLogger(__name__)

_DATE_IN_NAME = re.compile(r"(\d{4}-\d{2}-\d{2})")


@dataclass
class RelocationResult:
    """Outcome of moving documents into date folders."""

    moved: list[Path] = field(default_factory=list)
    failed: list[tuple[str, str]] = field(default_factory=list)  # (filename, error)
    folders_created: int = 0


@dataclass
class DateFolderStats:
    total_files: int = 0
    pdf_files: int = 0
    total_size: int = 0


@dataclass
class FolderStats:
    """File counts and sizes of the root and its date folders."""

    total_files: int = 0
    total_pdfs: int = 0
    date_folders: int = 0
    total_size: int = 0
    by_date: dict[str, DateFolderStats] = field(default_factory=dict)

    @property
    def total_size_mb(self) -> float:
        return round(self.total_size / (1024 * 1024), 2)


def organize_files(
    store: LocalFolderStore, files_by_date: dict[str, list[Path]]
) -> RelocationResult:
    """
    Move each date group into its date folder.

    A failed move is logged and recorded; the remaining files of the group
    are still moved.
    """
    result = RelocationResult()

    for date_iso, files in files_by_date.items():
        try:
            existed = store.find_folder(date_iso) is not None
            folder = store.find_or_create_folder(date_iso)
        except StorageError as e:
            logger.warning(f"Error organizing {date_iso}: {e}")
            result.failed.extend((Path(f).name, str(e)) for f in files)
            continue
        if not existed:
            result.folders_created += 1

        moved_here = 0
        for file in files:
            try:
                result.moved.append(store.move_file(Path(file), folder))
                moved_here += 1
            except StorageError as e:
                logger.warning(f"Error moving file {Path(file).name}: {e}")
                result.failed.append((Path(file).name, str(e)))

        logger.info(f"Moved {moved_here}/{len(files)} files to {date_iso}")

    logger.info(f"Total files organized: {len(result.moved)}")
    return result


def organize_all_files(store: LocalFolderStore) -> RelocationResult:
    """Move every root PDF whose name carries a YYYY-MM-DD into that folder."""
    files_by_date: dict[str, list[Path]] = {}
    for stored in store.list_files(extension=".pdf"):
        match = _DATE_IN_NAME.search(stored.name)
        if not match:
            logger.info(f"Could not extract date from: {stored.name}")
            continue
        files_by_date.setdefault(match.group(1), []).append(stored.path)

    if not files_by_date:
        return RelocationResult()
    return organize_files(store, files_by_date)


def get_folder_stats(store: LocalFolderStore) -> FolderStats:
    """Counts for root files plus every date folder (other folders ignored)."""
    stats = FolderStats()

    for stored in store.list_files(extension=None):
        stats.total_files += 1
        stats.total_size += stored.size
        if stored.path.suffix.lower() == ".pdf":
            stats.total_pdfs += 1

    for folder in store.list_folders():
        if not DATE_FOLDER_PATTERN.match(folder.name):
            continue
        stats.date_folders += 1
        folder_stats = DateFolderStats()
        for stored in store.list_files(folder, extension=None):
            folder_stats.total_files += 1
            folder_stats.total_size += stored.size
            if stored.path.suffix.lower() == ".pdf":
                folder_stats.pdf_files += 1
        stats.by_date[folder.name] = folder_stats
        stats.total_files += folder_stats.total_files
        stats.total_pdfs += folder_stats.pdf_files
        stats.total_size += folder_stats.total_size

    return stats


def cleanup_empty_folders(store: LocalFolderStore) -> int:
    """Trash date folders that hold no files. Returns folders removed."""
    removed = 0
    for folder in store.list_folders():
        if not DATE_FOLDER_PATTERN.match(folder.name):
            continue
        if store.list_files(folder, extension=None):
            continue
        try:
            store.trash(folder)
        except StorageError as e:
            logger.warning(f"Error removing folder {folder.name}: {e}")
            continue
        logger.info(f"Removed empty folder: {folder.name}")
        removed += 1

    logger.info(f"Removed {removed} empty folders")
    return removed


def iter_all_files(store: LocalFolderStore) -> Iterator[StoredFile]:
    """
    Every file below the root, depth-first, using an explicit stack.

    Files of a folder come before those of its subfolders; subfolders are
    visited in name order.
    """
    stack = [store.root]
    while stack:
        folder = stack.pop()
        yield from store.list_files(folder, extension=None)
        stack.extend(reversed(store.list_folders(folder)))


def find_duplicate_files(store: LocalFolderStore) -> dict[str, list[Path]]:
    """Names that occur more than once, with every path in traversal order."""
    by_name: dict[str, list[Path]] = {}
    total = 0
    for stored in iter_all_files(store):
        by_name.setdefault(stored.name, []).append(stored.path)
        total += 1
    logger.info(f"Total files found: {total}")

    duplicates = {name: paths for name, paths in by_name.items() if len(paths) > 1}
    for name, paths in duplicates.items():
        logger.info(f'"{name}" -> {len(paths)} copies')
    return duplicates


def count_duplicate_files(store: LocalFolderStore) -> tuple[int, int]:
    """
    Returns:
        (duplicate names, files a sweep would remove)
    """
    duplicates = find_duplicate_files(store)
    return len(duplicates), sum(len(paths) - 1 for paths in duplicates.values())


def remove_duplicate_files(store: LocalFolderStore) -> int:
    """Trash every copy after the first of each duplicated name."""
    removed = 0
    for name, paths in find_duplicate_files(store).items():
        logger.info(f'Removing {len(paths) - 1} copies of "{name}"')
        for path in paths[1:]:
            try:
                store.trash(path)
                removed += 1
            except StorageError as e:
                logger.warning(f'Error removing "{name}": {e}')

    logger.info(f"Total files removed: {removed}")
    return removed
