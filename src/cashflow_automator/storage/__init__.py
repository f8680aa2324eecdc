"""
Destination store.

Local folder store with date folders, the artifact cache built from it,
and folder maintenance (organise, statistics, cleanup, duplicate sweep).
"""

from .artifact_cache import build_artifact_cache
from .folder_store import LocalFolderStore, StorageError, StoredFile
from .organizer import (
    FolderStats,
    RelocationResult,
    cleanup_empty_folders,
    count_duplicate_files,
    find_duplicate_files,
    get_folder_stats,
    organize_all_files,
    organize_files,
    remove_duplicate_files,
)

__all__ = [
    "LocalFolderStore",
    "StoredFile",
    "StorageError",
    "build_artifact_cache",
    "FolderStats",
    "RelocationResult",
    "organize_files",
    "organize_all_files",
    "get_folder_stats",
    "cleanup_empty_folders",
    "find_duplicate_files",
    "count_duplicate_files",
    "remove_duplicate_files",
]
