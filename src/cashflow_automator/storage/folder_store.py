"""
Local hierarchical document store.

A root folder with date-named subfolders. Provides the operations the
pipeline needs from a destination store: find-or-create folder, list
files by type, move, create from bytes (atomically) and soft-delete into a
trash folder.
"""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

TRASH_FOLDER = ".trash"


class StorageError(Exception):
    """A file operation on the store failed for one item."""

    pass


@dataclass
class StoredFile:
    """A file in the store."""

    path: Path

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def size(self) -> int:
        return self.path.stat().st_size

    @property
    def modified_at(self) -> datetime:
        """Modification time (local, naive); moves keep it unchanged."""
        return datetime.fromtimestamp(self.path.stat().st_mtime_ns / 1_000_000_000)

    def read_bytes(self) -> bytes:
        return self.path.read_bytes()


class LocalFolderStore:
    """
    Folder store rooted at a local directory.

    Hidden entries (leading '.') are never listed, which keeps the trash
    folder and temporary files out of every scan.
    """

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def ensure_root(self) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        return self.root

    def _folder(self, folder: Optional[Path]) -> Path:
        return self.root if folder is None else Path(folder)

    def find_folder(self, name: str, parent: Optional[Path] = None) -> Optional[Path]:
        candidate = self._folder(parent) / name
        return candidate if candidate.is_dir() else None

    def find_or_create_folder(self, name: str, parent: Optional[Path] = None) -> Path:
        """Return the named child folder, creating it when missing."""
        existing = self.find_folder(name, parent)
        if existing is not None:
            logger.debug(f"Using existing folder: {name}")
            return existing
        folder = self._folder(parent) / name
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Could not create folder {name}: {e}") from e
        logger.info(f"Created new folder: {name}")
        return folder

    def list_folders(self, parent: Optional[Path] = None) -> list[Path]:
        folder = self._folder(parent)
        if not folder.is_dir():
            return []
        return sorted(p for p in folder.iterdir() if p.is_dir() and not p.name.startswith("."))

    def list_files(
        self, folder: Optional[Path] = None, extension: Optional[str] = ".pdf"
    ) -> list[StoredFile]:
        """Files directly in a folder, sorted by name, optionally by extension."""
        folder = self._folder(folder)
        if not folder.is_dir():
            return []
        files = []
        for path in sorted(folder.iterdir()):
            if not path.is_file() or path.name.startswith("."):
                continue
            if extension and path.suffix.lower() != extension.lower():
                continue
            files.append(StoredFile(path))
        return files

    def move_file(self, file: Path, folder: Path) -> Path:
        """
        Move a file into a folder, keeping its name.

        Raises:
            StorageError: If the target name is taken or the move fails
        """
        target = Path(folder) / Path(file).name
        if target.exists():
            raise StorageError(f"{target.name} already exists in {Path(folder).name}")
        try:
            shutil.move(str(file), str(target))
        except OSError as e:
            raise StorageError(f"Could not move {Path(file).name}: {e}") from e
        return target

    def create_file(self, name: str, data: bytes, folder: Optional[Path] = None) -> Path:
        """
        Write a file in one atomic step (temp file + rename).

        An existing file of the same name is replaced; a reader never sees
        a half-written file.
        """
        folder = self._folder(folder)
        folder.mkdir(parents=True, exist_ok=True)
        target = folder / name
        fd, tmp_name = tempfile.mkstemp(dir=folder, prefix=".tmp-", suffix=".part")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, target)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise StorageError(f"Could not create {name}: {e}") from e
        return target

    def trash(self, path: Path) -> Path:
        """Soft-delete a file or folder into the trash folder."""
        trash_dir = self.root / TRASH_FOLDER
        trash_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime("%Y%m%d%H%M%S%f")
        target = trash_dir / f"{stamp}_{Path(path).name}"
        try:
            shutil.move(str(path), str(target))
        except OSError as e:
            raise StorageError(f"Could not trash {Path(path).name}: {e}") from e
        return target
