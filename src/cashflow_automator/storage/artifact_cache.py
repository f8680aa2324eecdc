"""
Destination artifact cache.

The set of PDF names already present in the destination: the root plus
every direct child folder named YYYY-MM-DD (where relocation files them).
Rebuilt by a full scan at the start of each run and read-only afterwards.
"""

import logging

from ..schemas.keys import DATE_FOLDER_PATTERN
from .folder_store import LocalFolderStore

logger = logging.getLogger(__name__)


def build_artifact_cache(store: LocalFolderStore) -> frozenset[str]:
    """Scan the destination root and its date folders for PDF names."""
    cache = {f.name for f in store.list_files(extension=".pdf")}

    scanned = 0
    for folder in store.list_folders():
        if not DATE_FOLDER_PATTERN.match(folder.name):
            continue
        names = [f.name for f in store.list_files(folder, extension=".pdf")]
        cache.update(names)
        scanned += 1
        if names:
            logger.debug(f"{folder.name}: {len(names)} files")

    logger.info(f"Artifact cache: {len(cache)} files ({scanned} date folders scanned)")
    return frozenset(cache)
