"""Corpus scanning: find image files that still need indexing."""

import asyncio
import os
from collections.abc import Collection
from pathlib import Path

from loguru import logger

from ..config.defaults import IMAGE_EXTENSIONS
from ..utils.cancellation import CancellationToken


def is_image_file(path: Path) -> bool:
    """True if the path has a supported image extension (any case)."""
    return path.suffix.lower() in IMAGE_EXTENSIONS


def collect_files(
    root: Path,
    indexed_paths: Collection[str] | None = None,
    cancel_token: CancellationToken | None = None,
) -> list[Path]:
    """Walk ``root`` recursively and return image files to index.

    Symbolic links to directories are not followed. Unreadable
    subdirectories are logged and skipped; the rest of the tree is still
    scanned.

    Args:
        root: Screenshot directory
        indexed_paths: Paths already in the index (diff mode); None scans everything
        cancel_token: Optional token checked once per directory

    Returns:
        Qualifying files, sorted for stable logs (order is not otherwise meaningful)

    Raises:
        OperationCancelledError: If cancelled via cancel_token
    """
    root = Path(root)
    if not root.is_dir():
        logger.warning(f"Screenshot directory does not exist: {root}")
        return []

    def _on_walk_error(error: OSError) -> None:
        logger.warning(f"Skipping unreadable directory {error.filename}: {error}")

    found: list[Path] = []
    skipped = 0
    dir_count = 0

    for dirpath, _dirs, filenames in os.walk(
        root, onerror=_on_walk_error, followlinks=False
    ):
        if cancel_token:
            cancel_token.check()

        dir_count += 1
        base = Path(dirpath)
        for filename in filenames:
            file_path = base / filename
            if not is_image_file(file_path):
                continue
            if indexed_paths is not None and str(file_path) in indexed_paths:
                skipped += 1
                continue
            found.append(file_path)

    logger.debug(
        f"Scan of {root} complete: {dir_count} directories, "
        f"{len(found)} to index, {skipped} already indexed"
    )
    return sorted(found)


async def collect_files_async(
    root: Path,
    indexed_paths: Collection[str] | None = None,
    cancel_token: CancellationToken | None = None,
) -> list[Path]:
    """Run ``collect_files`` in a worker thread."""
    return await asyncio.to_thread(collect_files, root, indexed_paths, cancel_token)
