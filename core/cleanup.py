# TileCacheExporter/core/cleanup.py
# -*- coding: utf-8 -*-

"""Working directory cleanup.

Deletion is fail-fast: the first entry that cannot be removed stops the
purge. Entries removed before that are not restored.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional, Union

from .errors import CleanupError

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def purge_working_directory(root: PathLike) -> bool:
    """Recursively delete everything below ``root``; ``root`` itself is kept.

    Returns:
        ``True`` if every entry was removed (or ``root`` does not exist),
        ``False`` as soon as one deletion fails.
    """
    root_path = Path(root)
    if not root_path.exists():
        logger.debug("Nothing to purge, %s does not exist", root_path)
        return True
    if not root_path.is_dir() or root_path.is_symlink():
        logger.warning("%s", CleanupError(f"Not a directory: {root_path}"))
        return False

    try:
        for entry in _scandir(root_path):
            _delete_entry(Path(entry.path))
    except CleanupError as err:
        logger.warning("%s", err)
        return False

    logger.info("Purged working directory %s", root_path)
    return True


def _scandir(path: Path):
    try:
        with os.scandir(path) as it:
            return list(it)
    except OSError as ex:
        raise CleanupError(f"Cannot list {path}: {ex}")


def _delete_entry(path: Path) -> None:
    try:
        if path.is_dir() and not path.is_symlink():
            for entry in _scandir(path):
                _delete_entry(Path(entry.path))
            os.rmdir(path)
        else:
            os.remove(path)
    except OSError as ex:
        raise CleanupError(f"Cannot delete {path}: {ex}")


class SessionCleanup:
    """Purge one working directory whenever the session is suspended."""

    def __init__(self, root: PathLike) -> None:
        self.root = Path(root)
        self.last_result: Optional[bool] = None

    def purge(self) -> bool:
        self.last_result = purge_working_directory(self.root)
        return self.last_result
