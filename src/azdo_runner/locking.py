"""Exclusive advisory lock on a shared local file.

The ``azure-devops`` CLI extension keeps its defaults in a single config
file shared by every process of the user. ``exclusive_file_lock`` holds
a ``flock`` on that file for the duration of a ``with`` block, so two
runner processes never write it at the same time.
"""

from __future__ import annotations

from collections.abc import Iterator
import contextlib
import fcntl
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def exclusive_file_lock(path: str | Path) -> Iterator[Path]:
    """Hold an exclusive ``flock`` on *path* while the block runs.

    The file (and its parent directory) is created if missing. The lock
    is released on every exit path, including exceptions.

    Args:
        path: File to lock. ``~`` is expanded.

    Yields:
        The resolved path of the locked file.
    """
    lock_path = Path(path).expanduser()
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    with open(lock_path, "a", encoding="utf-8") as handle:
        logger.debug("Waiting for lock on %s", lock_path)
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield lock_path
        finally:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
            logger.debug("Released lock on %s", lock_path)
