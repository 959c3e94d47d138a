from __future__ import annotations

import logging
import os
import shutil
import time
from pathlib import Path

from .chunk_store import COMPLETED_DIR, PENDING_DIR

"""Reclaim abandoned upload sessions.

A session directory's age is the newest mtime among the directory itself and
everything below it. Directories whose age exceeds the TTL are deleted.
Paths that cannot be stat'ed contribute nothing; a directory with no
readable timestamp at all is left alone.
"""

__all__ = [
    "purge_expired",
    "latest_mtime",
]

logger = logging.getLogger(__name__)


def _mtime(path: str) -> float | None:
    try:
        return os.stat(path).st_mtime
    except OSError as e:
        logger.debug(f"cannot read mtime path={path}: {e}")
        return None


def latest_mtime(directory: Path) -> float | None:
    stamps: list[float] = []
    root_stamp = _mtime(str(directory))
    if root_stamp is not None:
        stamps.append(root_stamp)
    for dirpath, dirnames, filenames in os.walk(directory):
        for name in dirnames + filenames:
            stamp = _mtime(os.path.join(dirpath, name))
            if stamp is not None:
                stamps.append(stamp)
    return max(stamps) if stamps else None


def purge_expired(root: Path, ttl_minutes: int, now: float | None = None) -> list[Path]:
    """Delete pending/completed sessions idle for longer than ``ttl_minutes``.

    Returns the deleted directories. ``ttl_minutes <= 0`` disables the sweep.
    """
    if ttl_minutes <= 0:
        return []
    threshold = (now if now is not None else time.time()) - ttl_minutes * 60
    removed: list[Path] = []
    for group in (PENDING_DIR, COMPLETED_DIR):
        group_dir = Path(root) / group
        if not group_dir.is_dir():
            continue
        for session in sorted(p for p in group_dir.iterdir() if p.is_dir()):
            last_modified = latest_mtime(session)
            if last_modified is None or last_modified >= threshold:
                continue
            try:
                shutil.rmtree(session)
            except OSError as e:
                logger.warning(f"could not remove expired upload directory {session}: {e}")
                continue
            removed.append(session)
    if removed:
        logger.info(f"sweep removed {len(removed)} expired upload directories")
    return removed
