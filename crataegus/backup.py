"""Backup file naming, target checks and retention.

Snapshots live next to the database as ``<db-path>.<unix-seconds>.bak``
and are recognized by that exact name, never by content.
"""

from __future__ import annotations

import re
import time
from pathlib import Path

import structlog

from crataegus.errors import BackupPathError

logger = structlog.get_logger()


def unix_now() -> int:
    return int(time.time())


def backup_path_for(db_path: Path, timestamp: int) -> Path:
    return db_path.with_name(f"{db_path.name}.{timestamp}.bak")


def check_backup_target(target: Path) -> None:
    """Raise ``BackupPathError`` unless ``target`` is a fresh absolute path in an existing dir."""
    if not target.is_absolute():
        raise BackupPathError(f"backup path must be absolute: {target}")
    # a dangling symlink counts as taken too
    if target.exists() or target.is_symlink():
        raise BackupPathError(f"backup path already exists: {target}")
    if not target.parent.is_dir():
        raise BackupPathError(f"backup directory does not exist: {target.parent}")


def list_backups(db_path: Path) -> list[tuple[int, Path]]:
    """Existing snapshots of ``db_path`` as ``(timestamp, path)``, newest first."""
    pattern = re.compile(re.escape(db_path.name) + r"\.(\d+)\.bak")
    found: list[tuple[int, Path]] = []
    for entry in db_path.parent.iterdir():
        match = pattern.fullmatch(entry.name)
        if match and entry.is_file():
            found.append((int(match.group(1)), entry))
    found.sort(key=lambda item: item[0], reverse=True)
    return found


def prune_backups(db_path: Path, keep: int) -> list[Path]:
    """Delete all but the ``keep`` newest snapshots, oldest first.

    Returns:
        The deleted paths, in deletion order.
    """
    stale = list_backups(db_path)[keep:]
    deleted: list[Path] = []
    for timestamp, path in reversed(stale):
        path.unlink()
        deleted.append(path)
        logger.info("backup_pruned", path=str(path), timestamp=timestamp)
    return deleted
