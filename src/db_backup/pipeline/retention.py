"""Retention of promoted backups and run logs.

Usage:
    from db_backup.pipeline.retention import apply_retention

    removed = apply_retention(Path("backups"), Path("logs"), days=30)
"""

import logging
import time
from pathlib import Path

logger = logging.getLogger(__name__)

BACKUP_PATTERNS = ("*.dump", "*.sql", "*.tar.gz")
LOG_PATTERNS = ("*.log",)


def expired_files(directory: Path, patterns: tuple[str, ...], days: int, now: float | None = None) -> list[Path]:
    """Files in ``directory`` matching ``patterns`` more than ``days`` whole days old.

    Matches ``find -mtime +days``: a file qualifies once it is at least
    ``days + 1`` days old, so ``days=0`` never removes a file written today.
    """
    if not directory.is_dir():
        return []
    cutoff = (now if now is not None else time.time()) - (days + 1) * 86400
    expired: set[Path] = set()
    for pattern in patterns:
        for path in directory.glob(pattern):
            if path.is_file() and path.stat().st_mtime <= cutoff:
                expired.add(path)
    return sorted(expired)


def apply_retention(
    backup_dir: Path,
    log_dir: Path,
    days: int,
    now: float | None = None,
) -> list[Path]:
    """Delete backups and logs older than ``days``.

    Args:
        backup_dir: Directory holding promoted ``.dump``/``.sql``/``.tar.gz`` files.
        log_dir: Directory holding run logs.
        days: Retention window.
        now: Reference timestamp (default: current time).

    Returns:
        Paths that were deleted.
    """
    removed: list[Path] = []
    candidates = expired_files(backup_dir, BACKUP_PATTERNS, days, now) + expired_files(
        log_dir, LOG_PATTERNS, days, now
    )
    for path in candidates:
        try:
            path.unlink()
        except FileNotFoundError:
            continue
        removed.append(path)

    if removed:
        logger.info(f"Retention removed {len(removed)} file(s) older than {days} days")
    return removed
