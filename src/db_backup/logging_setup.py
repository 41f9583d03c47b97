"""Console and per-run file logging.

Usage:
    from db_backup.logging_setup import configure_logging

    log_file = configure_logging(Path("logs"), verbose=True)
"""

import logging
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "db_backup"
FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def log_file_path(log_dir: Path, now: datetime | None = None) -> Path:
    """Per-run log file name.

    Example:
        >>> log_file_path(Path("logs"), datetime(2024, 5, 1, 3, 0))
        PosixPath('logs/db_backup_202405010300.log')
    """
    stamp = (now or datetime.now()).strftime("%Y%m%d%H%M")
    return log_dir / f"db_backup_{stamp}.log"


def configure_logging(
    log_dir: Path | None = None,
    verbose: bool = False,
    console: Console | None = None,
) -> Path | None:
    """Install a rich console handler and, optionally, a per-run file handler.

    Handlers are attached to the ``db_backup`` package logger and replace
    any installed by a previous call.

    Args:
        log_dir: Directory for ``db_backup_<YYYYmmddHHMM>.log``; no file
            logging when ``None``.
        verbose: Log DEBUG (every external command) instead of INFO.
        console: Console for the rich handler (default: stderr).

    Returns:
        Path of the log file, or ``None``.
    """
    level = logging.DEBUG if verbose else logging.INFO
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
    )
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_dir is None:
        return None

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_file_path(log_dir)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt=DATE_FORMAT))
    file_handler.setLevel(logging.DEBUG)
    logger.addHandler(file_handler)
    logger.setLevel(logging.DEBUG)
    return log_file
