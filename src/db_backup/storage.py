"""Promotion of verified artifacts to their destinations.

A destination is either a local directory (e.g. ``backups``) or an rclone
remote (``gdrive:backups/postgres``).  Directory trees are archived to
``.tar.gz`` before they are uploaded.

Usage:
    from db_backup.storage import ObjectStore, archive_tree

    store = ObjectStore(runner)
    await archive_tree(Path("temp/app_dump"), Path("temp/app_dump.tar.gz"))
    await store.upload(Path("temp/app_dump.tar.gz"), "gdrive:backups/mongo")
"""

import asyncio
import logging
import re
import shutil
import tarfile
from pathlib import Path

from db_backup.errors import CommandError, TransferError
from db_backup.execution import CommandRunner

logger = logging.getLogger(__name__)

# rclone remote syntax: "<remote>:<path>"; one-letter names are drive letters
_REMOTE_RE = re.compile(r"^[A-Za-z0-9_.\-]{2,}:")


def is_remote(uri: str) -> bool:
    """Return ``True`` for rclone remotes, ``False`` for local paths.

    Examples:
        >>> is_remote("gdrive:backups")
        True
        >>> is_remote("/var/backups")
        False
    """
    return bool(_REMOTE_RE.match(uri))


async def archive_tree(source_dir: Path, output_path: Path) -> int:
    """Create a tar.gz archive of a directory's contents.

    Args:
        source_dir: Directory to archive.
        output_path: Archive path to create.

    Returns:
        Size of the created archive in bytes.
    """
    logger.info(f"Creating archive: {output_path}")
    output_path.parent.mkdir(parents=True, exist_ok=True)

    def _write() -> None:
        with tarfile.open(output_path, "w:gz") as tar:
            tar.add(source_dir, arcname=".")

    await asyncio.to_thread(_write)

    archive_size = output_path.stat().st_size
    logger.info(f"Archive created: {archive_size:,} bytes")
    return archive_size


class ObjectStore:
    """Copies local files to local directories or rclone remotes."""

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    async def upload(self, local_path: Path, remote_uri: str) -> str:
        """Copy ``local_path`` into the ``remote_uri`` directory.

        Returns:
            Location of the uploaded copy.

        Raises:
            TransferError: If the copy fails.
        """
        if is_remote(remote_uri):
            logger.info(f"Uploading {local_path.name} to {remote_uri}...")
            try:
                await self._runner.run(["rclone", "copy", str(local_path), remote_uri])
            except CommandError as e:
                raise TransferError(f"Upload of {local_path.name} to {remote_uri} failed: {e}") from e
            return f"{remote_uri.rstrip('/')}/{local_path.name}"

        dest_dir = Path(remote_uri)
        dest = dest_dir / local_path.name
        logger.info(f"Copying {local_path.name} to {dest_dir}")
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
            if local_path.is_dir():
                shutil.copytree(local_path, dest, dirs_exist_ok=True)
            else:
                shutil.copy2(local_path, dest)
        except OSError as e:
            raise TransferError(f"Copy of {local_path.name} to {dest_dir} failed: {e}") from e
        return str(dest)
