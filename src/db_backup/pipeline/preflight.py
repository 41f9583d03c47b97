"""Pre-flight checks run before anything is captured.

Usage:
    from db_backup.pipeline.preflight import check_free_space, check_reachable

    check_free_space(Path("temp"), required_mb=5120)
    await check_reachable(transport, [host])
"""

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from db_backup.config.models import RemoteHost
from db_backup.errors import ConnectivityError, ResourceExhaustionError
from db_backup.execution import ContainerSurface
from db_backup.transport.base import Transport

logger = logging.getLogger(__name__)


def free_space_mb(path: Path) -> int:
    """Free space in MB on the filesystem holding ``path`` (or its nearest existing parent)."""
    existing = path
    while not existing.exists() and existing != existing.parent:
        existing = existing.parent
    return shutil.disk_usage(existing).free // (1024 * 1024)


def check_free_space(path: Path, required_mb: int) -> int:
    """Require at least ``required_mb`` free at ``path``.

    Returns:
        Available space in MB.

    Raises:
        ResourceExhaustionError: If less space is available.
    """
    available = free_space_mb(path)
    if available < required_mb:
        raise ResourceExhaustionError(
            f"Insufficient disk space at {path}: {available}MB available, "
            f"{required_mb}MB required"
        )
    logger.info(f"Disk space check passed: {available}MB available at {path}")
    return available


async def check_reachable(transport: Transport, hosts: Iterable[RemoteHost]) -> None:
    """Require every host to accept a non-interactive SSH session.

    Raises:
        ConnectivityError: Naming the first unreachable host.
    """
    seen: set[str] = set()
    for host in hosts:
        if host.target in seen:
            continue
        seen.add(host.target)
        if not await transport.validate_reachable(host):
            raise ConnectivityError(f"Unable to connect to {host.target} using SSH key")


async def check_running(surface: ContainerSurface) -> None:
    """Require a source container to be running.

    Raises:
        ConnectivityError: If the container is stopped or missing.
    """
    if not await surface.is_running():
        raise ConnectivityError(f"Container {surface.container} is not running")
