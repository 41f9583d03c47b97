"""Transport protocol definition.

Defines the ``Transport`` Protocol that moves files and directory trees
between the local machine and SSH-reachable hosts.  Transports are
best-effort: a copy may fail part-way and there is no resume, so callers
retry from scratch.

Usage:
    from db_backup.transport.base import Transport

    async def push(transport: Transport, host: RemoteHost) -> None:
        if not await transport.validate_reachable(host):
            raise ConnectivityError(host.target)
        await transport.copy_to_host(Path("temp/app.dump"), host, "/tmp/app.dump")
"""

from pathlib import Path
from typing import Protocol

from db_backup.config.models import RemoteHost
from db_backup.execution import CommandResult


class Transport(Protocol):
    """File transport between the local machine and remote hosts."""

    name: str

    async def copy_to_host(self, local_path: Path, host: RemoteHost, remote_path: str) -> None:
        """Copy a local file or directory to ``remote_path`` on ``host``.

        ``remote_path`` must not exist yet; directories are created there
        with the contents of ``local_path``.
        """
        ...

    async def copy_from_host(
        self,
        host: RemoteHost,
        remote_path: str,
        local_path: Path,
        tree: bool = False,
    ) -> None:
        """Copy ``remote_path`` on ``host`` to ``local_path``."""
        ...

    async def validate_reachable(self, host: RemoteHost) -> bool:
        """Return ``True`` if a non-interactive session can be opened."""
        ...

    async def run_on_host(
        self, host: RemoteHost, argv: list[str], check: bool = True
    ) -> CommandResult:
        """Run a command on ``host``."""
        ...

    async def remove(self, host: RemoteHost, path: str) -> None:
        """Remove ``path`` on ``host``.  Missing paths are not an error."""
        ...

    async def measure(self, host: RemoteHost, path: str, tree: bool) -> int:
        """Bytes for a file, file count for a tree; 0 when missing."""
        ...
