"""SSH-based transports: scp-like and rsync-like.

Both transports share SSH command execution and differ only in how files
are copied.

Usage:
    from db_backup.transport.ssh import get_transport

    transport = get_transport("rsync", runner)
    await transport.copy_to_host(Path("temp/app.dump"), host, "/tmp/app.dump")
"""

import logging
import shutil
from pathlib import Path, PurePosixPath

from db_backup.config.models import RemoteHost
from db_backup.execution import (
    CommandResult,
    CommandRunner,
    measure_command,
    parse_measure,
    ssh_command,
)

logger = logging.getLogger(__name__)


class SshTransport:
    """Common SSH plumbing for the concrete transports."""

    name = "ssh"
    connect_timeout = 5

    def __init__(self, runner: CommandRunner) -> None:
        self._runner = runner

    async def validate_reachable(self, host: RemoteHost) -> bool:
        logger.info(f"Validating SSH connection to {host.target}...")
        result = await self._runner.run(
            ssh_command(host, ["exit"], connect_timeout=self.connect_timeout),
            check=False,
        )
        if not result.ok:
            logger.error(f"Unable to connect to {host.target} using SSH key")
        return result.ok

    async def run_on_host(
        self, host: RemoteHost, argv: list[str], check: bool = True
    ) -> CommandResult:
        return await self._runner.run(ssh_command(host, argv), check=check)

    async def remove(self, host: RemoteHost, path: str) -> None:
        await self.run_on_host(host, ["rm", "-rf", path])

    async def measure(self, host: RemoteHost, path: str, tree: bool) -> int:
        result = await self.run_on_host(host, measure_command(path, tree), check=False)
        return parse_measure(result, tree)

    async def _prepare_remote_parent(self, host: RemoteHost, remote_path: str) -> None:
        parent = str(PurePosixPath(remote_path).parent)
        await self.run_on_host(host, ["mkdir", "-p", parent])

    @staticmethod
    def _prepare_local_target(local_path: Path, tree: bool) -> None:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        if tree and local_path.exists():
            # Recursive copies nest into an existing directory
            shutil.rmtree(local_path)


class ScpTransport(SshTransport):
    """Copies with ``scp -r``."""

    name = "scp"

    def _scp(self, host: RemoteHost) -> list[str]:
        return ["scp", "-o", "BatchMode=yes", "-P", str(host.port), "-r"]

    async def copy_to_host(self, local_path: Path, host: RemoteHost, remote_path: str) -> None:
        await self._prepare_remote_parent(host, remote_path)
        await self._runner.run(
            [*self._scp(host), str(local_path), f"{host.target}:{remote_path}"]
        )

    async def copy_from_host(
        self,
        host: RemoteHost,
        remote_path: str,
        local_path: Path,
        tree: bool = False,
    ) -> None:
        self._prepare_local_target(local_path, tree)
        await self._runner.run(
            [*self._scp(host), f"{host.target}:{remote_path}", str(local_path)]
        )


class RsyncTransport(SshTransport):
    """Copies with ``rsync -az`` over SSH."""

    name = "rsync"

    def _rsync(self, host: RemoteHost) -> list[str]:
        return ["rsync", "-az", "-e", f"ssh -o BatchMode=yes -p {host.port}"]

    async def copy_to_host(self, local_path: Path, host: RemoteHost, remote_path: str) -> None:
        await self._prepare_remote_parent(host, remote_path)
        source = f"{local_path}/" if local_path.is_dir() else str(local_path)
        await self._runner.run(
            [*self._rsync(host), source, f"{host.target}:{remote_path}"]
        )

    async def copy_from_host(
        self,
        host: RemoteHost,
        remote_path: str,
        local_path: Path,
        tree: bool = False,
    ) -> None:
        self._prepare_local_target(local_path, tree)
        source = f"{host.target}:{remote_path.rstrip('/')}/" if tree else f"{host.target}:{remote_path}"
        await self._runner.run([*self._rsync(host), source, str(local_path)])


_TRANSPORTS: dict[str, type[SshTransport]] = {
    "scp": ScpTransport,
    "rsync": RsyncTransport,
}


def get_transport(method: str, runner: CommandRunner) -> SshTransport:
    """Create the transport selected by ``transfer_method``.

    Raises:
        ValueError: If ``method`` is not ``scp`` or ``rsync``.
    """
    try:
        return _TRANSPORTS[method](runner)
    except KeyError:
        available = ", ".join(_TRANSPORTS)
        raise ValueError(
            f"Unknown transfer method '{method}'. Available: {available}"
        ) from None
