"""External process and container execution.

Provides ``CommandRunner`` (async subprocess execution with cancellation
that kills the child) and ``ContainerSurface`` (``docker exec``/``docker
cp`` against a container on the local daemon or on a remote host reached
over SSH).

Usage:
    from db_backup.execution import CommandRunner, ContainerSurface

    runner = CommandRunner()
    surface = ContainerSurface("app-db", runner=runner)
    await surface.exec(["pg_isready", "-U", "postgres"])
    await surface.copy_from("/tmp/app.dump", Path("temp/app.dump"))
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING

from db_backup.config.models import RemoteHost
from db_backup.errors import CommandError, ConnectivityError

if TYPE_CHECKING:
    from db_backup.transport.base import Transport

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured output of a finished process."""

    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external tools with ``asyncio.create_subprocess_exec``.

    A cancelled ``run()`` kills the child process before re-raising, so an
    interrupted pipeline never leaves a dump tool running.
    """

    def __init__(self, timeout_seconds: float | None = None) -> None:
        self._timeout = timeout_seconds

    async def run(
        self,
        argv: list[str],
        check: bool = True,
        input: bytes | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``argv`` and wait for it to finish.

        Args:
            argv: Program and arguments (no shell).
            check: Raise ``CommandError`` on a non-zero exit status.
            input: Optional bytes written to stdin.
            timeout: Seconds before the process is killed (default: the
                runner's timeout, or no limit).

        Returns:
            ``CommandResult`` with decoded stdout/stderr.

        Raises:
            CommandError: If the tool is missing, times out, or exits
                non-zero with ``check=True``.
        """
        logger.debug(f"$ {shlex.join(argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CommandError(argv, 127, f"{argv[0]}: command not found") from e

        limit = timeout if timeout is not None else self._timeout
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(input), limit)
        except asyncio.TimeoutError as e:
            await self._kill(proc)
            raise CommandError(argv, -1, f"timed out after {limit}s") from e
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        result = CommandResult(
            argv=argv,
            returncode=proc.returncode,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        if check and not result.ok:
            raise CommandError(argv, result.returncode, result.stderr)
        return result

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()


def ssh_command(host: RemoteHost, argv: list[str], connect_timeout: int | None = None) -> list[str]:
    """Wrap ``argv`` so it runs on ``host`` via non-interactive SSH.

    Example:
        >>> ssh_command(RemoteHost(address="h", user="u"), ["ls", "/tmp"])
        ['ssh', '-o', 'BatchMode=yes', '-p', '22', 'u@h', 'ls /tmp']
    """
    cmd = ["ssh", "-o", "BatchMode=yes"]
    if connect_timeout is not None:
        cmd += ["-o", f"ConnectTimeout={connect_timeout}"]
    cmd += ["-p", str(host.port), host.target, shlex.join(argv)]
    return cmd


def measure_command(path: str, tree: bool) -> list[str]:
    """Command printing file size (files) or one line per file (trees)."""
    if tree:
        return ["find", path, "-type", "f"]
    return ["stat", "-c", "%s", path]


def parse_measure(result: CommandResult, tree: bool) -> int:
    """Interpret ``measure_command`` output; missing paths measure 0."""
    if not result.ok:
        return 0
    if tree:
        return len([line for line in result.stdout.splitlines() if line.strip()])
    try:
        return int(result.stdout.strip() or 0)
    except ValueError:
        return 0


def measure_local(path: Path, tree: bool) -> int:
    """Local counterpart of ``measure_command``."""
    if tree:
        if not path.is_dir():
            return 0
        return sum(1 for p in path.rglob("*") if p.is_file())
    if not path.is_file():
        return 0
    return path.stat().st_size


class ContainerSurface:
    """A container that commands and files can be sent to.

    When ``host`` is set, every ``docker`` call runs on that host over SSH
    and file copies hop through ``remote_tmp`` on the host via
    ``transport``.

    Args:
        container: Container name or ID.
        runner: Command runner.
        host: Remote host running the container (``None`` for local Docker).
        transport: Required when ``host`` is set; moves files to/from it.
        remote_tmp: Scratch directory on the remote host.
    """

    def __init__(
        self,
        container: str,
        runner: CommandRunner,
        host: RemoteHost | None = None,
        transport: Transport | None = None,
        remote_tmp: str = "/tmp",
    ) -> None:
        if host is not None and transport is None:
            raise ValueError("A transport is required for containers on a remote host")
        self.container = container
        self.host = host
        self._runner = runner
        self._transport = transport
        self._remote_tmp = remote_tmp

    def __repr__(self) -> str:
        where = f" on {self.host.target}" if self.host else ""
        return f"ContainerSurface({self.container!r}{where})"

    @property
    def host_target(self) -> str | None:
        return self.host.target if self.host else None

    def _on_host(self, argv: list[str]) -> list[str]:
        return ssh_command(self.host, argv) if self.host else argv

    # ------------------------------------------------------------------
    # Process control
    # ------------------------------------------------------------------

    async def exec(
        self,
        args: list[str],
        env: dict[str, str] | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run ``args`` inside the container."""
        argv = ["docker", "exec"]
        for key, value in (env or {}).items():
            argv += ["-e", f"{key}={value}"]
        argv += [self.container, *args]
        return await self._runner.run(self._on_host(argv), check=check)

    async def is_running(self) -> bool:
        result = await self._runner.run(
            self._on_host(
                ["docker", "inspect", "-f", "{{.State.Running}}", self.container]
            ),
            check=False,
        )
        return result.ok and result.stdout.strip() == "true"

    async def start(self) -> None:
        await self._runner.run(self._on_host(["docker", "start", self.container]))

    async def stop(self) -> None:
        await self._runner.run(self._on_host(["docker", "stop", self.container]))

    async def restart(self) -> None:
        await self._runner.run(self._on_host(["docker", "restart", self.container]))

    async def wait_until_ready(
        self,
        is_ready: Callable[[], Awaitable[bool]],
        attempts: int = 30,
        interval: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Poll ``is_ready`` until it returns ``True``.

        Raises:
            ConnectivityError: If ``is_ready`` never returns ``True`` within
                ``attempts`` polls.
        """
        for attempt in range(1, attempts + 1):
            if await is_ready():
                logger.info(f"{self.container} is ready")
                return
            logger.info(f"Waiting for {self.container}... ({attempt}/{attempts})")
            if attempt < attempts:
                await sleep(interval)
        raise ConnectivityError(
            f"{self.container} failed to become ready within "
            f"{attempts} attempts"
        )

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def remove(self, path: str) -> None:
        """Remove a file or directory in the container; missing is fine."""
        await self.exec(["rm", "-rf", path])

    async def mkdir(self, path: str) -> None:
        await self.exec(["mkdir", "-p", path])

    async def measure(self, path: str, tree: bool) -> int:
        result = await self.exec(measure_command(path, tree), check=False)
        return parse_measure(result, tree)

    async def list_dir(self, path: str) -> list[str]:
        result = await self.exec(["ls", "-1A", path])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    async def copy_from(self, src_path: str, local_path: Path, tree: bool = False) -> None:
        """Copy ``src_path`` out of the container to ``local_path``.

        With ``tree=True`` the directory is copied by content, so
        ``local_path`` ends up holding what ``src_path`` held.
        """
        local_path.parent.mkdir(parents=True, exist_ok=True)
        source = f"{self.container}:{_contents(src_path) if tree else src_path}"
        if self.host is None:
            await self._runner.run(["docker", "cp", source, str(local_path)])
            return

        hop = self._hop_path(src_path)
        try:
            await self._runner.run(self._on_host(["docker", "cp", source, hop]))
            await self._transport.copy_from_host(self.host, hop, local_path, tree=tree)
        finally:
            await self._transport.remove(self.host, hop)

    async def copy_to(self, local_path: Path, dest_path: str) -> None:
        """Copy ``local_path`` (file or directory) into the container at ``dest_path``."""
        tree = local_path.is_dir()
        await self.mkdir(str(PurePosixPath(dest_path).parent))
        target = f"{self.container}:{dest_path}"
        if self.host is None:
            source = _contents(str(local_path)) if tree else str(local_path)
            await self._runner.run(["docker", "cp", source, target])
            return

        hop = self._hop_path(dest_path)
        try:
            await self._transport.copy_to_host(local_path, self.host, hop)
            hop_source = _contents(hop) if tree else hop
            await self._runner.run(self._on_host(["docker", "cp", hop_source, target]))
        finally:
            await self._transport.remove(self.host, hop)

    async def import_host_path(self, host_path: str, dest_path: str, tree: bool = False) -> None:
        """Copy a path that already sits on the container's host into the container."""
        await self.mkdir(str(PurePosixPath(dest_path).parent))
        source = _contents(host_path) if tree else host_path
        await self._runner.run(
            self._on_host(["docker", "cp", source, f"{self.container}:{dest_path}"])
        )

    def _hop_path(self, path: str) -> str:
        name = PurePosixPath(path).name or "artifact"
        return f"{self._remote_tmp}/db-backup-{uuid.uuid4().hex[:8]}-{name}"


def _contents(path: str) -> str:
    """``docker cp`` source syntax that copies a directory's contents."""
    return path.rstrip("/") + "/."
