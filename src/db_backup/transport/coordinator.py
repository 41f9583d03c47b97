"""Artifact transfer coordinator.

Moves ``BackupArtifact`` instances across container, local, and
remote-host boundaries and confirms every copy landed non-empty before
handing it on.

Usage:
    from db_backup.transport.coordinator import ArtifactTransferCoordinator

    coordinator = ArtifactTransferCoordinator(runner, transport, attempts=2)
    coordinator.register_surface(source_surface)
    staged = await coordinator.stage(
        artifact, ArtifactLocation.local("temp/app.dump")
    )
"""

import logging
import shutil
from pathlib import Path

from pydantic import BaseModel

from db_backup.config.models import RemoteHost
from db_backup.errors import CommandError, TransferError
from db_backup.execution import CommandRunner, ContainerSurface, measure_local
from db_backup.models import ArtifactLocation, BackupArtifact, LocationKind
from db_backup.transport.base import Transport

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = ".placeholder"


class StagedArtifact(BaseModel):
    """Result of a verified copy.

    Attributes:
        artifact: The artifact at its new location.
        source: Where it was copied from.
        measured: Bytes (files) or file count (trees) found at the destination.
        attempts: Copy attempts used.
        placeholder: ``True`` when an empty tree was padded with a
            placeholder file.
    """

    artifact: BackupArtifact
    source: ArtifactLocation
    measured: int
    attempts: int = 1
    placeholder: bool = False


class ArtifactTransferCoordinator:
    """Copies artifacts between locations with presence verification.

    Containers and hosts referenced by an ``ArtifactLocation`` must be
    known to the coordinator: containers via ``register_surface()`` and
    hosts via ``register_host()`` (surfaces register their host too).

    Args:
        runner: Command runner.
        transport: Transport for local <-> host copies.
        attempts: Copy attempts before giving up (each starts from scratch).
        allow_empty_placeholder: Degraded mode: pad empty trees with a
            placeholder file instead of failing.
    """

    def __init__(
        self,
        runner: CommandRunner,
        transport: Transport,
        attempts: int = 2,
        allow_empty_placeholder: bool = False,
    ) -> None:
        self._runner = runner
        self._transport = transport
        self._attempts = max(1, attempts)
        self._allow_placeholder = allow_empty_placeholder
        self._surfaces: dict[tuple[str, str | None], ContainerSurface] = {}
        self._hosts: dict[str, RemoteHost] = {}

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_surface(self, surface: ContainerSurface) -> None:
        self._surfaces[(surface.container, surface.host_target)] = surface
        if surface.host is not None:
            self.register_host(surface.host)

    def register_host(self, host: RemoteHost) -> None:
        self._hosts[host.target] = host

    def _surface(self, location: ArtifactLocation) -> ContainerSurface:
        try:
            return self._surfaces[(location.container, location.host)]
        except KeyError:
            raise TransferError(f"Unknown container location: {location}") from None

    def _host(self, location: ArtifactLocation) -> RemoteHost:
        try:
            return self._hosts[location.host]
        except KeyError:
            raise TransferError(f"Unknown host location: {location}") from None

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    async def stage(
        self, artifact: BackupArtifact, destination: ArtifactLocation
    ) -> StagedArtifact:
        """Copy ``artifact`` to ``destination`` and verify the copy.

        Args:
            artifact: Artifact at its current location.
            destination: Target location (full path of the copy).

        Returns:
            ``StagedArtifact`` describing the verified copy.

        Raises:
            TransferError: If every attempt failed or left an empty copy.
        """
        tree = artifact.is_tree
        last_error: Exception | None = None

        for attempt in range(1, self._attempts + 1):
            await self.discard(destination, tree)
            try:
                await self._copy(artifact.location, destination, tree)
            except (CommandError, TransferError) as e:
                last_error = e
                logger.warning(
                    f"Copy of {artifact.name} to {destination} failed "
                    f"(attempt {attempt}/{self._attempts}): {e}"
                )
                continue

            measured = await self.measure(destination, tree)
            if measured > 0:
                logger.info(f"Staged {artifact.name} at {destination}")
                return StagedArtifact(
                    artifact=artifact.moved_to(
                        destination, measured if not tree else artifact.size_bytes
                    ),
                    source=artifact.location,
                    measured=measured,
                    attempts=attempt,
                )

            if tree and self._allow_placeholder:
                await self._write_placeholder(destination)
                logger.warning(
                    f"{artifact.name} is empty at {destination}; "
                    f"wrote placeholder file"
                )
                return StagedArtifact(
                    artifact=artifact.moved_to(destination, artifact.size_bytes),
                    source=artifact.location,
                    measured=1,
                    attempts=attempt,
                    placeholder=True,
                )

            last_error = TransferError(f"{artifact.name} is empty at {destination}")
            logger.warning(
                f"{artifact.name} is missing or empty at {destination} "
                f"(attempt {attempt}/{self._attempts})"
            )

        raise TransferError(
            f"Failed to transfer {artifact.name} to {destination} after "
            f"{self._attempts} attempt(s): {last_error}"
        ) from last_error

    async def _copy(
        self, source: ArtifactLocation, destination: ArtifactLocation, tree: bool
    ) -> None:
        route = (source.kind, destination.kind)

        if route == (LocationKind.CONTAINER, LocationKind.LOCAL):
            await self._surface(source).copy_from(
                source.path, Path(destination.path), tree=tree
            )
        elif route == (LocationKind.LOCAL, LocationKind.CONTAINER):
            await self._surface(destination).copy_to(Path(source.path), destination.path)
        elif route == (LocationKind.LOCAL, LocationKind.HOST):
            await self._transport.copy_to_host(
                Path(source.path), self._host(destination), destination.path
            )
        elif route == (LocationKind.HOST, LocationKind.LOCAL):
            await self._transport.copy_from_host(
                self._host(source), source.path, Path(destination.path), tree=tree
            )
        elif (
            route == (LocationKind.HOST, LocationKind.CONTAINER)
            and source.host == destination.host
        ):
            await self._surface(destination).import_host_path(
                source.path, destination.path, tree=tree
            )
        elif route == (LocationKind.LOCAL, LocationKind.LOCAL):
            src, dest = Path(source.path), Path(destination.path)
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                if tree:
                    shutil.copytree(src, dest)
                else:
                    shutil.copy2(src, dest)
            except OSError as e:
                raise TransferError(f"Local copy of {src} to {dest} failed: {e}") from e
        else:
            raise TransferError(
                f"Unsupported transfer route {source.kind.value} -> "
                f"{destination.kind.value}"
            )

    # ------------------------------------------------------------------
    # Location helpers
    # ------------------------------------------------------------------

    async def measure(self, location: ArtifactLocation, tree: bool) -> int:
        """Bytes (files) or file count (trees) at ``location``; 0 if missing."""
        if location.kind == LocationKind.LOCAL:
            return measure_local(Path(location.path), tree)
        if location.kind == LocationKind.CONTAINER:
            return await self._surface(location).measure(location.path, tree)
        return await self._transport.measure(self._host(location), location.path, tree)

    async def discard(self, location: ArtifactLocation, tree: bool = False) -> None:
        """Remove whatever is at ``location``.  Missing paths are fine."""
        if location.kind == LocationKind.LOCAL:
            path = Path(location.path)
            if path.is_dir():
                shutil.rmtree(path)
            elif path.exists():
                path.unlink()
        elif location.kind == LocationKind.CONTAINER:
            await self._surface(location).remove(location.path)
        else:
            await self._transport.remove(self._host(location), location.path)

    async def _write_placeholder(self, location: ArtifactLocation) -> None:
        if location.kind == LocationKind.LOCAL:
            path = Path(location.path)
            path.mkdir(parents=True, exist_ok=True)
            (path / PLACEHOLDER_NAME).write_text("")
            return
        target = f"{location.path.rstrip('/')}/{PLACEHOLDER_NAME}"
        if location.kind == LocationKind.CONTAINER:
            surface = self._surface(location)
            await surface.mkdir(location.path)
            await surface.exec(["touch", target])
        else:
            host = self._host(location)
            await self._transport.run_on_host(host, ["mkdir", "-p", location.path])
            await self._transport.run_on_host(host, ["touch", target])
