"""Object-storage bucket transfer between containers.

Copies MinIO-style bucket directories from a production container to a
staging container on a remote host, then reconciles per-bucket file
counts before restarting the staging container.

Usage:
    from db_backup.buckets import BucketTransfer

    transfer = BucketTransfer(config.buckets, runner, transport)
    report = await transfer.transfer(bucket="uploads")
"""

import asyncio
import logging
import shutil
import uuid
from collections.abc import Awaitable, Callable
from pathlib import Path

from db_backup.config.models import BucketTransferConfig
from db_backup.errors import TransferError, ValidationFailedError
from db_backup.execution import CommandRunner, ContainerSurface, parse_measure
from db_backup.factory import make_surface
from db_backup.models import ArtifactFormat, ArtifactLocation, BackupArtifact
from db_backup.pipeline.cleanup import CleanupStack
from db_backup.pipeline.preflight import check_reachable
from db_backup.retry import RetryPolicy
from db_backup.schema.models import FieldDescriptor, ValidationReport
from db_backup.schema.verifier import verify
from db_backup.transport.base import Transport
from db_backup.transport.coordinator import PLACEHOLDER_NAME, ArtifactTransferCoordinator

logger = logging.getLogger(__name__)


class BucketInventory:
    """Buckets under a container's data root, seen as a reconciliation source.

    Units are bucket directories, the structure is empty, and the count is
    the number of files (placeholder files excluded).
    """

    def __init__(
        self,
        surface: ContainerSurface,
        data_root: str,
        buckets: list[str],
        label: str,
    ) -> None:
        self.surface = surface
        self.data_root = data_root.rstrip("/")
        self.buckets = buckets
        self.label = label

    async def list_units(self) -> list[str]:
        present = set(await self.surface.list_dir(self.data_root))
        return [b for b in self.buckets if b in present]

    async def structure(self, unit: str) -> list[FieldDescriptor]:
        return []

    async def count(self, unit: str) -> int:
        result = await self.surface.exec(
            ["find", f"{self.data_root}/{unit}", "-type", "f", "!", "-name", PLACEHOLDER_NAME],
            check=False,
        )
        return parse_measure(result, tree=True)


class BucketTransfer:
    """Moves buckets from a source container to a staging container.

    Args:
        config: Containers, hosts, and directories.
        runner: Command runner.
        transport: Transport for SSH checks and host copies.
        staging_dir: Local directory for in-transit buckets.
        allow_empty_placeholder: Degraded mode: pad empty buckets with a
            placeholder file instead of failing.
        retry_policy: Count retries during reconciliation.
        transfer_attempts: Copy attempts per bucket and hop.
        sleep: Delay function between count retries.
    """

    def __init__(
        self,
        config: BucketTransferConfig,
        runner: CommandRunner,
        transport: Transport,
        staging_dir: Path = Path("temp"),
        allow_empty_placeholder: bool = False,
        retry_policy: RetryPolicy | None = None,
        transfer_attempts: int = 2,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._transport = transport
        self._staging_dir = staging_dir
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

        self.source = make_surface(config.source_container, runner, transport, host=config.source_host)
        self.dest = make_surface(config.dest_container, runner, transport, host=config.dest_host)
        self._coordinator = ArtifactTransferCoordinator(
            runner,
            transport,
            attempts=transfer_attempts,
            allow_empty_placeholder=allow_empty_placeholder,
        )
        self._coordinator.register_surface(self.source)
        self._coordinator.register_surface(self.dest)

    async def list_buckets(self) -> list[str]:
        """Bucket directories under the source data root."""
        entries = await self.source.list_dir(self.config.data_root)
        return sorted(
            e for e in entries if not e.startswith(".") and e not in self.config.excluded
        )

    async def transfer(self, bucket: str | None = None) -> ValidationReport:
        """Copy every bucket (or just ``bucket``) and reconcile file counts.

        Returns:
            The per-bucket ``ValidationReport``.

        Raises:
            TransferError: If no bucket matches, or a bucket copies empty
                outside placeholder mode.
            ConnectivityError: If the staging host is unreachable.
            ValidationFailedError: If file counts differ.
        """
        config = self.config
        root = config.data_root.rstrip("/")

        buckets = await self.list_buckets()
        if bucket is not None:
            if bucket not in buckets:
                raise TransferError(f"Bucket {bucket} not found in {config.source_container}")
            buckets = [bucket]
        if not buckets:
            raise TransferError(f"No buckets found under {root} in {config.source_container}")
        logger.info(f"Buckets found: {', '.join(buckets)}")

        async with CleanupStack() as cleanup:
            local_dir = self._staging_dir / f"buckets-{uuid.uuid4().hex[:8]}"
            cleanup.push_sync(f"remove {local_dir}", shutil.rmtree, local_dir, True)

            # Export from the source container
            staged: list[BackupArtifact] = []
            for name in buckets:
                path = f"{root}/{name}"
                logger.info(f"Copying bucket {name} from {config.source_container}...")
                artifact = BackupArtifact(
                    name=name,
                    dataset="buckets",
                    format=ArtifactFormat.RAW_TREE,
                    location=ArtifactLocation.in_container(
                        config.source_container, path, host=self.source.host_target
                    ),
                    signature=await self.source.measure(path, tree=True),
                )
                result = await self._coordinator.stage(
                    artifact, ArtifactLocation.local(str(local_dir / name))
                )
                staged.append(result.artifact)

            # Local -> staging host import dir
            await check_reachable(self._transport, [config.dest_host])
            cleanup.push(
                f"remove {config.import_dir} on {config.dest_host.target}",
                self._transport.remove,
                config.dest_host,
                config.import_dir,
            )
            imported: list[BackupArtifact] = []
            for artifact in staged:
                logger.info(f"Transferring bucket: {artifact.name}")
                result = await self._coordinator.stage(
                    artifact,
                    ArtifactLocation.on_host(
                        config.dest_host.target, f"{config.import_dir.rstrip('/')}/{artifact.name}"
                    ),
                )
                imported.append(result.artifact)

            # Import dir -> staging container
            for artifact in imported:
                logger.info(f"Importing bucket {artifact.name} to {config.dest_container}...")
                await self._coordinator.stage(
                    artifact,
                    ArtifactLocation.in_container(
                        config.dest_container, f"{root}/{artifact.name}", host=self.dest.host_target
                    ),
                )

            report = await verify(
                BucketInventory(self.source, root, buckets, label=f"source {config.source_container}"),
                BucketInventory(self.dest, root, buckets, label=f"staging {config.dest_container}"),
                tolerance_pct=0,
                retry_policy=self._retry_policy,
                dataset="buckets",
                sleep=self._sleep,
            )
            if not report.success:
                raise ValidationFailedError(report)

            logger.info(f"Restarting staging container {config.dest_container}...")
            await self.dest.restart()

        logger.info(f"Bucket transfer successful: {len(buckets)} bucket(s)")
        return report
