"""PostgreSQL migration between containers on two hosts.

Dumps a database in the source container, carries the dump through the
local machine to the destination container, and restores it there.  Temp
files on every host and container are registered for cleanup as soon as
they are created.

Usage:
    from db_backup.migrate import DatabaseMigrator, MigrationMode

    migrator = DatabaseMigrator(config.migration, runner, transport)
    report = await migrator.migrate(MigrationMode.FULL, post_sql=Path("fix.sql"), verify_counts=True)
"""

import asyncio
import logging
import shutil
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime
from enum import Enum
from pathlib import Path

from db_backup.adapters.base import NamespaceView
from db_backup.adapters.postgres import PostgresAdapter
from db_backup.config.models import MigrationConfig
from db_backup.errors import ConfigError, ValidationFailedError
from db_backup.execution import CommandRunner
from db_backup.factory import make_surface
from db_backup.models import ArtifactFormat, ArtifactLocation, BackupArtifact
from db_backup.pipeline.cleanup import CleanupStack
from db_backup.pipeline.preflight import check_reachable
from db_backup.retry import RetryPolicy
from db_backup.schema.models import ValidationReport
from db_backup.schema.verifier import verify
from db_backup.transport.base import Transport
from db_backup.transport.coordinator import ArtifactTransferCoordinator

logger = logging.getLogger(__name__)


class MigrationMode(str, Enum):
    """What a migration carries over."""

    FULL = "full"
    SCHEMA_ONLY = "schema-only"
    DATA_ONLY = "data-only"

    @property
    def dump_args(self) -> list[str]:
        if self == MigrationMode.SCHEMA_ONLY:
            return ["--schema-only"]
        if self == MigrationMode.DATA_ONLY:
            return ["--data-only"]
        return []

    @property
    def recreates_database(self) -> bool:
        return self != MigrationMode.DATA_ONLY


class DatabaseMigrator:
    """Moves one PostgreSQL database between two remote containers.

    Args:
        config: Source and destination hosts, containers, and databases.
        runner: Command runner.
        transport: Transport used for SSH checks and host hops.
        staging_dir: Local directory for the in-transit dump.
        tolerance_pct: Count tolerance for ``verify_counts=True``.
        retry_policy: Count retries for ``verify_counts=True``.
        sleep: Delay function between count retries.
    """

    def __init__(
        self,
        config: MigrationConfig,
        runner: CommandRunner,
        transport: Transport,
        staging_dir: Path = Path("temp"),
        tolerance_pct: float = 1.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._runner = runner
        self._transport = transport
        self._staging_dir = staging_dir
        self._tolerance_pct = tolerance_pct
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

        self.source = PostgresAdapter(
            config.source,
            make_surface(config.source_container, runner, transport, host=config.source_host,
                         remote_tmp=config.remote_tmp),
        )
        self.dest = PostgresAdapter(
            config.dest,
            make_surface(config.dest_container, runner, transport, host=config.dest_host,
                         remote_tmp=config.remote_tmp),
        )
        self._coordinator = ArtifactTransferCoordinator(runner, transport)
        self._coordinator.register_surface(self.source.surface)
        self._coordinator.register_surface(self.dest.surface)

    async def migrate(
        self,
        mode: MigrationMode = MigrationMode.FULL,
        post_sql: Path | None = None,
        verify_counts: bool = False,
    ) -> ValidationReport | None:
        """Run the migration.

        Args:
            mode: ``full``, ``schema-only``, or ``data-only``.  Data-only
                keeps the destination database and only loads rows.
            post_sql: Local SQL file executed on the destination afterwards.
            verify_counts: Reconcile source and destination (full mode only).

        Returns:
            The ``ValidationReport`` when ``verify_counts`` is set, else ``None``.

        Raises:
            ConfigError: If ``verify_counts`` is combined with a partial mode,
                or ``post_sql`` does not exist.
            ConnectivityError: If a host is unreachable over SSH.
            CaptureError, TransferError, RestoreError: If a step fails.
            ValidationFailedError: If reconciliation fails.
        """
        config = self.config
        if verify_counts and mode != MigrationMode.FULL:
            raise ConfigError("--verify is only supported for full migrations")
        if post_sql is not None and not post_sql.is_file():
            raise ConfigError(f"Post-migration SQL file not found: {post_sql}")

        async with CleanupStack() as cleanup:
            cleanup.push("close destination connections", self.dest.close)
            cleanup.push("close source connections", self.source.close)

            await check_reachable(self._transport, [config.source_host, config.dest_host])

            # Dump in the source container
            stamp = datetime.now().strftime("%Y%m%d%H%M")
            name = f"{config.source_database}_{stamp}.dump"
            source_path = f"{config.remote_tmp.rstrip('/')}/{name}"
            cleanup.push(
                f"remove {source_path} in {config.source_container}",
                self.source.surface.remove,
                source_path,
            )
            logger.info(
                f"Exporting database ({config.source_database}) from source "
                f"server ({config.source_host.address})..."
            )
            size = await self.source.dump(
                config.source_database, source_path, extra_args=mode.dump_args
            )
            artifact = BackupArtifact(
                name=name,
                dataset=config.source_database,
                format=ArtifactFormat.BINARY_DUMP,
                location=ArtifactLocation.in_container(
                    config.source_container, source_path, host=config.source_host.target
                ),
                size_bytes=size,
            )

            # Source container -> local
            local_dir = self._staging_dir / f"migrate-{uuid.uuid4().hex[:8]}"
            cleanup.push_sync(f"remove {local_dir}", shutil.rmtree, local_dir, True)
            staged = await self._coordinator.stage(
                artifact, ArtifactLocation.local(str(local_dir / name))
            )

            # Local -> destination container
            dest_path = f"{config.remote_tmp.rstrip('/')}/{name}"
            cleanup.push(
                f"remove {dest_path} in {config.dest_container}",
                self.dest.surface.remove,
                dest_path,
            )
            logger.info(f"Transferring dump file to destination server ({config.dest_host.address})...")
            await self._coordinator.stage(
                staged.artifact,
                ArtifactLocation.in_container(
                    config.dest_container, dest_path, host=config.dest_host.target
                ),
            )

            logger.info(
                f"Importing database ({config.dest_database}) to destination "
                f"server ({config.dest_host.address})..."
            )
            await self.dest.restore(
                dest_path,
                ArtifactFormat.BINARY_DUMP,
                config.dest_database,
                config.source_database,
                recreate=mode.recreates_database,
            )

            if post_sql is not None:
                sql_path = f"{config.remote_tmp.rstrip('/')}/{post_sql.name}"
                cleanup.push(
                    f"remove {sql_path} in {config.dest_container}",
                    self.dest.surface.remove,
                    sql_path,
                )
                await self.dest.surface.copy_to(post_sql, sql_path)
                logger.info(f"Running post-migration SQL {post_sql.name}...")
                await self.dest.run_sql_file(config.dest_database, sql_path)

            report = None
            if verify_counts:
                report = await verify(
                    NamespaceView(self.source, config.source_database, label=f"source {config.source_database}"),
                    NamespaceView(self.dest, config.dest_database, label=f"destination {config.dest_database}"),
                    tolerance_pct=self._tolerance_pct,
                    retry_policy=self._retry_policy,
                    dataset=config.dest_database,
                    sleep=self._sleep,
                )
                if not report.success:
                    raise ValidationFailedError(report)

        logger.info(
            f"Database migration completed successfully from "
            f"{config.source_database}@{config.source_host.address} to "
            f"{config.dest_database}@{config.dest_host.address}"
        )
        return report
