"""Backup-validate-promote pipeline.

Sequences one run through its stages::

    INIT -> CAPTURING -> STAGED -> RESTORING -> VALIDATING -> VALIDATED
         -> PROMOTING -> CLEANING -> DONE

Any stage may end the run early: the orchestrator then moves to
``CLEANING`` and finishes as ``FAILED``.  Every acquired resource is
registered on a ``CleanupStack`` at acquisition time, and the final
outcome notification is only sent once cleanup has finished.

Usage:
    from db_backup.pipeline.orchestrator import PipelineOrchestrator

    orchestrator = PipelineOrchestrator(config)
    outcome = await orchestrator.run()
    sys.exit(outcome.exit_code)
"""

import asyncio
import logging
import shutil
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from db_backup.adapters.base import DatabaseAdapter, NamespaceView
from db_backup.config.models import DatasetConfig, PipelineConfig, RemoteHost
from db_backup.errors import (
    BackupError,
    ConfigError,
    ConnectivityError,
    RestoreError,
    ValidationFailedError,
)
from db_backup.execution import CommandRunner, ContainerSurface
from db_backup.factory import get_adapter, make_surface
from db_backup.models import ArtifactLocation, BackupArtifact, Severity
from db_backup.notify import NotificationSink, build_sink
from db_backup.pipeline.artifacts import ArtifactStore
from db_backup.pipeline.cleanup import CleanupStack
from db_backup.pipeline.models import BackupJob, Outcome, PipelineEvent, Stage
from db_backup.pipeline.preflight import check_free_space, check_reachable, check_running
from db_backup.pipeline.retention import apply_retention
from db_backup.schema.models import ValidationReport
from db_backup.schema.verifier import verify
from db_backup.storage import ObjectStore, archive_tree
from db_backup.transport.base import Transport
from db_backup.transport.coordinator import ArtifactTransferCoordinator
from db_backup.transport.ssh import get_transport

logger = logging.getLogger(__name__)

INTERRUPTED_MESSAGE = "Backup process was interrupted"

AdapterFactory = Callable[..., DatabaseAdapter]


class PipelineOrchestrator:
    """Runs one backup job from capture to promotion.

    Args:
        config: Pipeline configuration; not modified.
        runner: Command runner (default: a new ``CommandRunner``).
        transport: File transport (default: from ``config.transfer_method``).
        sink: Notification sink (default: from ``config.notifications``).
        adapter_factory: ``(connection, surface) -> DatabaseAdapter``.
        object_store: Promotion backend.
        sleep: Delay function for readiness polls and retries.
    """

    def __init__(
        self,
        config: PipelineConfig,
        runner: CommandRunner | None = None,
        transport: Transport | None = None,
        sink: NotificationSink | None = None,
        adapter_factory: AdapterFactory = get_adapter,
        object_store: ObjectStore | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._runner = runner or CommandRunner()
        self._transport = transport or get_transport(config.transfer_method, self._runner)
        self._sink = sink or build_sink(config.notifications)
        self._adapter_factory = adapter_factory
        self._object_store = object_store or ObjectStore(self._runner)
        self._sleep = sleep
        self._coordinator = ArtifactTransferCoordinator(
            self._runner,
            self._transport,
            attempts=config.transfer_attempts,
            allow_empty_placeholder=config.allow_empty_placeholder,
        )
        self.events: list[PipelineEvent] = []
        self.last_job: BackupJob | None = None

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> Outcome:
        """Execute the pipeline once.

        Never raises for pipeline failures (including cancellation): the
        result is reported as an ``Outcome``.

        Returns:
            ``Outcome.done()`` or ``Outcome.failed(...)``.
        """
        job = BackupJob(
            datasets=[d.name for d in self.config.datasets],
            verification_target=(
                self.config.verification.container if self.config.verification else None
            ),
            destinations=sorted(
                {dest for d in self.config.datasets for dest in self._destinations(d)}
            ),
        )
        self.last_job = job
        self.events = []
        cleanup = CleanupStack()
        report: ValidationReport | None = None

        try:
            await self._execute(job, cleanup)
            outcome = Outcome.done()
        except asyncio.CancelledError:
            # Cleanup and the outcome notification still have to run
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
            logger.error(f"{INTERRUPTED_MESSAGE} during {job.stage.value}")
            outcome = Outcome.failed(INTERRUPTED_MESSAGE, stage=job.stage, interrupted=True)
        except ValidationFailedError as e:
            report = e.report
            failure = e.report.failure
            outcome = Outcome.failed(
                str(e),
                stage=job.stage,
                unit=failure.unit if failure else None,
                check=failure.check if failure else None,
            )
        except BackupError as e:
            logger.error(f"Backup failed during {job.stage.value}: {e}")
            outcome = Outcome.failed(
                str(e),
                stage=job.stage,
                unit=getattr(e, "unit", None),
                check=getattr(e, "check", None) or None,
            )
        except Exception as e:
            logger.exception(f"Unexpected error during {job.stage.value}")
            outcome = Outcome.failed(f"{type(e).__name__}: {e}", stage=job.stage)

        await self._enter(job, Stage.CLEANING)
        await cleanup.close()

        job.finished_at = datetime.now()
        job.outcome = outcome
        job.stage = outcome.status
        await self._emit_outcome(job, outcome, report)
        return outcome

    async def _execute(self, job: BackupJob, cleanup: CleanupStack) -> None:
        config = self.config
        target = config.verification
        if not config.datasets:
            raise ConfigError("No datasets configured")
        if target is None:
            raise ConfigError("No verification target configured")

        # Registered first so it runs after every other release
        cleanup.push_sync("apply retention", self._apply_retention)

        # INIT
        await self._enter(job, Stage.INIT)
        sources: dict[str, DatabaseAdapter] = {}
        for dataset in config.datasets:
            surface = self._surface(dataset.container, dataset.host)
            sources[dataset.name] = self._adapter_factory(dataset.connection, surface)
            cleanup.push(f"close {dataset.name} connections", sources[dataset.name].close)
        target_adapter = self._adapter_factory(
            target.connection, self._surface(target.container, target.host)
        )
        cleanup.push("close verification target connections", target_adapter.close)
        for adapter in [*sources.values(), target_adapter]:
            self._coordinator.register_surface(adapter.surface)

        await self._preflight(sources)

        staging = config.staging_dir / job.job_id
        cleanup.push_sync(f"remove {staging}", shutil.rmtree, staging, True)
        store = ArtifactStore()

        # CAPTURING
        await self._enter(job, Stage.CAPTURING)
        for dataset in config.datasets:
            adapter = sources[dataset.name]
            capture_dir = f"{dataset.workdir.rstrip('/')}/db-backup-{job.job_id}"
            cleanup.push(
                f"remove {capture_dir} in {adapter.surface.container}",
                adapter.surface.remove,
                capture_dir,
            )
            await adapter.surface.mkdir(capture_dir)
            for artifact in await adapter.capture(
                dataset.database, dataset.formats, capture_dir, dataset.name
            ):
                store.add(artifact)

        # STAGED
        await self._enter(job, Stage.STAGED)
        for artifact in store:
            destination = ArtifactLocation.local(str(staging / artifact.name))
            staged = await self._coordinator.stage(artifact, destination)
            store.update(staged.artifact)

        # RESTORING
        await self._enter(job, Stage.RESTORING)
        target_surface = target_adapter.surface
        await self._ensure_target_running(target_surface, cleanup)
        await target_surface.wait_until_ready(
            target_adapter.is_ready,
            attempts=target.ready_attempts,
            interval=target.ready_interval_seconds,
            sleep=self._sleep,
        )
        restore_dir = f"{target.workdir.rstrip('/')}/db-backup-{job.job_id}"
        cleanup.push(f"remove {restore_dir} in {target_surface.container}", target_surface.remove, restore_dir)
        for dataset in config.datasets:
            artifact = self._restorable(store, dataset, target_adapter)
            namespace = target.namespace_for(dataset.name)
            destination = ArtifactLocation.in_container(
                target_surface.container,
                f"{restore_dir}/{artifact.name}",
                host=target_surface.host_target,
            )
            await self._coordinator.stage(artifact, destination)
            cleanup.push(f"drop {namespace}", target_adapter.drop_namespace, namespace)
            await target_adapter.restore(
                destination.path, artifact.format, namespace, dataset.database
            )

        # VALIDATING
        await self._enter(job, Stage.VALIDATING)
        for dataset in config.datasets:
            namespace = target.namespace_for(dataset.name)
            report = await verify(
                NamespaceView(sources[dataset.name], dataset.database, label=f"source {dataset.database}"),
                NamespaceView(target_adapter, namespace, label=f"restored {namespace}"),
                tolerance_pct=config.tolerance_pct,
                retry_policy=config.retry_policy,
                dataset=dataset.name,
                sleep=self._sleep,
            )
            job.reports.append(report)
            if self.config.notifications.notify_steps:
                await self._publish(
                    job,
                    Stage.VALIDATING,
                    Severity.INFO if report.success else Severity.WARNING,
                    f"Validation of {dataset.name}: "
                    f"{'passed' if report.success else 'failed'}",
                    {"report": report.summary()},
                )
            if not report.success:
                raise ValidationFailedError(report)

        # VALIDATED
        await self._enter(job, Stage.VALIDATED, {"reports": job.report_summary()})

        # PROMOTING
        await self._enter(job, Stage.PROMOTING)
        for dataset in config.datasets:
            for artifact in store.for_dataset(dataset.name):
                await self._promote(artifact, self._destinations(dataset), staging, cleanup)

    # ------------------------------------------------------------------
    # Stage helpers
    # ------------------------------------------------------------------

    def _surface(self, container: str, host: RemoteHost | None) -> ContainerSurface:
        return make_surface(container, self._runner, self._transport, host=host)

    def _destinations(self, dataset: DatasetConfig) -> list[str]:
        return dataset.destinations or [str(self.config.backup_dir)]

    async def _preflight(self, sources: dict[str, DatabaseAdapter]) -> None:
        config = self.config
        config.staging_dir.mkdir(parents=True, exist_ok=True)
        check_free_space(config.staging_dir, config.required_free_space_mb)

        hosts = [d.host for d in config.datasets if d.host is not None]
        if config.verification.host is not None:
            hosts.append(config.verification.host)
        await check_reachable(self._transport, hosts)

        for name, adapter in sources.items():
            await check_running(adapter.surface)
            if not await adapter.is_ready():
                raise ConnectivityError(f"Source database for {name} is not accepting connections")

    async def _ensure_target_running(self, surface: ContainerSurface, cleanup: CleanupStack) -> None:
        if not await surface.is_running():
            logger.info(f"Starting verification target {surface.container}...")
            await surface.start()
        if self.config.verification.stop_after:
            cleanup.push(f"stop {surface.container}", surface.stop)

    @staticmethod
    def _restorable(
        store: ArtifactStore, dataset: DatasetConfig, adapter: DatabaseAdapter
    ) -> BackupArtifact:
        artifact = store.find(dataset.name, adapter.restore_format)
        if artifact is None:
            raise RestoreError(
                f"No {adapter.restore_format.value} artifact captured for {dataset.name}"
            )
        return artifact

    async def _promote(
        self,
        artifact: BackupArtifact,
        destinations: list[str],
        staging: Path,
        cleanup: CleanupStack,
    ) -> None:
        path = Path(artifact.location.path)
        if artifact.is_tree:
            archive = staging / f"{artifact.name}.tar.gz"
            cleanup.push_sync(f"remove {archive}", archive.unlink, True)
            await archive_tree(path, archive)
            path = archive
        for destination in destinations:
            location = await self._object_store.upload(path, destination)
            logger.info(f"Promoted {artifact.name} to {location}")

    def _apply_retention(self) -> None:
        apply_retention(
            self.config.backup_dir, self.config.log_dir, self.config.retention_days
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def _enter(
        self, job: BackupJob, stage: Stage, fields: dict[str, Any] | None = None
    ) -> None:
        job.stage = stage
        logger.info(f"[{job.job_id}] Stage: {stage.value}")
        if self.config.notifications.notify_steps:
            await self._publish(
                job, stage, Severity.INFO, f"Backup stage: {stage.value}", fields or {}
            )

    async def _emit_outcome(
        self, job: BackupJob, outcome: Outcome, report: ValidationReport | None
    ) -> None:
        if outcome.ok:
            await self._publish(
                job,
                Stage.DONE,
                Severity.INFO,
                "Backup process completed successfully",
                {"reports": job.report_summary()},
            )
            return

        fields = outcome.fields()
        if report is not None:
            fields["report"] = report.summary()
        message = (
            INTERRUPTED_MESSAGE
            if outcome.interrupted
            else f"Backup failed during {outcome.stage.value}: {outcome.reason}"
        )
        await self._publish(job, Stage.FAILED, Severity.ERROR, message, fields)

    async def _publish(
        self,
        job: BackupJob,
        stage: Stage,
        severity: Severity,
        message: str,
        fields: dict[str, Any],
    ) -> None:
        event = PipelineEvent(
            job_id=job.job_id,
            stage=stage,
            severity=severity,
            message=message,
            elapsed_seconds=job.elapsed_seconds(),
            fields=fields,
        )
        self.events.append(event)
        try:
            await self._sink.emit(
                severity,
                message,
                {"job": job.job_id, "elapsed": f"{event.elapsed_seconds}s", **fields},
            )
        except Exception as e:
            logger.error(f"Failed to deliver {stage.value} notification: {e}")
