"""Database adapter protocol definition.

Defines the ``DatabaseAdapter`` Protocol that every engine implements.
An adapter is bound to one endpoint: a connection descriptor for queries
and a ``ContainerSurface`` where the engine's native tools run.  All
methods are ``async def``.

Usage:
    from db_backup.adapters.base import DatabaseAdapter

    async def snapshot(adapter: DatabaseAdapter, dataset: DatasetConfig) -> None:
        artifacts = await adapter.capture(dataset.database, dataset.formats, "/tmp", dataset.name)
        tables = await adapter.list_units(dataset.database)
        await adapter.close()
"""

from typing import Protocol

from db_backup.execution import ContainerSurface
from db_backup.models import ArtifactFormat, BackupArtifact
from db_backup.schema.models import FieldDescriptor


class DatabaseAdapter(Protocol):
    """Engine-specific capture, restore, and introspection.

    ``namespace`` is a database name on the adapter's endpoint: the live
    database on a source, or the restored copy on the verification target.
    """

    engine: str
    restore_format: ArtifactFormat
    surface: ContainerSurface

    async def capture(
        self,
        database: str,
        formats: list[ArtifactFormat],
        workdir: str,
        label: str,
    ) -> list[BackupArtifact]:
        """Dump ``database`` inside the container, one artifact per format.

        Artifacts are left in the container under ``workdir``.

        Raises:
            CaptureError: If a dump tool fails or produces an empty artifact.
        """
        ...

    async def restore(
        self,
        path: str,
        format: ArtifactFormat,
        namespace: str,
        source_database: str,
    ) -> None:
        """Restore the artifact at container ``path`` into ``namespace``.

        Any existing ``namespace`` is replaced.

        Raises:
            RestoreError: If the namespace could not be created or is
                missing after the restore.
        """
        ...

    async def list_units(self, namespace: str) -> list[str]:
        """Table or collection names in ``namespace``."""
        ...

    async def structure(self, namespace: str, unit: str) -> list[FieldDescriptor]:
        """Ordered structural signature of ``unit``."""
        ...

    async def count(self, namespace: str, unit: str) -> int:
        """Row or document count of ``unit``."""
        ...

    async def drop_namespace(self, namespace: str) -> None:
        """Drop ``namespace``.  Dropping a missing namespace is a no-op."""
        ...

    async def is_ready(self) -> bool:
        """Return ``True`` once the engine accepts connections."""
        ...

    async def close(self) -> None:
        """Release client connections."""
        ...


class NamespaceView:
    """One namespace of an adapter, seen as a reconciliation source.

    Example:
        source = NamespaceView(source_adapter, "app", label="source app")
        restored = NamespaceView(target_adapter, "test_app", label="restored test_app")
        report = await verify(source, restored, 1, policy)
    """

    def __init__(self, adapter: DatabaseAdapter, namespace: str, label: str | None = None) -> None:
        self.adapter = adapter
        self.namespace = namespace
        self.label = label or namespace

    async def list_units(self) -> list[str]:
        return await self.adapter.list_units(self.namespace)

    async def structure(self, unit: str) -> list[FieldDescriptor]:
        return await self.adapter.structure(self.namespace, unit)

    async def count(self, unit: str) -> int:
        return await self.adapter.count(self.namespace, unit)
