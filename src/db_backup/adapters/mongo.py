"""MongoDB database adapter.

Provides ``MongoAdapter``: ``mongodump``/``mongorestore`` run inside the
database container, while introspection uses pymongo's async client.

Usage:
    from db_backup.adapters.mongo import MongoAdapter

    adapter = MongoAdapter(MongoConnection(username="root"), surface)
    collections = await adapter.list_units("app")
    await adapter.close()
"""

import logging
from datetime import datetime

from pymongo import AsyncMongoClient

from db_backup.config.models import MongoConnection
from db_backup.errors import CaptureError, CommandError, RestoreError
from db_backup.execution import ContainerSurface
from db_backup.models import ArtifactFormat, ArtifactLocation, BackupArtifact
from db_backup.schema.models import FieldDescriptor

logger = logging.getLogger(__name__)


def index_descriptor(name: str, info: dict) -> FieldDescriptor:
    """Render an ``index_information()`` entry as a ``FieldDescriptor``.

    Example:
        >>> index_descriptor("email_1", {"key": [("email", 1)], "unique": True})
        FieldDescriptor(name='email_1', data_type='email:1', max_length=None, is_nullable=True, default='unique')
    """
    key = ",".join(f"{field}:{direction}" for field, direction in info.get("key", []))
    options = [opt for opt in ("unique", "sparse") if info.get(opt)]
    if "expireAfterSeconds" in info:
        options.append(f"ttl={info['expireAfterSeconds']}")
    return FieldDescriptor(
        name=name,
        data_type=key,
        default=",".join(options) or None,
    )


class MongoAdapter:
    """MongoDB implementation of the ``DatabaseAdapter`` protocol.

    Artifacts are ``mongodump --out`` directories (raw trees).  The
    structural signature of a collection is its index list, since
    collections carry no fixed schema.

    Args:
        connection: Connection descriptor.
        surface: Container running ``mongod``.
    """

    engine = "mongodb"
    restore_format = ArtifactFormat.RAW_TREE

    def __init__(self, connection: MongoConnection, surface: ContainerSurface) -> None:
        self.connection = connection
        self.surface = surface
        self._client: AsyncMongoClient | None = None

    @property
    def client(self) -> AsyncMongoClient:
        if self._client is None:
            self._client = AsyncMongoClient(
                self.connection.uri(), serverSelectionTimeoutMS=5000
            )
        return self._client

    # ------------------------------------------------------------------
    # Capture / Restore
    # ------------------------------------------------------------------

    async def capture(
        self,
        database: str,
        formats: list[ArtifactFormat],
        workdir: str,
        label: str,
    ) -> list[BackupArtifact]:
        """Run ``mongodump`` for ``database`` into a directory."""
        unsupported = [f.value for f in formats if f != ArtifactFormat.RAW_TREE]
        if unsupported:
            raise CaptureError(f"MongoDB cannot capture {', '.join(unsupported)} artifacts")

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        name = f"{label}_{stamp}"
        path = f"{workdir.rstrip('/')}/{name}"

        logger.info(f"Starting MongoDB backup of {database} using mongodump...")
        try:
            await self.surface.exec(
                ["mongodump", *self.connection.tool_args(), f"--db={database}", f"--out={path}"]
            )
        except CommandError as e:
            raise CaptureError(f"mongodump of {database} failed: {e}") from e

        files = await self.surface.measure(path, tree=True)
        if files == 0:
            raise CaptureError(f"mongodump produced no files for {database}")

        return [
            BackupArtifact(
                name=name,
                dataset=label,
                format=ArtifactFormat.RAW_TREE,
                location=ArtifactLocation.in_container(
                    self.surface.container, path, host=self.surface.host_target
                ),
                signature=files,
            )
        ]

    async def restore(
        self,
        path: str,
        format: ArtifactFormat,
        namespace: str,
        source_database: str,
    ) -> None:
        """Restore a dump directory into ``namespace`` with namespace remapping."""
        if format != ArtifactFormat.RAW_TREE:
            raise RestoreError(f"MongoDB cannot restore {format.value} artifacts")

        await self.drop_namespace(namespace)
        try:
            await self.surface.exec(
                [
                    "mongorestore",
                    *self.connection.tool_args(),
                    f"--nsInclude={source_database}.*",
                    f"--nsFrom={source_database}.*",
                    f"--nsTo={namespace}.*",
                    "--drop",
                    f"--dir={path}",
                ]
            )
        except CommandError as e:
            raise RestoreError(f"mongorestore into {namespace} failed: {e}") from e
        logger.info(f"Restored {path} into {namespace}")

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def list_units(self, namespace: str) -> list[str]:
        names = await self.client[namespace].list_collection_names()
        return sorted(n for n in names if not n.startswith("system."))

    async def structure(self, namespace: str, unit: str) -> list[FieldDescriptor]:
        indexes = await self.client[namespace][unit].index_information()
        return [index_descriptor(name, info) for name, info in sorted(indexes.items())]

    async def count(self, namespace: str, unit: str) -> int:
        return await self.client[namespace][unit].count_documents({})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drop_namespace(self, namespace: str) -> None:
        await self.client.drop_database(namespace)
        logger.info(f"Dropped {namespace}")

    async def is_ready(self) -> bool:
        result = await self.surface.exec(
            ["mongosh", "--quiet", *self.connection.tool_args(),
             "--eval", "db.runCommand({ping: 1})"],
            check=False,
        )
        return result.ok

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
