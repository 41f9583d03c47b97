"""PostgreSQL database adapter.

Provides ``PostgresAdapter``: ``pg_dump``/``pg_restore`` run inside the
database container, while introspection queries go through SQLAlchemy's
async engine with the ``asyncpg`` driver.

Usage:
    from db_backup.adapters.postgres import PostgresAdapter

    adapter = PostgresAdapter(
        PostgresConnection(user="app", password="secret"),
        surface=ContainerSurface("app-db", runner),
    )
    tables = await adapter.list_units("app")
    await adapter.close()
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from db_backup.config.models import PostgresConnection
from db_backup.errors import CaptureError, CommandError, RestoreError
from db_backup.execution import ContainerSurface
from db_backup.models import ArtifactFormat, ArtifactLocation, BackupArtifact
from db_backup.schema.models import FieldDescriptor

logger = logging.getLogger(__name__)

# Format -> (pg_dump -F flag, file extension)
_DUMP_FORMATS: dict[ArtifactFormat, tuple[str, str]] = {
    ArtifactFormat.BINARY_DUMP: ("c", "dump"),
    ArtifactFormat.PLAIN_TEXT: ("p", "sql"),
}

MAINTENANCE_DATABASE = "postgres"


def create_async_engine_pooled(database_url: str, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine for short-lived introspection.

    Default pool settings:

    - ``pool_size=2``: Reconciliation issues one query at a time.
    - ``max_overflow=2``: Allow a few burst connections.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.
    - ``connect_args={"timeout": 5}``: asyncpg connect timeout in seconds.

    Args:
        database_url: Connection URL with ``postgresql+asyncpg://`` scheme.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``.

    Returns:
        Configured ``AsyncEngine``.
    """
    defaults: dict[str, Any] = {
        "pool_size": 2,
        "max_overflow": 2,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "connect_args": {"timeout": 5},
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


def quote_identifier(name: str) -> str:
    """Quote a table name for interpolation into SQL.

    Embedded double quotes are doubled.

    Example:
        >>> quote_identifier("Order Items")
        '"Order Items"'
    """
    return '"' + name.replace('"', '""') + '"'


class PostgresAdapter:
    """PostgreSQL implementation of the ``DatabaseAdapter`` protocol.

    Tools inside the container authenticate as ``connection.user`` over
    the local socket with ``PGPASSWORD``; SQL queries connect to
    ``connection.host``/``connection.port`` from the pipeline host.  One
    engine is kept per database and disposed by ``drop_namespace()`` and
    ``close()``.

    Args:
        connection: Connection descriptor.
        surface: Container running the PostgreSQL server.
        **engine_kwargs: Forwarded to ``create_async_engine_pooled``.
    """

    engine = "postgres"
    restore_format = ArtifactFormat.BINARY_DUMP

    def __init__(
        self,
        connection: PostgresConnection,
        surface: ContainerSurface,
        **engine_kwargs: Any,
    ) -> None:
        self.connection = connection
        self.surface = surface
        self._engine_kwargs = engine_kwargs
        self._engines: dict[str, AsyncEngine] = {}

    def _engine_for(self, database: str) -> AsyncEngine:
        if database not in self._engines:
            self._engines[database] = create_async_engine_pooled(
                self.connection.url(database), **self._engine_kwargs
            )
        return self._engines[database]

    def _env(self) -> dict[str, str]:
        return {"PGPASSWORD": self.connection.password} if self.connection.password else {}

    async def _tool(self, args: list[str], check: bool = True):
        return await self.surface.exec(args, env=self._env(), check=check)

    # ------------------------------------------------------------------
    # Capture / Restore
    # ------------------------------------------------------------------

    async def dump(
        self,
        database: str,
        path: str,
        format: ArtifactFormat = ArtifactFormat.BINARY_DUMP,
        extra_args: list[str] | None = None,
    ) -> int:
        """Run ``pg_dump`` inside the container.

        Args:
            database: Database to dump.
            path: In-container output file.
            format: ``BINARY_DUMP`` (``-F c``) or ``PLAIN_TEXT`` (``-F p``).
            extra_args: Extra ``pg_dump`` flags (e.g. ``--schema-only``).

        Returns:
            Size of the dump in bytes.

        Raises:
            CaptureError: If ``pg_dump`` fails or writes an empty file.
        """
        if format not in _DUMP_FORMATS:
            raise CaptureError(f"PostgreSQL cannot capture {format.value} artifacts")
        flag, _ = _DUMP_FORMATS[format]

        logger.info(f"Creating {format.value} backup of {database} in {self.surface.container}...")
        try:
            await self._tool(
                ["pg_dump", "-U", self.connection.user, "-F", flag, "-b", "-v",
                 *(extra_args or []), "-f", path, database]
            )
        except CommandError as e:
            raise CaptureError(f"pg_dump of {database} ({format.value}) failed: {e}") from e

        size = await self.surface.measure(path, tree=False)
        if size == 0:
            raise CaptureError(f"pg_dump produced an empty {format.value} backup of {database}")
        return size

    async def capture(
        self,
        database: str,
        formats: list[ArtifactFormat],
        workdir: str,
        label: str,
    ) -> list[BackupArtifact]:
        """Run ``pg_dump`` once per format inside the container."""
        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        artifacts: list[BackupArtifact] = []

        for fmt in formats:
            if fmt not in _DUMP_FORMATS:
                raise CaptureError(f"PostgreSQL cannot capture {fmt.value} artifacts")
            name = f"{label}_{stamp}.{_DUMP_FORMATS[fmt][1]}"
            path = f"{workdir.rstrip('/')}/{name}"
            size = await self.dump(database, path, fmt)
            artifacts.append(
                BackupArtifact(
                    name=name,
                    dataset=label,
                    format=fmt,
                    location=ArtifactLocation.in_container(
                        self.surface.container, path, host=self.surface.host_target
                    ),
                    size_bytes=size,
                )
            )
        return artifacts

    async def restore(
        self,
        path: str,
        format: ArtifactFormat,
        namespace: str,
        source_database: str,
        recreate: bool = True,
    ) -> None:
        """Restore the dump at ``path`` into ``namespace``.

        With ``recreate`` (the default) the namespace is dropped and created
        first; otherwise it must already exist.  ``pg_restore`` exits
        non-zero for non-fatal problems such as missing roles; those are
        logged and the restore is judged by whether the namespace exists
        afterwards.
        """
        user = self.connection.user
        if recreate:
            logger.info(f"Preparing {namespace} in {self.surface.container}...")
            try:
                await self._tool(["dropdb", "-U", user, "--if-exists", namespace])
            except CommandError as e:
                raise RestoreError(f"Failed to drop database {namespace}: {e}") from e
            try:
                await self._tool(["createdb", "-U", user, namespace])
            except CommandError as e:
                raise RestoreError(f"Failed to create database {namespace}: {e}") from e
        elif not await self.namespace_exists(namespace):
            raise RestoreError(f"Database {namespace} does not exist")

        if format == ArtifactFormat.BINARY_DUMP:
            argv = ["pg_restore", "--no-owner", "--no-privileges", f"--role={user}",
                    "-U", user, "-d", namespace, path]
        elif format == ArtifactFormat.PLAIN_TEXT:
            argv = ["psql", "-U", user, "-d", namespace, "-q", "-f", path]
        else:
            raise RestoreError(f"PostgreSQL cannot restore {format.value} artifacts")

        result = await self._tool(argv, check=False)
        if not result.ok:
            detail = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else result.returncode
            logger.warning(f"Some non-fatal errors occurred while restoring {namespace}: {detail}")

        if not await self.namespace_exists(namespace):
            raise RestoreError(f"Database {namespace} is missing after restore")
        logger.info(f"Restored {path} into {namespace}")

    async def run_sql_file(self, namespace: str, path: str) -> None:
        """Execute an in-container SQL file with ``psql``, stopping at the first error.

        Raises:
            RestoreError: If ``psql`` reports an error.
        """
        try:
            await self._tool(
                ["psql", "-U", self.connection.user, "-d", namespace,
                 "-v", "ON_ERROR_STOP=1", "-f", path]
            )
        except CommandError as e:
            raise RestoreError(f"SQL file {path} failed on {namespace}: {e}") from e

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    async def namespace_exists(self, namespace: str) -> bool:
        async with self._engine_for(MAINTENANCE_DATABASE).connect() as conn:
            result = await conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": namespace},
            )
            return result.scalar() is not None

    async def list_units(self, namespace: str) -> list[str]:
        query = text(
            "SELECT tablename FROM pg_tables "
            "WHERE schemaname = 'public' ORDER BY tablename"
        )
        async with self._engine_for(namespace).connect() as conn:
            result = await conn.execute(query)
            return [row[0] for row in result.fetchall()]

    async def structure(self, namespace: str, unit: str) -> list[FieldDescriptor]:
        query = text("""
            SELECT
                column_name,
                data_type,
                character_maximum_length,
                is_nullable,
                column_default
            FROM information_schema.columns
            WHERE table_schema = 'public'
              AND table_name = :table
            ORDER BY ordinal_position
        """)
        async with self._engine_for(namespace).connect() as conn:
            result = await conn.execute(query, {"table": unit})
            return [
                FieldDescriptor(
                    name=col_name,
                    data_type=data_type,
                    max_length=max_length,
                    is_nullable=(is_nullable == "YES"),
                    default=default,
                )
                for col_name, data_type, max_length, is_nullable, default in result.fetchall()
            ]

    async def count(self, namespace: str, unit: str) -> int:
        query = text(f"SELECT COUNT(*) FROM public.{quote_identifier(unit)}")
        async with self._engine_for(namespace).connect() as conn:
            result = await conn.execute(query)
            return int(result.scalar() or 0)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def drop_namespace(self, namespace: str) -> None:
        engine = self._engines.pop(namespace, None)
        if engine is not None:
            await engine.dispose()
        await self._tool(["dropdb", "-U", self.connection.user, "--if-exists", "-f", namespace])
        logger.info(f"Dropped {namespace} in {self.surface.container}")

    async def is_ready(self) -> bool:
        result = await self._tool(["pg_isready", "-U", self.connection.user], check=False)
        return result.ok

    async def close(self) -> None:
        """Dispose every engine this adapter opened."""
        engines, self._engines = list(self._engines.values()), {}
        for engine in engines:
            await engine.dispose()
