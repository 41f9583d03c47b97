"""Adapter and execution-surface factory.

Builds the objects a pipeline needs from configuration models, so the
orchestrator, ``migrate``, and ``buckets`` share one construction path.
"""

from db_backup.adapters import DatabaseAdapter, MongoAdapter, PostgresAdapter
from db_backup.config.models import MongoConnection, PostgresConnection, RemoteHost
from db_backup.execution import CommandRunner, ContainerSurface
from db_backup.transport.base import Transport


def make_surface(
    container: str,
    runner: CommandRunner,
    transport: Transport,
    host: RemoteHost | None = None,
    remote_tmp: str = "/tmp",
) -> ContainerSurface:
    """Create a ``ContainerSurface``; the transport is only attached for remote hosts."""
    return ContainerSurface(
        container,
        runner=runner,
        host=host,
        transport=transport if host is not None else None,
        remote_tmp=remote_tmp,
    )


def get_adapter(
    connection: PostgresConnection | MongoConnection,
    surface: ContainerSurface,
) -> DatabaseAdapter:
    """Create the adapter matching ``connection.engine``.

    Raises:
        ValueError: If the engine is not supported.
    """
    if isinstance(connection, PostgresConnection):
        return PostgresAdapter(connection, surface)
    if isinstance(connection, MongoConnection):
        return MongoAdapter(connection, surface)
    raise ValueError(f"Unsupported database engine: {connection.engine}")
