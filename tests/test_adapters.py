"""Tests for the PostgreSQL and MongoDB adapters.

Tools run against a mocked container surface; SQL and MongoDB queries run
against mocked SQLAlchemy engines and pymongo clients.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from db_backup.adapters.base import NamespaceView
from db_backup.adapters.mongo import MongoAdapter, index_descriptor
from db_backup.adapters.postgres import PostgresAdapter, create_async_engine_pooled, quote_identifier
from db_backup.config.models import MongoConnection, PostgresConnection
from db_backup.errors import CaptureError, CommandError, RestoreError
from db_backup.execution import CommandResult
from db_backup.factory import get_adapter
from db_backup.models import ArtifactFormat


def _surface(container="app-db", measure=2048, exec_result=None):
    surface = MagicMock()
    surface.container = container
    surface.host_target = None
    surface.exec = AsyncMock(return_value=exec_result or CommandResult([], 0, "", ""))
    surface.measure = AsyncMock(return_value=measure)
    return surface


def _argvs(surface) -> list[list[str]]:
    return [call.args[0] for call in surface.exec.await_args_list]


def _mock_engine(result=None):
    conn = AsyncMock()
    conn.execute = AsyncMock(return_value=result or MagicMock())
    engine = MagicMock()
    engine.connect.return_value.__aenter__.return_value = conn
    engine.dispose = AsyncMock()
    return engine, conn


# ------------------------------------------------------------------
# PostgreSQL
# ------------------------------------------------------------------


class TestPostgresEngine:
    def test_pool_defaults(self) -> None:
        """Engines get the small introspection pool by default."""
        with patch("db_backup.adapters.postgres.create_async_engine") as mock_create:
            create_async_engine_pooled("postgresql+asyncpg://u@h/db")

        kwargs = mock_create.call_args.kwargs
        assert kwargs["pool_size"] == 2
        assert kwargs["pool_pre_ping"] is True
        assert kwargs["connect_args"] == {"timeout": 5}

    def test_kwargs_override_defaults(self) -> None:
        """Caller kwargs win over the pool defaults."""
        with patch("db_backup.adapters.postgres.create_async_engine") as mock_create:
            create_async_engine_pooled("postgresql+asyncpg://u@h/db", pool_size=10)

        assert mock_create.call_args.kwargs["pool_size"] == 10

    def test_quote_identifier(self) -> None:
        """Names are double-quoted and embedded quotes doubled."""
        assert quote_identifier("users") == '"users"'
        assert quote_identifier('we"ird') == '"we""ird"'


class TestPostgresCapture:
    async def test_dump_command(self) -> None:
        """pg_dump runs in the container with PGPASSWORD and extra flags."""
        surface = _surface()
        adapter = PostgresAdapter(PostgresConnection(user="app", password="pw"), surface)

        size = await adapter.dump("shop", "/tmp/shop.dump", extra_args=["--schema-only"])

        assert size == 2048
        assert _argvs(surface)[0] == [
            "pg_dump", "-U", "app", "-F", "c", "-b", "-v", "--schema-only",
            "-f", "/tmp/shop.dump", "shop",
        ]
        assert surface.exec.await_args.kwargs["env"] == {"PGPASSWORD": "pw"}

    async def test_capture_both_formats(self) -> None:
        """One artifact per format, located in the source container."""
        surface = _surface()
        adapter = PostgresAdapter(PostgresConnection(), surface)

        artifacts = await adapter.capture(
            "shop", [ArtifactFormat.BINARY_DUMP, ArtifactFormat.PLAIN_TEXT], "/tmp/job/", "shop"
        )

        assert [a.format for a in artifacts] == [ArtifactFormat.BINARY_DUMP, ArtifactFormat.PLAIN_TEXT]
        assert artifacts[0].name.endswith(".dump")
        assert artifacts[1].name.endswith(".sql")
        assert artifacts[0].location.path == f"/tmp/job/{artifacts[0].name}"
        assert artifacts[0].location.container == "app-db"
        assert _argvs(surface)[1][4] == "p"

    async def test_empty_dump_fails(self) -> None:
        """A zero-byte dump is a CaptureError."""
        adapter = PostgresAdapter(PostgresConnection(), _surface(measure=0))

        with pytest.raises(CaptureError, match="empty"):
            await adapter.dump("shop", "/tmp/shop.dump")

    async def test_pg_dump_failure(self) -> None:
        """A failing pg_dump surfaces its stderr in CaptureError."""
        surface = _surface()
        surface.exec.side_effect = CommandError(["pg_dump"], 1, "database does not exist")
        adapter = PostgresAdapter(PostgresConnection(), surface)

        with pytest.raises(CaptureError, match="database does not exist"):
            await adapter.dump("shop", "/tmp/shop.dump")

    async def test_raw_tree_unsupported(self) -> None:
        """PostgreSQL cannot capture a raw tree."""
        adapter = PostgresAdapter(PostgresConnection(), _surface())

        with pytest.raises(CaptureError):
            await adapter.capture("shop", [ArtifactFormat.RAW_TREE], "/tmp", "shop")


class TestPostgresRestore:
    async def test_recreates_and_restores(self) -> None:
        """dropdb, createdb, then pg_restore without owners or privileges."""
        surface = _surface()
        adapter = PostgresAdapter(PostgresConnection(user="app"), surface)
        adapter.namespace_exists = AsyncMock(return_value=True)

        await adapter.restore("/tmp/shop.dump", ArtifactFormat.BINARY_DUMP, "test_shop", "shop")

        dropdb, createdb, pg_restore = _argvs(surface)
        assert dropdb == ["dropdb", "-U", "app", "--if-exists", "test_shop"]
        assert createdb == ["createdb", "-U", "app", "test_shop"]
        assert pg_restore == [
            "pg_restore", "--no-owner", "--no-privileges", "--role=app",
            "-U", "app", "-d", "test_shop", "/tmp/shop.dump",
        ]

    async def test_nonfatal_errors_are_warnings(self, caplog) -> None:
        """pg_restore exiting non-zero is logged when the database exists."""
        surface = _surface()
        surface.exec.side_effect = [
            CommandResult([], 0, "", ""),
            CommandResult([], 0, "", ""),
            CommandResult([], 1, "", 'pg_restore: error: role "owner" does not exist\n'),
        ]
        adapter = PostgresAdapter(PostgresConnection(), surface)
        adapter.namespace_exists = AsyncMock(return_value=True)

        await adapter.restore("/tmp/shop.dump", ArtifactFormat.BINARY_DUMP, "test_shop", "shop")

        assert "non-fatal errors" in caplog.text

    async def test_missing_namespace_after_restore(self) -> None:
        """A database missing after restore is a RestoreError."""
        adapter = PostgresAdapter(PostgresConnection(), _surface())
        adapter.namespace_exists = AsyncMock(return_value=False)

        with pytest.raises(RestoreError, match="missing after restore"):
            await adapter.restore("/tmp/shop.dump", ArtifactFormat.BINARY_DUMP, "test_shop", "shop")

    async def test_dropdb_failure_is_restore_error(self) -> None:
        """A failing dropdb is wrapped in RestoreError."""
        surface = _surface()
        surface.exec.side_effect = CommandError(["dropdb"], 1, "database is being accessed by other users")
        adapter = PostgresAdapter(PostgresConnection(), surface)

        with pytest.raises(RestoreError, match="Failed to drop database test_shop"):
            await adapter.restore("/tmp/shop.dump", ArtifactFormat.BINARY_DUMP, "test_shop", "shop")

    async def test_data_only_requires_existing_namespace(self) -> None:
        """Without recreate the target database must already exist."""
        surface = _surface()
        adapter = PostgresAdapter(PostgresConnection(), surface)
        adapter.namespace_exists = AsyncMock(return_value=False)

        with pytest.raises(RestoreError, match="does not exist"):
            await adapter.restore(
                "/tmp/shop.dump", ArtifactFormat.BINARY_DUMP, "shop", "shop", recreate=False
            )
        surface.exec.assert_not_awaited()

    async def test_plain_text_uses_psql(self) -> None:
        """Plain SQL dumps are replayed with psql."""
        surface = _surface()
        adapter = PostgresAdapter(PostgresConnection(), surface)
        adapter.namespace_exists = AsyncMock(return_value=True)

        await adapter.restore("/tmp/shop.sql", ArtifactFormat.PLAIN_TEXT, "test_shop", "shop")

        assert _argvs(surface)[-1][0] == "psql"

    async def test_run_sql_file_failure(self) -> None:
        """psql errors from a post-restore SQL file raise RestoreError."""
        surface = _surface()
        surface.exec.side_effect = CommandError(["psql"], 3, "syntax error")
        adapter = PostgresAdapter(PostgresConnection(), surface)

        with pytest.raises(RestoreError, match="syntax error"):
            await adapter.run_sql_file("shop", "/tmp/fix.sql")


class TestPostgresIntrospection:
    async def test_structure(self) -> None:
        """information_schema rows become FieldDescriptors in column order."""
        result = MagicMock()
        result.fetchall.return_value = [
            ("id", "integer", None, "NO", "nextval('users_id_seq'::regclass)"),
            ("email", "character varying", 255, "YES", None),
        ]
        engine, conn = _mock_engine(result)
        with patch("db_backup.adapters.postgres.create_async_engine_pooled", return_value=engine):
            adapter = PostgresAdapter(PostgresConnection(), _surface())
            fields = await adapter.structure("shop", "users")

        assert [f.name for f in fields] == ["id", "email"]
        assert fields[0].is_nullable is False
        assert fields[1].max_length == 255
        assert conn.execute.await_args.args[1] == {"table": "users"}

    async def test_count_quotes_table(self) -> None:
        """COUNT(*) quotes the table name."""
        result = MagicMock()
        result.scalar.return_value = 42
        engine, conn = _mock_engine(result)
        with patch("db_backup.adapters.postgres.create_async_engine_pooled", return_value=engine):
            adapter = PostgresAdapter(PostgresConnection(), _surface())
            assert await adapter.count("shop", "Order Items") == 42

        assert 'public."Order Items"' in str(conn.execute.await_args.args[0])

    async def test_one_engine_per_database(self) -> None:
        """Engines are cached per database."""
        engine, _ = _mock_engine()
        with patch(
            "db_backup.adapters.postgres.create_async_engine_pooled", return_value=engine
        ) as mock_create:
            adapter = PostgresAdapter(PostgresConnection(), _surface())
            await adapter.list_units("shop")
            await adapter.list_units("shop")
            await adapter.list_units("test_shop")

        assert mock_create.call_count == 2

    async def test_drop_namespace_disposes_engine(self) -> None:
        """Dropping a database disposes its engine first."""
        engine, _ = _mock_engine()
        surface = _surface()
        with patch("db_backup.adapters.postgres.create_async_engine_pooled", return_value=engine):
            adapter = PostgresAdapter(PostgresConnection(), surface)
            await adapter.list_units("test_shop")
            await adapter.drop_namespace("test_shop")

        engine.dispose.assert_awaited_once()
        assert _argvs(surface)[-1] == ["dropdb", "-U", "postgres", "--if-exists", "-f", "test_shop"]

    async def test_namespace_view(self) -> None:
        """NamespaceView binds an adapter to one namespace."""
        adapter = MagicMock()
        adapter.count = AsyncMock(return_value=7)

        view = NamespaceView(adapter, "test_shop")

        assert view.label == "test_shop"
        assert await view.count("users") == 7
        adapter.count.assert_awaited_once_with("test_shop", "users")


# ------------------------------------------------------------------
# MongoDB
# ------------------------------------------------------------------


class TestMongoAdapter:
    def test_index_descriptor(self) -> None:
        """Index keys and options map onto a FieldDescriptor."""
        descriptor = index_descriptor(
            "created_1", {"key": [("created", 1)], "expireAfterSeconds": 3600}
        )
        assert descriptor.data_type == "created:1"
        assert descriptor.default == "ttl=3600"

    async def test_capture_runs_mongodump(self) -> None:
        """mongodump writes one raw tree per database."""
        surface = _surface("mongo", measure=12)
        adapter = MongoAdapter(MongoConnection(username="root", password="pw"), surface)

        (artifact,) = await adapter.capture("events", [ArtifactFormat.RAW_TREE], "/tmp/job", "events")

        argv = _argvs(surface)[0]
        assert argv[0] == "mongodump"
        assert "--username=root" in argv
        assert "--db=events" in argv
        assert argv[-1] == f"--out=/tmp/job/{artifact.name}"
        assert artifact.format == ArtifactFormat.RAW_TREE
        assert artifact.is_tree
        assert artifact.signature == 12

    async def test_capture_rejects_dump_formats(self) -> None:
        """MongoDB only captures raw trees."""
        adapter = MongoAdapter(MongoConnection(), _surface("mongo"))

        with pytest.raises(CaptureError, match="binary_dump"):
            await adapter.capture("events", [ArtifactFormat.BINARY_DUMP], "/tmp", "events")

    async def test_capture_empty_output(self) -> None:
        """A mongodump that writes no files is a CaptureError."""
        adapter = MongoAdapter(MongoConnection(), _surface("mongo", measure=0))

        with pytest.raises(CaptureError, match="no files"):
            await adapter.capture("events", [ArtifactFormat.RAW_TREE], "/tmp", "events")

    async def test_restore_remaps_namespace(self) -> None:
        """mongorestore maps the source database onto the namespace."""
        surface = _surface("mongo-verify")
        adapter = MongoAdapter(MongoConnection(), surface)
        adapter._client = MagicMock()
        adapter._client.drop_database = AsyncMock()

        await adapter.restore("/tmp/job/events_x", ArtifactFormat.RAW_TREE, "test_events", "events")

        adapter._client.drop_database.assert_awaited_once_with("test_events")
        argv = _argvs(surface)[0]
        assert argv[0] == "mongorestore"
        assert "--nsFrom=events.*" in argv
        assert "--nsTo=test_events.*" in argv
        assert "--dir=/tmp/job/events_x" in argv

    async def test_list_units_skips_system_collections(self) -> None:
        """system.* collections are not reconciled."""
        database = MagicMock()
        database.list_collection_names = AsyncMock(return_value=["users", "system.views", "logs"])
        client = MagicMock()
        client.__getitem__.return_value = database
        adapter = MongoAdapter(MongoConnection(), _surface("mongo"))
        adapter._client = client

        assert await adapter.list_units("events") == ["logs", "users"]

    async def test_count_and_structure(self) -> None:
        """Counts use count_documents and structure uses index_information."""
        collection = MagicMock()
        collection.count_documents = AsyncMock(return_value=1500)
        collection.index_information = AsyncMock(
            return_value={"_id_": {"key": [("_id", 1)]}, "email_1": {"key": [("email", 1)], "unique": True}}
        )
        database = MagicMock()
        database.__getitem__.return_value = collection
        client = MagicMock()
        client.__getitem__.return_value = database
        adapter = MongoAdapter(MongoConnection(), _surface("mongo"))
        adapter._client = client

        assert await adapter.count("events", "users") == 1500
        structure = await adapter.structure("events", "users")
        assert [f.name for f in structure] == ["_id_", "email_1"]
        assert structure[1].default == "unique"

    async def test_close(self) -> None:
        """close() is idempotent."""
        adapter = MongoAdapter(MongoConnection(), _surface("mongo"))
        client = MagicMock()
        client.close = AsyncMock()
        adapter._client = client

        await adapter.close()
        await adapter.close()

        client.close.assert_awaited_once()


class TestFactory:
    def test_get_adapter_by_engine(self) -> None:
        """The connection type selects the adapter."""
        surface = _surface()
        assert isinstance(get_adapter(PostgresConnection(), surface), PostgresAdapter)
        assert isinstance(get_adapter(MongoConnection(), surface), MongoAdapter)
