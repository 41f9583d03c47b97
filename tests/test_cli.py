"""Tests for the CLI and logging setup.

Verifies:
- Argument parsing for every subcommand
- ``config`` prints datasets and settings without secrets
- Commands return 1 on a missing config or section
- ``run`` maps the pipeline outcome to the exit code
- Only the first signal cancels an interruptible run
- Console and per-run file handlers are installed on the package logger
"""

import asyncio
import io
import logging
import signal
import textwrap
from datetime import datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from rich.console import Console
from rich.logging import RichHandler

from db_backup.cli import build_parser, main, run_interruptible
from db_backup.logging_setup import LOGGER_NAME, configure_logging, log_file_path
from db_backup.pipeline.models import Outcome, Stage

CONFIG_TOML = textwrap.dedent("""\
    [[datasets]]
    name = "app"
    container = "app-db"
    database = "app"
    destinations = ["gdrive:backups/postgres"]

    [datasets.connection]
    engine = "postgres"
    password = "hunter2"

    [verification]
    container = "verify-db"

    [verification.connection]
    engine = "postgres"
""")


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "backup.toml"
    path.write_text(CONFIG_TOML)
    return path


@pytest.fixture
def recorded_console():
    console = Console(record=True, width=200, file=io.StringIO())
    with patch("db_backup.cli.console", console):
        yield console


@pytest.fixture
def no_logging_setup():
    with patch("db_backup.cli.configure_logging") as mock_configure:
        yield mock_configure


@pytest.fixture
def clean_package_logger():
    logger = logging.getLogger(LOGGER_NAME)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


class TestParser:
    def test_global_options(self) -> None:
        """Global options come before the subcommand."""
        args = build_parser().parse_args(["-c", "prod.toml", "--env-prefix", "APP_", "-v", "run"])

        assert args.config == "prod.toml"
        assert args.env_prefix == "APP_"
        assert args.verbose is True
        assert args.command == "run"

    def test_migrate_options(self) -> None:
        """migrate accepts --mode, --post-sql and --verify."""
        args = build_parser().parse_args(
            ["migrate", "--mode", "schema-only", "--post-sql", "fix.sql", "--verify"]
        )

        assert args.mode == "schema-only"
        assert args.post_sql == "fix.sql"
        assert args.verify is True

    def test_migrate_defaults(self) -> None:
        """migrate defaults to a full copy without verification."""
        args = build_parser().parse_args(["migrate"])

        assert args.mode == "full"
        assert args.post_sql is None
        assert args.verify is False

    def test_buckets_option(self) -> None:
        """buckets takes an optional --bucket."""
        assert build_parser().parse_args(["buckets", "--bucket", "uploads"]).bucket == "uploads"
        assert build_parser().parse_args(["buckets"]).bucket is None

    def test_invalid_mode(self) -> None:
        """Unknown migrate modes are rejected by argparse."""
        with pytest.raises(SystemExit):
            build_parser().parse_args(["migrate", "--mode", "everything"])

    def test_command_required(self) -> None:
        """A subcommand is required."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestConfigCommand:
    def test_shows_config_without_secrets(self, config_file, recorded_console) -> None:
        """config prints the resolved settings but never passwords."""
        assert main(["--config", str(config_file), "config"]) == 0

        output = recorded_console.export_text()
        assert "app-db" in output
        assert "gdrive:backups/postgres" in output
        assert "verify-db (postgres)" in output
        assert "hunter2" not in output

    def test_missing_config(self, tmp_path, recorded_console) -> None:
        """A missing config file exits 1 with an error."""
        assert main(["--config", str(tmp_path / "missing.toml"), "config"]) == 1
        assert "Error" in recorded_console.export_text()


class TestCommands:
    def test_run_missing_config(self, tmp_path, recorded_console) -> None:
        """run exits 1 when the config file is missing."""
        assert main(["--config", str(tmp_path / "missing.toml"), "run"]) == 1

    def test_run_success(self, config_file, recorded_console, no_logging_setup) -> None:
        """A successful run exits 0."""
        with patch("db_backup.cli.PipelineOrchestrator") as mock_orchestrator_class:
            orchestrator = mock_orchestrator_class.return_value
            orchestrator.run = AsyncMock(return_value=Outcome.done())
            orchestrator.last_job = None

            assert main(["--config", str(config_file), "run"]) == 0

        assert "completed successfully" in recorded_console.export_text()

    def test_run_failure(self, config_file, recorded_console, no_logging_setup) -> None:
        """A failed run exits 1 and prints the reason."""
        outcome = Outcome.failed(
            "Record count mismatch in orders", stage=Stage.VALIDATING, unit="orders", check="cardinality"
        )
        with patch("db_backup.cli.PipelineOrchestrator") as mock_orchestrator_class:
            orchestrator = mock_orchestrator_class.return_value
            orchestrator.run = AsyncMock(return_value=outcome)
            orchestrator.last_job = None

            assert main(["--config", str(config_file), "run"]) == 1

        output = recorded_console.export_text()
        assert "Record count mismatch in orders" in output
        assert "orders" in output

    def test_migrate_without_section(self, config_file, recorded_console, no_logging_setup) -> None:
        """migrate needs a [migration] section."""
        assert main(["--config", str(config_file), "migrate"]) == 1
        assert "No [migration] section" in recorded_console.export_text()

    def test_buckets_without_section(self, config_file, recorded_console, no_logging_setup) -> None:
        """buckets needs a [buckets] section."""
        assert main(["--config", str(config_file), "buckets"]) == 1
        assert "No [buckets] section" in recorded_console.export_text()


class TestRunInterruptible:
    async def test_returns_result(self) -> None:
        """The wrapped coroutine's result is returned."""
        async def work():
            return 42

        assert await run_interruptible(work()) == 42

    async def test_only_first_signal_cancels(self) -> None:
        """Signals after the first do not cancel cleanup."""
        loop = asyncio.get_running_loop()
        handlers = {}

        def add_handler(sig, callback, *args):
            handlers[sig] = (callback, args)

        cancellations = []

        async def work():
            callback, args = handlers[signal.SIGINT]
            callback(*args)
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancellations.append("first")
                # A second signal during cleanup must not cancel again
                term_callback, term_args = handlers[signal.SIGTERM]
                term_callback(*term_args)
                await asyncio.sleep(0)
                return "cleaned up"

        with patch.object(loop, "add_signal_handler", side_effect=add_handler), patch.object(
            loop, "remove_signal_handler"
        ) as mock_remove:
            result = await run_interruptible(work())

        assert result == "cleaned up"
        assert cancellations == ["first"]
        assert mock_remove.call_count == 2

    async def test_unsupported_platform(self) -> None:
        """Without signal handler support the coroutine still runs."""
        loop = asyncio.get_running_loop()

        async def work():
            return "ok"

        with patch.object(loop, "add_signal_handler", side_effect=NotImplementedError), patch.object(
            loop, "remove_signal_handler"
        ) as mock_remove:
            assert await run_interruptible(work()) == "ok"

        mock_remove.assert_not_called()


class TestLoggingSetup:
    def test_log_file_path(self) -> None:
        """Log files are named db_backup_<stamp>.log."""
        path = log_file_path(Path("logs"), datetime(2024, 5, 1, 3, 0))
        assert path == Path("logs/db_backup_202405010300.log")

    def test_console_only(self, clean_package_logger) -> None:
        """Without a log directory only the RichHandler is installed."""
        result = configure_logging(console=Console(file=io.StringIO()))

        assert result is None
        assert [type(h) for h in clean_package_logger.handlers] == [RichHandler]
        assert clean_package_logger.level == logging.INFO

    def test_file_handler(self, tmp_path, clean_package_logger) -> None:
        """The file handler records DEBUG lines."""
        log_file = configure_logging(tmp_path / "logs", console=Console(file=io.StringIO()))

        logging.getLogger("db_backup.pipeline").debug("Running pg_dump")
        for handler in clean_package_logger.handlers:
            handler.flush()

        assert log_file.parent == tmp_path / "logs"
        assert log_file.name.startswith("db_backup_")
        assert "DEBUG - Running pg_dump" in log_file.read_text()

    def test_reconfigure_replaces_handlers(self, tmp_path, clean_package_logger) -> None:
        """Configuring twice replaces the handlers."""
        console = Console(file=io.StringIO())
        configure_logging(tmp_path, console=console)
        configure_logging(tmp_path, verbose=True, console=console)

        assert len(clean_package_logger.handlers) == 2
        assert clean_package_logger.handlers[0].level == logging.DEBUG
