"""CLI for the backup-validate-promote pipeline.

Provides commands to run a backup job, migrate a PostgreSQL database
between hosts, transfer object-storage buckets, and inspect the loaded
configuration.

Usage:
    db-backup run
    db-backup --config /etc/db-backup/backup.toml -v run
    db-backup migrate --mode schema-only --post-sql fix.sql
    db-backup migrate --verify
    db-backup buckets --bucket uploads
    db-backup config

Commands:
    run      - Capture, restore-verify, and promote every configured dataset
    migrate  - Move a PostgreSQL database between two remote containers
    buckets  - Copy bucket directories to the staging object store
    config   - Show the effective configuration
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any, TypeVar

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from db_backup.buckets import BucketTransfer
from db_backup.config.loader import DEFAULT_ENV_PREFIX, load_config
from db_backup.config.models import PipelineConfig
from db_backup.errors import BackupError, ConfigError, ValidationFailedError
from db_backup.execution import CommandRunner
from db_backup.logging_setup import configure_logging
from db_backup.migrate import DatabaseMigrator, MigrationMode
from db_backup.pipeline.models import Outcome
from db_backup.pipeline.orchestrator import PipelineOrchestrator
from db_backup.schema.models import CardinalityStatus, ValidationReport
from db_backup.transport.ssh import get_transport

console = Console()
logger = logging.getLogger(__name__)

T = TypeVar("T")

_STATUS_STYLES = {
    CardinalityStatus.EXACT: "green",
    CardinalityStatus.WITHIN_TOLERANCE: "yellow",
    CardinalityStatus.FAILED: "red",
}


# ============================================================================
# Helpers
# ============================================================================


def _load(args: argparse.Namespace) -> PipelineConfig:
    """Load config and set up logging for a command."""
    config = load_config(
        Path(args.config) if args.config else None,
        env_prefix=args.env_prefix,
    )
    configure_logging(config.log_dir, verbose=args.verbose)
    return config


async def run_interruptible(coro: Coroutine[Any, Any, T]) -> T:
    """Run ``coro`` as a task that SIGINT/SIGTERM cancel.

    Only the first signal cancels the task; later ones are logged while
    cleanup finishes.

    Raises:
        asyncio.CancelledError: If the task was cancelled and did not
            handle it.
    """
    loop = asyncio.get_running_loop()
    task = asyncio.ensure_future(coro)
    received: list[str] = []

    def _on_signal(sig: signal.Signals) -> None:
        received.append(sig.name)
        if len(received) == 1:
            logger.warning(f"Received {sig.name}, cancelling...")
            task.cancel()
        else:
            logger.warning(f"Received {sig.name} again, waiting for cleanup to finish")

    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_signal, sig)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread
            pass

    try:
        return await task
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def _report_table(report: ValidationReport) -> Table:
    table = Table(title=f"Reconciliation: {report.dataset}", header_style="bold")
    table.add_column("Unit")
    table.add_column("Source", justify="right")
    table.add_column("Restored", justify="right")
    table.add_column("Diff %", justify="right")
    table.add_column("Status")

    for unit in report.units:
        style = _STATUS_STYLES.get(unit.status, "dim")
        status = unit.status.value if unit.status else "-"
        table.add_row(
            unit.name,
            "-" if unit.source_count is None else str(unit.source_count),
            "-" if unit.restored_count is None else str(unit.restored_count),
            "-" if unit.diff_pct is None else str(unit.diff_pct),
            f"[{style}]{status}[/{style}]",
        )
    return table


def _print_outcome(outcome: Outcome, reports: list[ValidationReport]) -> None:
    for report in reports:
        console.print(_report_table(report))

    if outcome.ok:
        console.print("[bold green]v[/bold green] Backup process completed successfully")
        return

    console.print(f"[bold red]x[/bold red] Backup failed during {outcome.stage.value if outcome.stage else '?'}")
    if outcome.reason:
        console.print(f"  {escape(outcome.reason)}")
    if outcome.unit or outcome.check:
        console.print(f"  [dim]unit:[/dim] {outcome.unit or '-'}  [dim]check:[/dim] {outcome.check or '-'}")


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_run(args: argparse.Namespace) -> int:
    """Async implementation for run command.

    Args:
        args: Parsed arguments.

    Returns:
        0 on success, 1 on any failure (including interruption).
    """
    try:
        config = _load(args)
    except (BackupError, FileNotFoundError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    orchestrator = PipelineOrchestrator(config)
    outcome = await run_interruptible(orchestrator.run())

    job = orchestrator.last_job
    _print_outcome(outcome, job.reports if job else [])
    return outcome.exit_code


async def _async_migrate(args: argparse.Namespace) -> int:
    """Async implementation for migrate command.

    Args:
        args: Parsed arguments with mode, post_sql, verify.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        config = _load(args)
        if config.migration is None:
            raise ConfigError("No [migration] section in the configuration")

        runner = CommandRunner()
        migrator = DatabaseMigrator(
            config.migration,
            runner,
            get_transport(config.transfer_method, runner),
            staging_dir=config.staging_dir,
            tolerance_pct=config.tolerance_pct,
            retry_policy=config.retry_policy,
        )
        report = await run_interruptible(
            migrator.migrate(
                MigrationMode(args.mode),
                post_sql=Path(args.post_sql) if args.post_sql else None,
                verify_counts=args.verify,
            )
        )
    except asyncio.CancelledError:
        console.print("[bold red]x[/bold red] Migration was interrupted")
        return 1
    except ValidationFailedError as e:
        console.print(_report_table(e.report))
        console.print(f"[bold red]x[/bold red] {escape(str(e))}")
        return 1
    except (BackupError, FileNotFoundError) as e:
        console.print(f"[bold red]x[/bold red] {escape(str(e))}")
        return 1

    if report is not None:
        console.print(_report_table(report))
    console.print("[bold green]v[/bold green] Database migration completed successfully")
    return 0


async def _async_buckets(args: argparse.Namespace) -> int:
    """Async implementation for buckets command.

    Args:
        args: Parsed arguments with bucket.

    Returns:
        0 on success, 1 on failure.
    """
    try:
        config = _load(args)
        if config.buckets is None:
            raise ConfigError("No [buckets] section in the configuration")

        runner = CommandRunner()
        transfer = BucketTransfer(
            config.buckets,
            runner,
            get_transport(config.transfer_method, runner),
            staging_dir=config.staging_dir,
            allow_empty_placeholder=config.allow_empty_placeholder,
            retry_policy=config.retry_policy,
            transfer_attempts=config.transfer_attempts,
        )
        report = await run_interruptible(transfer.transfer(bucket=args.bucket))
    except asyncio.CancelledError:
        console.print("[bold red]x[/bold red] Bucket transfer was interrupted")
        return 1
    except ValidationFailedError as e:
        console.print(_report_table(e.report))
        console.print(f"[bold red]x[/bold red] {escape(str(e))}")
        return 1
    except (BackupError, FileNotFoundError) as e:
        console.print(f"[bold red]x[/bold red] {escape(str(e))}")
        return 1

    console.print(_report_table(report))
    console.print("[bold green]v[/bold green] Bucket transfer completed successfully")
    return 0


# ============================================================================
# Sync command wrappers (cmd_config reads local files only)
# ============================================================================


def cmd_run(args: argparse.Namespace) -> int:
    """Run one backup job.

    Wraps the async implementation with ``asyncio.run()``.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 on failure.
    """
    return asyncio.run(_async_run(args))


def cmd_migrate(args: argparse.Namespace) -> int:
    """Migrate a PostgreSQL database between hosts."""
    return asyncio.run(_async_migrate(args))


def cmd_buckets(args: argparse.Namespace) -> int:
    """Transfer buckets to the staging object store."""
    return asyncio.run(_async_buckets(args))


def cmd_config(args: argparse.Namespace) -> int:
    """Show the effective configuration.

    Reads only the local TOML config and environment -- no remote calls.
    Passwords are never printed.

    Args:
        args: Parsed CLI arguments.

    Returns:
        0 on success, 1 if the config is missing or invalid.
    """
    try:
        config = load_config(
            Path(args.config) if args.config else None,
            env_prefix=args.env_prefix,
        )
    except (BackupError, FileNotFoundError) as e:
        console.print(f"[red]Error: {escape(str(e))}[/red]")
        return 1

    datasets = Table(title="Datasets", show_header=True, header_style="bold")
    datasets.add_column("Name")
    datasets.add_column("Engine")
    datasets.add_column("Container")
    datasets.add_column("Host")
    datasets.add_column("Formats")
    datasets.add_column("Destinations")
    for dataset in config.datasets:
        datasets.add_row(
            f"[bold cyan]{dataset.name}[/bold cyan]",
            dataset.engine,
            dataset.container,
            dataset.host.target if dataset.host else "local",
            ", ".join(fmt.value for fmt in dataset.formats),
            ", ".join(dataset.destinations) or str(config.backup_dir),
        )
    console.print(datasets)

    settings = Table(title="Settings", show_header=False)
    settings.add_column("Key", style="dim")
    settings.add_column("Value")
    target = config.verification
    settings.add_row(
        "Verification target",
        f"{target.container} ({target.engine})" if target else "[yellow]not configured[/yellow]",
    )
    settings.add_row("Tolerance", f"{config.tolerance_pct}%")
    settings.add_row("Retries", f"{config.retry_count} x {config.retry_delay_seconds}s")
    settings.add_row("Transfer method", config.transfer_method)
    settings.add_row("Retention", f"{config.retention_days} days")
    settings.add_row("Required free space", f"{config.required_free_space_mb} MB")
    settings.add_row("Staging dir", str(config.staging_dir))
    settings.add_row("Backup dir", str(config.backup_dir))
    settings.add_row("Log dir", str(config.log_dir))
    settings.add_row(
        "Webhook", "configured" if config.notifications.webhook_url else "[dim]none[/dim]"
    )
    settings.add_row("Migration", "configured" if config.migration else "[dim]none[/dim]")
    settings.add_row("Buckets", "configured" if config.buckets else "[dim]none[/dim]")
    console.print(settings)
    return 0


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="db-backup",
        description="Backup, restore-verify, and promote database dumps",
    )

    # Global options
    parser.add_argument(
        "--config",
        "-c",
        default=None,
        help="Path to the TOML config (default: ./backup.toml)",
    )
    parser.add_argument(
        "--env-prefix",
        default=DEFAULT_ENV_PREFIX,
        help=(
            "Prefix for environment overrides "
            "(e.g., --env-prefix APP_ reads APP_WEBHOOK_URL)"
        ),
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log every external command",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run command
    p_run = subparsers.add_parser(
        "run",
        help="Capture, restore-verify, and promote every configured dataset",
    )
    p_run.set_defaults(func=cmd_run)

    # migrate command
    p_migrate = subparsers.add_parser(
        "migrate",
        help="Move a PostgreSQL database between two remote containers",
    )
    p_migrate.add_argument(
        "--mode",
        choices=[mode.value for mode in MigrationMode],
        default=MigrationMode.FULL.value,
        help="What to migrate (default: full)",
    )
    p_migrate.add_argument(
        "--post-sql",
        default=None,
        help="SQL file to run on the destination after the import",
    )
    p_migrate.add_argument(
        "--verify",
        action="store_true",
        help="Compare table structure and row counts afterwards (full mode only)",
    )
    p_migrate.set_defaults(func=cmd_migrate)

    # buckets command
    p_buckets = subparsers.add_parser(
        "buckets",
        help="Copy bucket directories to the staging object store",
    )
    p_buckets.add_argument(
        "--bucket",
        default=None,
        help="Transfer only this bucket",
    )
    p_buckets.set_defaults(func=cmd_buckets)

    # config command
    p_config = subparsers.add_parser(
        "config",
        help="Show the effective configuration",
    )
    p_config.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Parses command line arguments and dispatches to appropriate handler.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
