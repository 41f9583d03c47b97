"""db-backup: Backup, restore-verify, and promote database dumps.

Captures PostgreSQL and MongoDB datasets inside their containers, restores
each capture into a disposable verification target, reconciles the restored
copy against the source, and only then promotes the artifacts to their
backup destinations.

Usage:
    from db_backup import PipelineOrchestrator, load_config
    from db_backup import verify, ValidationReport, RetryPolicy
    from db_backup import DatabaseMigrator, BucketTransfer
"""

__version__ = "0.1.0"

# Config
from db_backup.config.loader import load_config
from db_backup.config.models import PipelineConfig

# Errors
from db_backup.errors import (
    BackupError,
    CaptureError,
    CardinalityToleranceExceeded,
    CommandError,
    ConfigError,
    ConnectivityError,
    ResourceExhaustionError,
    RestoreError,
    SchemaMismatchError,
    TransferError,
    UnitSetMismatchError,
    ValidationFailedError,
)

# Models
from db_backup.models import ArtifactFormat, ArtifactLocation, BackupArtifact
from db_backup.retry import RetryPolicy, with_retry

# Reconciliation
from db_backup.schema.models import ValidationReport
from db_backup.schema.verifier import verify

# Pipeline
from db_backup.pipeline.models import Outcome, Stage
from db_backup.pipeline.orchestrator import PipelineOrchestrator

# Workflows
from db_backup.buckets import BucketTransfer
from db_backup.migrate import DatabaseMigrator, MigrationMode

__all__ = [
    # Config
    "load_config",
    "PipelineConfig",
    # Errors
    "BackupError",
    "ConfigError",
    "CommandError",
    "ConnectivityError",
    "CaptureError",
    "RestoreError",
    "TransferError",
    "ResourceExhaustionError",
    "UnitSetMismatchError",
    "SchemaMismatchError",
    "CardinalityToleranceExceeded",
    "ValidationFailedError",
    # Models
    "ArtifactFormat",
    "ArtifactLocation",
    "BackupArtifact",
    "RetryPolicy",
    "with_retry",
    # Reconciliation
    "verify",
    "ValidationReport",
    # Pipeline
    "PipelineOrchestrator",
    "Outcome",
    "Stage",
    # Workflows
    "DatabaseMigrator",
    "MigrationMode",
    "BucketTransfer",
]
