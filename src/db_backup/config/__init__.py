"""Configuration management: TOML loading and config models.

Usage:
    >>> from db_backup.config import load_config, PipelineConfig
"""

from db_backup.config.loader import load_config
from db_backup.config.models import (
    BucketTransferConfig,
    DatasetConfig,
    MigrationConfig,
    MongoConnection,
    NotificationConfig,
    PipelineConfig,
    PostgresConnection,
    RemoteHost,
    VerificationTargetConfig,
)

__all__ = [
    "load_config",
    "PipelineConfig",
    "DatasetConfig",
    "VerificationTargetConfig",
    "NotificationConfig",
    "MigrationConfig",
    "BucketTransferConfig",
    "PostgresConnection",
    "MongoConnection",
    "RemoteHost",
]
