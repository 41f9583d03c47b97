"""Backup-validate-promote pipeline.

Usage:
    >>> from db_backup.pipeline import PipelineOrchestrator, Outcome, Stage
"""

from db_backup.pipeline.artifacts import ArtifactStore
from db_backup.pipeline.cleanup import CleanupStack
from db_backup.pipeline.models import BackupJob, Outcome, PipelineEvent, Stage
from db_backup.pipeline.orchestrator import PipelineOrchestrator

__all__ = [
    "PipelineOrchestrator",
    "ArtifactStore",
    "CleanupStack",
    "BackupJob",
    "Outcome",
    "PipelineEvent",
    "Stage",
]
