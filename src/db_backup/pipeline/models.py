"""Pydantic models for pipeline runs.

This module contains run-domain models:
- Lifecycle: Stage, Outcome
- Run state: BackupJob
- Events: PipelineEvent
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from db_backup.models import Severity
from db_backup.schema.models import ValidationReport


# ============================================================================
# Lifecycle
# ============================================================================


class Stage(str, Enum):
    """Pipeline stages in execution order.

    Any stage may move to ``CLEANING`` and then ``FAILED``.
    """

    INIT = "init"
    CAPTURING = "capturing"
    STAGED = "staged"
    RESTORING = "restoring"
    VALIDATING = "validating"
    VALIDATED = "validated"
    PROMOTING = "promoting"
    CLEANING = "cleaning"
    DONE = "done"
    FAILED = "failed"


class Outcome(BaseModel):
    """Terminal result of a run.

    Example:
        >>> Outcome.done().exit_code
        0
        >>> Outcome.failed("disk full", stage=Stage.INIT).exit_code
        1
    """

    status: Stage
    reason: str | None = None
    stage: Stage | None = None  # Stage that failed
    unit: str | None = None
    check: str | None = None
    interrupted: bool = False

    @classmethod
    def done(cls) -> "Outcome":
        return cls(status=Stage.DONE)

    @classmethod
    def failed(
        cls,
        reason: str,
        stage: Stage | None = None,
        unit: str | None = None,
        check: str | None = None,
        interrupted: bool = False,
    ) -> "Outcome":
        return cls(
            status=Stage.FAILED,
            reason=reason,
            stage=stage,
            unit=unit,
            check=check,
            interrupted=interrupted,
        )

    @property
    def ok(self) -> bool:
        return self.status == Stage.DONE

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1

    def fields(self) -> dict[str, Any]:
        """Non-empty failure details for notifications."""
        data = {
            "stage": self.stage.value if self.stage else None,
            "unit": self.unit,
            "check": self.check,
            "reason": self.reason,
        }
        return {key: value for key, value in data.items() if value is not None}


# ============================================================================
# Run State
# ============================================================================


class BackupJob(BaseModel):
    """One pipeline run, owned by the orchestrator and discarded afterwards."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    datasets: list[str] = Field(default_factory=list)
    verification_target: str | None = None
    destinations: list[str] = Field(default_factory=list)
    stage: Stage = Stage.INIT
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None
    outcome: Outcome | None = None
    reports: list[ValidationReport] = Field(default_factory=list)

    def elapsed_seconds(self) -> float:
        end = self.finished_at or datetime.now()
        return round((end - self.started_at).total_seconds(), 2)

    def report_summary(self) -> list[dict]:
        return [report.summary() for report in self.reports]


class PipelineEvent(BaseModel):
    """A structured status event emitted on a stage transition."""

    job_id: str
    stage: Stage
    severity: Severity = Severity.INFO
    message: str
    elapsed_seconds: float = 0.0
    fields: dict[str, Any] = Field(default_factory=dict)
