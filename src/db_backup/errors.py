"""Exception hierarchy for backup, transfer, and verification failures.

Every failure the pipeline can report derives from ``BackupError`` so the
orchestrator and CLI can handle them uniformly.  Subclasses carry the
context needed for a structured failure event (unit name, failing check).

Usage:
    from db_backup.errors import CaptureError, SchemaMismatchError

    try:
        await adapter.capture(dataset, workdir)
    except CaptureError as e:
        ...
"""


class BackupError(Exception):
    """Base class for all db-backup failures."""

    pass


class ConfigError(BackupError):
    """Raised when the configuration file is invalid or incomplete."""

    pass


class CommandError(BackupError):
    """Raised when an external tool exits with a non-zero status."""

    def __init__(self, argv: list[str], returncode: int, stderr: str = "") -> None:
        self.argv = argv
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else "no output"
        super().__init__(
            f"Command '{argv[0]}' exited with status {returncode}: {detail}"
        )


class ConnectivityError(BackupError):
    """Raised when a source, destination, or execution surface is unreachable."""

    pass


class CaptureError(BackupError):
    """Raised when a dump tool fails to produce an artifact."""

    pass


class RestoreError(BackupError):
    """Raised when an artifact cannot be restored into the verification target."""

    pass


class TransferError(BackupError):
    """Raised when an artifact is missing or empty after a copy."""

    pass


class ResourceExhaustionError(BackupError):
    """Raised when pre-flight checks find insufficient local resources."""

    pass


class ReconciliationError(BackupError):
    """Base class for per-unit reconciliation failures.

    Attributes:
        unit: Name of the table, collection, or bucket that failed.
        check: Which check failed (``membership``, ``structure``,
            ``cardinality``).
    """

    check: str = ""

    def __init__(self, message: str, unit: str | None = None) -> None:
        self.unit = unit
        super().__init__(message)


class UnitSetMismatchError(ReconciliationError):
    """Raised when source and restored copies contain different unit sets."""

    check = "membership"

    def __init__(self, missing: list[str], extra: list[str]) -> None:
        self.missing = missing
        self.extra = extra
        parts = []
        if missing:
            parts.append(f"missing unit {', '.join(missing)}")
        if extra:
            parts.append(f"extra unit {', '.join(extra)}")
        unit = (missing or extra or [None])[0]
        super().__init__("; ".join(parts), unit=unit)


class SchemaMismatchError(ReconciliationError):
    """Raised when a unit's structural signature differs between copies."""

    check = "structure"


class CardinalityToleranceExceeded(ReconciliationError):
    """Raised when a unit's restored count falls outside the tolerance."""

    check = "cardinality"

    def __init__(
        self,
        unit: str,
        source_count: int,
        restored_count: int,
        diff_pct: int,
        tolerance_pct: float,
    ) -> None:
        self.source_count = source_count
        self.restored_count = restored_count
        self.diff_pct = diff_pct
        self.tolerance_pct = tolerance_pct
        super().__init__(
            f"Record count mismatch in {unit}: source {source_count}, "
            f"restored {restored_count}, difference {diff_pct}% "
            f"(tolerance {tolerance_pct}%)",
            unit=unit,
        )


class ValidationFailedError(BackupError):
    """Raised by the orchestrator when a ValidationReport has failing units."""

    def __init__(self, report) -> None:
        self.report = report
        super().__init__(report.failure_message())
