"""Pydantic models for reconciliation results.

This module contains reconciliation-domain models:
- Structural signature: FieldDescriptor
- Per-unit result: CardinalityStatus, UnitResult
- Aggregate result: CheckFailure, ValidationReport
"""

from enum import Enum

from pydantic import BaseModel, Field


# ============================================================================
# Structural Signature
# ============================================================================


class FieldDescriptor(BaseModel):
    """One entry of a unit's structural signature.

    For PostgreSQL tables this is a column (``information_schema.columns``);
    for MongoDB collections it is an index, with the key specification as
    ``data_type`` and the index options as ``default``.

    Example:
        >>> FieldDescriptor(name="email", data_type="character varying", max_length=255)
        FieldDescriptor(name='email', data_type='character varying', max_length=255, is_nullable=True, default=None)
    """

    name: str
    data_type: str
    max_length: int | None = None
    is_nullable: bool = True
    default: str | None = None

    def describe(self) -> str:
        type_name = self.data_type
        if self.max_length is not None:
            type_name += f"({self.max_length})"
        parts = [self.name, type_name]
        if not self.is_nullable:
            parts.append("NOT NULL")
        if self.default is not None:
            parts.append(f"DEFAULT {self.default}")
        return " ".join(parts)


# ============================================================================
# Unit Results
# ============================================================================


class CardinalityStatus(str, Enum):
    """Outcome of a unit's count comparison."""

    EXACT = "exact"
    WITHIN_TOLERANCE = "within_tolerance"
    FAILED = "failed"


class UnitResult(BaseModel):
    """Reconciliation result for one table, collection, or bucket.

    ``attempts`` counts the count queries issued against each side.
    """

    name: str
    structure: list[FieldDescriptor] = Field(default_factory=list)
    source_count: int | None = None
    restored_count: int | None = None
    diff_pct: int | None = None
    status: CardinalityStatus | None = None
    attempts: int = 0

    @property
    def passed(self) -> bool:
        return self.status in (CardinalityStatus.EXACT, CardinalityStatus.WITHIN_TOLERANCE)


class CheckFailure(BaseModel):
    """The first hard failure of a reconciliation run."""

    unit: str | None = None
    check: str  # membership, structure, cardinality
    reason: str


class ValidationReport(BaseModel):
    """Result of reconciling a restored copy against its source.

    Example:
        >>> report = ValidationReport(dataset="app")
        >>> report.success
        True
        >>> report.format_report()
        'app: 0 unit(s) reconciled'
    """

    dataset: str
    tolerance_pct: float = 0.0
    units: list[UnitResult] = Field(default_factory=list)
    failure: CheckFailure | None = None

    @property
    def success(self) -> bool:
        return self.failure is None and all(u.passed for u in self.units)

    def count(self, status: CardinalityStatus) -> int:
        return sum(1 for u in self.units if u.status == status)

    def failure_message(self) -> str:
        if self.failure is None:
            return f"{self.dataset}: validation passed"
        where = f" in {self.failure.unit}" if self.failure.unit else ""
        return (
            f"{self.dataset}: {self.failure.check} check failed{where}: "
            f"{self.failure.reason}"
        )

    def summary(self) -> dict:
        """Compact dict for notification payloads."""
        data = {
            "dataset": self.dataset,
            "units": len(self.units),
            "exact": self.count(CardinalityStatus.EXACT),
            "within_tolerance": self.count(CardinalityStatus.WITHIN_TOLERANCE),
            "success": self.success,
        }
        if self.failure is not None:
            data["failed_unit"] = self.failure.unit
            data["failed_check"] = self.failure.check
            data["reason"] = self.failure.reason
        return data

    def format_report(self) -> str:
        """Format the report as human-readable text."""
        if self.failure is not None:
            return self.failure_message()

        line = f"{self.dataset}: {len(self.units)} unit(s) reconciled"
        warned = self.count(CardinalityStatus.WITHIN_TOLERANCE)
        if warned:
            line += f", {warned} within tolerance"
        return line
