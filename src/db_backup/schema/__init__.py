"""Reconciliation of restored copies against their source.

Usage:
    >>> from db_backup.schema import verify, ValidationReport
"""

from db_backup.schema.comparator import (
    check_cardinality,
    check_structure,
    check_unit_sets,
    diff_percent,
)
from db_backup.schema.models import (
    CardinalityStatus,
    CheckFailure,
    FieldDescriptor,
    UnitResult,
    ValidationReport,
)
from db_backup.schema.verifier import ReconciliationSource, verify

__all__ = [
    "verify",
    "ReconciliationSource",
    "check_unit_sets",
    "check_structure",
    "check_cardinality",
    "diff_percent",
    "FieldDescriptor",
    "CardinalityStatus",
    "UnitResult",
    "CheckFailure",
    "ValidationReport",
]
