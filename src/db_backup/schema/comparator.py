"""Reconciliation checks using set operations and integer arithmetic.

Compares unit sets, structural signatures, and counts of a source and a
restored copy.  Pure logic -- no I/O, no database connections.  Each check
raises the matching ``ReconciliationError`` subclass on failure.

Usage:
    from db_backup.schema.comparator import check_cardinality, check_unit_sets

    check_unit_sets(["users", "orders"], ["users", "orders"])
    status = check_cardinality("users", 1000, 995, tolerance_pct=1)
"""

from db_backup.errors import (
    CardinalityToleranceExceeded,
    SchemaMismatchError,
    UnitSetMismatchError,
)
from db_backup.schema.models import CardinalityStatus, FieldDescriptor


def check_unit_sets(source_units: list[str], restored_units: list[str]) -> None:
    """Require both copies to contain exactly the same units.

    Raises:
        UnitSetMismatchError: Naming units missing from, or extra in, the
            restored copy.

    Examples:
        >>> check_unit_sets(["a", "b", "c"], ["a", "b"])
        Traceback (most recent call last):
            ...
        db_backup.errors.UnitSetMismatchError: missing unit c
    """
    source: set[str] = set(source_units)
    restored: set[str] = set(restored_units)

    missing: list[str] = sorted(source - restored)
    extra: list[str] = sorted(restored - source)
    if missing or extra:
        raise UnitSetMismatchError(missing, extra)


def structure_differences(
    source: list[FieldDescriptor], restored: list[FieldDescriptor]
) -> list[str]:
    """Describe every position where two signatures differ.

    Signatures are ordered, so a reordered column is a difference too.

    Examples:
        >>> a = FieldDescriptor(name="id", data_type="integer")
        >>> b = FieldDescriptor(name="id", data_type="bigint")
        >>> structure_differences([a], [b])
        ['id integer != id bigint']
        >>> structure_differences([a], [])
        ['id integer missing from restored copy']
    """
    differences: list[str] = []
    for position in range(max(len(source), len(restored))):
        left = source[position] if position < len(source) else None
        right = restored[position] if position < len(restored) else None
        if left == right:
            continue
        if right is None:
            differences.append(f"{left.describe()} missing from restored copy")
        elif left is None:
            differences.append(f"{right.describe()} not in source")
        else:
            differences.append(f"{left.describe()} != {right.describe()}")
    return differences


def check_structure(
    unit: str, source: list[FieldDescriptor], restored: list[FieldDescriptor]
) -> None:
    """Require identical structural signatures.

    Raises:
        SchemaMismatchError: If any field differs.
    """
    differences = structure_differences(source, restored)
    if differences:
        raise SchemaMismatchError(
            f"Table structure mismatch for {unit}: {'; '.join(differences)}",
            unit=unit,
        )


def diff_percent(source_count: int, restored_count: int) -> int:
    """Percentage difference relative to the source, truncated toward zero.

    A zero source with a non-zero restored count is reported as 100%.

    Examples:
        >>> diff_percent(1000, 995)
        0
        >>> diff_percent(1000, 1020)
        2
        >>> diff_percent(0, 0)
        0
    """
    if source_count == 0:
        return 0 if restored_count == 0 else 100
    return abs(source_count - restored_count) * 100 // source_count


def check_cardinality(
    unit: str,
    source_count: int,
    restored_count: int,
    tolerance_pct: float,
) -> CardinalityStatus:
    """Compare counts against the tolerance (inclusive bound).

    An empty source only matches an empty restored copy, whatever the
    tolerance.  A zero tolerance requires equal counts, since the
    truncated percentage of a sub-1% difference is 0.

    Returns:
        ``EXACT`` for equal counts, ``WITHIN_TOLERANCE`` otherwise.

    Raises:
        CardinalityToleranceExceeded: If the difference exceeds the tolerance.

    Examples:
        >>> check_cardinality("users", 1000, 995, tolerance_pct=1)
        <CardinalityStatus.WITHIN_TOLERANCE: 'within_tolerance'>
        >>> check_cardinality("users", 100, 101, tolerance_pct=1)
        <CardinalityStatus.WITHIN_TOLERANCE: 'within_tolerance'>
    """
    if source_count == restored_count:
        return CardinalityStatus.EXACT

    pct = diff_percent(source_count, restored_count)
    if source_count == 0 or tolerance_pct == 0 or pct > tolerance_pct:
        raise CardinalityToleranceExceeded(
            unit, source_count, restored_count, pct, tolerance_pct
        )
    return CardinalityStatus.WITHIN_TOLERANCE
