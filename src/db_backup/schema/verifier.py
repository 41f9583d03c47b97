"""Reconciliation of a restored copy against its live source.

Reads both endpoints through the ``ReconciliationSource`` protocol and
applies the checks in ``db_backup.schema.comparator``:

1. Unit sets must match (no further checks when they don't).
2. Per unit, structural signatures must be equal.  Never retried.
3. Per unit, counts must agree within the tolerance.  Retried under the
   ``RetryPolicy``, re-querying both sides each attempt.

The first hard failure stops the run and is recorded on the report.

Usage:
    from db_backup.schema.verifier import verify

    report = await verify(source, restored, tolerance_pct=1, retry_policy=policy)
    if not report.success:
        print(report.failure_message())
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from db_backup.errors import (
    CardinalityToleranceExceeded,
    ReconciliationError,
)
from db_backup.retry import RetryPolicy, with_retry
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

logger = logging.getLogger(__name__)


class ReconciliationSource(Protocol):
    """Read-only view of one copy of a dataset.

    Attributes:
        label: Human-readable name used in logs (e.g. ``source``,
            ``restored test_app``).
    """

    label: str

    async def list_units(self) -> list[str]:
        """Names of all tables, collections, or buckets."""
        ...

    async def structure(self, unit: str) -> list[FieldDescriptor]:
        """Ordered structural signature of ``unit``."""
        ...

    async def count(self, unit: str) -> int:
        """Number of rows, documents, or files in ``unit``."""
        ...


async def verify(
    source: ReconciliationSource,
    restored: ReconciliationSource,
    tolerance_pct: float,
    retry_policy: RetryPolicy,
    dataset: str = "",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ValidationReport:
    """Reconcile ``restored`` against ``source``.

    Args:
        source: The live source copy.
        restored: The restored verification copy.
        tolerance_pct: Maximum allowed count difference in percent
            (inclusive).
        retry_policy: Retries for failing count comparisons.
        dataset: Dataset name recorded on the report.
        sleep: Delay function between retries (injectable for tests).

    Returns:
        ``ValidationReport``; ``success`` is ``False`` when any check failed,
        with ``failure`` naming the unit and the check.
    """
    report = ValidationReport(dataset=dataset, tolerance_pct=tolerance_pct)

    source_units = await source.list_units()
    restored_units = await restored.list_units()
    logger.info(
        f"Reconciling {dataset}: {len(source_units)} unit(s) in {source.label}, "
        f"{len(restored_units)} in {restored.label}"
    )

    try:
        check_unit_sets(source_units, restored_units)
    except ReconciliationError as e:
        logger.error(f"Unit set mismatch: {e}")
        report.failure = CheckFailure(unit=e.unit, check=e.check, reason=str(e))
        return report

    for unit in source_units:
        result = UnitResult(name=unit)
        report.units.append(result)
        try:
            result.structure = await _check_unit_structure(source, restored, unit)
            await _check_unit_cardinality(
                source, restored, unit, result, tolerance_pct, retry_policy, sleep
            )
        except ReconciliationError as e:
            logger.error(f"Validation failed for {unit}: {e}")
            report.failure = CheckFailure(unit=unit, check=e.check, reason=str(e))
            return report

    logger.info(report.format_report())
    return report


async def _check_unit_structure(
    source: ReconciliationSource,
    restored: ReconciliationSource,
    unit: str,
) -> list[FieldDescriptor]:
    source_structure = await source.structure(unit)
    restored_structure = await restored.structure(unit)
    check_structure(unit, source_structure, restored_structure)
    return source_structure


async def _check_unit_cardinality(
    source: ReconciliationSource,
    restored: ReconciliationSource,
    unit: str,
    result: UnitResult,
    tolerance_pct: float,
    retry_policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[None]],
) -> None:
    """Count both sides until they agree or the retry policy is exhausted.

    ``result`` is updated after every attempt, so a failing unit reports
    the counts of its last attempt.
    """

    async def attempt() -> CardinalityStatus:
        source_count = await source.count(unit)
        restored_count = await restored.count(unit)
        result.attempts += 1
        result.source_count = source_count
        result.restored_count = restored_count
        result.diff_pct = diff_percent(source_count, restored_count)
        return check_cardinality(unit, source_count, restored_count, tolerance_pct)

    try:
        result.status = await with_retry(
            attempt,
            retry_policy,
            retry_on=(CardinalityToleranceExceeded,),
            description=f"Record count check for {unit}",
            sleep=sleep,
        )
    except CardinalityToleranceExceeded:
        result.status = CardinalityStatus.FAILED
        raise

    if result.status == CardinalityStatus.WITHIN_TOLERANCE:
        logger.warning(
            f"Minor record count difference in {unit} within tolerance: "
            f"source {result.source_count}, restored {result.restored_count} "
            f"({result.diff_pct}%)"
        )
    else:
        logger.info(f"{unit}: {result.source_count} record(s) match")
