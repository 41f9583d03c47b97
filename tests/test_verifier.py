"""Tests for reconciliation of a restored copy against its source.

Verifies:
- Scenario A: a within-tolerance unit passes, an out-of-tolerance unit
  fails after retries are exhausted
- Scenario B: a missing unit fails immediately with no further checks
- k failures followed by success use exactly k+1 count queries per side
- Structural mismatches are never retried
- Zero-source and inclusive-bound rules
"""

from unittest.mock import AsyncMock

from db_backup.retry import RetryPolicy
from db_backup.schema.models import CardinalityStatus, FieldDescriptor
from db_backup.schema.verifier import verify


class FakeSource:
    """In-memory ``ReconciliationSource``.

    ``counts`` maps a unit to an int, or to a list consumed one value per
    ``count()`` call (the last value repeats).
    """

    def __init__(self, label, counts, structures=None, units=None):
        self.label = label
        self.counts = counts
        self.structures = structures or {}
        self.units = units if units is not None else list(counts)
        self.count_calls: dict[str, int] = {}
        self.structure_calls: dict[str, int] = {}

    async def list_units(self):
        return list(self.units)

    async def structure(self, unit):
        self.structure_calls[unit] = self.structure_calls.get(unit, 0) + 1
        return self.structures.get(unit, [FieldDescriptor(name="id", data_type="integer")])

    async def count(self, unit):
        calls = self.count_calls.get(unit, 0)
        self.count_calls[unit] = calls + 1
        value = self.counts[unit]
        if isinstance(value, list):
            return value[min(calls, len(value) - 1)]
        return value


def _policy(count=3):
    return RetryPolicy(count=count, delay_seconds=5)


class TestScenarios:
    async def test_scenario_a_tolerance_pass_and_fail(self) -> None:
        """A 0% difference passes and a 2% difference fails after every retry."""
        source = FakeSource("source", {"users": 1000, "orders": 1000})
        restored = FakeSource("restored", {"users": 995, "orders": 1020})
        sleep = AsyncMock()

        report = await verify(
            source, restored, tolerance_pct=1, retry_policy=_policy(3), dataset="app", sleep=sleep
        )

        assert not report.success
        users, orders = report.units
        assert users.name == "users"
        assert users.status == CardinalityStatus.WITHIN_TOLERANCE
        assert users.passed
        assert orders.status == CardinalityStatus.FAILED
        assert orders.diff_pct == 2
        assert orders.attempts == 4
        assert report.failure.unit == "orders"
        assert report.failure.check == "cardinality"
        # Retries re-query both sides
        assert source.count_calls["orders"] == 4
        assert restored.count_calls["orders"] == 4
        assert sleep.await_count == 3

    async def test_scenario_b_missing_unit(self) -> None:
        """A missing unit fails before any structure or count query."""
        source = FakeSource("source", {"a": 1, "b": 1, "c": 1})
        restored = FakeSource("restored", {"a": 1, "b": 1})

        report = await verify(source, restored, tolerance_pct=1, retry_policy=_policy())

        assert not report.success
        assert report.failure.check == "membership"
        assert report.failure.unit == "c"
        assert "missing unit c" in report.failure.reason
        assert report.units == []
        assert source.count_calls == {}
        assert restored.count_calls == {}
        assert source.structure_calls == {}


class TestRetrySemantics:
    async def test_k_failures_then_success_uses_k_plus_one_queries(self) -> None:
        """k failed count checks then a pass issue k + 1 queries per side."""
        source = FakeSource("source", {"events": 500})
        restored = FakeSource("restored", {"events": [400, 450, 500]})
        sleep = AsyncMock()

        report = await verify(
            source, restored, tolerance_pct=1, retry_policy=_policy(3), sleep=sleep
        )

        assert report.success
        assert report.units[0].status == CardinalityStatus.EXACT
        assert report.units[0].attempts == 3
        assert source.count_calls["events"] == 3
        assert restored.count_calls["events"] == 3
        assert sleep.await_count == 2

    async def test_structure_mismatch_never_retried(self) -> None:
        """Structure is compared once and never retried."""
        source = FakeSource(
            "source",
            {"users": 10},
            structures={"users": [FieldDescriptor(name="id", data_type="integer")]},
        )
        restored = FakeSource(
            "restored",
            {"users": 10},
            structures={"users": [FieldDescriptor(name="id", data_type="bigint")]},
        )
        sleep = AsyncMock()

        report = await verify(source, restored, tolerance_pct=1, retry_policy=_policy(3), sleep=sleep)

        assert report.failure.check == "structure"
        assert report.failure.unit == "users"
        assert source.structure_calls["users"] == 1
        assert restored.structure_calls["users"] == 1
        assert source.count_calls == {}
        sleep.assert_not_awaited()

    async def test_zero_retries_fails_on_first_mismatch(self) -> None:
        """With no retries the first mismatch is final."""
        source = FakeSource("source", {"users": 100})
        restored = FakeSource("restored", {"users": 90})

        report = await verify(source, restored, tolerance_pct=1, retry_policy=_policy(0), sleep=AsyncMock())

        assert report.units[0].attempts == 1
        assert not report.success


class TestBoundaries:
    async def test_zero_source_zero_restored_passes(self) -> None:
        """Two empty units pass even at tolerance 0."""
        source = FakeSource("source", {"empty": 0})
        restored = FakeSource("restored", {"empty": 0})

        report = await verify(source, restored, tolerance_pct=0, retry_policy=_policy(), sleep=AsyncMock())

        assert report.success
        assert report.units[0].status == CardinalityStatus.EXACT

    async def test_zero_source_nonzero_restored_fails(self) -> None:
        """Rows in an empty source unit always fail."""
        source = FakeSource("source", {"empty": 0})
        restored = FakeSource("restored", {"empty": 3})

        report = await verify(source, restored, tolerance_pct=100, retry_policy=_policy(1), sleep=AsyncMock())

        assert not report.success
        assert report.units[0].diff_pct == 100

    async def test_inclusive_tolerance_bound(self) -> None:
        """A difference equal to the tolerance passes."""
        source = FakeSource("source", {"users": 100})
        restored = FakeSource("restored", {"users": 101})

        report = await verify(source, restored, tolerance_pct=1, retry_policy=_policy(), sleep=AsyncMock())

        assert report.success
        assert report.units[0].status == CardinalityStatus.WITHIN_TOLERANCE

    async def test_empty_unit_sets_succeed(self) -> None:
        """Two empty namespaces reconcile."""
        report = await verify(
            FakeSource("source", {}), FakeSource("restored", {}),
            tolerance_pct=1, retry_policy=_policy(),
        )

        assert report.success
        assert report.format_report() == ": 0 unit(s) reconciled"

    async def test_summary_names_failure(self) -> None:
        """The summary names the failing unit and check."""
        source = FakeSource("source", {"orders": 1000})
        restored = FakeSource("restored", {"orders": 1020})

        report = await verify(
            source, restored, tolerance_pct=1, retry_policy=_policy(0), dataset="shop", sleep=AsyncMock()
        )

        summary = report.summary()
        assert summary["dataset"] == "shop"
        assert summary["success"] is False
        assert summary["failed_unit"] == "orders"
        assert summary["failed_check"] == "cardinality"
