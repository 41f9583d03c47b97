"""Tests for bounded retry.

Verifies that ``with_retry``:
- Returns the first successful result
- Attempts an operation at most ``count + 1`` times
- Sleeps ``delay_seconds`` between attempts, never after the last one
- Propagates exceptions outside ``retry_on`` immediately
"""

from unittest.mock import AsyncMock

import pytest

from db_backup.retry import RetryPolicy, with_retry


class Transient(Exception):
    pass


class Fatal(Exception):
    pass


class TestRetryPolicy:
    def test_defaults(self) -> None:
        """Three retries five seconds apart by default."""
        policy = RetryPolicy()
        assert policy.count == 3
        assert policy.delay_seconds == 5
        assert policy.max_attempts == 4

    def test_zero_retries_means_one_attempt(self) -> None:
        """count=0 still makes one attempt."""
        assert RetryPolicy(count=0).max_attempts == 1

    def test_negative_count_rejected(self) -> None:
        """A negative retry count fails validation."""
        with pytest.raises(ValueError):
            RetryPolicy(count=-1)


class TestWithRetry:
    async def test_first_success_returns_immediately(self) -> None:
        """A first success never sleeps."""
        operation = AsyncMock(return_value="ok")
        sleep = AsyncMock()

        result = await with_retry(operation, RetryPolicy(), retry_on=(Transient,), sleep=sleep)

        assert result == "ok"
        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_succeeds_after_transient_failures(self) -> None:
        """Transient failures are retried after the fixed delay."""
        operation = AsyncMock(side_effect=[Transient("1"), Transient("2"), "ok"])
        sleep = AsyncMock()

        result = await with_retry(
            operation, RetryPolicy(count=3, delay_seconds=5), retry_on=(Transient,), sleep=sleep
        )

        assert result == "ok"
        assert operation.await_count == 3
        assert sleep.await_count == 2
        sleep.assert_awaited_with(5)

    async def test_exhaustion_reraises_last_error(self) -> None:
        """The last error is re-raised once attempts run out."""
        operation = AsyncMock(side_effect=[Transient("a"), Transient("b"), Transient("c")])
        sleep = AsyncMock()

        with pytest.raises(Transient, match="c"):
            await with_retry(
                operation, RetryPolicy(count=2, delay_seconds=1), retry_on=(Transient,), sleep=sleep
            )

        assert operation.await_count == 3
        # No sleep after the final attempt
        assert sleep.await_count == 2

    async def test_non_retryable_error_propagates_immediately(self) -> None:
        """Errors outside retry_on are not retried."""
        operation = AsyncMock(side_effect=Fatal("boom"))
        sleep = AsyncMock()

        with pytest.raises(Fatal):
            await with_retry(operation, RetryPolicy(count=5), retry_on=(Transient,), sleep=sleep)

        assert operation.await_count == 1
        sleep.assert_not_awaited()

    async def test_each_retry_is_logged(self, caplog) -> None:
        """Every retry logs the attempt number, error and delay."""
        operation = AsyncMock(side_effect=[Transient("count mismatch"), "ok"])

        await with_retry(
            operation,
            RetryPolicy(count=1, delay_seconds=2),
            retry_on=(Transient,),
            description="Record count check for users",
            sleep=AsyncMock(),
        )

        assert "Record count check for users failed (attempt 1/2): count mismatch" in caplog.text
        assert "retrying in 2s" in caplog.text
