"""Bounded retry with a fixed delay.

Keeps retry semantics out of business logic: callers describe *what* to
attempt and which failures are transient, ``with_retry`` decides *how
often*.

Usage:
    from db_backup.retry import RetryPolicy, with_retry

    policy = RetryPolicy(count=3, delay_seconds=5)
    result = await with_retry(check_counts, policy, retry_on=(CardinalityToleranceExceeded,))
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy(BaseModel):
    """Bounded retry count plus a fixed delay between attempts.

    ``count`` is the number of *retries* after the first attempt, so an
    operation is attempted at most ``count + 1`` times.

    Example:
        >>> RetryPolicy().max_attempts
        4
    """

    count: int = Field(default=3, ge=0)
    delay_seconds: float = Field(default=5.0, ge=0)

    @property
    def max_attempts(self) -> int:
        return self.count + 1


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    retry_on: tuple[type[BaseException], ...],
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Only exceptions listed in ``retry_on`` trigger a retry; anything else
    propagates immediately.  After the last attempt the final exception is
    re-raised unchanged.

    Args:
        operation: Zero-argument coroutine factory, invoked fresh each attempt.
        policy: Retry count and delay.
        retry_on: Exception types considered transient.
        description: Label used in log messages.
        sleep: Delay function (injectable for tests).

    Returns:
        The first successful result of ``operation``.
    """

    def _log_retry(retry_state: RetryCallState) -> None:
        logger.warning(
            f"{description} failed (attempt {retry_state.attempt_number}/{policy.max_attempts}): "
            f"{retry_state.outcome.exception()}; retrying in {policy.delay_seconds:g}s"
        )

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_fixed(policy.delay_seconds),
        retry=retry_if_exception_type(retry_on),
        sleep=sleep,
        before_sleep=_log_retry,
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except retry_on as e:
        logger.error(f"{description} failed after {policy.max_attempts} attempt(s): {e}")
        raise
