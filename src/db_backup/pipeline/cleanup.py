"""Scoped cleanup guard for acquired resources.

Every resource a run acquires (in-container dump files, local staging
files, a started verification target, a restored namespace, archives,
remote temp files) is registered here at acquisition time.  ``close()``
releases them in reverse order, logs failures instead of raising them,
and does nothing when called again.

Usage:
    from db_backup.pipeline.cleanup import CleanupStack

    async with CleanupStack() as cleanup:
        await surface.start()
        cleanup.push("stop verification target", surface.stop)
        ...
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import AsyncExitStack
from typing import Any

logger = logging.getLogger(__name__)


class CleanupStack:
    """Best-effort LIFO release of registered resources.

    Built on ``contextlib.AsyncExitStack``; each callback is wrapped so
    a failing release is logged and the remaining ones still run.
    Cancellation arriving while releases run is deferred until every
    release has finished, then re-raised.
    """

    def __init__(self) -> None:
        self._stack = AsyncExitStack()
        self._closed = False
        self._registered = 0
        self.released: list[str] = []
        self.failures: list[str] = []

    def __len__(self) -> int:
        return self._registered

    @property
    def closed(self) -> bool:
        return self._closed

    def push(
        self,
        description: str,
        callback: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        """Register ``await callback(*args, **kwargs)`` for release."""
        if self._closed:
            raise RuntimeError("Cannot register cleanup on a closed CleanupStack")

        async def release() -> None:
            try:
                await callback(*args, **kwargs)
            except Exception as e:
                logger.warning(f"Cleanup step '{description}' failed: {e}")
                self.failures.append(description)
            else:
                logger.debug(f"Released: {description}")
                self.released.append(description)

        self._stack.push_async_callback(release)
        self._registered += 1

    def push_sync(self, description: str, callback: Callable[..., Any], *args: Any) -> None:
        """Register a plain function for release."""

        async def call() -> None:
            callback(*args)

        self.push(description, call)

    async def close(self) -> None:
        """Release everything registered, newest first.  Idempotent."""
        if self._closed:
            return
        self._closed = True
        await self._shielded(self._stack.aclose())

    @staticmethod
    async def _shielded(coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        cancelled = False
        while not task.done():
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                cancelled = True
                if task.done():
                    break
                logger.warning("Cancellation requested during cleanup; finishing cleanup first")
        if cancelled:
            raise asyncio.CancelledError()
        task.result()

    async def __aenter__(self) -> "CleanupStack":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
