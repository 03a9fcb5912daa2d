"""Single-flight helper: concurrent callers share one in-flight outcome."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Run at most one operation at a time and share its result.

    The first caller starts the operation; callers arriving while it runs
    attach to the same task and receive the same value or exception. The
    slot is emptied before any waiter resumes. A waiter that gets
    cancelled does not cancel the shared operation.
    """

    def __init__(self) -> None:
        self._pending: asyncio.Task[T] | None = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    async def run(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self._pending is None:
            self._pending = asyncio.create_task(self._execute(operation))
            self._pending.add_done_callback(_consume_exception)
        return await asyncio.shield(self._pending)

    async def _execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        try:
            return await operation()
        finally:
            if self._pending is asyncio.current_task():
                self._pending = None

    def cancel(self) -> None:
        """Cancel the in-flight operation, if any."""
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None


def _consume_exception(task: asyncio.Task[object]) -> None:
    # Waiters may all have been cancelled; mark the exception as retrieved.
    if not task.cancelled():
        task.exception()
