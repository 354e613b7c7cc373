"""Shared in-flight work for concurrent callers of the same operation."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class SingleFlight:
    """Run at most one instance of an operation per key at a time.

    The first caller for a key starts the work as a task and publishes it;
    callers arriving while it is running await that same task and observe
    the same result or exception. Each waiter is shielded, so cancelling one
    caller never cancels the shared work. The task unpublishes itself when it
    finishes, so the next call after completion starts fresh.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task] = {}

    def in_flight(self, key: str = "default") -> bool:
        return key in self._tasks

    async def do(self, fn: Callable[[], Awaitable[T]], key: str = "default") -> T:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._tasks[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        # Mark the exception retrieved; waiters still receive it via the shield
        if not task.cancelled():
            task.exception()
