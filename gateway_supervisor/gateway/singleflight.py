"""Single-flight execution: one in-flight call per key, shared by all callers."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any


class SingleFlight:
    """
    Deduplicate concurrent async calls by key.

    The first caller for a key starts the operation as a task; every caller,
    the first included, awaits that task through a shield. Cancelling one
    caller only abandons its own wait, and the others still get the result
    (or exception). Once the task settles the key is free again.
    """

    def __init__(self):
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    async def do(self, key: str, fn: Callable[[], Awaitable[Any]]) -> Any:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fn())
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._release(key, done))
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark retrieved so a failure nobody is left awaiting isn't reported.
        if not task.cancelled():
            task.exception()
