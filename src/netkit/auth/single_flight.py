"""Keyed single-flight execution for coroutines."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    """Run at most one operation per key at a time.

    The first caller for a key starts the operation as a task. Callers that
    arrive while it is in flight await the same task and receive the same
    result or exception. Waiters await through ``asyncio.shield``, so
    cancelling any one of them (including the caller that started it)
    detaches that caller without cancelling the operation.
    """

    def __init__(self):
        self._tasks: Dict[str, "asyncio.Task[Any]"] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def run(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Join the in-flight operation for ``key`` or start a new one.

        :param key: Slot key
        :param operation: Coroutine function started when the slot is free
        :return: The operation's result
        :raises Exception: Whatever the operation raised
        """
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(operation())
            self._tasks[key] = task
            task.add_done_callback(lambda done: self._release(key, done))
        else:
            logger.debug(f"Joining in-flight operation '{key}'")
        return await asyncio.shield(task)

    def _release(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        # Mark the exception retrieved when every waiter has detached
        if not task.cancelled():
            task.exception()
