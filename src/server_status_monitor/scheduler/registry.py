"""Registry of named, cancellable background tasks."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine, Hashable
from typing import Any

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Coroutine[Any, Any, None]]


class TaskRegistry:
    """Owns at most one running task per key.

    Callers only arm, cancel and query by key; task handles never leave
    the registry. A task that finishes on its own removes itself.

    Example:
        ```python
        timers = TaskRegistry("poll")
        timers.arm(target.id, lambda: poll_forever(target))
        timers.is_armed(target.id)  # True
        await timers.cancel(target.id)
        ```
    """

    def __init__(self, name: str = "tasks") -> None:
        self.name = name
        self._tasks: dict[Hashable, asyncio.Task[None]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def keys(self) -> list[Hashable]:
        """Return the keys with a live task."""
        return list(self._tasks)

    def is_armed(self, key: Hashable) -> bool:
        """Return True if a live task exists for ``key``."""
        task = self._tasks.get(key)
        return task is not None and not task.done()

    def arm(self, key: Hashable, factory: TaskFactory) -> None:
        """Start a task for ``key``, cancelling any task already armed for it.

        The new task only runs ``factory`` once the cancelled one has
        finished, so two tasks for one key never overlap.
        """
        previous = self._tasks.pop(key, None)
        if previous is not None and not previous.done():
            previous.cancel()
            logger.debug("Re-armed %s task %s", self.name, key)
        else:
            previous = None

        task = asyncio.create_task(self._run_after(previous, factory), name=f"{self.name}:{key}")
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._on_done(k, t))

    @staticmethod
    async def _run_after(previous: asyncio.Task[None] | None, factory: TaskFactory) -> None:
        if previous is not None:
            await asyncio.wait([previous])
        await factory()

    def _on_done(self, key: Hashable, task: asyncio.Task[None]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("%s task %s crashed: %s", self.name, key, error, exc_info=error)

    async def cancel(self, key: Hashable) -> bool:
        """Cancel the task for ``key``.

        Returns:
            True if a task was cancelled, False for an unknown key.
        """
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        if task is asyncio.current_task():
            # A task cancelling itself just drops out of the registry
            return True
        task.cancel()
        await asyncio.wait([task])
        return True

    async def cancel_all(self) -> int:
        """Cancel every task and wait for them to finish.

        Returns:
            Number of tasks cancelled.
        """
        current = asyncio.current_task()
        tasks = [t for t in self._tasks.values() if t is not current]
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
            logger.info("Cancelled %d %s task(s)", len(tasks), self.name)
        return len(tasks)
