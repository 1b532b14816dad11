"""Task supervisor - registry of in-flight background coroutines.

Agent episodes, main-conversation turns and periodic jobs are spawned here
instead of with a bare ``asyncio.create_task``:
- A strong reference is kept while the task runs
- A terminal exception is logged exactly once, then dropped
- ``in_flight()`` / ``names()`` answer "what is running right now"
- ``shutdown()`` cancels and awaits everything still running
"""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, Optional

from .logging import get_logger, log_error

logger = get_logger()


class TaskSupervisor:
    """Owns background tasks for one process (or one test)."""

    def __init__(self, bus=None) -> None:
        self._tasks: dict[asyncio.Task, str] = {}
        self._bus = bus

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks[task] = name
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        name = self._tasks.pop(task, task.get_name())
        if task.cancelled():
            logger.debug("Task %s cancelled", name)
            return
        exc = task.exception()
        if exc is not None:
            log_error(f"Background task {name} failed", exc=exc, bus=self._bus)

    def in_flight(self) -> int:
        return len(self._tasks)

    def names(self) -> list[str]:
        return sorted(self._tasks.values())

    def find(self, name: str) -> Optional[asyncio.Task]:
        for task, task_name in self._tasks.items():
            if task_name == name:
                return task
        return None

    async def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Wait until no supervised task is running, including ones spawned meanwhile."""
        async def _drain():
            while self._tasks:
                await asyncio.wait(list(self._tasks))
        await asyncio.wait_for(_drain(), timeout=timeout)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
