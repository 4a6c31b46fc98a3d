"""
Async Task Registry for tracking background tasks.

Connection writers and push deliveries run as named tasks so that failures
are logged with context and shutdown can cancel whatever is still running.
"""

import asyncio
import itertools
import logging
from typing import Any, Coroutine, Dict, Set

logger = logging.getLogger("cc_caller.task_registry")


class TaskRegistry:
    """
    Registry for tracking and managing async tasks.

    Features:
    - Track all background tasks with names
    - Log failures with context
    - Graceful shutdown with timeout
    """

    def __init__(self):
        self._tasks: Dict[str, asyncio.Task] = {}
        self._failed_tasks: Set[str] = set()
        self._completed_count: int = 0
        self._seq = itertools.count(1)

    def register(
        self,
        name: str,
        coro: Coroutine[Any, Any, Any],
    ) -> asyncio.Task:
        """
        Register and start an async task.

        Args:
            name: Task name for tracking (suffixed if already in use)
            coro: Coroutine to execute

        Returns:
            The created asyncio.Task
        """
        if name in self._tasks:
            name = f"{name}#{next(self._seq)}"
        task = asyncio.create_task(coro, name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._on_task_complete(name, t))
        logger.debug(f"Task registered: {name}")
        return task

    def _on_task_complete(self, name: str, task: asyncio.Task) -> None:
        """Handle task completion callback."""
        self._tasks.pop(name, None)
        self._completed_count += 1

        if task.cancelled():
            logger.debug(f"Task '{name}' was cancelled")
            return

        exc = task.exception()
        if exc:
            self._failed_tasks.add(name)
            logger.error(f"Task '{name}' failed with exception: {exc}", exc_info=exc)

    @property
    def active_count(self) -> int:
        """Number of currently active tasks."""
        return len(self._tasks)

    @property
    def failed_count(self) -> int:
        """Number of tasks that failed with exceptions."""
        return len(self._failed_tasks)

    @property
    def completed_count(self) -> int:
        """Total number of completed tasks."""
        return self._completed_count

    def get_failed_task_names(self) -> Set[str]:
        """Get set of failed task names."""
        return set(self._failed_tasks)

    async def shutdown(self, timeout: float = 5.0) -> None:
        """
        Cancel all tasks and wait for them to finish.

        Args:
            timeout: Maximum time to wait for tasks to complete
        """
        if not self._tasks:
            logger.debug("No active tasks to shutdown")
            return

        tasks = list(self._tasks.values())
        logger.info(f"Shutting down {len(tasks)} active tasks (timeout={timeout}s)")

        for task in tasks:
            task.cancel()

        try:
            await asyncio.wait_for(
                asyncio.gather(*tasks, return_exceptions=True),
                timeout=timeout
            )
        except asyncio.TimeoutError:
            remaining = len([t for t in tasks if not t.done()])
            logger.warning(f"Shutdown timeout: {remaining} tasks still running")

        logger.info(f"Task registry shutdown complete. Failed tasks: {len(self._failed_tasks)}")
