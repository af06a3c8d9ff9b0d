"""
TaskRegistry for gateway background task lifecycle management.

Fire-and-forget work started from synchronous code paths (broker status
persistence, teardown after a grace period) is registered here so shutdown
can cancel and await it within a bounded time.
"""

import asyncio
import itertools
from collections.abc import Coroutine
from typing import Any

from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class TaskMetadata:
    """Metadata for tracked asyncio.Tasks."""

    def __init__(self, task: asyncio.Task[Any], task_name: str, task_type: str = "unknown"):
        self.task = task
        self.task_name = task_name
        self.task_type = task_type
        self.created_at = asyncio.get_running_loop().time()

    def __repr__(self):
        status = "done" if self.task.done() else "pending"
        return f"TaskMetadata({self.task_name}, {self.task_type}, {status})"


class TaskRegistry:
    """Tracks every background task the gateway creates outside request handlers."""

    def __init__(self):
        self._active_tasks: dict[asyncio.Task[Any], TaskMetadata] = {}
        self._task_names: dict[str, asyncio.Task[Any]] = {}
        self._suffix = itertools.count(1)
        self._shutdown_in_progress = False

    def register_task(
        self, coro: Coroutine[Any, Any, Any], task_name: str, task_type: str = "unknown"
    ) -> asyncio.Task[Any]:
        """
        Register and create a tracked asyncio.Task.

        Args:
            coro: The coroutine to wrap as a task
            task_name: Human-readable identifier for this task
            task_type: Category for task management (status, teardown, lifecycle)

        Returns:
            The created asyncio.Task that is now tracked

        Raises:
            RuntimeError: If the registry is shutting down
        """
        if self._shutdown_in_progress:
            coro.close()
            logger.warning("Attempting to register task during shutdown - denied", task_name=task_name)
            raise RuntimeError("Task registration denied during shutdown")

        if task_name in self._task_names:
            task_name = f"{task_name}_{next(self._suffix)}"

        task: asyncio.Task[Any] = asyncio.create_task(coro, name=task_name)
        self._active_tasks[task] = TaskMetadata(task, task_name, task_type)
        self._task_names[task_name] = task

        def task_completion_callback(completed_task: asyncio.Task[Any]) -> None:
            self._active_tasks.pop(completed_task, None)
            if self._task_names.get(task_name) is completed_task:
                del self._task_names[task_name]
            if not completed_task.cancelled() and completed_task.exception() is not None:
                logger.error(
                    "Background task failed",
                    task_name=task_name,
                    task_type=task_type,
                    error=str(completed_task.exception()),
                )

        task.add_done_callback(task_completion_callback)
        logger.debug("Registered task", task_name=task_name, task_type=task_type)
        return task

    async def shutdown_all(self, timeout: float = 5.0) -> bool:
        """
        Cancel every tracked task and wait for them to finish.

        Args:
            timeout: Upper bound for waiting on cancelled tasks

        Returns:
            True if every task finished within the timeout
        """
        if self._shutdown_in_progress:
            logger.warning("Shutdown already in progress")
            return False
        self._shutdown_in_progress = True

        tasks = [task for task in self._active_tasks if not task.done()]
        for task in tasks:
            task.cancel()
        logger.info("Cancelled active tasks - awaiting completion", cancelled_count=len(tasks))

        success = True
        if tasks:
            try:
                await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout)
            except TimeoutError:
                success = False
                logger.error("TaskRegistry shutdown timeout", timeout=timeout)

        remaining = [m.task_name for m in self._active_tasks.values() if not m.task.done()]
        if remaining:
            logger.warning("Tasks still active after shutdown", active_tasks=remaining)
        self._active_tasks.clear()
        self._task_names.clear()
        self._shutdown_in_progress = False
        return success and not remaining

    def list_active_tasks(self) -> list[TaskMetadata]:
        return [m for m in self._active_tasks.values() if not m.task.done()]

    def get_registry_info(self) -> dict[str, Any]:
        """Return registry state information."""
        active = len(self.list_active_tasks())
        return {
            "active_tasks": active,
            "completed_tasks": len(self._active_tasks) - active,
            "registry_shutdown_in_progress": self._shutdown_in_progress,
        }
