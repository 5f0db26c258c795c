"""Tracks the asyncio tasks started by a store.

The router drain loop and delayed dispatch timers run as tasks owned by the
store. Tracking them lets callers wait for all outstanding work to settle.
"""

import asyncio
from abc import ABC, abstractmethod
from functools import partial
import logging
from typing import Any, Coroutine

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskService(ABC):
    """Service for tracking and waiting for store owned tasks."""

    @abstractmethod
    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new task.

        Args:
            coro: The coroutine to run as a task
            name: Optional task name used in debug output

        Returns:
            The created task
        """

    @abstractmethod
    async def block_till_done(self) -> None:
        """Wait until no tracked tasks remain.

        Tasks created while waiting, such as a timer that dispatches an
        event which starts a new drain loop, are waited on as well.
        """

    @abstractmethod
    def get_num_active_tasks(self) -> int:
        """Get the number of tracked tasks that have not finished."""


class TaskServiceImpl(TaskService):
    """Default TaskService backed by the running event loop."""

    def __init__(self) -> None:
        self._active_tasks: set[asyncio.Task[Any]] = set()

    def create_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(partial(self._task_done, self._active_tasks))
        return task

    def _task_done(
        self, task_set: set[asyncio.Task[Any]], task: asyncio.Task[Any]
    ) -> None:
        try:
            task.result()
        except asyncio.CancelledError:
            _LOGGER.debug("Task %s was cancelled", task.get_name())
        except Exception as e:
            _LOGGER.error("Task %s failed: %s", task.get_name(), e)
        finally:
            task_set.discard(task)

    async def block_till_done(self) -> None:
        while active_tasks := list(self._active_tasks):
            _LOGGER.debug("Waiting for %d tasks to complete", len(active_tasks))
            await asyncio.gather(*active_tasks, return_exceptions=True)
            # Let done callbacks remove the finished tasks
            await asyncio.sleep(0)

    def get_num_active_tasks(self) -> int:
        return len(self._active_tasks)
