"""Task tracking service.

Reconciliation fans out per-node work as tracked tasks and schedules
notifications as background tasks that never block the control loop.
"""

import asyncio
from collections.abc import Coroutine, Iterable
from functools import partial
import logging
from typing import Any, TypeVar
from abc import ABC, abstractmethod

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []

_T = TypeVar("_T")


class TaskService(ABC):
    """Service for tracking and waiting for asynchronous tasks."""

    @abstractmethod
    def create_task(
        self, coro: Coroutine[Any, Any, _T], name: str | None = None
    ) -> asyncio.Task[_T]:
        """Create and track a task that is part of the current unit of work."""

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[Any, Any, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a fire-and-forget task.

        Failures of background tasks are logged and otherwise ignored.
        """

    @abstractmethod
    async def gather(self, coros: Iterable[Coroutine[Any, Any, _T]]) -> list[_T]:
        """Run coroutines as tracked tasks and return their results in order."""

    @abstractmethod
    async def block_till_done(self) -> None:
        """Wait for all active non-background tasks to complete."""

    @abstractmethod
    async def wait_for_background(self) -> None:
        """Wait for all background tasks to complete."""

    @abstractmethod
    def get_num_active_tasks(self) -> int:
        """Get the number of active non-background tasks."""


class TaskServiceImpl(TaskService):
    """Task service backed by the running asyncio event loop."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._active_tasks: set[asyncio.Task[Any]] = set()
        self._background_tasks: set[asyncio.Task[Any]] = set()

    def create_task(
        self, coro: Coroutine[Any, Any, _T], name: str | None = None
    ) -> asyncio.Task[_T]:
        """Create and track a task that is part of the current unit of work."""
        task = asyncio.create_task(coro, name=name)
        self._active_tasks.add(task)
        task.add_done_callback(self._active_tasks.discard)
        return task

    def create_background_task(
        self, coro: Coroutine[Any, Any, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a fire-and-forget task."""
        task = asyncio.create_task(coro, name=name)
        self._background_tasks.add(task)
        task.add_done_callback(partial(self._background_done, name))
        return task

    def _background_done(self, name: str | None, task: asyncio.Task[Any]) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            return
        if (err := task.exception()) is not None:
            _LOGGER.error("Background task %s failed: %s", name or task.get_name(), err)

    async def gather(self, coros: Iterable[Coroutine[Any, Any, _T]]) -> list[_T]:
        """Run coroutines as tracked tasks and return their results in order."""
        tasks = [self.create_task(coro) for coro in coros]
        if not tasks:
            return []
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

    async def block_till_done(self) -> None:
        """Wait for all active non-background tasks to complete."""
        active_tasks = list(self._active_tasks)
        if active_tasks:
            _LOGGER.debug("Waiting for %d tasks to complete", len(active_tasks))
            await asyncio.gather(*active_tasks, return_exceptions=True)
        else:
            await asyncio.sleep(0)

    async def wait_for_background(self) -> None:
        """Wait for all background tasks to complete."""
        background_tasks = list(self._background_tasks)
        if background_tasks:
            await asyncio.gather(*background_tasks, return_exceptions=True)
        else:
            await asyncio.sleep(0)

    def get_num_active_tasks(self) -> int:
        """Get the number of active non-background tasks."""
        return len(self._active_tasks)
