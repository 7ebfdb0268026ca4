"""
Async hygiene tools.
Named, supervised background tasks owned by one component and cancelled with it.
"""

import asyncio
import logging
from typing import Awaitable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class TaskSupervisor:
    """
    Registry of named background tasks for a single owner.

    Spawning under a name that is still running cancels the previous task first,
    so each name holds at most one live task.
    """

    def __init__(self, owner: str):
        self.owner = owner
        self._tasks: Dict[str, asyncio.Task] = {}

    def spawn(self, coro: Awaitable[T], *, name: str) -> "asyncio.Task[T]":
        """
        Start `coro` as a supervised task.

        Args:
            coro: The coroutine to run
            name: Slot name, unique within this owner

        Returns:
            The created task
        """
        self.cancel(name)

        async def _supervised_wrapper():
            try:
                return await coro
            except asyncio.CancelledError:
                logger.debug(f"[async_tools] {self.owner}:{name} cancelled")
                raise
            except Exception as e:
                logger.error(f"[async_tools] {self.owner}:{name} failed: {e}")
                raise

        task = asyncio.create_task(_supervised_wrapper(), name=f"{self.owner}:{name}")
        self._tasks[name] = task
        task.add_done_callback(lambda t: self._forget(name, t, coro))
        return task

    def _forget(self, name: str, task: asyncio.Task, coro: Awaitable) -> None:
        if self._tasks.get(name) is task:
            del self._tasks[name]
        if task.cancelled():
            # no-op unless the task was cancelled before it started
            if hasattr(coro, "close"):
                coro.close()
        else:
            task.exception()  # logged by the wrapper; mark as retrieved

    def get(self, name: str) -> Optional[asyncio.Task]:
        return self._tasks.get(name)

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def cancel(self, name: str) -> bool:
        """Cancel the task in `name` unless it is the caller itself. Returns True if one was cancelled."""
        task = self._tasks.pop(name, None)
        if task is None or task.done():
            return False
        if task is asyncio.current_task():
            # a task cancelling its own slot just gives the slot up
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every task and wait for them to finish."""
        current = asyncio.current_task()
        tasks = [t for t in self._tasks.values() if t is not current]
        self._tasks.clear()
        if not tasks:
            return

        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(f"[async_tools] {self.owner}: {len(tasks)} tasks shut down")

    def __len__(self) -> int:
        return sum(1 for t in self._tasks.values() if not t.done())
