import asyncio
import logging
from typing import Any, Coroutine


class TaskSpawner:
    """
    Spawns and tracks the background tasks of the proxy: the receive loop
    of a client connection and the native transaction task of every open
    top-level transaction.

    It ensures that:
    - all spawned tasks are tracked until completion
    - unhandled exceptions inside tasks are logged
    - completed tasks are automatically removed from the internal registry

    The class does not impose any scheduling policy; it simply delegates
    execution to the running event loop unless one is given.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None):
        self._loop = loop
        self._tasks: set[asyncio.Task[Any]] = set()
        self._logger = logging.getLogger("core.helpers.spawn")

    @property
    def remaining_tasks(self) -> int:
        """Return the number of tasks spawned but not yet completed."""
        return len(self._tasks)

    def on_done(self, task: asyncio.Task[Any]) -> None:
        """
        Callback executed when a spawned task completes.

        If the task raised an exception, it is logged. The task is then removed
        from the internal tracking set.
        """
        if not task.cancelled() and (ex := task.exception()):
            self._logger.error(
                f"Error occurred in task {task.get_name()}: {str(ex)}",
                exc_info=ex
            )

        self._tasks.discard(task)

    def spawn(
        self, coro: Coroutine[Any, Any, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """
        Spawn a coroutine as a background task and track its lifecycle.

        The task is registered, given a completion callback, and scheduled
        immediately.
        """
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(coro, name=name)
        task.add_done_callback(self.on_done)
        self._tasks.add(task)
        return task

    async def cancel_all(self) -> None:
        """Cancel every tracked task and wait until they are done."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
