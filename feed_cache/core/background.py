"""
Background task runner for fire-and-forget work.

Refreshes and best-effort writes are spawned here instead of being awaited by the
caller. Every task gets its own error boundary: failures are logged at the
level chosen by the spawner and never reach the caller's await chain.
"""
import asyncio
import logging
from typing import Any, Coroutine, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundTaskRunner:
    """
    Tracks detached asyncio tasks so they are neither garbage collected mid-flight
    nor left dangling at shutdown.
    """

    def __init__(self, name: str = "background"):
        self.name = name
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        name: Optional[str] = None,
        error_level: int = logging.DEBUG,
    ) -> Optional[asyncio.Task]:
        """
        Schedule ``coro`` on the running loop and return immediately.

        Args:
            coro: The coroutine to run.
            name: Task name used in log messages.
            error_level: Logging level for failures of this task.

        Returns:
            The created task, or ``None`` if the runner is closed.
        """
        if self._closed:
            logger.debug(f"{self.name}: runner closed, dropping task {name}")
            coro.close()
            return None
        task = asyncio.create_task(self._guarded(coro, name or "task", error_level), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guarded(self, coro: Coroutine[Any, Any, Any], name: str, error_level: int) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            logger.debug(f"{self.name}: task {name} cancelled")
            raise
        except Exception as e:
            logger.log(error_level, f"{self.name}: task {name} failed: {e}", exc_info=error_level >= logging.WARNING)
            return None

    async def drain(self) -> None:
        """Wait until every task spawned so far (and any they spawn) has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding tasks and refuse new ones."""
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.debug(f"{self.name}: closed, cancelled {len(tasks)} pending tasks")
