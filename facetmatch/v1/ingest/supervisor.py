"""
Supervision for detached background tasks.
"""

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class BackgroundSupervisor:
    """
    Owns fire-and-forget tasks spawned by request handlers.

    Tasks are strongly referenced until they finish, anything that escapes a
    task is logged, and ``drain`` waits for stragglers at shutdown.
    """

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()
        self.accepting = True

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        if not self.accepting:
            coro.close()
            raise RuntimeError("Supervisor is shutting down")

        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Background task spawned", extra={"task": name})
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Background task cancelled", extra={"task": task.get_name()})
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Background task failed",
                extra={"task": task.get_name(), "error": f"{exc.__class__.__name__}: {exc}"},
                exc_info=exc,
            )

    async def drain(self, timeout: float) -> None:
        """Wait up to ``timeout`` seconds for running tasks, then cancel the rest."""
        self.accepting = False
        if not self._tasks:
            return

        tasks = list(self._tasks)
        logger.info("Draining background tasks", extra={"pending": len(tasks)})
        _, still_running = await asyncio.wait(tasks, timeout=timeout)

        if still_running:
            logger.warning(
                "Cancelling background tasks after drain timeout",
                extra={"cancelled": len(still_running), "timeout_s": timeout},
            )
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)
