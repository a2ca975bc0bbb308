"""In-process runner for work that happens after a response is sent.

Webhook follow-up processing and post-install webhook registration are
fire-and-forget: the HTTP outcome is already decided when they start.
Each submitted coroutine becomes an asyncio task whose result terminates
in the log. A failure here can never reach the request that scheduled it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


class DeferredTaskRunner:
    """Track fire-and-forget tasks so they are not garbage-collected mid-flight.

    asyncio only keeps weak references to running tasks; holding them in a
    set until completion is what keeps them alive.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        """Schedule `coro` on the running loop and return its task."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        logger.debug("Deferred task %s scheduled", name)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Deferred task %s cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Deferred task %s failed: %s",
                task.get_name(),
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
        else:
            logger.debug("Deferred task %s done", task.get_name())

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for all currently scheduled tasks, up to `timeout` seconds."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)

    async def shutdown(self) -> None:
        """Cancel whatever is still running. Called on application shutdown."""
        tasks = set(self._tasks)
        if not tasks:
            return
        logger.info("Cancelling %d deferred task(s) on shutdown", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
