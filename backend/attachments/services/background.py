"""Fire-and-forget task runner for post-upload work.

Tasks are never awaited by the request path. Their outcome is observable only
through the file matrix; failures are logged here so no task exception goes
unobserved.
"""
import asyncio
import logging
from typing import Coroutine

logger = logging.getLogger(__name__)


def safe_error_message(e: BaseException, fallback: str = "Processing interrupted") -> str:
    """Non-empty error text for an exception (some stringify to '')."""
    msg = str(e).strip()
    if not msg:
        msg = f"{type(e).__name__}: {fallback}"
    return msg


class BackgroundTaskRunner:

    def __init__(self):
        self._tasks: set[asyncio.Task] = set()

    def submit(self, coro: Coroutine, name: str = "") -> asyncio.Task:
        task = asyncio.create_task(coro, name=name or None)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info(f"[background] task {task.get_name()} cancelled")
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[background] task {task.get_name()} failed: {safe_error_message(exc)}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every submitted task (including ones submitted meanwhile) settles."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*list(self._tasks), return_exceptions=True)
        self._tasks.clear()


background_tasks = BackgroundTaskRunner()
