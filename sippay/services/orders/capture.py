"""Delayed auto-capture tasks for authorize-only payments.

At most one task exists per transaction id. Arming a new one supersedes the
previous task, and a user cancel removes it before the capture can fire.
"""

import asyncio
from collections.abc import Awaitable, Callable

from sippay.common.config import settings
from sippay.common.logging import logger


CaptureCallback = Callable[[str], Awaitable[None]]


class CaptureScheduler:
    """Owns the pending capture tasks, keyed by transaction id."""

    def __init__(self, delay_seconds: float | None = None) -> None:
        self.delay_seconds = settings.capture_delay_seconds if delay_seconds is None else delay_seconds
        self._tasks: dict[str, asyncio.Task] = {}
        self._firing: set[str] = set()

    def arm(self, transaction_id: str, callback: CaptureCallback, delay_seconds: float | None = None) -> asyncio.Task:
        """Schedule `callback(transaction_id)` after the delay, replacing any prior task."""

        previous = self._tasks.pop(transaction_id, None)
        if previous is not None and not previous.done():
            if transaction_id in self._firing:
                # Already mid-capture; capture is idempotent, so let it finish.
                logger.info("capture_task_superseded_while_firing transaction_id=%s", transaction_id)
            else:
                previous.cancel()
                logger.info("capture_task_superseded transaction_id=%s", transaction_id)
        delay = self.delay_seconds if delay_seconds is None else delay_seconds
        task = asyncio.create_task(
            self._run(transaction_id, callback, delay), name=f"capture:{transaction_id}"
        )
        self._tasks[transaction_id] = task
        logger.info("capture_task_armed transaction_id=%s delay_seconds=%s", transaction_id, delay)
        return task

    async def _run(self, transaction_id: str, callback: CaptureCallback, delay: float) -> None:
        await asyncio.sleep(delay)
        self._firing.add(transaction_id)
        try:
            await callback(transaction_id)
        except Exception:
            logger.exception("capture_task_failed transaction_id=%s", transaction_id)
        finally:
            self._firing.discard(transaction_id)
            if self._tasks.get(transaction_id) is asyncio.current_task():
                del self._tasks[transaction_id]

    def pending(self, transaction_id: str) -> bool:
        task = self._tasks.get(transaction_id)
        return task is not None and not task.done()

    async def cancel(self, transaction_id: str) -> bool:
        """Stop the pending capture for `transaction_id`.

        Returns True when a sleeping task was cancelled before it fired. A task
        that already started capturing is awaited instead, so the caller acts
        on the post-capture state.
        """

        task = self._tasks.get(transaction_id)
        if task is None or task.done() or task is asyncio.current_task():
            return False
        if transaction_id in self._firing:
            logger.info("capture_task_already_firing transaction_id=%s", transaction_id)
            await asyncio.wait({task})
            return False
        del self._tasks[transaction_id]
        task.cancel()
        await asyncio.wait({task})
        logger.info("capture_task_cancelled transaction_id=%s", transaction_id)
        return True

    async def shutdown(self) -> None:
        tasks = [task for task in self._tasks.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
