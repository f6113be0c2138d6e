from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TickScheduler:
    """
    Single-slot timer for the next run-loop tick.
    At most one continuation is pending; scheduling again replaces it, and
    ``cancel`` guarantees a stale tick never fires after a state change.
    """

    def __init__(self, callback: Callable[[], Awaitable[None]]):
        self._callback = callback
        self._handle: Optional[asyncio.TimerHandle] = None
        self._tasks: set[asyncio.Task] = set()
        self.delay_ms: Optional[float] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def schedule(self, delay_ms: float) -> None:
        self.cancel()
        loop = asyncio.get_running_loop()
        self.delay_ms = max(0.0, delay_ms)
        self._handle = loop.call_later(self.delay_ms / 1000.0, self._fire)
        logger.debug(f"⏱️ Next tick scheduled in {self.delay_ms / 1000:.2f}s")

    def cancel(self) -> bool:
        if self._handle is None:
            return False
        self._handle.cancel()
        self._handle = None
        self.delay_ms = None
        logger.debug("Pending tick cancelled")
        return True

    def _fire(self) -> None:
        self._handle = None
        self.delay_ms = None
        task = asyncio.create_task(self._callback())
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.debug("Scheduled tick cancelled while running")
            return
        if task.exception() is not None:
            logger.error(f"❌ Scheduled tick raised: {task.exception()}")

    async def drain(self) -> None:
        """Wait for ticks that already fired to finish."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
