"""Debounced execution of a coroutine on the running event loop."""

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Run ``action`` once, ``delay`` seconds after the last trigger().

    Each trigger() restarts the timer, so a burst of triggers collapses
    into a single call. An action that has already started is not
    interrupted by a later trigger; the later trigger schedules another run.
    """

    def __init__(self, delay: float, action: Callable[[], Awaitable[None]]) -> None:
        self.delay = delay
        self._action = action
        self._timer: asyncio.Task[None] | None = None
        self._running: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> bool:
        return self._timer_pending() or bool(self._running)

    def _timer_pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def trigger(self) -> None:
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._fire_later())

    def cancel(self) -> None:
        """Drop the pending run and stop any run in progress (teardown)."""
        self._cancel_timer()
        for task in self._running:
            task.cancel()
        self._running.clear()

    def _cancel_timer(self) -> None:
        timer = self._timer
        if timer is not None and not timer.done():
            timer.cancel()
        self._timer = None

    async def wait(self) -> None:
        """Wait until no run is pending, including runs re-triggered meanwhile."""
        while self.pending:
            tasks = set(self._running)
            if self._timer is not None and self._timer_pending():
                tasks.add(self._timer)
            await asyncio.wait(tasks)

    async def _fire_later(self) -> None:
        await asyncio.sleep(self.delay)
        task = asyncio.get_running_loop().create_task(self._run())
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _run(self) -> None:
        try:
            await self._action()
        except Exception:
            logger.exception("Debounced action failed")
