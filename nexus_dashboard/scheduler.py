"""Cancellable periodic trigger for data refreshes."""

from __future__ import annotations

import asyncio
import inspect
from enum import Enum
from typing import Any, Awaitable, Callable

import logfire

RefreshCallback = Callable[[], "Awaitable[Any] | Any"]


class SchedulerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    STOPPED = "stopped"


class Scheduler:
    """Fires ``callback`` every ``period`` seconds on the running event loop.

    The scheduler never waits for the callback: an awaitable result is run as
    its own task, so overlap handling belongs to whatever the callback drives.
    """

    def __init__(self, callback: RefreshCallback):
        self.callback = callback
        self.period = 0.0
        self.state = SchedulerState.IDLE
        self._timer: asyncio.Task | None = None
        self._firings: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def start(self, period_seconds: float) -> None:
        """Arm (or re-arm) the timer; a period of 0 means manual triggering only."""
        if period_seconds < 0:
            raise ValueError("period_seconds must not be negative")

        self._cancel_timer()
        self.period = float(period_seconds)
        if not period_seconds:
            self.state = SchedulerState.IDLE
            logfire.info("Periodic refresh disabled")
            return

        self._timer = asyncio.get_running_loop().create_task(self._tick(self.period))
        self.state = SchedulerState.SCHEDULED
        logfire.info("Refresh scheduled every {period}s", period=self.period)

    def stop(self) -> None:
        self._cancel_timer()
        self.state = SchedulerState.STOPPED

    def fire(self) -> None:
        """Invoke the callback now, without waiting for it to finish."""
        result = self.callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._firings.add(task)
            task.add_done_callback(self._firing_done)

    async def aclose(self) -> None:
        """Stop the timer and cancel firings that are still running."""
        self.stop()
        pending = list(self._firings)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._firings.clear()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _tick(self, period: float) -> None:
        while True:
            await asyncio.sleep(period)
            try:
                self.fire()
            except Exception:
                logfire.exception("Refresh trigger raised")

    def _firing_done(self, task: asyncio.Task) -> None:
        self._firings.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logfire.error("Scheduled refresh failed: {error}", error=repr(exc))
