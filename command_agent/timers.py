"""Clock and cancellable timer primitives for the scheduler."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable

LOGGER = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class Clock:
    """Wall clock returning timezone-aware UTC instants."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class CancellableTask:
    """A one-shot or periodic callback that can be armed and disarmed."""

    def __init__(self, name: str, delay_seconds: float, callback: Callback, interval_seconds: float | None = None) -> None:
        self.name = name
        self.delay_seconds = delay_seconds
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._task: asyncio.Task[None] | None = None

    @property
    def armed(self) -> bool:
        return self._task is not None and not self._task.done()

    def arm(self) -> None:
        if self.armed:
            return
        self._task = asyncio.create_task(self._run(), name=self.name)

    def disarm(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def fire(self) -> None:
        """Run the callback once, now."""

        await self._callback()

    async def _run(self) -> None:
        await asyncio.sleep(max(self.delay_seconds, 0.0))
        if self.interval_seconds is None:
            await self._fire_logged()
            return
        while True:
            await self._fire_logged()
            await asyncio.sleep(self.interval_seconds)

    async def _fire_logged(self) -> None:
        try:
            await self.fire()
        except Exception:  # noqa: BLE001
            LOGGER.exception("Timer %s callback failed", self.name)


class AsyncioTimerFactory:
    """Creates armed timers on the running event loop."""

    def one_shot(self, name: str, delay_seconds: float, callback: Callback) -> CancellableTask:
        task = CancellableTask(name, delay_seconds, callback)
        task.arm()
        return task

    def periodic(self, name: str, interval_seconds: float, callback: Callback) -> CancellableTask:
        task = CancellableTask(name, interval_seconds, callback, interval_seconds=interval_seconds)
        task.arm()
        return task
