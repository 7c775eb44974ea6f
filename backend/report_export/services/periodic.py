"""Cancellable interval loop for the scheduler and cleanup ticks."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional, Union

import structlog

LOGGER = structlog.get_logger(__name__)

Tick = Callable[[], Union[Any, Awaitable[Any]]]


class PeriodicTask:
    """Run ``tick`` every ``interval`` seconds until stopped.

    Each tick is awaited before the next sleep starts, so two ticks of the
    same task never overlap. A tick that raises is logged and the loop keeps
    going. Tests drive :meth:`run_once` directly instead of sleeping.
    """

    def __init__(self, name: str, interval: float, tick: Tick):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self.interval = interval
        self._tick = tick
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Any:
        result = self._tick()
        if inspect.isawaitable(result):
            result = await result
        self.ticks += 1
        return result

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=f"periodic:{self.name}")
        LOGGER.info("periodic_task_started", task=self.name, interval=self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        LOGGER.info("periodic_task_stopped", task=self.name, ticks=self.ticks)

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.run_once()
            except Exception:
                LOGGER.exception("periodic_task_failed", task=self.name)


__all__ = ["PeriodicTask"]
