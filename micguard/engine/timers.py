"""Cancellable single-shot and repeating timers on an asyncio-style scheduler."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Protocol


logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """The subset of `asyncio.AbstractEventLoop` the engine relies on."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> Cancellable: ...

    def time(self) -> float: ...


class TimerSlot:
    """Holds at most one pending timer.

    Starting the slot always cancels whatever it held before, so a stale
    callback can never fire after it has been superseded.
    """

    def __init__(self, scheduler: Scheduler, name: str):
        self._scheduler = scheduler
        self._name = name
        self._handle: Optional[Cancellable] = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def start(self, delay: float, callback: Callable[[], None]) -> None:
        self.cancel()
        self._generation += 1
        self._handle = self._scheduler.call_later(max(0.0, delay), self._fire, self._generation, callback)
        logger.debug("timer start name=%s delay=%.3f", self._name, delay)

    def start_repeating(self, interval: float, callback: Callable[[], None]) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")

        def _tick() -> None:
            # Re-arm first so the callback may cancel us.
            self.start(interval, _tick)
            callback()

        self.start(interval, _tick)

    def cancel(self) -> None:
        if self._handle is None:
            return
        self._handle.cancel()
        self._handle = None
        # Invalidate even if the scheduler already queued the callback.
        self._generation += 1
        logger.debug("timer cancel name=%s", self._name)

    def _fire(self, generation: int, callback: Callable[[], None]) -> None:
        if generation != self._generation:
            return
        self._handle = None
        callback()
