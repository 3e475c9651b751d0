"""Cooldown state machine for call detection on a Bluetooth device.

The controller feeds it the monitored device's running flag whenever that
may have changed (provider event or fallback poll). The raw flag is bursty
around call start and end; a call is only declared over after the device has
stayed silent for the whole cooldown.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .timers import Scheduler, TimerSlot


logger = logging.getLogger(__name__)


class CallActivity(enum.Enum):
    IDLE = "idle"
    ACTIVE = "active"
    COOLING_DOWN = "cooling-down"


@dataclass
class CallActivityCallbacks:
    on_call_started: Optional[Callable[[], None]] = None
    on_call_ended: Optional[Callable[[], None]] = None


class CallActivityMonitor:
    def __init__(
        self,
        scheduler: Scheduler,
        cooldown: float = 5.0,
        callbacks: Optional[CallActivityCallbacks] = None,
    ):
        if cooldown < 0:
            raise ValueError("cooldown must not be negative")
        self._scheduler = scheduler
        self._cooldown = float(cooldown)
        self._callbacks = callbacks or CallActivityCallbacks()
        self._state = CallActivity.IDLE
        self._deadline: Optional[float] = None
        self._timer = TimerSlot(scheduler, "call-cooldown")

    @property
    def state(self) -> CallActivity:
        return self._state

    @property
    def cooldown_deadline(self) -> Optional[float]:
        """Scheduler time at which a pending cooldown ends, if cooling down."""
        return self._deadline

    @property
    def is_call_active(self) -> bool:
        return self._state is not CallActivity.IDLE

    def report(self, is_active: bool) -> None:
        if is_active:
            if self._state is CallActivity.IDLE:
                self._state = CallActivity.ACTIVE
                logger.info("call started")
                if self._callbacks.on_call_started:
                    self._callbacks.on_call_started()
            elif self._state is CallActivity.COOLING_DOWN:
                self._timer.cancel()
                self._deadline = None
                self._state = CallActivity.ACTIVE
                logger.debug("call resumed before cooldown elapsed")
            return

        if self._state is CallActivity.ACTIVE:
            self._state = CallActivity.COOLING_DOWN
            self._deadline = self._scheduler.time() + self._cooldown
            self._timer.start(self._cooldown, self._on_cooldown_elapsed)
            logger.debug("call cooldown started seconds=%.2f", self._cooldown)
        # Already cooling down: the first deadline stands.

    def reset(self) -> None:
        self._timer.cancel()
        self._deadline = None
        if self._state is not CallActivity.IDLE:
            logger.debug("call monitor reset from state=%s", self._state.value)
        self._state = CallActivity.IDLE

    def _on_cooldown_elapsed(self) -> None:
        if self._state is not CallActivity.COOLING_DOWN:
            return
        self._state = CallActivity.IDLE
        self._deadline = None
        logger.info("call ended")
        if self._callbacks.on_call_ended:
            self._callbacks.on_call_ended()
