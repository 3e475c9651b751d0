"""Input arbitration: keep the headset microphone from taking over the input.

Everything here runs on one event loop; provider events, timer callbacks and
host commands are processed strictly one after another.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, replace
from typing import Callable, Optional, Sequence

from .call_activity import CallActivityCallbacks, CallActivityMonitor
from .classifier import classify, codec_info_for
from .config import ArbitrationPolicy, Preferences
from .devices import DeviceSnapshot, EngineStatus, QualityState, TransportKind
from .notifier import TransitionNotifier
from .provider import AudioSystemProvider, ProviderEvent, ProviderEventKind
from .timers import Scheduler, TimerSlot


logger = logging.getLogger(__name__)


@dataclass
class ControllerCallbacks:
    on_status_changed: Optional[Callable[[EngineStatus], None]] = None


class InputArbitrationController:
    def __init__(
        self,
        provider: AudioSystemProvider,
        preferences: Preferences,
        notifier: TransitionNotifier,
        policy: Optional[ArbitrationPolicy] = None,
        scheduler: Optional[Scheduler] = None,
        callbacks: Optional[ControllerCallbacks] = None,
    ):
        self._provider = provider
        self._preferences = preferences
        self._notifier = notifier
        self._policy = policy or ArbitrationPolicy()
        self._scheduler: Scheduler = scheduler or asyncio.get_running_loop()
        self._callbacks = callbacks or ControllerCallbacks()

        self._status = EngineStatus()
        self._monitored_device_id: Optional[str] = None
        self._last_switch_time = -math.inf

        self._connection_timer = TimerSlot(self._scheduler, "connection-delay")
        self._poll_timer = TimerSlot(self._scheduler, "running-poll")
        self.call_monitor = CallActivityMonitor(
            self._scheduler,
            cooldown=self._policy.cooldown,
            callbacks=CallActivityCallbacks(
                on_call_started=self._on_call_started,
                on_call_ended=self._on_call_ended,
            ),
        )

    # ----------------------
    # Observable state
    # ----------------------
    @property
    def status(self) -> EngineStatus:
        return self._status

    @property
    def quality_state(self) -> QualityState:
        return self._status.quality_state

    @property
    def policy(self) -> ArbitrationPolicy:
        return self._policy

    @property
    def monitored_device_id(self) -> Optional[str]:
        return self._monitored_device_id

    # ----------------------
    # Lifecycle
    # ----------------------
    def start(self) -> None:
        logger.info(
            "arbitration start delay=%s debounce=%s cooldown=%s poll=%s auto=%s",
            self._policy.connection_delay,
            self._policy.debounce_interval,
            self._policy.cooldown,
            self._policy.poll_interval,
            self._preferences.auto_switching_enabled,
        )
        self.refresh()

    def stop(self) -> None:
        self._connection_timer.cancel()
        self._stop_monitoring()
        logger.info("arbitration stopped")

    async def run(self, events: "asyncio.Queue[ProviderEvent]") -> None:
        """Consume provider events until cancelled."""
        while True:
            event = await events.get()
            try:
                self.handle_event(event)
            except Exception:
                logger.exception("arbitration event failed kind=%s", event.kind.value)
            finally:
                events.task_done()

    def handle_event(self, event: ProviderEvent) -> None:
        logger.debug("arbitration event kind=%s devices=%s", event.kind.value, len(event.devices))
        if event.kind is ProviderEventKind.DEVICES_ADDED:
            self.on_devices_added(event.devices)
        elif event.kind is ProviderEventKind.DEFAULT_INPUT_CHANGED:
            self.on_default_input_changed()
        elif event.kind is ProviderEventKind.DEFAULT_OUTPUT_CHANGED:
            self.on_default_output_changed()
        elif event.kind is ProviderEventKind.DEVICE_RUNNING_STATE_CHANGED:
            self.on_device_running_state_changed()

    # ----------------------
    # Host commands
    # ----------------------
    def fix_now(self) -> None:
        """Switch input to the preferred (or built-in) microphone right away."""
        target = self.find_preferred_input_device()
        if target is None:
            logger.info("arbitration fix skipped: no preferred or built-in input")
            return
        self._switch_input(target.device_id)

    def available_input_devices(self) -> list[tuple[str, str]]:
        return [(d.name, d.device_id) for d in self._provider.all_input_devices()]

    def select_preferred_input(self, device_id: str) -> None:
        self._preferences.preferred_input_device_uid = device_id
        logger.info("arbitration preferred input set id=%s", device_id)
        self._switch_input(device_id)

    def clear_stale_preferred_input(self) -> bool:
        """Forget the preferred input if that device is gone. Returns True if cleared."""
        uid = self._preferences.preferred_input_device_uid
        if not uid:
            return False
        if any(d.device_id == uid for d in self._provider.all_input_devices()):
            return False
        self._preferences.preferred_input_device_uid = ""
        logger.info("arbitration preferred input cleared (device gone) id=%s", uid)
        return True

    def find_preferred_input_device(self) -> Optional[DeviceSnapshot]:
        inputs = self._provider.all_input_devices()
        uid = self._preferences.preferred_input_device_uid
        if uid:
            for d in inputs:
                if d.device_id == uid:
                    return d
        for d in inputs:
            if d.transport is TransportKind.BUILT_IN:
                return d
        return None

    # ----------------------
    # Provider events
    # ----------------------
    def on_devices_added(self, devices: Sequence[DeviceSnapshot]) -> None:
        headsets = [d for d in devices if d.is_bluetooth and d.output_channels > 0]
        if headsets:
            logger.info(
                "arbitration bluetooth output added names=%s delay=%s",
                [d.name for d in headsets],
                self._policy.connection_delay,
            )
            if self._policy.connection_delay > 0:
                self._connection_timer.start(self._policy.connection_delay, self._on_bluetooth_connected)
            else:
                self._on_bluetooth_connected()
        self.refresh()

    def on_default_input_changed(self) -> None:
        if self._should_switch_back():
            current = self._provider.default_input_device()
            logger.info("arbitration input taken by bluetooth mic name=%s; switching back", current.name if current else None)
            self.fix_now()
        self.refresh()

    def on_default_output_changed(self) -> None:
        self.refresh()

    def on_device_running_state_changed(self) -> None:
        device_id = self._monitored_device_id
        if device_id is None:
            return
        device = next((d for d in self._provider.all_input_devices() if d.device_id == device_id), None)
        if device is None:
            output = self._provider.default_output_device()
            if output is not None and output.device_id == device_id:
                device = output
        if device is None:
            logger.debug("arbitration monitored device not visible id=%s", device_id)
            return
        self.call_monitor.report(device.is_running)

    # ----------------------
    # State
    # ----------------------
    def refresh(self) -> None:
        output = self._provider.default_output_device()
        current_input = self._provider.default_input_device()
        output_name = output.name if output is not None else "None"
        input_name = current_input.name if current_input is not None else "None"
        has_bluetooth_output = output is not None and output.is_bluetooth

        old_state = self._status.quality_state
        if not has_bluetooth_output:
            new_state = QualityState.DISCONNECTED
            self._stop_monitoring()
        elif self.call_monitor.is_call_active:
            new_state = QualityState.CALL_MODE
        else:
            new_state, _ = classify(output)

        if old_state != new_state:
            logger.info("quality %s -> %s output=%s", old_state.name, new_state.name, output_name)
            self._notifier.quality_did_change(old_state, new_state, output_name)

        self._publish(
            EngineStatus(
                output_device_name=output_name,
                input_device_name=input_name,
                quality_state=new_state,
                is_bluetooth_output_connected=has_bluetooth_output,
                codec_info=codec_info_for(output),
            )
        )

    def _publish(self, status: EngineStatus) -> None:
        if status == self._status:
            return
        self._status = status
        if self._callbacks.on_status_changed:
            self._callbacks.on_status_changed(status)

    # ----------------------
    # Internals
    # ----------------------
    def _should_switch_back(self) -> bool:
        if not self._preferences.auto_switching_enabled:
            return False
        output = self._provider.default_output_device()
        if output is None or not output.is_bluetooth:
            return False
        if self.call_monitor.is_call_active:
            logger.debug("arbitration input change ignored: call active")
            return False
        current = self._provider.default_input_device()
        if current is None or not current.is_bluetooth:
            return False
        if self._in_debounce_window():
            logger.info("arbitration input change debounced")
            return False
        return True

    def _in_debounce_window(self) -> bool:
        return (self._scheduler.time() - self._last_switch_time) < self._policy.debounce_interval

    def _switch_input(self, device_id: str) -> None:
        logger.info("arbitration set default input id=%s", device_id)
        self._provider.set_default_input(device_id)
        self._last_switch_time = self._scheduler.time()
        self.refresh()

    def _on_bluetooth_connected(self) -> None:
        if not self._preferences.auto_switching_enabled:
            logger.debug("arbitration auto switching disabled; leaving input alone")
            return
        self.fix_now()
        self.refresh()

        output = self._provider.default_output_device()
        if output is not None and output.is_bluetooth:
            self._start_monitoring(output)

    def _start_monitoring(self, device: DeviceSnapshot) -> None:
        self._monitored_device_id = device.device_id
        self._poll_timer.cancel()
        if self._policy.poll_interval > 0:
            self._poll_timer.start_repeating(self._policy.poll_interval, self.on_device_running_state_changed)
        logger.info("arbitration monitoring name=%s id=%s", device.name, device.device_id)

    def _stop_monitoring(self) -> None:
        if self._monitored_device_id is not None:
            logger.info("arbitration monitoring stopped id=%s", self._monitored_device_id)
        self._monitored_device_id = None
        self._poll_timer.cancel()
        self.call_monitor.reset()

    def _on_call_started(self) -> None:
        old_state = self._status.quality_state
        output_name = self._status.output_device_name
        if old_state != QualityState.CALL_MODE:
            logger.info("quality %s -> CALL_MODE output=%s (call)", old_state.name, output_name)
        self._notifier.quality_did_change(old_state, QualityState.CALL_MODE, output_name)
        self._publish(replace(self._status, quality_state=QualityState.CALL_MODE))

    def _on_call_ended(self) -> None:
        if self._preferences.auto_switching_enabled:
            self.fix_now()
        self.refresh()
