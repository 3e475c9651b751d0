"""Contract between the engine and the host's audio system.

Events travel as `ProviderEvent` values, either handed to
`InputArbitrationController.handle_event` directly or pushed onto an
`asyncio.Queue` consumed by `InputArbitrationController.run`.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol, Sequence

from .devices import DeviceSnapshot


class AudioSystemProvider(Protocol):
    def all_input_devices(self) -> Sequence[DeviceSnapshot]: ...

    def default_input_device(self) -> Optional[DeviceSnapshot]: ...

    def default_output_device(self) -> Optional[DeviceSnapshot]: ...

    def set_default_input(self, device_id: str) -> None:
        """Fire-and-forget; the outcome is observed on the next refresh."""
        ...


class ProviderEventKind(enum.Enum):
    DEVICES_ADDED = "devices-added"
    DEFAULT_INPUT_CHANGED = "default-input-changed"
    DEFAULT_OUTPUT_CHANGED = "default-output-changed"
    DEVICE_RUNNING_STATE_CHANGED = "device-running-state-changed"


@dataclass(frozen=True)
class ProviderEvent:
    kind: ProviderEventKind
    devices: tuple[DeviceSnapshot, ...] = ()


def devices_added(devices: Iterable[DeviceSnapshot]) -> ProviderEvent:
    return ProviderEvent(ProviderEventKind.DEVICES_ADDED, tuple(devices))


def default_input_changed() -> ProviderEvent:
    return ProviderEvent(ProviderEventKind.DEFAULT_INPUT_CHANGED)


def default_output_changed() -> ProviderEvent:
    return ProviderEvent(ProviderEventKind.DEFAULT_OUTPUT_CHANGED)


def running_state_changed() -> ProviderEvent:
    return ProviderEvent(ProviderEventKind.DEVICE_RUNNING_STATE_CHANGED)
