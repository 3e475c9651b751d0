"""Value types shared by the engine and its providers.

Snapshots are immutable: a provider replaces them wholesale on every query and
the engine never edits one in place.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional


class TransportKind(enum.Enum):
	BUILT_IN = "built-in"
	BLUETOOTH = "bluetooth"
	BLUETOOTH_LE = "bluetooth-le"
	USB = "usb"
	AGGREGATE = "aggregate"
	VIRTUAL = "virtual"
	OTHER = "other"

	@property
	def is_bluetooth(self) -> bool:
		return self in (TransportKind.BLUETOOTH, TransportKind.BLUETOOTH_LE)

	@property
	def label(self) -> str:
		return _TRANSPORT_LABELS[self]


_TRANSPORT_LABELS = {
	TransportKind.BUILT_IN: "Built-In",
	TransportKind.BLUETOOTH: "Bluetooth",
	TransportKind.BLUETOOTH_LE: "Bluetooth LE",
	TransportKind.USB: "USB",
	TransportKind.AGGREGATE: "Aggregate",
	TransportKind.VIRTUAL: "Virtual",
	TransportKind.OTHER: "Other",
}


class QualityState(enum.Enum):
	"""Quality of the current default output, as shown to the user.

	`DISCONNECTED` means the default output is not a Bluetooth device.
	`UNKNOWN` is only reported before the first refresh.
	"""

	HIGH_QUALITY = "High Quality Audio"
	CALL_MODE = "Call Mode"
	DISCONNECTED = "No Bluetooth Audio"
	UNKNOWN = "Unknown"

	@property
	def label(self) -> str:
		return self.value


@dataclass(frozen=True)
class DeviceSnapshot:
	"""One audio device as last reported by the provider.

	`device_id` is stable across reconnects; a Bluetooth headset that shows up
	as both an input and an output carries the same id in both lists.
	"""

	device_id: str
	name: str
	transport: TransportKind
	is_running: bool = False
	sample_rate: Optional[float] = None
	output_channels: int = 0
	input_channels: int = 0

	@property
	def is_bluetooth(self) -> bool:
		return self.transport.is_bluetooth


@dataclass(frozen=True)
class CodecInfo:
	codec_name: str
	profile_name: str
	sample_rate_display: str
	channel_display: str
	is_high_quality: bool
	summary: str


@dataclass(frozen=True)
class EngineStatus:
	"""Read-only state published to the host."""

	output_device_name: str = "None"
	input_device_name: str = "None"
	quality_state: QualityState = QualityState.UNKNOWN
	is_bluetooth_output_connected: bool = False
	codec_info: Optional[CodecInfo] = None
