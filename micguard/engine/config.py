"""Engine configuration: fixed timing policy plus mutable user preferences."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields


def _env_truthy(name: str, default: bool) -> bool:
	v = os.environ.get(name)
	if v is None:
		return default
	return v.strip().casefold() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
	v = os.environ.get(name)
	if v is None:
		return default
	try:
		return float(v)
	except ValueError:
		return default


@dataclass(frozen=True)
class ArbitrationPolicy:
	"""Timing knobs, fixed for the lifetime of one controller.

	All values are in seconds. `poll_interval=0` disables the fallback poll.

	Tuning (optional env vars):
	- MICGUARD_CONNECTION_DELAY: wait after a headset appears before switching.
	- MICGUARD_DEBOUNCE_INTERVAL: ignore input changes this soon after our own switch.
	- MICGUARD_COOLDOWN: silence required before a call is declared over.
	- MICGUARD_POLL_INTERVAL: fallback running-state poll while monitoring.
	"""

	connection_delay: float = 2.5
	debounce_interval: float = 1.0
	cooldown: float = 5.0
	poll_interval: float = 3.0

	def __post_init__(self) -> None:
		for f in fields(self):
			if float(getattr(self, f.name)) < 0:
				raise ValueError(f"{f.name} must not be negative")

	@classmethod
	def from_env(cls) -> "ArbitrationPolicy":
		return cls(
			connection_delay=_env_float("MICGUARD_CONNECTION_DELAY", cls.connection_delay),
			debounce_interval=_env_float("MICGUARD_DEBOUNCE_INTERVAL", cls.debounce_interval),
			cooldown=_env_float("MICGUARD_COOLDOWN", cls.cooldown),
			poll_interval=_env_float("MICGUARD_POLL_INTERVAL", cls.poll_interval),
		)


@dataclass
class Preferences:
	"""User preferences, read by the engine on every decision.

	An empty `preferred_input_device_uid` means "use the built-in microphone".
	"""

	auto_switching_enabled: bool = True
	preferred_input_device_uid: str = ""
	notify_on_quality_drop: bool = False
	notify_on_quality_restore: bool = False

	@classmethod
	def from_env(cls) -> "Preferences":
		return cls(
			auto_switching_enabled=_env_truthy("MICGUARD_AUTO_SWITCH", cls.auto_switching_enabled),
			preferred_input_device_uid=os.environ.get("MICGUARD_PREFERRED_INPUT", "").strip(),
			notify_on_quality_drop=_env_truthy("MICGUARD_NOTIFY_DROP", cls.notify_on_quality_drop),
			notify_on_quality_restore=_env_truthy("MICGUARD_NOTIFY_RESTORE", cls.notify_on_quality_restore),
		)

	def reset_to_defaults(self) -> None:
		defaults = Preferences()
		for f in fields(self):
			setattr(self, f.name, getattr(defaults, f.name))
