"""Thin async wrapper around the `pactl` command line tool.

Works against PulseAudio and against PipeWire's pulse server alike. Only
JSON output is parsed (`pactl --format=json`, pactl >= 16).
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..engine.devices import DeviceSnapshot, TransportKind
from .protocol import STATE_RUNNING, PactlError, parse_sample_spec


logger = logging.getLogger(__name__)


INPUT = "input"
OUTPUT = "output"

Runner = Callable[..., Awaitable[str]]

_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}(?:[:_][0-9A-Fa-f]{2}){5}$")


def _props(node: Dict[str, Any]) -> Dict[str, str]:
	props = node.get("properties")
	if not isinstance(props, dict):
		return {}
	return {str(k): str(v) for k, v in props.items()}


def is_monitor_source(node: Dict[str, Any]) -> bool:
	"""Sink monitors are listed as sources but are not microphones."""
	monitor_of = node.get("monitor_of_sink")
	if monitor_of not in (None, "", "n/a"):
		return True
	return _props(node).get("device.class") == "monitor"


def transport_from_properties(node: Dict[str, Any]) -> TransportKind:
	props = _props(node)
	name = str(node.get("name", "") or "")
	driver = str(node.get("driver", "") or "")
	bus = props.get("device.bus", "").casefold()
	api = props.get("device.api", "").casefold()

	if bus == "bluetooth" or api == "bluez5" or name.startswith("bluez_"):
		profile = props.get("api.bluez5.profile", "").casefold()
		codec = props.get("api.bluez5.codec", "").casefold()
		if "bap" in profile or "lc3" in codec:
			return TransportKind.BLUETOOTH_LE
		return TransportKind.BLUETOOTH
	if bus == "usb":
		return TransportKind.USB
	if "combine" in driver or "combine" in props.get("factory.name", ""):
		return TransportKind.AGGREGATE
	if "null" in driver or props.get("node.virtual") == "true" or props.get("factory.name") == "support.null-audio-sink":
		return TransportKind.VIRTUAL
	if bus in ("pci", "platform") or props.get("device.form_factor") == "internal":
		return TransportKind.BUILT_IN
	return TransportKind.OTHER


def _bluetooth_address(props: Dict[str, str]) -> Optional[str]:
	for key in ("api.bluez5.address", "device.string", "bluez.address"):
		v = props.get(key, "").strip()
		if _MAC_RE.match(v):
			return v.replace("_", ":").upper()
	return None


def device_id_for(node: Dict[str, Any], transport: TransportKind) -> str:
	"""Stable id: a headset's sink and source share `bluez:<address>`."""
	name = str(node.get("name", "") or "")
	if transport.is_bluetooth:
		address = _bluetooth_address(_props(node))
		if address:
			return f"bluez:{address}"
	return name


def snapshot_from_node(node: Dict[str, Any], direction: str) -> DeviceSnapshot:
	props = _props(node)
	transport = transport_from_properties(node)
	spec = parse_sample_spec(str(node.get("sample_specification", "") or ""))
	channels = spec.channels if spec else 0
	name = str(node.get("description", "") or "") or props.get("device.description", "") or str(node.get("name", ""))
	return DeviceSnapshot(
		device_id=device_id_for(node, transport),
		name=name,
		transport=transport,
		is_running=str(node.get("state", "")).upper() == STATE_RUNNING,
		sample_rate=float(spec.rate) if spec and spec.rate > 0 else None,
		output_channels=channels if direction == OUTPUT else 0,
		input_channels=channels if direction == INPUT else 0,
	)


async def _run_pactl(binary: str, *args: str) -> str:
	proc = await asyncio.create_subprocess_exec(
		binary,
		*args,
		stdout=asyncio.subprocess.PIPE,
		stderr=asyncio.subprocess.PIPE,
	)
	out, err = await proc.communicate()
	if proc.returncode != 0:
		raise PactlError(tuple(args), proc.returncode, err.decode("utf-8", "replace"))
	return out.decode("utf-8", "replace")


class PactlClient:
	def __init__(self, binary: str = "pactl", runner: Optional[Runner] = None):
		self.binary = binary
		self._runner = runner

	async def run(self, *args: str) -> str:
		logger.debug("pactl %s", " ".join(args))
		if self._runner is not None:
			return await self._runner(*args)
		try:
			return await _run_pactl(self.binary, *args)
		except FileNotFoundError as e:
			raise PactlError(tuple(args), None, f"{self.binary} not found") from e

	async def _json(self, *args: str) -> Any:
		raw = await self.run("--format=json", *args)
		try:
			return json.loads(raw or "null")
		except json.JSONDecodeError as e:
			raise PactlError(tuple(args), 0, f"invalid json: {e}") from e

	async def list_sources(self) -> List[Dict[str, Any]]:
		data = await self._json("list", "sources")
		return [n for n in (data or []) if isinstance(n, dict)]

	async def list_sinks(self) -> List[Dict[str, Any]]:
		data = await self._json("list", "sinks")
		return [n for n in (data or []) if isinstance(n, dict)]

	async def server_info(self) -> Dict[str, Any]:
		data = await self._json("info")
		return data if isinstance(data, dict) else {}

	async def set_default_source(self, source_name: str) -> None:
		await self.run("set-default-source", source_name)
