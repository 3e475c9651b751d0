"""Audio system provider backed by a PulseAudio/PipeWire server.

This is unaware of the arbitration policy. It keeps a cached topology that the
engine queries synchronously, re-reads it whenever `pactl subscribe` reports a
relevant change, and turns the difference into provider events.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, AsyncIterator, Callable, Dict, List, Mapping, Optional, Sequence, Set

from ..engine import provider as events_mod
from ..engine.devices import DeviceSnapshot
from ..engine.provider import ProviderEvent
from .pactl import INPUT, OUTPUT, PactlClient, is_monitor_source, snapshot_from_node
from .protocol import PactlError, parse_subscribe_line


logger = logging.getLogger(__name__)


LineSource = Callable[[], AsyncIterator[str]]


@dataclass(frozen=True)
class Topology:
	inputs: tuple[DeviceSnapshot, ...] = ()
	outputs: tuple[DeviceSnapshot, ...] = ()
	default_input: Optional[DeviceSnapshot] = None
	default_output: Optional[DeviceSnapshot] = None
	# device id -> pactl source name, for set-default-source
	source_names: Mapping[str, str] = field(default_factory=dict)


def _collect(nodes: Sequence[Dict[str, Any]], direction: str, default_name: str) -> tuple[list[DeviceSnapshot], Optional[DeviceSnapshot], Dict[str, str]]:
	snapshots: list[DeviceSnapshot] = []
	names: Dict[str, str] = {}
	default: Optional[DeviceSnapshot] = None
	for node in nodes:
		if direction == INPUT and is_monitor_source(node):
			continue
		node_name = str(node.get("name", "") or "")
		if not node_name:
			continue
		snap = snapshot_from_node(node, direction)
		if default_name and node_name == default_name:
			default = snap
		if snap.device_id in names:
			continue
		names[snap.device_id] = node_name
		snapshots.append(snap)
	return snapshots, default, names


def build_topology(sources: Sequence[Dict[str, Any]], sinks: Sequence[Dict[str, Any]], info: Mapping[str, Any]) -> Topology:
	inputs, default_input, source_names = _collect(sources, INPUT, str(info.get("default_source_name", "") or ""))
	outputs, default_output, _ = _collect(sinks, OUTPUT, str(info.get("default_sink_name", "") or ""))
	return Topology(
		inputs=tuple(inputs),
		outputs=tuple(outputs),
		default_input=default_input,
		default_output=default_output,
		source_names=source_names,
	)


def _merge(output: DeviceSnapshot, inp: DeviceSnapshot) -> DeviceSnapshot:
	"""One snapshot for a headset seen as both a sink and a source."""
	return replace(
		output,
		input_channels=inp.input_channels,
		is_running=output.is_running or inp.is_running,
	)


def _id(snap: Optional[DeviceSnapshot]) -> Optional[str]:
	return snap.device_id if snap is not None else None


def _shape(snap: Optional[DeviceSnapshot]) -> Optional[DeviceSnapshot]:
	return replace(snap, is_running=False) if snap is not None else None


def diff_topology(old: Topology, new: Topology) -> list[ProviderEvent]:
	"""Provider events describing the change from `old` to `new`, in delivery order."""
	out: list[ProviderEvent] = []

	old_ids = {d.device_id for d in old.inputs + old.outputs}
	added: Dict[str, DeviceSnapshot] = {}
	for d in new.outputs:
		if d.device_id not in old_ids:
			added[d.device_id] = d
	for d in new.inputs:
		if d.device_id in old_ids:
			continue
		prev = added.get(d.device_id)
		added[d.device_id] = _merge(prev, d) if prev is not None else d
	if added:
		out.append(events_mod.devices_added(added.values()))

	# A profile switch keeps the sink id but changes rate/channels.
	if _shape(old.default_output) != _shape(new.default_output):
		out.append(events_mod.default_output_changed())
	if _id(old.default_input) != _id(new.default_input):
		out.append(events_mod.default_input_changed())

	old_running = {(INPUT, d.device_id): d.is_running for d in old.inputs}
	old_running.update({(OUTPUT, d.device_id): d.is_running for d in old.outputs})
	new_running = {(INPUT, d.device_id): d.is_running for d in new.inputs}
	new_running.update({(OUTPUT, d.device_id): d.is_running for d in new.outputs})
	# A headset source can first appear already running when the card enters HFP.
	if any(old_running.get(key, False) != running for key, running in new_running.items()):
		out.append(events_mod.running_state_changed())

	return out


class PactlAudioSystem:
	def __init__(
		self,
		client: Optional[PactlClient] = None,
		*,
		events: Optional["asyncio.Queue[ProviderEvent]"] = None,
		subscribe_lines: Optional[LineSource] = None,
		restart_delay: float = 2.0,
	):
		self._client = client or PactlClient()
		self.events: "asyncio.Queue[ProviderEvent]" = events if events is not None else asyncio.Queue()
		self._subscribe_lines = subscribe_lines
		self._restart_delay = float(restart_delay)

		self._topology = Topology()
		self._subscribe_task: Optional[asyncio.Task[None]] = None
		self._resync_task: Optional[asyncio.Task[None]] = None
		self._resync_wanted = False
		self._commands: Set[asyncio.Task[None]] = set()
		self._proc: Optional[asyncio.subprocess.Process] = None
		self._closed = False

	# ----------------------
	# Provider queries
	# ----------------------
	@property
	def topology(self) -> Topology:
		return self._topology

	def all_input_devices(self) -> List[DeviceSnapshot]:
		return list(self._topology.inputs)

	def default_input_device(self) -> Optional[DeviceSnapshot]:
		return self._topology.default_input

	def default_output_device(self) -> Optional[DeviceSnapshot]:
		return self._topology.default_output

	def set_default_input(self, device_id: str) -> None:
		source_name = self._topology.source_names.get(device_id)
		if source_name is None:
			logger.warning("pactl set-default-source skipped: unknown device id=%s", device_id)
			return
		task = asyncio.get_running_loop().create_task(
			self._client.set_default_source(source_name),
			name="pactl-set-default-source",
		)
		self._commands.add(task)
		task.add_done_callback(self._on_command_done)

	def _on_command_done(self, task: "asyncio.Task[None]") -> None:
		self._commands.discard(task)
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			logger.warning("pactl command failed: %s", exc)

	async def drain(self) -> bool:
		"""Wait for pending commands. Returns False if any of them failed."""
		pending = list(self._commands)
		if not pending:
			return True
		results = await asyncio.gather(*pending, return_exceptions=True)
		return not any(isinstance(r, BaseException) for r in results)

	# ----------------------
	# Lifecycle
	# ----------------------
	async def start(self) -> None:
		if self._subscribe_task and not self._subscribe_task.done():
			return
		self._closed = False
		await self.resync(emit=False)
		logger.info(
			"pactl provider ready inputs=%s outputs=%s default_in=%s default_out=%s",
			len(self._topology.inputs),
			len(self._topology.outputs),
			_id(self._topology.default_input),
			_id(self._topology.default_output),
		)
		self._subscribe_task = asyncio.create_task(self._subscribe_loop(), name="pactl-subscribe")

	async def stop(self) -> None:
		self._closed = True
		tasks = [t for t in (self._subscribe_task, self._resync_task) if t is not None]
		tasks.extend(self._commands)
		if self._proc is not None and self._proc.returncode is None:
			try:
				self._proc.terminate()
			except ProcessLookupError:
				pass
		for t in tasks:
			t.cancel()
		for t in tasks:
			try:
				await t
			except asyncio.CancelledError:
				pass
			except Exception:
				logger.debug("pactl task ended with error during stop", exc_info=True)
		self._subscribe_task = None
		self._resync_task = None
		self._commands.clear()

	async def resync(self, *, emit: bool = True) -> list[ProviderEvent]:
		"""Re-read the server state; enqueue and return the resulting events."""
		try:
			sources = await self._client.list_sources()
			sinks = await self._client.list_sinks()
			info = await self._client.server_info()
		except PactlError as e:
			logger.warning("pactl resync failed, keeping previous topology: %s", e)
			return []

		new = build_topology(sources, sinks, info)
		old = self._topology
		self._topology = new
		if not emit:
			return []
		changes = diff_topology(old, new)
		for ev in changes:
			logger.debug("pactl event kind=%s devices=%s", ev.kind.value, [d.name for d in ev.devices])
			self.events.put_nowait(ev)
		return changes

	def request_resync(self) -> None:
		"""Coalesce bursts of server events into as few resyncs as possible."""
		self._resync_wanted = True
		if self._resync_task is None or self._resync_task.done():
			self._resync_task = asyncio.create_task(self._resync_loop(), name="pactl-resync")

	async def _resync_loop(self) -> None:
		while self._resync_wanted and not self._closed:
			self._resync_wanted = False
			await self.resync()

	# ----------------------
	# Subscription
	# ----------------------
	async def _lines(self) -> AsyncIterator[str]:
		if self._subscribe_lines is not None:
			async for line in self._subscribe_lines():
				yield line
			return

		self._proc = await asyncio.create_subprocess_exec(
			self._client.binary,
			"subscribe",
			stdout=asyncio.subprocess.PIPE,
			stderr=asyncio.subprocess.DEVNULL,
		)
		assert self._proc.stdout is not None
		try:
			while True:
				raw = await self._proc.stdout.readline()
				if not raw:
					break
				yield raw.decode("utf-8", "replace")
		finally:
			if self._proc is not None and self._proc.returncode is None:
				try:
					self._proc.terminate()
				except ProcessLookupError:
					pass
				await self._proc.wait()
			self._proc = None

	async def _subscribe_loop(self) -> None:
		logger.debug("pactl subscribe loop started")
		try:
			while not self._closed:
				try:
					async for line in self._lines():
						ev = parse_subscribe_line(line)
						if ev is None or not ev.affects_topology:
							continue
						logger.debug("pactl subscribe kind=%s facility=%s index=%s", ev.kind, ev.facility, ev.index)
						self.request_resync()
				except (OSError, PactlError) as e:
					logger.warning("pactl subscribe failed: %s", e)

				if self._closed:
					break
				logger.warning("pactl subscribe ended; restarting in %.1fs", self._restart_delay)
				await asyncio.sleep(self._restart_delay)
				# Changes made while we were not subscribed.
				self.request_resync()
		finally:
			logger.debug("pactl subscribe loop stopped")
