"""pactl text protocol helpers.

`pactl subscribe` prints one line per server event, e.g.
`Event 'change' on source #53`. Sample specs look like `s16le 2ch 48000Hz`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


# Event kinds
NEW = "new"
CHANGE = "change"
REMOVE = "remove"

# Facilities
SINK = "sink"
SOURCE = "source"
SINK_INPUT = "sink-input"
SOURCE_OUTPUT = "source-output"
MODULE = "module"
CLIENT = "client"
SAMPLE_CACHE = "sample-cache"
SERVER = "server"
CARD = "card"

# Facilities whose events can change the device topology the engine sees.
TOPOLOGY_FACILITIES = frozenset({SINK, SOURCE, SERVER, CARD})

# Node states as printed by `pactl --format=json list`.
STATE_RUNNING = "RUNNING"


_EVENT_RE = re.compile(r"^Event '(?P<kind>[a-z-]+)' on (?P<facility>[a-z-]+)(?: #(?P<index>-?\d+))?\s*$")
_SAMPLE_SPEC_RE = re.compile(r"^(?P<format>\S+)\s+(?P<channels>\d+)ch\s+(?P<rate>\d+)Hz$")


@dataclass(frozen=True)
class SubscribeEvent:
	kind: str
	facility: str
	index: Optional[int] = None

	@property
	def affects_topology(self) -> bool:
		return self.facility in TOPOLOGY_FACILITIES


@dataclass(frozen=True)
class SampleSpec:
	sample_format: str
	channels: int
	rate: int


def parse_subscribe_line(line: str) -> Optional[SubscribeEvent]:
	m = _EVENT_RE.match(line.strip())
	if not m:
		return None
	index = m.group("index")
	return SubscribeEvent(
		kind=m.group("kind"),
		facility=m.group("facility"),
		index=int(index) if index is not None else None,
	)


def parse_sample_spec(spec: str) -> Optional[SampleSpec]:
	m = _SAMPLE_SPEC_RE.match((spec or "").strip())
	if not m:
		return None
	return SampleSpec(
		sample_format=m.group("format"),
		channels=int(m.group("channels")),
		rate=int(m.group("rate")),
	)


class PactlError(Exception):
	def __init__(self, command: tuple[str, ...], returncode: Optional[int], stderr: str = ""):
		self.command = command
		self.returncode = returncode
		self.stderr = stderr.strip()
		super().__init__(f"pactl {' '.join(command)} failed rc={returncode}: {self.stderr}")
