"""Tests for the pactl-backed audio system: topology, diffing, resync and subscribe."""

import asyncio
import logging

from micguard.engine.provider import ProviderEventKind
from micguard.pulse.audio_system import PactlAudioSystem, Topology, build_topology, diff_topology
from micguard.pulse.pactl import PactlClient
from pactl_fixtures import (
    BUILT_IN_MONITOR,
    BUILT_IN_SINK,
    BUILT_IN_SOURCE,
    HEADSET_ID,
    HEADSET_SINK,
    HEADSET_SOURCE,
    FakePactl,
    node,
)


def _info(sink="", source=""):
    return {"default_sink_name": sink, "default_source_name": source}


def _desk():
    return build_topology(
        [BUILT_IN_MONITOR, BUILT_IN_SOURCE],
        [BUILT_IN_SINK],
        _info(BUILT_IN_SINK["name"], BUILT_IN_SOURCE["name"]),
    )


def _desk_with_headset(sink=HEADSET_SINK, source=HEADSET_SOURCE):
    return build_topology(
        [BUILT_IN_MONITOR, BUILT_IN_SOURCE, source],
        [BUILT_IN_SINK, sink],
        _info(sink["name"], source["name"]),
    )


def _kinds(events):
    return [e.kind for e in events]


# ---------------------------------------------------------------------------
# Topology
# ---------------------------------------------------------------------------

def test_build_topology_skips_monitors_and_resolves_defaults():
    topo = _desk()
    assert [d.device_id for d in topo.inputs] == [BUILT_IN_SOURCE["name"]]
    assert [d.device_id for d in topo.outputs] == [BUILT_IN_SINK["name"]]
    assert topo.default_input.device_id == BUILT_IN_SOURCE["name"]
    assert topo.default_output.device_id == BUILT_IN_SINK["name"]
    assert topo.source_names == {BUILT_IN_SOURCE["name"]: BUILT_IN_SOURCE["name"]}


def test_build_topology_maps_headset_id_to_source_name():
    topo = _desk_with_headset()
    assert topo.source_names[HEADSET_ID] == HEADSET_SOURCE["name"]
    assert topo.default_output.device_id == HEADSET_ID


def test_unknown_default_name_leaves_default_empty():
    topo = build_topology([BUILT_IN_SOURCE], [BUILT_IN_SINK], _info("gone", "gone"))
    assert topo.default_input is None
    assert topo.default_output is None


def test_diff_no_change_is_empty():
    assert diff_topology(_desk(), _desk()) == []


def test_diff_headset_connect_order_and_merge():
    events = diff_topology(_desk(), _desk_with_headset())
    assert _kinds(events) == [
        ProviderEventKind.DEVICES_ADDED,
        ProviderEventKind.DEFAULT_OUTPUT_CHANGED,
        ProviderEventKind.DEFAULT_INPUT_CHANGED,
    ]
    (added,) = events[0].devices
    assert added.device_id == HEADSET_ID
    assert added.output_channels == 2
    assert added.input_channels == 1
    assert added.is_bluetooth


def test_diff_input_only_device_added():
    usb = {"name": "alsa_input.usb-mic", "sample_specification": "s16le 1ch 48000Hz", "properties": {"device.bus": "usb"}}
    old = _desk()
    new = build_topology([BUILT_IN_SOURCE, usb], [BUILT_IN_SINK], _info(BUILT_IN_SINK["name"], BUILT_IN_SOURCE["name"]))
    events = diff_topology(old, new)
    assert _kinds(events) == [ProviderEventKind.DEVICES_ADDED]
    assert events[0].devices[0].output_channels == 0


def test_diff_running_change_only():
    old = _desk_with_headset()
    new = _desk_with_headset(source=node(HEADSET_SOURCE, state="RUNNING"))
    assert _kinds(diff_topology(old, new)) == [ProviderEventKind.DEVICE_RUNNING_STATE_CHANGED]


def test_diff_source_appearing_already_running():
    old = build_topology(
        [BUILT_IN_MONITOR, BUILT_IN_SOURCE],
        [BUILT_IN_SINK, HEADSET_SINK],
        _info(HEADSET_SINK["name"], BUILT_IN_SOURCE["name"]),
    )
    new = build_topology(
        [BUILT_IN_MONITOR, BUILT_IN_SOURCE, node(HEADSET_SOURCE, state="RUNNING")],
        [BUILT_IN_SINK, HEADSET_SINK],
        _info(HEADSET_SINK["name"], BUILT_IN_SOURCE["name"]),
    )
    assert _kinds(diff_topology(old, new)) == [ProviderEventKind.DEVICE_RUNNING_STATE_CHANGED]


def test_diff_source_appearing_idle_is_quiet():
    old = build_topology([BUILT_IN_SOURCE], [BUILT_IN_SINK, HEADSET_SINK], _info(HEADSET_SINK["name"], BUILT_IN_SOURCE["name"]))
    new = build_topology([BUILT_IN_SOURCE, HEADSET_SOURCE], [BUILT_IN_SINK, HEADSET_SINK], _info(HEADSET_SINK["name"], BUILT_IN_SOURCE["name"]))
    assert diff_topology(old, new) == []


def test_diff_running_change_on_default_output_is_not_an_output_change():
    old = _desk_with_headset()
    new = _desk_with_headset(sink=node(HEADSET_SINK, state="RUNNING"))
    assert _kinds(diff_topology(old, new)) == [ProviderEventKind.DEVICE_RUNNING_STATE_CHANGED]


def test_diff_profile_switch_is_output_change():
    hfp_sink = node(HEADSET_SINK, name="bluez_output.AA_BB_CC_DD_EE_FF.0", sample_specification="s16le 1ch 16000Hz")
    events = diff_topology(_desk_with_headset(), _desk_with_headset(sink=hfp_sink))
    assert _kinds(events) == [ProviderEventKind.DEFAULT_OUTPUT_CHANGED]


def test_diff_disconnect_reports_default_changes_only():
    events = diff_topology(_desk_with_headset(), _desk())
    assert _kinds(events) == [ProviderEventKind.DEFAULT_OUTPUT_CHANGED, ProviderEventKind.DEFAULT_INPUT_CHANGED]


# ---------------------------------------------------------------------------
# PactlAudioSystem
# ---------------------------------------------------------------------------

def _desk_pactl():
    return FakePactl(
        sinks=[BUILT_IN_SINK],
        sources=[BUILT_IN_MONITOR, BUILT_IN_SOURCE],
        default_sink=BUILT_IN_SINK["name"],
        default_source=BUILT_IN_SOURCE["name"],
    )


def _connect(fake):
    fake.sinks.append(HEADSET_SINK)
    fake.sources.append(HEADSET_SOURCE)
    fake.default_sink = HEADSET_SINK["name"]
    fake.default_source = HEADSET_SOURCE["name"]


def test_resync_enqueues_events():
    fake = _desk_pactl()

    async def scenario():
        system = PactlAudioSystem(PactlClient(runner=fake))
        assert await system.resync(emit=False) == []
        _connect(fake)
        changes = await system.resync()
        queued = [system.events.get_nowait() for _ in range(system.events.qsize())]
        return system, changes, queued

    system, changes, queued = asyncio.run(scenario())
    assert queued == changes
    assert _kinds(changes)[0] is ProviderEventKind.DEVICES_ADDED
    assert system.default_output_device().device_id == HEADSET_ID
    assert system.default_input_device().device_id == HEADSET_ID
    assert [d.device_id for d in system.all_input_devices()] == [BUILT_IN_SOURCE["name"], HEADSET_ID]


def test_resync_failure_keeps_previous_topology(caplog):
    fake = _desk_pactl()

    async def scenario():
        system = PactlAudioSystem(PactlClient(runner=fake))
        await system.resync(emit=False)
        before = system.topology
        fake.fail.add("list")
        with caplog.at_level(logging.WARNING, logger="micguard.pulse.audio_system"):
            changes = await system.resync()
        return before, system.topology, changes

    before, after, changes = asyncio.run(scenario())
    assert changes == []
    assert after is before
    assert "keeping previous topology" in caplog.text


def test_set_default_input_runs_pactl_in_background():
    fake = _desk_pactl()
    _connect(fake)

    async def scenario():
        system = PactlAudioSystem(PactlClient(runner=fake))
        await system.resync(emit=False)
        system.set_default_input(BUILT_IN_SOURCE["name"])
        system.set_default_input("no-such-device")
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        await system.stop()

    asyncio.run(scenario())
    assert fake.commands == [("set-default-source", BUILT_IN_SOURCE["name"])]


def test_set_default_input_failure_is_logged(caplog):
    fake = _desk_pactl()
    fake.fail.add("set-default-source")

    async def scenario():
        system = PactlAudioSystem(PactlClient(runner=fake))
        await system.resync(emit=False)
        with caplog.at_level(logging.WARNING, logger="micguard.pulse.audio_system"):
            system.set_default_input(BUILT_IN_SOURCE["name"])
            for _ in range(5):
                await asyncio.sleep(0)

    asyncio.run(scenario())
    assert "pactl command failed" in caplog.text


def test_subscribe_events_trigger_resync():
    fake = _desk_pactl()
    calls = {"n": 0}

    async def lines():
        calls["n"] += 1
        if calls["n"] == 1:
            yield "Event 'new' on client #12\n"
            _connect(fake)
            yield "Event 'new' on card #70\n"
            yield "Event 'new' on sink #80\n"
            yield "Event 'new' on source #81\n"
        await asyncio.Event().wait()
        yield ""  # pragma: no cover

    async def scenario():
        system = PactlAudioSystem(PactlClient(runner=fake), subscribe_lines=lines, restart_delay=0.0)
        await system.start()
        assert system.default_output_device().device_id == BUILT_IN_SINK["name"]
        first = await asyncio.wait_for(system.events.get(), timeout=1.0)
        await asyncio.sleep(0.05)
        rest = [system.events.get_nowait() for _ in range(system.events.qsize())]
        await system.stop()
        return [first] + rest

    events = asyncio.run(scenario())
    assert _kinds(events) == [
        ProviderEventKind.DEVICES_ADDED,
        ProviderEventKind.DEFAULT_OUTPUT_CHANGED,
        ProviderEventKind.DEFAULT_INPUT_CHANGED,
    ]


def test_subscribe_restarts_after_stream_ends():
    fake = _desk_pactl()
    calls = {"n": 0}

    async def lines():
        calls["n"] += 1
        if calls["n"] == 1:
            _connect(fake)
            return
        await asyncio.Event().wait()
        yield ""  # pragma: no cover

    async def scenario():
        system = PactlAudioSystem(PactlClient(runner=fake), subscribe_lines=lines, restart_delay=0.0)
        await system.resync(emit=False)
        await system.start()
        event = await asyncio.wait_for(system.events.get(), timeout=1.0)
        await system.stop()
        return event

    event = asyncio.run(scenario())
    assert event.kind is ProviderEventKind.DEVICES_ADDED
    assert calls["n"] >= 2


def test_topology_defaults_empty():
    topo = Topology()
    assert topo.inputs == ()
    assert topo.default_output is None
