"""Shared pytest configuration and fixtures for the micguard test suite."""

import os
import sys
from pathlib import Path

import pytest

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fakes import FakeAudioSystem, FakeLoop, RecordingDelivery, SampleDevices  # noqa: E402
from micguard.engine.config import ArbitrationPolicy, Preferences  # noqa: E402
from micguard.engine.controller import ControllerCallbacks, InputArbitrationController  # noqa: E402
from micguard.engine.notifier import TransitionNotifier  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_micguard_env(monkeypatch):
    """Keep MICGUARD_* variables from the developer's shell out of the tests."""
    for key in list(os.environ):
        if key.startswith("MICGUARD_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def loop():
    return FakeLoop()


@pytest.fixture
def audio():
    return FakeAudioSystem()


@pytest.fixture
def prefs():
    return Preferences()


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def policy():
    # Zero connection delay so device-added reactions happen synchronously.
    return ArbitrationPolicy(connection_delay=0.0, debounce_interval=1.0, cooldown=5.0, poll_interval=0.0)


@pytest.fixture
def statuses():
    return []


@pytest.fixture
def controller(audio, prefs, delivery, policy, loop, statuses):
    ctl = InputArbitrationController(
        audio,
        prefs,
        TransitionNotifier(prefs, delivery),
        policy=policy,
        scheduler=loop,
        callbacks=ControllerCallbacks(on_status_changed=statuses.append),
    )
    audio.add_input(SampleDevices.built_in_mic())
    audio.add_output(SampleDevices.speakers())
    audio.set_default_input_device(SampleDevices.built_in_mic())
    audio.set_default_output_device(SampleDevices.speakers())
    ctl.start()
    return ctl
