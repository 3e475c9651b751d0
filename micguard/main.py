from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from dataclasses import replace

from .engine.config import ArbitrationPolicy, Preferences
from .engine.controller import ControllerCallbacks, InputArbitrationController
from .engine.devices import EngineStatus
from .engine.notifier import LogDelivery, TransitionNotifier
from .logging_config import setup_logging
from .pulse.audio_system import PactlAudioSystem
from .pulse.pactl import PactlClient


logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(
		description="Keep a Bluetooth headset's microphone from taking over the system input",
	)
	parser.add_argument(
		"--log-level",
		default=None,
		help="Logging level (debug, info, warning, error). Can also use MICGUARD_LOG_LEVEL.",
	)
	parser.add_argument(
		"--pactl",
		default=os.environ.get("MICGUARD_PACTL", "pactl"),
		help="pactl binary to use",
	)
	parser.add_argument("--connection-delay", type=float, default=None, help="Seconds to wait after a headset connects")
	parser.add_argument("--debounce", type=float, default=None, help="Seconds to ignore input changes after our own switch")
	parser.add_argument("--cooldown", type=float, default=None, help="Seconds of silence before a call counts as ended")
	parser.add_argument("--poll-interval", type=float, default=None, help="Fallback poll interval while monitoring (0 disables)")
	parser.add_argument("--no-auto-switch", action="store_true", help="Only report state; never switch the input")
	parser.add_argument("--preferred-input", default=None, help="Input device id to prefer over the built-in microphone")
	parser.add_argument("--notify-on-drop", action="store_true", help="Notify when the headset drops to call mode")
	parser.add_argument("--notify-on-restore", action="store_true", help="Notify when stereo quality comes back")
	mode = parser.add_mutually_exclusive_group()
	mode.add_argument("--list-inputs", action="store_true", help="Print input devices and exit")
	mode.add_argument("--fix-now", action="store_true", help="Switch to the preferred microphone once and exit")
	return parser


def _policy_from_args(args: argparse.Namespace) -> ArbitrationPolicy:
	policy = ArbitrationPolicy.from_env()
	overrides = {
		"connection_delay": args.connection_delay,
		"debounce_interval": args.debounce,
		"cooldown": args.cooldown,
		"poll_interval": args.poll_interval,
	}
	return replace(policy, **{k: v for k, v in overrides.items() if v is not None})


def _preferences_from_args(args: argparse.Namespace) -> Preferences:
	prefs = Preferences.from_env()
	if args.no_auto_switch:
		prefs.auto_switching_enabled = False
	if args.preferred_input is not None:
		prefs.preferred_input_device_uid = args.preferred_input
	if args.notify_on_drop:
		prefs.notify_on_quality_drop = True
	if args.notify_on_restore:
		prefs.notify_on_quality_restore = True
	return prefs


def _log_status(status: EngineStatus) -> None:
	codec = status.codec_info.summary if status.codec_info else "none"
	logger.info(
		"status quality=%r output=%r input=%r codec=%s",
		status.quality_state.label,
		status.output_device_name,
		status.input_device_name,
		codec,
	)


async def _run(args: argparse.Namespace, policy: ArbitrationPolicy, prefs: Preferences) -> int:
	audio_system = PactlAudioSystem(PactlClient(binary=args.pactl))
	await audio_system.start()

	controller = InputArbitrationController(
		audio_system,
		prefs,
		TransitionNotifier(prefs, LogDelivery()),
		policy=policy,
		callbacks=ControllerCallbacks(on_status_changed=_log_status),
	)

	if args.list_inputs:
		default = audio_system.default_input_device()
		for name, device_id in controller.available_input_devices():
			marker = "*" if default is not None and default.device_id == device_id else " "
			print(f"{marker} {device_id}\t{name}")
		await audio_system.stop()
		return 0

	if controller.clear_stale_preferred_input():
		logger.warning("preferred input not present; falling back to built-in microphone")

	controller.start()

	if args.fix_now:
		controller.fix_now()
		ok = await audio_system.drain()
		await audio_system.stop()
		return 0 if ok else 1

	stop_evt = asyncio.Event()
	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		try:
			loop.add_signal_handler(sig, stop_evt.set)
		except (NotImplementedError, RuntimeError):
			logger.debug("signal handler unavailable sig=%s", sig)

	runner = asyncio.create_task(controller.run(audio_system.events), name="arbitration")
	try:
		await stop_evt.wait()
	finally:
		logger.info("shutting down")
		runner.cancel()
		try:
			await runner
		except asyncio.CancelledError:
			pass
		controller.stop()
		await audio_system.stop()
	return 0


def main(argv: list[str] | None = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)

	setup_logging(args.log_level)

	try:
		policy = _policy_from_args(args)
	except ValueError as e:
		parser.error(str(e))
	prefs = _preferences_from_args(args)

	try:
		return asyncio.run(_run(args, policy, prefs))
	except KeyboardInterrupt:
		return 130


if __name__ == "__main__":
	raise SystemExit(main(sys.argv[1:]))
