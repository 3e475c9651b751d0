"""Infer the active Bluetooth profile from sample rate and channel count.

HFP/SCO runs mono at 8 or 16 kHz; A2DP runs stereo at 44.1 or 48 kHz. Nothing
lower in the stack tells us the codec directly, so the two numbers are all we
go on.
"""

from __future__ import annotations

from typing import Optional, Tuple

from .devices import CodecInfo, DeviceSnapshot, QualityState


CALL_MODE_MAX_RATE = 16000.0


def _is_call_profile(rate: float, channels: int) -> bool:
    return channels <= 1 or rate <= CALL_MODE_MAX_RATE


def format_sample_rate(rate: Optional[float]) -> str:
    if rate is None:
        return "— kHz"
    return f"{rate / 1000.0:.1f} kHz"


def codec_info_for(device: Optional[DeviceSnapshot]) -> Optional[CodecInfo]:
    """Return codec details, or None when the device is not Bluetooth."""
    if device is None or not device.is_bluetooth:
        return None

    rate = device.sample_rate or 0.0
    channels = device.output_channels

    if _is_call_profile(rate, channels):
        codec = "SCO" if rate > 0 else "Unknown"
        profile = "HFP"
        high_quality = False
    else:
        codec = "AAC" if rate > 0 else "Unknown"
        profile = "A2DP"
        high_quality = True

    rate_display = format_sample_rate(device.sample_rate)
    channel_display = "Stereo" if channels >= 2 else "Mono"
    return CodecInfo(
        codec_name=codec,
        profile_name=profile,
        sample_rate_display=rate_display,
        channel_display=channel_display,
        is_high_quality=high_quality,
        summary=f"{codec} · {rate_display} · {channel_display}",
    )


def classify(device: Optional[DeviceSnapshot]) -> Tuple[QualityState, Optional[CodecInfo]]:
    """Quality state and codec details for the current default output."""
    info = codec_info_for(device)
    if info is None:
        return QualityState.DISCONNECTED, None
    state = QualityState.HIGH_QUALITY if info.is_high_quality else QualityState.CALL_MODE
    return state, info
