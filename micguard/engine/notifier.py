"""User-facing messages for quality transitions.

`decide` only picks the content; delivery belongs to whatever the host plugs
in as `NotificationDelivery`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Protocol

from .devices import QualityState


logger = logging.getLogger(__name__)


class NotificationPreferences(Protocol):
    notify_on_quality_drop: bool
    notify_on_quality_restore: bool


class NotificationDelivery(Protocol):
    def deliver(self, title: str, body: str) -> None: ...


@dataclass(frozen=True)
class QualityMessage:
    title: str
    body: str


def decide(
    old: QualityState,
    new: QualityState,
    device_name: str,
    prefs: NotificationPreferences,
) -> Optional[QualityMessage]:
    if old == new:
        return None
    # Connecting or disconnecting headphones is not a quality change.
    if QualityState.DISCONNECTED in (old, new):
        return None

    if new == QualityState.CALL_MODE and old == QualityState.HIGH_QUALITY and prefs.notify_on_quality_drop:
        return QualityMessage("Audio quality reduced", f"{device_name} switched to call mode")
    if new == QualityState.HIGH_QUALITY and old == QualityState.CALL_MODE and prefs.notify_on_quality_restore:
        return QualityMessage("Audio quality restored", f"{device_name} back to stereo")
    return None


class TransitionNotifier:
    def __init__(self, preferences: NotificationPreferences, delivery: NotificationDelivery):
        self._preferences = preferences
        self._delivery = delivery

    def quality_did_change(self, old: QualityState, new: QualityState, device_name: str) -> Optional[QualityMessage]:
        message = decide(old, new, device_name, self._preferences)
        if message is None:
            return None
        logger.info("notify title=%r device=%s", message.title, device_name)
        try:
            self._delivery.deliver(message.title, message.body)
        except Exception:
            logger.exception("notification delivery failed title=%r", message.title)
        return message


class LogDelivery:
    """Delivery sink for headless runs: writes notifications to the log."""

    def __init__(self, name: str = "micguard.notifications"):
        self._logger = logging.getLogger(name)

    def deliver(self, title: str, body: str) -> None:
        self._logger.info("%s: %s", title, body)
