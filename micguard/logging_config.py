from __future__ import annotations

import logging
import os
from typing import Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _resolve_level(name: str) -> int:
    if name.isdigit():
        return int(name)
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def setup_logging(level: Optional[str] = None) -> int:
    """Configure stdlib logging for the daemon and return the level in effect.

    Level comes from the argument, then MICGUARD_LOG_LEVEL, then INFO. An
    unrecognised name falls back to INFO. The asyncio logger stays at WARNING
    unless DEBUG is requested.
    """

    requested = (level or os.environ.get("MICGUARD_LOG_LEVEL") or "INFO").strip().upper()
    effective = _resolve_level(requested)

    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=effective, format=LOG_FORMAT)
    else:
        root.setLevel(effective)

    logging.getLogger("asyncio").setLevel(logging.DEBUG if effective <= logging.DEBUG else logging.WARNING)
    if logging.getLevelName(requested) != effective and not requested.isdigit():
        logging.getLogger(__name__).warning("unknown log level %r; using INFO", requested)
    return effective
