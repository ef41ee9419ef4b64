"""Logging setup for applications embedding steward."""

from __future__ import annotations

import logging

from steward.config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int | None = None) -> None:
    """Install a root handler using the configured log level.

    Library code only ever calls ``logging.getLogger(__name__)``; this is
    for scripts and applications that want steward's log lines on stderr.
    paramiko's transport chatter is capped at WARNING.
    """
    if level is None:
        level = get_settings().log_level
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("paramiko").setLevel(logging.WARNING)
