"""
Shell Primitives

Building blocks shared by every target:

    shell/
    ├── __init__.py   # This file - public API
    ├── result.py     # CommandResult and exit status conventions
    ├── quoting.py    # escape() for single-quoted bodies, quote() for words
    └── sudo.py       # Sentinel-guarded sudo escalation protocol
"""

from .quoting import escape, quote
from .result import BLOCKED_BY_VALIDATE, EXIT_ABNORMAL, CommandResult
from .sudo import (
    SUDO_FAILURE,
    SUDO_PROMPT,
    SUDO_SUCCESS,
    SudoEvent,
    SudoMatcher,
    SudoState,
    SudoStderrWriter,
    build_command,
)

__all__ = [
    "escape",
    "quote",
    "CommandResult",
    "BLOCKED_BY_VALIDATE",
    "EXIT_ABNORMAL",
    "SUDO_PROMPT",
    "SUDO_SUCCESS",
    "SUDO_FAILURE",
    "SudoEvent",
    "SudoMatcher",
    "SudoState",
    "SudoStderrWriter",
    "build_command",
]
