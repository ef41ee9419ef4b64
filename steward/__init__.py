"""
steward - embeddable configuration engine.

Runs shell commands and moves files on local and SSH targets, escalating
through sudo without a terminal, and reconciles idempotent check/ensure
rules against them.

    steward/
    ├── __init__.py        # This file - public API
    ├── config.py          # StewardSettings (pydantic-settings)
    ├── exceptions.py      # StewardError hierarchy
    ├── facts.py           # OS facts from /etc/*release
    ├── logging_config.py  # configure_logging()
    ├── trace.py           # Trace spans and TraceAdapter
    ├── shell/             # CommandResult, quoting, sudo protocol
    ├── target/            # LocalTarget, RemoteTarget, SFTP channels
    └── rules/             # apply(), Cmd, Meta, Multi, Status

Usage:
    from steward import Cmd, LocalTarget, apply

    with LocalTarget(sudo_password="secret") as local:
        status = apply(None, "motd", Cmd("test -s /etc/motd", "echo hi > /etc/motd", user="root"), local)
"""

from .config import StewardSettings, get_settings
from .exceptions import (
    CommandExecutionError,
    CommandFailedError,
    CommandTimeoutError,
    EscalationError,
    FileTransferError,
    RuleCheckError,
    RuleEnsureError,
    RuleError,
    SFTPBootstrapError,
    SFTPServerNotFoundError,
    StewardError,
    SudoRefusedError,
    SudoUndetectedError,
    SudoWrongPasswordError,
    TargetConnectionError,
)
from .facts import Facts, gather_facts
from .logging_config import configure_logging
from .rules import Cmd, Meta, Multi, Rule, Status, apply, fold
from .shell import BLOCKED_BY_VALIDATE, CommandResult, escape, quote
from .target import LocalTarget, RemoteTarget, Target
from .trace import Trace, TraceAdapter, new_trace

__version__ = "0.1.0"

__all__ = [
    "StewardSettings",
    "get_settings",
    "configure_logging",
    "Trace",
    "TraceAdapter",
    "new_trace",
    "CommandResult",
    "BLOCKED_BY_VALIDATE",
    "escape",
    "quote",
    "Target",
    "LocalTarget",
    "RemoteTarget",
    "Facts",
    "gather_facts",
    "Rule",
    "Cmd",
    "Meta",
    "Multi",
    "Status",
    "apply",
    "fold",
    "StewardError",
    "TargetConnectionError",
    "CommandExecutionError",
    "CommandTimeoutError",
    "CommandFailedError",
    "EscalationError",
    "SudoWrongPasswordError",
    "SudoRefusedError",
    "SudoUndetectedError",
    "SFTPBootstrapError",
    "SFTPServerNotFoundError",
    "FileTransferError",
    "RuleError",
    "RuleCheckError",
    "RuleEnsureError",
]
