"""
Targets

Places commands run and files move:

    target/
    ├── __init__.py   # This file - public API
    ├── base.py       # Target contract (run/run_change/put/get/as_user)
    ├── local.py      # LocalTarget: subprocesses on this machine
    ├── remote.py     # RemoteTarget: paramiko SSH sessions
    ├── sftp.py       # SFTP channels, including sudo-bootstrapped ones
    └── policies.py   # Host key policies for RemoteTarget
"""

from .base import Stdin, Target, read_stdin
from .local import LocalTarget, current_user
from .policies import StrictHostKeyPolicy, WarnAndRememberPolicy, create_host_key_policy
from .remote import RemoteTarget
from .sftp import (
    SFTPClientCache,
    build_sftp_command,
    open_command_sftp,
    open_subsystem_sftp,
    open_sudo_sftp,
)

__all__ = [
    "Target",
    "Stdin",
    "read_stdin",
    "LocalTarget",
    "current_user",
    "RemoteTarget",
    "SFTPClientCache",
    "build_sftp_command",
    "open_command_sftp",
    "open_subsystem_sftp",
    "open_sudo_sftp",
    "StrictHostKeyPolicy",
    "WarnAndRememberPolicy",
    "create_host_key_policy",
]
