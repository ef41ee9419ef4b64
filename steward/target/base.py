"""
Target Base Class

A Target is one place commands can run and files can move: the local
machine or a remote machine reached over SSH. Both variants share the
contract implemented here:

- run(cmd, stdin) executes through bash as the active user. When the
  active user differs from the connected user the command goes through
  the sudo escalation protocol instead of running directly.
- run_change() is run() for commands that modify state. On a target in
  validate (check-only) mode it returns BLOCKED_BY_VALIDATE without
  executing anything. run_query() is for read-only commands and always
  executes.
- put()/get() write and read whole files as the active user.
- as_user(user) returns a new handle sharing the underlying connection
  but with its own active user. The original handle is never modified.
- close() tears down the connection; call it exactly once per connection.

A non-zero exit is never an exception. Execution-layer failures (spawn,
dial, pipe, escalation) raise StewardError subclasses.

Every run/put/get spans the trace passed in (or a fresh root) once on
entry so nested calls form a call tree in the logs.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import IO, TYPE_CHECKING, Union

from steward.config import StewardSettings, get_settings
from steward.exceptions import CommandTimeoutError
from steward.shell.result import CommandResult
from steward.trace import Trace, TraceAdapter

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

Stdin = Union[bytes, str, IO[bytes], None]


def read_stdin(stdin: Stdin) -> bytes | None:
    """Normalize the accepted stdin forms to bytes (or None)."""
    if stdin is None:
        return None
    if isinstance(stdin, bytes):
        return stdin
    if isinstance(stdin, str):
        return stdin.encode()
    data = stdin.read()
    return data.encode() if isinstance(data, str) else data


class Target(ABC):
    """Common behaviour of local and remote targets."""

    def __init__(
        self,
        user: str,
        *,
        sudo_password: str | None = None,
        validate: bool = False,
        settings: StewardSettings | None = None,
    ) -> None:
        self._user = user
        self._active_user = user
        self._sudo_password = sudo_password
        self._validate = validate
        self.settings = settings or get_settings()

    # ── Identity ──────────────────────────────────────────────────────────

    @property
    def user(self) -> str:
        """The connected user; fixed for the life of the target."""
        return self._user

    @property
    def active_user(self) -> str:
        """The user operations execute as."""
        return self._active_user

    @property
    def needs_sudo(self) -> bool:
        """Return True if operations must be escalated through sudo."""
        return self._active_user != self._user

    @property
    def validate(self) -> bool:
        return self._validate

    @property
    def allow_change(self) -> bool:
        """Return True if run_change() will execute commands."""
        return not self._validate

    def as_user(self, user: str) -> Target:
        """Return a handle on the same connection operating as user.

        ``-`` means root, an empty string means the connected user. Nothing
        is verified here; a missing user or missing sudo rights surfaces on
        the next run/put/get.
        """
        if user == "-":
            user = "root"
        clone = copy.copy(self)
        clone._active_user = user or self._user
        return clone

    # ── Commands ──────────────────────────────────────────────────────────

    def run(
        self,
        cmd: str,
        stdin: Stdin = None,
        *,
        trace: Trace | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run cmd with bash as the active user.

        Args:
            cmd: Shell command.
            stdin: Optional input as bytes, str or a binary file object.
            trace: Parent trace; a fresh root is used when omitted.
            timeout: Deadline in seconds; defaults to settings.command_timeout.
                A deadline carried by trace shortens it further.

        Returns:
            CommandResult. Non-zero exits are reported, not raised.

        Raises:
            CommandExecutionError: The command could not be executed.
            CommandTimeoutError: The deadline passed.
            EscalationError: Sudo escalation failed.

        """
        trace = (trace or Trace.new()).span()
        log = TraceAdapter(logger, trace)
        data = read_stdin(stdin)
        if timeout is None:
            timeout = self.settings.command_timeout
        remaining = trace.remaining()
        if remaining is not None:
            if remaining <= 0:
                raise CommandTimeoutError(
                    "deadline passed before the command started", command=cmd, target=self, timeout=0
                )
            timeout = remaining if timeout is None else min(timeout, remaining)

        log.debug("run on %s (sudo=%s): %s", self, self.needs_sudo, cmd)
        if self.needs_sudo:
            result = self._run_sudo(cmd, data, timeout)
        else:
            result = self._run(cmd, data, timeout)
        log.debug(
            "exit=%d stdout=%dB stderr=%dB",
            result.exit_status,
            len(result.stdout),
            len(result.stderr),
        )
        return result

    def run_query(
        self,
        cmd: str,
        stdin: Stdin = None,
        *,
        trace: Trace | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command that does not modify the target."""
        return self.run(cmd, stdin, trace=trace, timeout=timeout)

    def run_change(
        self,
        cmd: str,
        stdin: Stdin = None,
        *,
        trace: Trace | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run a command that modifies the target.

        In validate mode nothing is executed and the result carries
        BLOCKED_BY_VALIDATE with empty output.
        """
        if self._validate:
            TraceAdapter(logger, (trace or Trace.new()).span()).info("blocked by validate: %s", cmd)
            return CommandResult.blocked_by_validate()
        return self.run(cmd, stdin, trace=trace, timeout=timeout)

    # ── Files ─────────────────────────────────────────────────────────────

    def put(self, path: str, data: bytes, perm: int = 0o644, *, trace: Trace | None = None) -> None:
        """Create or truncate path, write data and set perm, as the active user.

        Blocked (nothing written) in validate mode.

        Raises:
            FileTransferError: The file could not be written.

        """
        trace = (trace or Trace.new()).span()
        log = TraceAdapter(logger, trace)
        if self._validate:
            log.info("put %s blocked by validate", path)
            return
        log.debug("put %s (%dB, %04o) on %s", path, len(data), perm, self)
        self._put(path, data, perm, trace)

    def get(self, path: str, *, trace: Trace | None = None) -> bytes:
        """Read the whole file at path as the active user.

        Raises:
            FileTransferError: The file could not be read.

        """
        trace = (trace or Trace.new()).span()
        TraceAdapter(logger, trace).debug("get %s on %s", path, self)
        return self._get(path, trace)

    # ── Lifecycle ─────────────────────────────────────────────────────────

    @abstractmethod
    def close(self) -> None:
        """Close the underlying connection and every cached sub-connection."""

    def __enter__(self) -> Target:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ── Variant hooks ─────────────────────────────────────────────────────

    @abstractmethod
    def _run(self, cmd: str, stdin: bytes | None, timeout: float | None) -> CommandResult:
        """Run cmd directly as the connected user."""

    @abstractmethod
    def _run_sudo(self, cmd: str, stdin: bytes | None, timeout: float | None) -> CommandResult:
        """Run cmd as the active user through the escalation protocol."""

    @abstractmethod
    def _put(self, path: str, data: bytes, perm: int, trace: Trace) -> None: ...

    @abstractmethod
    def _get(self, path: str, trace: Trace) -> bytes: ...
