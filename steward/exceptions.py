"""
Steward Exceptions

Exception classes for every failure the engine can surface. Each class
carries a human-readable message plus structured context so callers can
branch on the kind of failure and log it without parsing strings.

This module defines:
- StewardError: Common base class
- TargetConnectionError: Dial/handshake/authentication failures
- CommandExecutionError: Spawn, session or pipe failures (not exit codes)
- CommandTimeoutError: A command exceeded its deadline
- CommandFailedError: A rule's command exited non-zero
- EscalationError: Sudo escalation failures, with three distinct kinds
- SFTPBootstrapError: Escalated SFTP channel could not be established
- FileTransferError: Put/Get failures
- RuleError: Check/Ensure failures wrapped with rule and target identity

Error Taxonomy:
    A command that runs and exits non-zero is NOT an error. Its status is
    reported in CommandResult.exit_status and callers decide whether it
    matters. Exceptions are reserved for the execution layer itself.

Security Considerations:
- Messages never contain passwords
- Command text is truncated to keep log lines bounded
- Sudo output kept for diagnostics never includes sentinels or passwords

Usage:
    from steward.exceptions import SudoWrongPasswordError, RuleError

    try:
        status = apply(trace, "nginx", rule, target)
    except RuleError as e:
        logger.error("Apply failed: %s", e)
        if isinstance(e.__cause__, SudoWrongPasswordError):
            ...
"""

from __future__ import annotations

from typing import Any

_MAX_COMMAND_LENGTH = 100


def _truncate(command: str | None) -> str | None:
    """Truncate command text for messages and logs."""
    if command and len(command) > _MAX_COMMAND_LENGTH:
        return command[:_MAX_COMMAND_LENGTH] + "..."
    return command


class StewardError(Exception):
    """Base class for all steward errors."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message


class TargetConnectionError(StewardError):
    """
    Raised when a connection to a target cannot be established.

    Attributes:
        message: Human-readable error description
        hostname: Target hostname or IP address
        port: Target SSH port
        error_type: Categorized error type for handling

    Error Types:
        - auth_failed: Authentication credentials rejected
        - timeout: Connection timed out
        - refused: Connection actively refused
        - unreachable: Network path not available
        - ssh_error: SSH protocol negotiation failed
        - connection_error: Any other socket level failure
    """

    def __init__(
        self,
        message: str,
        hostname: str | None = None,
        port: int | None = None,
        error_type: str | None = None,
    ) -> None:
        self.hostname = hostname
        self.port = port
        self.error_type = error_type
        super().__init__(message)

    def __str__(self) -> str:
        if self.hostname:
            return f"{self.message} (target: {self.hostname}:{self.port or 22})"
        return self.message

    def __repr__(self) -> str:
        return (
            f"TargetConnectionError(message={self.message!r}, "
            f"hostname={self.hostname!r}, port={self.port!r}, "
            f"error_type={self.error_type!r})"
        )


class CommandExecutionError(StewardError):
    """
    Raised when a command could not be executed at all.

    Covers process spawn failures, SSH session/channel failures and pipe
    setup failures. A non-zero exit code is never reported this way.

    Attributes:
        message: Human-readable error description
        command: The command that failed (truncated)
        target: String form of the target the command was sent to
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        target: Any = None,
    ) -> None:
        self.command = _truncate(command)
        self.target = str(target) if target is not None else None
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.command:
            parts.append(f"command: {self.command}")
        if self.target:
            parts.append(f"target: {self.target}")
        return " | ".join(parts)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, " f"command={self.command!r}, target={self.target!r})"


class CommandTimeoutError(CommandExecutionError):
    """Raised when a command does not finish before its deadline."""

    def __init__(
        self,
        message: str,
        command: str | None = None,
        target: Any = None,
        timeout: float | None = None,
    ) -> None:
        self.timeout = timeout
        super().__init__(message, command=command, target=target)


class CommandFailedError(StewardError):
    """
    Raised by rules when a command they depend on exits non-zero.

    Targets never raise this; they report exit codes in CommandResult.

    Attributes:
        message: Human-readable error description
        command: The command (truncated)
        exit_status: Exit status it returned
        stderr: Its stderr, decoded and stripped
    """

    def __init__(
        self,
        message: str,
        command: str | None = None,
        exit_status: int | None = None,
        stderr: str = "",
    ) -> None:
        self.command = _truncate(command)
        self.exit_status = exit_status
        self.stderr = stderr
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.command:
            parts.append(f"command: {self.command}")
        if self.exit_status is not None:
            parts.append(f"exit status: {self.exit_status}")
        if self.stderr:
            parts.append(f"stderr: {self.stderr}")
        return " | ".join(parts)


class EscalationError(StewardError):
    """
    Base class for sudo escalation failures.

    Three kinds are distinguished by subclass:
        - SudoWrongPasswordError: sudo prompted a second time
        - SudoRefusedError: sudo itself failed before granting access
        - SudoUndetectedError: the stream ended with no sentinel at all

    Attributes:
        message: Human-readable error description
        user: The user escalation was attempted to
        command: The wrapped command (truncated)
        output: Text sudo printed before the outcome was known
    """

    kind = "escalation"

    def __init__(
        self,
        message: str,
        user: str | None = None,
        command: str | None = None,
        output: str = "",
    ) -> None:
        self.user = user
        self.command = _truncate(command)
        self.output = output
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.user:
            parts.append(f"user: {self.user}")
        if self.output.strip():
            parts.append(f"sudo: {self.output.strip()}")
        return " | ".join(parts)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(message={self.message!r}, user={self.user!r}, " f"command={self.command!r})"


class SudoWrongPasswordError(EscalationError):
    """Sudo asked for the password again, or asked when none was configured."""

    kind = "wrong_password"


class SudoRefusedError(EscalationError):
    """Sudo refused to run the command (not permitted, sudo missing, ...)."""

    kind = "refused"


class SudoUndetectedError(EscalationError):
    """Neither success nor failure was observed before the stream closed."""

    kind = "undetected"


class SFTPBootstrapError(StewardError):
    """
    Raised when an SFTP channel for another user cannot be started.

    Attributes:
        message: Human-readable error description
        user: User the SFTP server was to run as
        hostname: Remote host
    """

    def __init__(
        self,
        message: str,
        user: str | None = None,
        hostname: str | None = None,
    ) -> None:
        self.user = user
        self.hostname = hostname
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.user:
            parts.append(f"user: {self.user}")
        if self.hostname:
            parts.append(f"host: {self.hostname}")
        return " | ".join(parts)


class SFTPServerNotFoundError(SFTPBootstrapError):
    """No sftp-server binary was found on any of the known paths."""


class FileTransferError(StewardError):
    """
    Raised when Put or Get fails.

    Attributes:
        message: Human-readable error description
        path: The remote or local file path
        target: String form of the target
    """

    def __init__(self, message: str, path: str | None = None, target: Any = None) -> None:
        self.path = path
        self.target = str(target) if target is not None else None
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.path:
            parts.append(f"path: {self.path}")
        if self.target:
            parts.append(f"target: {self.target}")
        return " | ".join(parts)


class RuleError(StewardError):
    """
    Raised when a rule cannot be checked or enforced.

    The original exception is chained as ``__cause__``.

    Attributes:
        message: Human-readable error description
        rule_name: Name the rule was applied under
        target: String form of the target
        status: Terminal status of the failed application (always FAILED)
        partial_status: Folded status of work completed before the failure
    """

    def __init__(
        self,
        message: str,
        rule_name: str | None = None,
        target: Any = None,
        status: Any = None,
        partial_status: Any = None,
    ) -> None:
        self.rule_name = rule_name
        self.target = str(target) if target is not None else None
        self.status = status
        self.partial_status = partial_status
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.rule_name:
            parts.append(f"rule: {self.rule_name}")
        if self.target:
            parts.append(f"target: {self.target}")
        if self.__cause__ is not None:
            parts.append(f"cause: {self.__cause__}")
        return " | ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, rule_name={self.rule_name!r}, "
            f"target={self.target!r}, status={self.status!r})"
        )


class RuleCheckError(RuleError):
    """The rule's check raised."""


class RuleEnsureError(RuleError):
    """The rule's ensure raised."""


__all__ = [
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
