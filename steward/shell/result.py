"""Result of a command run on a target."""

from __future__ import annotations

from dataclasses import dataclass

# Exit status used when a changing command was not run because the target
# is in validate (check-only) mode. Outside the POSIX 0-255 range on purpose.
BLOCKED_BY_VALIDATE = 81549300

# Exit status reported when the process did not exit normally (killed by a
# signal, or the SSH server sent no exit status).
EXIT_ABNORMAL = -1


@dataclass(frozen=True)
class CommandResult:
    """Captured output and exit status of one command."""

    stdout: bytes = b""
    stderr: bytes = b""
    exit_status: int = 0

    @property
    def ok(self) -> bool:
        """Return True if the command exited 0."""
        return self.exit_status == 0

    @property
    def blocked(self) -> bool:
        """Return True if the command was blocked by validate mode."""
        return self.exit_status == BLOCKED_BY_VALIDATE

    @property
    def success(self) -> bool:
        """Return True on exit 0 or when blocked by validate mode."""
        return self.ok or self.blocked

    @property
    def out(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def err(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    def trim_out(self) -> str:
        """Return stdout as text with surrounding whitespace removed."""
        return self.out.strip()

    def trim_err(self) -> str:
        """Return stderr as text with surrounding whitespace removed."""
        return self.err.strip()

    @classmethod
    def blocked_by_validate(cls) -> CommandResult:
        return cls(exit_status=BLOCKED_BY_VALIDATE)
