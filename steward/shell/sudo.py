"""
Sudo Escalation Protocol

Runs a command as another user through ``sudo`` without a terminal, while
supplying the password at most once and telling apart "wrong password",
"sudo refused" and "success" from nothing but the process's stderr.

Three fixed sentinel strings are injected into stderr:

    PROMPT   sudo's password prompt text (``sudo -p PROMPT``)
    SUCCESS  printed by the escalated shell before the real command runs
    FAILURE  printed by a fallback branch when sudo (or the command) fails

Wrapped command shape (see build_command):

    sudo [-k] -p PROMPT -S -u USER bash -c '>&2 printf SUCCESS; CMD'
        || { __rc=$?; >&2 printf FAILURE; exit $__rc; }

``-S`` makes sudo read the password from stdin. The fallback keeps the
original exit status so a command that ran and failed still reports its
own code; a FAILURE that arrives after SUCCESS is stripped from the
forwarded stderr.

State Machine:
    AWAITING_PROMPT --SUCCESS--> AUTHORIZED
    AWAITING_PROMPT --FAILURE--> REFUSED
    AWAITING_PROMPT --PROMPT---> AWAITING_PROMPT (prompts += 1)

    Sentinels are matched as substrings of an accumulated window, so any
    chunking of the byte stream works and extra text (the sudo lecture,
    "Sorry, try again.") may surround them.

Components:
    SudoMatcher       pure FSM, bytes in, events and passthrough bytes out
    SudoStderrWriter  I/O driver installed as the process stderr sink; it
                      answers the first prompt, forwards caller stdin after
                      SUCCESS and classifies the outcome

Usage:
    writer = SudoStderrWriter(password, stdin_pipe, stdin=b"data")
    for chunk in stderr_chunks:
        writer.write(chunk)
    writer.close()
    writer.raise_for_outcome(user="root", command=cmd)
    stderr = bytes(writer.stderr)
"""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Protocol

from steward.exceptions import (
    EscalationError,
    SudoRefusedError,
    SudoUndetectedError,
    SudoWrongPasswordError,
)
from steward.shell.quoting import escape, quote

logger = logging.getLogger(__name__)

# Sentinels must need no shell escaping and never show up in real output
SUDO_PROMPT = "SHOWMETHEMONEY"
SUDO_SUCCESS = "ITISALLGOODNOW"
SUDO_FAILURE = "OHMYTHISISBAAD"


class SudoState(Enum):
    """Escalation progress as observed on stderr."""

    AWAITING_PROMPT = "awaiting_prompt"
    AUTHORIZED = "authorized"
    REFUSED = "refused"


class SudoEvent(Enum):
    """A sentinel observed on stderr."""

    PROMPT = SUDO_PROMPT
    SUCCESS = SUDO_SUCCESS
    FAILURE = SUDO_FAILURE


_SENTINELS = [(e.value.encode(), e) for e in SudoEvent]
_LONGEST = max(len(s) for s, _ in _SENTINELS)
_FAILURE_BYTES = SUDO_FAILURE.encode()


def build_command(cmd: str, user: str, *, reset_timestamp: bool = False) -> str:
    """Wrap cmd so it runs as user through the sentinel-guarded sudo.

    Args:
        cmd: Command to run. Embedded inside single quotes after escaping.
        user: User to run as.
        reset_timestamp: Pass ``-k`` so a cached sudo timestamp is ignored
            and a password prompt is guaranteed.

    Returns:
        Command string for ``bash -c`` (local) or an SSH exec request.

    Example:
    -------
        >>> build_command("id -un", "root")
        "sudo -p SHOWMETHEMONEY -S -u root bash -c '>&2 printf ITISALLGOODNOW; id -un' || ..."

    """
    reset = "-k " if reset_timestamp else ""
    return (
        f"sudo {reset}-p {SUDO_PROMPT} -S -u {quote(user)} "
        f"bash -c '>&2 printf {SUDO_SUCCESS}; {escape(cmd)}'"
        f" || {{ __rc=$?; >&2 printf {SUDO_FAILURE}; exit $__rc; }}"
    )


class SudoMatcher:
    """Finite-state sentinel matcher over an arbitrarily chunked byte stream.

    feed() returns the sentinel events found in the chunk and the bytes
    that belong to the escalated command's own stderr. Bytes seen before
    the outcome is known are kept in ``preamble`` (sudo's own messages)
    with the sentinels removed; they are never passed through.

    Attributes:
        state: Current SudoState
        prompts: Number of password prompts observed
        preamble: sudo output observed before SUCCESS/FAILURE
    """

    def __init__(self) -> None:
        self.state = SudoState.AWAITING_PROMPT
        self.prompts = 0
        self.preamble = bytearray()
        self._window = bytearray()
        self._held = bytearray()

    def feed(self, data: bytes) -> tuple[list[SudoEvent], bytes]:
        """Consume a chunk of stderr.

        Args:
            data: Next bytes from stderr, of any length.

        Returns:
            Tuple of (events in order of appearance, passthrough bytes).

        """
        if self.state is SudoState.AUTHORIZED:
            return [], self._pass_through(data)
        if self.state is SudoState.REFUSED:
            self.preamble += data
            return [], b""

        events: list[SudoEvent] = []
        passthrough = b""
        self._window += data

        while self.state is SudoState.AWAITING_PROMPT:
            hit = self._find_sentinel()
            if hit is None:
                break
            pos, sentinel, event = hit
            self.preamble += self._window[:pos]
            del self._window[: pos + len(sentinel)]
            events.append(event)

            if event is SudoEvent.PROMPT:
                self.prompts += 1
            elif event is SudoEvent.SUCCESS:
                self.state = SudoState.AUTHORIZED
                rest = bytes(self._window)
                self._window.clear()
                passthrough = self._pass_through(rest)
            else:
                self.state = SudoState.REFUSED
                self.preamble += self._window
                self._window.clear()

        if self.state is SudoState.AWAITING_PROMPT:
            # Keep only what could still be the start of a sentinel
            keep = _LONGEST - 1
            if len(self._window) > keep:
                cut = len(self._window) - keep
                self.preamble += self._window[:cut]
                del self._window[:cut]

        return events, passthrough

    def finish(self) -> bytes:
        """Signal end of stream and return any held-back passthrough bytes."""
        if self.state is SudoState.AUTHORIZED:
            tail = bytes(self._held)
            self._held.clear()
            if tail.endswith(_FAILURE_BYTES):
                tail = tail[: -len(_FAILURE_BYTES)]
            return tail

        self.preamble += self._window
        self._window.clear()
        return b""

    @property
    def authorized(self) -> bool:
        return self.state is SudoState.AUTHORIZED

    @property
    def wrong_password(self) -> bool:
        """Return True if sudo prompted more than once."""
        return self.prompts > 1

    def error(
        self,
        *,
        user: str | None = None,
        command: str | None = None,
        password_missing: bool = False,
    ) -> EscalationError | None:
        """Classify a finished stream; None means escalation succeeded."""
        if self.state is SudoState.AUTHORIZED:
            return None

        output = self.preamble.decode("utf-8", errors="replace")
        if self.wrong_password:
            return SudoWrongPasswordError("wrong sudo password", user=user, command=command, output=output)
        if password_missing and self.prompts:
            return SudoWrongPasswordError(
                "sudo asked for a password but none is configured",
                user=user,
                command=command,
                output=output,
            )
        if self.state is SudoState.REFUSED:
            return SudoRefusedError("sudo refused to run the command", user=user, command=command, output=output)
        return SudoUndetectedError(
            "stream closed before sudo reported success or failure",
            user=user,
            command=command,
            output=output,
        )

    def _find_sentinel(self) -> tuple[int, bytes, SudoEvent] | None:
        best = None
        for sentinel, event in _SENTINELS:
            pos = self._window.find(sentinel)
            if pos != -1 and (best is None or pos < best[0]):
                best = (pos, sentinel, event)
        return best

    def _pass_through(self, data: bytes) -> bytes:
        # Hold back enough bytes to strip a trailing FAILURE at end of stream
        self._held += data
        cut = len(self._held) - len(_FAILURE_BYTES)
        if cut <= 0:
            return b""
        out = bytes(self._held[:cut])
        del self._held[:cut]
        return out


class StdinPipe(Protocol):
    """Write end of a process or session stdin."""

    def write(self, data: bytes) -> object: ...

    def close(self) -> object: ...


class SudoStderrWriter:
    """Stderr sink that answers sudo prompts and forwards stdin once authorized.

    Install it wherever the process/session stderr is consumed and call
    write() with every chunk. On the first PROMPT the password is written
    to the stdin pipe. A second PROMPT means the password was wrong: the
    pipe is closed so sudo gives up instead of waiting. On SUCCESS the
    caller's stdin is pumped by a background thread and the pipe closed;
    every later byte is the command's own stderr and is collected in
    ``stderr``.

    Attributes:
        matcher: The underlying SudoMatcher
        stderr: Command stderr observed after authorization
    """

    def __init__(
        self,
        password: str | None,
        stdin_pipe: StdinPipe,
        stdin: bytes | None = None,
        *,
        chunk_size: int = 32768,
    ) -> None:
        self.matcher = SudoMatcher()
        self.stderr = bytearray()
        self._password = password
        self._pipe = stdin_pipe
        self._stdin = stdin
        self._chunk_size = chunk_size
        self._pipe_closed = False
        self._pump: threading.Thread | None = None
        self._lock = threading.Lock()

    def write(self, data: bytes) -> int:
        """Feed stderr bytes; returns len(data) like a file object."""
        events, passthrough = self.matcher.feed(data)
        for event in events:
            self._handle(event)
        if passthrough:
            self.stderr += passthrough
        return len(data)

    def close(self) -> None:
        """End of stderr: flush held bytes and wait briefly for the stdin pump."""
        self.stderr += self.matcher.finish()
        if self._pump is not None:
            self._pump.join(timeout=1.0)
        if not self.matcher.authorized:
            self._close_pipe()

    def raise_for_outcome(self, *, user: str | None = None, command: str | None = None) -> None:
        """Raise the matching EscalationError unless sudo authorized the command."""
        err = self.matcher.error(user=user, command=command, password_missing=self._password is None)
        if err is not None:
            raise err

    def _handle(self, event: SudoEvent) -> None:
        if event is SudoEvent.PROMPT:
            if self.matcher.prompts == 1 and self._password is not None:
                logger.debug("sudo prompted for password, answering once")
                self._send(self._password.encode() + b"\n")
            else:
                logger.debug("sudo prompted again (%d), giving up", self.matcher.prompts)
                self._close_pipe()
        elif event is SudoEvent.SUCCESS:
            logger.debug("sudo authorized, forwarding stdin")
            self._pump = threading.Thread(target=self._pump_stdin, name="sudo-stdin", daemon=True)
            self._pump.start()
        else:
            logger.debug("sudo reported failure")
            self._close_pipe()

    def _pump_stdin(self) -> None:
        data = self._stdin or b""
        for i in range(0, len(data), self._chunk_size):
            if not self._send(data[i : i + self._chunk_size]):
                break
        self._close_pipe()

    def _send(self, data: bytes) -> bool:
        # Best effort: the process may have exited or its pipe been closed
        try:
            self._pipe.write(data)
            return True
        except (OSError, ValueError) as exc:
            logger.debug("stdin write to sudo process failed: %s", exc)
            return False

    def _close_pipe(self) -> None:
        with self._lock:
            if self._pipe_closed:
                return
            self._pipe_closed = True
        try:
            self._pipe.close()
        except OSError as exc:
            logger.debug("closing sudo stdin failed: %s", exc)
