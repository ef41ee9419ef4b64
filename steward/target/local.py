"""Local target: commands run as child processes of this interpreter."""

from __future__ import annotations

import logging
import os
import pwd
import signal
import subprocess
import threading
from typing import IO

from steward.config import StewardSettings
from steward.exceptions import CommandExecutionError, CommandTimeoutError, FileTransferError
from steward.shell.quoting import quote
from steward.shell.result import EXIT_ABNORMAL, CommandResult
from steward.shell.sudo import SudoStderrWriter, build_command
from steward.target.base import Target
from steward.trace import Trace

logger = logging.getLogger(__name__)


def current_user() -> str:
    """Return the name of the effective OS user."""
    try:
        return pwd.getpwuid(os.geteuid()).pw_name
    except KeyError as exc:
        raise CommandExecutionError("could not identify the current user") from exc


def _exit_status(returncode: int) -> int:
    # Popen reports signal death as -signum
    return EXIT_ABNORMAL if returncode < 0 else returncode


class _ProcessStdin:
    """Unbuffered view of a Popen stdin for the sudo writer."""

    def __init__(self, f: IO[bytes]) -> None:
        self._f = f

    def write(self, data: bytes) -> None:
        self._f.write(data)
        self._f.flush()

    def close(self) -> None:
        self._f.close()


def _drain(stream: IO[bytes], sink: bytearray, chunk_size: int) -> None:
    while True:
        chunk = stream.read1(chunk_size)  # type: ignore[attr-defined]
        if not chunk:
            return
        sink += chunk


class LocalTarget(Target):
    """The machine this process runs on.

    Example:
    -------
        >>> with LocalTarget(sudo_password="secret") as local:
        ...     print(local.run("echo -n hello").out)
        ...     root = local.as_user("root")
        ...     root.put("/etc/motd", b"managed\\n", 0o644)

    """

    def __init__(
        self,
        sudo_password: str | None = None,
        *,
        validate: bool = False,
        settings: StewardSettings | None = None,
    ) -> None:
        super().__init__(current_user(), sudo_password=sudo_password, validate=validate, settings=settings)

    def __str__(self) -> str:
        return f"{self.active_user}@local"

    def __repr__(self) -> str:
        return f"LocalTarget(user={self.user!r}, active_user={self.active_user!r}, validate={self.validate!r})"

    def close(self) -> None:
        """Nothing to release for the local machine."""

    # ── Commands ──────────────────────────────────────────────────────────

    def _run(self, cmd: str, stdin: bytes | None, timeout: float | None) -> CommandResult:
        io_kwargs: dict = {"input": stdin} if stdin is not None else {"stdin": subprocess.DEVNULL}
        try:
            proc = subprocess.run(["bash", "-c", cmd], capture_output=True, timeout=timeout, **io_kwargs)
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeoutError(
                f"command timed out after {timeout}s", command=cmd, target=self, timeout=timeout
            ) from exc
        except OSError as exc:
            raise CommandExecutionError(f"could not run command: {exc}", command=cmd, target=self) from exc

        return CommandResult(proc.stdout, proc.stderr, _exit_status(proc.returncode))

    def _run_sudo(self, cmd: str, stdin: bytes | None, timeout: float | None) -> CommandResult:
        wrapped = build_command(cmd, self.active_user, reset_timestamp=self.settings.sudo_reset_timestamp)
        chunk_size = self.settings.read_chunk_size

        try:
            proc = subprocess.Popen(
                ["bash", "-c", wrapped],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as exc:
            raise CommandExecutionError(f"could not start sudo: {exc}", command=cmd, target=self) from exc

        expired = threading.Event()

        def _kill() -> None:
            expired.set()
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except OSError as exc:
                logger.debug("could not kill process group %d: %s", proc.pid, exc)

        timer = threading.Timer(timeout, _kill) if timeout else None
        stdout = bytearray()

        with proc:
            writer = SudoStderrWriter(
                self._sudo_password,
                _ProcessStdin(proc.stdin),  # type: ignore[arg-type]
                stdin,
                chunk_size=chunk_size,
            )
            reader = threading.Thread(
                target=_drain,
                args=(proc.stdout, stdout, chunk_size),
                name="local-stdout",
                daemon=True,
            )
            reader.start()
            if timer is not None:
                timer.start()
            try:
                while True:
                    chunk = proc.stderr.read1(chunk_size)  # type: ignore[union-attr]
                    if not chunk:
                        break
                    writer.write(chunk)
                writer.close()
                reader.join()
                returncode = proc.wait()
            finally:
                if timer is not None:
                    timer.cancel()

        if expired.is_set():
            raise CommandTimeoutError(f"command timed out after {timeout}s", command=cmd, target=self, timeout=timeout)

        writer.raise_for_outcome(user=self.active_user, command=cmd)
        return CommandResult(bytes(stdout), bytes(writer.stderr), _exit_status(returncode))

    # ── Files ─────────────────────────────────────────────────────────────

    def _put(self, path: str, data: bytes, perm: int, trace: Trace) -> None:
        if self.needs_sudo:
            cmd = f"tee {quote(path)} > /dev/null && chmod {perm:04o} {quote(path)}"
            res = self.run(cmd, data, trace=trace)
            if not res.ok:
                raise FileTransferError(
                    f"tee failed with exit status {res.exit_status}: {res.trim_err()}",
                    path=path,
                    target=self,
                )
            return

        try:
            with open(path, "wb") as f:
                f.write(data)
            os.chmod(path, perm)
        except OSError as exc:
            raise FileTransferError(f"write failed: {exc}", path=path, target=self) from exc

    def _get(self, path: str, trace: Trace) -> bytes:
        if self.needs_sudo:
            res = self.run(f"cat {quote(path)}", trace=trace)
            if not res.ok:
                raise FileTransferError(
                    f"cat failed with exit status {res.exit_status}: {res.trim_err()}",
                    path=path,
                    target=self,
                )
            return res.stdout

        try:
            with open(path, "rb") as f:
                return f.read()
        except OSError as exc:
            raise FileTransferError(f"read failed: {exc}", path=path, target=self) from exc
