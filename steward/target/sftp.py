"""
SFTP Channels

Ways to obtain a paramiko SFTPClient on an established transport:

- open_subsystem_sftp: the standard "sftp" subsystem, running as the
  connected user
- open_command_sftp: an arbitrary command whose stdio speaks SFTP, for
  hosts without a configured subsystem
- open_sudo_sftp: an sftp-server started as another user through the
  sentinel-guarded sudo protocol (see steward.shell.sudo)

Sudo Bootstrap:
    sudo [-k ]-u USER -p PROMPT -S sh -c
        '>&2 echo SUCCESS; /path/1 2>/dev/null || ... || sftp-server 2>/dev/null || exit 127'
        || { __rc=$?; >&2 echo FAILURE; exit $__rc; }

    Only stderr is read until the outcome is known. The channel's stdin
    carries the password (once) and stdout is left untouched, so when
    SUCCESS arrives the channel is a clean SFTP byte stream and is handed
    to paramiko.SFTPClient as is.

SFTPClientCache keeps one client per active user for the life of a
connection. Entries are created under a lock and dropped only by close().
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

import paramiko

from steward.exceptions import SFTPBootstrapError, SFTPServerNotFoundError
from steward.shell.quoting import escape, quote
from steward.shell.sudo import SUDO_FAILURE, SUDO_PROMPT, SUDO_SUCCESS, SudoEvent, SudoMatcher, SudoState

logger = logging.getLogger(__name__)

# Exit status of the bootstrap shell when no sftp-server could be started
EXIT_NOT_FOUND = 127


def _sudo_user(user: str) -> str:
    return "root" if user in ("", "-") else user


def build_sftp_command(user: str, server_paths: List[str], *, reset_timestamp: bool = False) -> str:
    """Build the sudo command that starts sftp-server as user.

    Args:
        user: User to run the server as; "" and "-" mean root.
        server_paths: Candidate absolute paths, tried in order. The bare
            name ``sftp-server`` is always tried last.
        reset_timestamp: Pass ``-k`` to sudo.

    Returns:
        Command string for an SSH exec request.

    """
    candidates = [p for p in server_paths if p != "sftp-server"] + ["sftp-server"]
    chain = " || ".join(f"{p} 2>/dev/null" for p in candidates)
    body = escape(f">&2 echo {SUDO_SUCCESS}; {chain} || exit {EXIT_NOT_FOUND}")
    reset = "-k " if reset_timestamp else ""
    return (
        f"sudo {reset}-u {quote(_sudo_user(user))} -p {SUDO_PROMPT} -S sh -c '{body}'"
        f" || {{ __rc=$?; >&2 echo {SUDO_FAILURE}; exit $__rc; }}"
    )


def _start_client(channel: paramiko.Channel, user: str, hostname: Optional[str]) -> paramiko.SFTPClient:
    try:
        return paramiko.SFTPClient(channel)
    except (paramiko.SSHException, EOFError, OSError) as exc:
        status = channel.recv_exit_status() if channel.exit_status_ready() else None
        channel.close()
        if status == EXIT_NOT_FOUND:
            raise SFTPServerNotFoundError(
                "no sftp-server binary found on any known path", user=user, hostname=hostname
            ) from exc
        raise SFTPBootstrapError(f"SFTP negotiation failed: {exc}", user=user, hostname=hostname) from exc


def _open_channel(transport: paramiko.Transport, user: str, hostname: Optional[str]) -> paramiko.Channel:
    try:
        return transport.open_session()
    except paramiko.SSHException as exc:
        raise SFTPBootstrapError(f"could not open session: {exc}", user=user, hostname=hostname) from exc


def _answer_prompt(
    channel: paramiko.Channel,
    prompts: int,
    password: Optional[str],
    user: str,
    hostname: Optional[str],
) -> None:
    """Send the password on the first prompt, otherwise end input."""
    try:
        if prompts == 1 and password is not None:
            logger.debug("sftp bootstrap for %s: answering sudo prompt", user)
            channel.sendall(password.encode() + b"\n")
        else:
            channel.shutdown_write()
    except (OSError, paramiko.SSHException) as exc:
        channel.close()
        raise SFTPBootstrapError(f"session lost while answering sudo: {exc}", user=user, hostname=hostname) from exc


def open_subsystem_sftp(
    transport: paramiko.Transport,
    subsystem: str = "sftp",
    *,
    hostname: Optional[str] = None,
) -> paramiko.SFTPClient:
    """Open an SFTP client on a named subsystem as the connected user."""
    user = transport.get_username() or ""
    channel = _open_channel(transport, user, hostname)
    try:
        channel.invoke_subsystem(subsystem)
    except paramiko.SSHException as exc:
        channel.close()
        raise SFTPBootstrapError(f"subsystem {subsystem!r} rejected: {exc}", user=user, hostname=hostname) from exc
    return _start_client(channel, user, hostname)


def open_command_sftp(
    transport: paramiko.Transport,
    command: str,
    *,
    hostname: Optional[str] = None,
) -> paramiko.SFTPClient:
    """Open an SFTP client on the stdio of command (e.g. a sftp-server path)."""
    user = transport.get_username() or ""
    channel = _open_channel(transport, user, hostname)
    try:
        channel.exec_command(command)
    except paramiko.SSHException as exc:
        channel.close()
        raise SFTPBootstrapError(f"could not start {command!r}: {exc}", user=user, hostname=hostname) from exc
    return _start_client(channel, user, hostname)


def open_sudo_sftp(
    transport: paramiko.Transport,
    user: str,
    password: Optional[str],
    *,
    server_paths: List[str],
    reset_timestamp: bool = False,
    timeout: float = 30,
    poll_interval: float = 0.01,
    hostname: Optional[str] = None,
) -> paramiko.SFTPClient:
    """
    Start sftp-server as user through sudo and attach an SFTP client to it.

    Args:
        transport: Authenticated paramiko transport
        user: User the server runs as ("" or "-" for root)
        password: Sudo password, sent at most once
        server_paths: Candidate sftp-server paths
        reset_timestamp: Pass -k to sudo
        timeout: Seconds to wait for sudo to report an outcome
        poll_interval: Seconds between channel polls
        hostname: Host name for error context

    Returns:
        SFTPClient whose operations run as user.

    Raises:
        SudoWrongPasswordError: Sudo prompted twice, or prompted with no password
        SudoRefusedError: Sudo failed before starting the server
        SudoUndetectedError: Session ended with no sentinel
        SFTPServerNotFoundError: No candidate path could be executed
        SFTPBootstrapError: Session or negotiation failure

    """
    user = _sudo_user(user)
    command = build_sftp_command(user, server_paths, reset_timestamp=reset_timestamp)
    channel = _open_channel(transport, user, hostname)
    try:
        channel.exec_command(command)
    except paramiko.SSHException as exc:
        channel.close()
        raise SFTPBootstrapError(f"could not start sudo: {exc}", user=user, hostname=hostname) from exc

    matcher = SudoMatcher()
    deadline = time.monotonic() + timeout

    while matcher.state is SudoState.AWAITING_PROMPT:
        if time.monotonic() > deadline:
            channel.close()
            raise SFTPBootstrapError(
                f"sudo did not authorize the sftp server within {timeout}s", user=user, hostname=hostname
            )
        if channel.recv_stderr_ready():
            events, _ = matcher.feed(channel.recv_stderr(4096))
            for event in events:
                if event is SudoEvent.PROMPT:
                    _answer_prompt(channel, matcher.prompts, password, user, hostname)
            continue
        if channel.exit_status_ready():
            break
        time.sleep(poll_interval)

    matcher.finish()
    err = matcher.error(user=user, command=command, password_missing=password is None)
    if err is not None:
        channel.close()
        raise err

    logger.debug("sftp bootstrap for %s authorized", user)
    return _start_client(channel, user, hostname)


class SFTPClientCache:
    """
    Lock-guarded SFTP clients keyed by user.

    Args:
        factory: Called with a user name to open a new client. It runs under
            the lock, so two callers for the same user never both bootstrap.
    """

    def __init__(self, factory: Callable[[str], paramiko.SFTPClient]) -> None:
        self._factory = factory
        self._clients: Dict[str, paramiko.SFTPClient] = {}
        self._lock = threading.Lock()

    def get(self, user: str) -> paramiko.SFTPClient:
        with self._lock:
            client = self._clients.get(user)
            if client is None:
                client = self._factory(user)
                self._clients[user] = client
            return client

    def __contains__(self, user: str) -> bool:
        with self._lock:
            return user in self._clients

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def close(self) -> None:
        """Close and forget every cached client."""
        with self._lock:
            clients = list(self._clients.items())
            self._clients.clear()
        for user, client in clients:
            try:
                client.close()
            except (OSError, paramiko.SSHException) as exc:
                logger.warning("Closing SFTP client for %s failed: %s", user, exc)
