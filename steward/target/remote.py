"""
Remote Target

A Target reached over SSH with paramiko. One authenticated SSHClient is
shared by a RemoteTarget and every handle derived from it with as_user();
each run() opens its own session (channel) on that transport, so handles
may be used from several threads at once.

Connection Flow:
    1. Create SSHClient, load system and configured known_hosts
    2. Install the host key policy from settings.host_key_policy
    3. Authenticate with password, key file and/or the SSH agent
    4. run(): open session, exec, poll stdout/stderr/exit status
    5. put()/get(): SFTP client for the active user, from the per-user cache
    6. close(): close cached SFTP clients, then the SSH client

Usage:
    from steward.target import RemoteTarget

    with RemoteTarget.connect("web1.example.com", "deploy", password="secret") as target:
        print(target.run("uname -a").out)
        target.as_user("root").put("/etc/motd", b"managed\\n")
"""

from __future__ import annotations

import errno
import getpass
import logging
import os
import socket
import threading
import time
from typing import Optional

import paramiko
from paramiko.ssh_exception import NoValidConnectionsError

from steward.config import StewardSettings, get_settings
from steward.exceptions import (
    CommandExecutionError,
    CommandTimeoutError,
    FileTransferError,
    TargetConnectionError,
)
from steward.shell.result import CommandResult
from steward.shell.sudo import SudoStderrWriter, build_command
from steward.target.base import Target
from steward.target.policies import create_host_key_policy
from steward.target.sftp import SFTPClientCache, open_subsystem_sftp, open_sudo_sftp
from steward.trace import Trace

logger = logging.getLogger(__name__)


class _ChannelStdin:
    """Adapts a channel's write side to the StdinPipe protocol."""

    def __init__(self, channel: paramiko.Channel) -> None:
        self._channel = channel

    def write(self, data: bytes) -> None:
        self._channel.sendall(data)

    def close(self) -> None:
        self._channel.shutdown_write()


def _pump_stdin(channel: paramiko.Channel, data: bytes, chunk_size: int) -> None:
    try:
        for i in range(0, len(data), chunk_size):
            channel.sendall(data[i : i + chunk_size])
        channel.shutdown_write()
    except (OSError, paramiko.SSHException) as exc:
        logger.debug("stdin write to remote session failed: %s", exc)


class _Connection:
    """State shared by every handle on one SSH connection."""

    def __init__(
        self,
        client: paramiko.SSHClient,
        hostname: str,
        port: int,
        user: str,
        sudo_password: Optional[str],
        settings: StewardSettings,
    ) -> None:
        self.client = client
        self.hostname = hostname
        self.port = port
        self.user = user
        self.sudo_password = sudo_password
        self.settings = settings
        self.sftp = SFTPClientCache(self._open_sftp)
        self.closed = False

    def transport(self) -> paramiko.Transport:
        transport = self.client.get_transport()
        if transport is None or not transport.is_active():
            raise CommandExecutionError("SSH connection is not active", target=f"{self.user}@{self.hostname}")
        return transport

    def _open_sftp(self, user: str) -> paramiko.SFTPClient:
        if user == self.user:
            logger.debug("Opening SFTP subsystem on %s", self.hostname)
            return open_subsystem_sftp(self.transport(), hostname=self.hostname)

        logger.debug("Bootstrapping SFTP as %s on %s", user, self.hostname)
        return open_sudo_sftp(
            self.transport(),
            user,
            self.sudo_password,
            server_paths=self.settings.sftp_server_paths,
            reset_timestamp=self.settings.sudo_reset_timestamp,
            timeout=self.settings.sftp_bootstrap_timeout,
            poll_interval=self.settings.poll_interval,
            hostname=self.hostname,
        )

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.sftp.close()
        self.client.close()
        logger.info("Closed connection to %s@%s:%d", self.user, self.hostname, self.port)


class RemoteTarget(Target):
    """
    A machine reached over SSH.

    Args:
        client: Connected paramiko SSHClient; ownership passes to the target
        hostname: Host name for display and error context
        user: The user the client authenticated as
        port: SSH port
        sudo_password: Password for sudo escalation
        validate: Check-only mode
        settings: Runtime settings (defaults to get_settings())

    Use connect() to dial and authenticate in one step.
    """

    def __init__(
        self,
        client: paramiko.SSHClient,
        hostname: str,
        user: str,
        *,
        port: int = 22,
        sudo_password: Optional[str] = None,
        validate: bool = False,
        settings: Optional[StewardSettings] = None,
    ) -> None:
        super().__init__(user, sudo_password=sudo_password, validate=validate, settings=settings)
        self._conn = _Connection(client, hostname, port, user, sudo_password, self.settings)

    @classmethod
    def connect(
        cls,
        hostname: str,
        user: Optional[str] = None,
        *,
        port: int = 22,
        password: Optional[str] = None,
        key_path: Optional[str] = None,
        sudo_password: Optional[str] = None,
        validate: bool = False,
        settings: Optional[StewardSettings] = None,
    ) -> RemoteTarget:
        """
        Dial and authenticate a new SSH connection.

        Args:
            hostname: Target hostname or IP address
            user: Login user (default: the local user name)
            port: SSH port
            password: Login password
            key_path: Private key file
            sudo_password: Sudo password (default: the login password)
            validate: Check-only mode
            settings: Runtime settings

        Returns:
            Connected RemoteTarget

        Raises:
            TargetConnectionError: With error_type one of auth_failed,
                ssh_error, timeout, refused, unreachable, connection_error

        Example:
            >>> target = RemoteTarget.connect("10.0.0.5", "admin", key_path="~/.ssh/id_ed25519")

        """
        settings = settings or get_settings()
        user = user or getpass.getuser()

        client = paramiko.SSHClient()
        client.load_system_host_keys()
        if settings.known_hosts_file:
            client.load_host_keys(os.path.expanduser(settings.known_hosts_file))
        client.set_missing_host_key_policy(create_host_key_policy(settings.host_key_policy))

        explicit = password is not None or key_path is not None
        use_agent = bool(os.environ.get("SSH_AUTH_SOCK"))

        try:
            client.connect(
                hostname=hostname,
                port=port,
                username=user,
                password=password,
                key_filename=os.path.expanduser(key_path) if key_path else None,
                timeout=settings.connect_timeout,
                banner_timeout=settings.connect_timeout,
                auth_timeout=settings.connect_timeout,
                allow_agent=use_agent,
                look_for_keys=not explicit,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            logger.error("SSH authentication failed for %s@%s:%d", user, hostname, port)
            raise TargetConnectionError(
                f"Authentication failed for {user}@{hostname}", hostname, port, "auth_failed"
            ) from exc
        except paramiko.SSHException as exc:
            client.close()
            logger.error("SSH connection error to %s:%d: %s", hostname, port, exc)
            raise TargetConnectionError(f"SSH protocol error: {exc}", hostname, port, "ssh_error") from exc
        except socket.timeout as exc:
            client.close()
            logger.warning("SSH connection timeout to %s:%d", hostname, port)
            raise TargetConnectionError(
                f"Connection timed out after {settings.connect_timeout}s", hostname, port, "timeout"
            ) from exc
        except OSError as exc:
            client.close()
            logger.error("Socket error connecting to %s:%d: %s", hostname, port, exc)
            raise _socket_error(exc, hostname, port) from exc

        logger.info("Connected to %s@%s:%d", user, hostname, port)
        return cls(
            client,
            hostname,
            user,
            port=port,
            sudo_password=sudo_password if sudo_password is not None else password,
            validate=validate,
            settings=settings,
        )

    @property
    def hostname(self) -> str:
        return self._conn.hostname

    @property
    def port(self) -> int:
        return self._conn.port

    @property
    def client(self) -> paramiko.SSHClient:
        return self._conn.client

    def __str__(self) -> str:
        if self._conn.port == 22:
            return f"{self.active_user}@{self._conn.hostname}"
        return f"{self.active_user}@{self._conn.hostname}:{self._conn.port}"

    def __repr__(self) -> str:
        return (
            f"RemoteTarget(hostname={self.hostname!r}, port={self.port!r}, user={self.user!r}, "
            f"active_user={self.active_user!r}, validate={self.validate!r})"
        )

    def close(self) -> None:
        """Close every cached SFTP client, then the SSH connection."""
        self._conn.close()

    # ── Commands ──────────────────────────────────────────────────────────

    def _run(self, cmd: str, stdin: bytes | None, timeout: float | None) -> CommandResult:
        return self._exec(cmd, cmd, stdin, timeout)

    def _run_sudo(self, cmd: str, stdin: bytes | None, timeout: float | None) -> CommandResult:
        wrapped = build_command(cmd, self.active_user, reset_timestamp=self.settings.sudo_reset_timestamp)
        return self._exec(wrapped, cmd, stdin, timeout, escalate=True)

    def _exec(
        self,
        command: str,
        display: str,
        stdin: bytes | None,
        timeout: float | None,
        *,
        escalate: bool = False,
    ) -> CommandResult:
        chunk_size = self.settings.read_chunk_size
        try:
            channel = self._conn.transport().open_session(timeout=self.settings.connect_timeout)
            channel.exec_command(command)
        except (paramiko.SSHException, OSError) as exc:
            raise CommandExecutionError(f"could not start remote command: {exc}", command=display, target=self) from exc

        writer: Optional[SudoStderrWriter] = None
        pump: Optional[threading.Thread] = None
        stdout = bytearray()
        stderr = bytearray()

        if escalate:
            writer = SudoStderrWriter(self._sudo_password, _ChannelStdin(channel), stdin, chunk_size=chunk_size)
        elif stdin is None:
            channel.shutdown_write()
        else:
            pump = threading.Thread(
                target=_pump_stdin,
                args=(channel, stdin, chunk_size),
                name="remote-stdin",
                daemon=True,
            )
            pump.start()

        deadline = time.monotonic() + timeout if timeout else None
        try:
            while True:
                # Checked before reading so steady output cannot starve it
                if deadline is not None and time.monotonic() > deadline:
                    raise CommandTimeoutError(
                        f"command timed out after {timeout}s", command=display, target=self, timeout=timeout
                    )
                busy = False
                if channel.recv_ready():
                    stdout += channel.recv(chunk_size)
                    busy = True
                if channel.recv_stderr_ready():
                    data = channel.recv_stderr(chunk_size)
                    if writer is not None:
                        writer.write(data)
                    else:
                        stderr += data
                    busy = True
                if busy:
                    continue
                if channel.exit_status_ready() and not channel.recv_ready() and not channel.recv_stderr_ready():
                    break
                time.sleep(self.settings.poll_interval)
            exit_status = channel.recv_exit_status()
            if pump is not None:
                pump.join(timeout=1.0)
        except (paramiko.SSHException, OSError) as exc:
            raise CommandExecutionError(f"remote session failed: {exc}", command=display, target=self) from exc
        finally:
            channel.close()

        if writer is not None:
            writer.close()
            writer.raise_for_outcome(user=self.active_user, command=display)
            stderr = writer.stderr

        return CommandResult(bytes(stdout), bytes(stderr), exit_status)

    # ── Files ─────────────────────────────────────────────────────────────

    def sftp(self) -> paramiko.SFTPClient:
        """Return the cached SFTP client for the active user, opening it if needed."""
        return self._conn.sftp.get(self.active_user)

    def _put(self, path: str, data: bytes, perm: int, trace: Trace) -> None:
        sftp = self.sftp()
        try:
            with sftp.open(path, "wb") as f:
                f.write(data)
            sftp.chmod(path, perm)
        except (OSError, paramiko.SSHException) as exc:
            raise FileTransferError(f"write failed: {exc}", path=path, target=self) from exc

    def _get(self, path: str, trace: Trace) -> bytes:
        sftp = self.sftp()
        try:
            with sftp.open(path, "rb") as f:
                f.prefetch()
                return f.read()
        except (OSError, paramiko.SSHException) as exc:
            raise FileTransferError(f"read failed: {exc}", path=path, target=self) from exc


def _socket_error(exc: OSError, hostname: str, port: int) -> TargetConnectionError:
    code = exc.errno
    if code is None and isinstance(exc, NoValidConnectionsError):
        # One entry per resolved address
        codes = {e.errno for e in exc.errors.values()}
        code = codes.pop() if len(codes) == 1 else None

    if code == errno.ECONNREFUSED:
        return TargetConnectionError("Connection refused (SSH service may not be running)", hostname, port, "refused")
    if code in (errno.EHOSTUNREACH, errno.ENETUNREACH):
        return TargetConnectionError("No route to host", hostname, port, "unreachable")
    if code == errno.ETIMEDOUT:
        return TargetConnectionError("Connection timed out", hostname, port, "timeout")
    return TargetConnectionError(f"Network error: {exc}", hostname, port, "connection_error")
