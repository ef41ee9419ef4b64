"""
Unit Tests for LocalTarget without escalation

These run real bash child processes; nothing outside the pytest
temporary directory is touched.

Test Categories:
- run(): stdout/stderr/exit status capture, stdin forms, timeouts
- run_change()/put() in validate mode
- as_user(): independent handles
- put()/get(): direct filesystem access
"""

import io
import os
import stat
from pathlib import Path

import pytest

from steward.config import StewardSettings
from steward.exceptions import CommandTimeoutError, FileTransferError
from steward.shell.result import BLOCKED_BY_VALIDATE, EXIT_ABNORMAL, CommandResult
from steward.target.local import LocalTarget, current_user
from steward.trace import Trace


@pytest.fixture
def local(tmp_path: Path, monkeypatch: pytest.MonkeyPatch, settings: StewardSettings) -> LocalTarget:
    """
    Create a LocalTarget working in a temporary directory.

    Returns:
        LocalTarget for the current user
    """
    monkeypatch.chdir(tmp_path)
    return LocalTarget(settings=settings)


class TestIdentity:
    """Tests for users and string forms."""

    def test_connected_user_is_current_user(self, local: LocalTarget) -> None:
        """
        Verify the target runs as the effective OS user.
        """
        assert local.user == current_user()
        assert local.active_user == local.user
        assert not local.needs_sudo

    def test_str(self, local: LocalTarget) -> None:
        """
        Verify the display form names the active user.
        """
        assert str(local) == f"{local.user}@local"
        assert str(local.as_user("deploy")) == "deploy@local"


class TestRun:
    """Tests for direct command execution."""

    def test_echo(self, local: LocalTarget) -> None:
        """
        Verify stdout is captured exactly, with no trailing newline added.
        """
        assert local.run("echo -n hello") == CommandResult(b"hello", b"", 0)

    def test_missing_file(self, local: LocalTarget) -> None:
        """
        Verify a failing command is reported in the result, not raised.
        """
        res = local.run("cat missingfile")

        assert res.stdout == b""
        assert res.trim_err() == "cat: missingfile: No such file or directory"
        assert res.exit_status == 1

    def test_stdin_bytes(self, local: LocalTarget) -> None:
        """
        Verify stdin is fed to the command.
        """
        res = local.run("sed s/a/X/", b"abc")
        assert res.stdout == b"Xbc"
        assert res.exit_status == 0

    def test_stdin_str_and_file(self, local: LocalTarget) -> None:
        """
        Verify text and file objects are accepted as stdin.
        """
        assert local.run("cat", "text").stdout == b"text"
        assert local.run("cat", io.BytesIO(b"from file")).stdout == b"from file"

    def test_no_stdin_is_empty(self, local: LocalTarget) -> None:
        """
        Verify a command reading stdin sees EOF when none is given.
        """
        assert local.run("wc -c").trim_out() == "0"

    def test_shell_features(self, local: LocalTarget) -> None:
        """
        Verify commands run through bash with variables and pipes intact.
        """
        res = local.run("x='a b'; echo \"$x\" | tr a-z A-Z; [[ -n $x ]] && echo yes")
        assert res.out == "A B\nyes\n"

    def test_exit_status(self, local: LocalTarget) -> None:
        """
        Verify arbitrary exit codes are preserved.
        """
        assert local.run("exit 42").exit_status == 42

    def test_signal_death(self, local: LocalTarget) -> None:
        """
        Verify a command killed by a signal reports -1.
        """
        assert local.run("kill -9 $$").exit_status == EXIT_ABNORMAL

    def test_timeout(self, local: LocalTarget) -> None:
        """
        Verify a command past its deadline raises.
        """
        with pytest.raises(CommandTimeoutError) as exc_info:
            local.run("sleep 5", timeout=0.2)
        assert exc_info.value.timeout == 0.2

    def test_default_timeout_from_settings(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """
        Verify settings.command_timeout applies when no timeout is passed.
        """
        monkeypatch.chdir(tmp_path)
        target = LocalTarget(settings=StewardSettings(command_timeout=0.2))
        with pytest.raises(CommandTimeoutError):
            target.run("sleep 5")

    def test_trace_accepted(self, local: LocalTarget) -> None:
        """
        Verify an explicit parent trace can be passed.
        """
        assert local.run("true", trace=Trace.new()).ok


class TestValidateMode:
    """Tests for check-only targets."""

    def test_run_change_blocked(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """
        Verify run_change executes nothing and returns the blocked status.
        """
        monkeypatch.chdir(tmp_path)
        target = LocalTarget(validate=True)

        res = target.run_change("touch created")

        assert res == CommandResult(b"", b"", BLOCKED_BY_VALIDATE)
        assert not (tmp_path / "created").exists()
        assert not target.allow_change

    def test_run_query_executes(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """
        Verify queries still run in validate mode.
        """
        monkeypatch.chdir(tmp_path)
        target = LocalTarget(validate=True)
        assert target.run_query("echo -n hi").stdout == b"hi"

    def test_put_blocked(self, tmp_path: Path) -> None:
        """
        Verify put writes nothing in validate mode.
        """
        target = LocalTarget(validate=True)
        target.put(str(tmp_path / "f"), b"data")
        assert not (tmp_path / "f").exists()

    def test_as_user_keeps_validate(self) -> None:
        """
        Verify derived handles stay in validate mode.
        """
        assert LocalTarget(validate=True).as_user("root").validate


class TestAsUser:
    """Tests for handle derivation."""

    def test_original_unchanged(self, local: LocalTarget) -> None:
        """
        Verify as_user returns a new handle and leaves the original alone.
        """
        other = local.as_user("steward-test-user")

        assert other is not local
        assert other.active_user == "steward-test-user"
        assert other.needs_sudo
        assert local.active_user == local.user
        assert not local.needs_sudo

    def test_dash_is_root(self, local: LocalTarget) -> None:
        """
        Verify "-" selects root.
        """
        assert local.as_user("-").active_user == "root"

    def test_empty_is_connected_user(self, local: LocalTarget) -> None:
        """
        Verify "" goes back to the connected user.
        """
        assert local.as_user("someone").as_user("").active_user == local.user


class TestFiles:
    """Tests for direct put/get."""

    def test_put_get(self, local: LocalTarget, tmp_path: Path) -> None:
        """
        Verify put writes bytes and mode and get reads them back.
        """
        path = str(tmp_path / "conf")
        local.put(path, b"key=value\n", 0o600)

        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert local.get(path) == b"key=value\n"

    def test_put_truncates(self, local: LocalTarget, tmp_path: Path) -> None:
        """
        Verify an existing longer file is replaced, not overwritten in place.
        """
        path = tmp_path / "conf"
        path.write_bytes(b"a much longer previous content")
        local.put(str(path), b"short")
        assert path.read_bytes() == b"short"

    def test_get_missing(self, local: LocalTarget, tmp_path: Path) -> None:
        """
        Verify reading a missing file raises FileTransferError.
        """
        with pytest.raises(FileTransferError) as exc_info:
            local.get(str(tmp_path / "nope"))
        assert exc_info.value.path == str(tmp_path / "nope")

    def test_put_into_missing_directory(self, local: LocalTarget, tmp_path: Path) -> None:
        """
        Verify writing into a missing directory raises FileTransferError.
        """
        with pytest.raises(FileTransferError):
            local.put(str(tmp_path / "missing" / "f"), b"x")

    def test_context_manager(self) -> None:
        """
        Verify the target can be used in a with block.
        """
        with LocalTarget() as target:
            assert target.run("true").ok
