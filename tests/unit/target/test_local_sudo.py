"""
Unit Tests for LocalTarget escalation

A fake sudo (see conftest.fake_sudo) is placed first on PATH so the full
protocol runs end to end: real bash, real pipes, real prompts, without
needing sudo rights on the test machine. The fake runs commands as the
current user and exposes the requested user as $FAKE_SUDO_USER.
"""

import os
import stat
from pathlib import Path

import pytest

from steward.config import StewardSettings
from steward.exceptions import FileTransferError, SudoRefusedError, SudoWrongPasswordError
from steward.target.local import LocalTarget

# Must match the password the fake sudo in conftest accepts
FAKE_SUDO_PASSWORD = "letmein"
OTHER_USER = "steward-test-user"


@pytest.fixture
def escalated(
    fake_sudo: Path,
    settings: StewardSettings,
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> LocalTarget:
    """
    Create a LocalTarget operating as another user through the fake sudo.

    Returns:
        LocalTarget whose active user differs from the connected user
    """
    monkeypatch.chdir(tmp_path)
    return LocalTarget(sudo_password=FAKE_SUDO_PASSWORD, settings=settings).as_user(OTHER_USER)


class TestEscalatedRun:
    """Tests for run() through sudo."""

    def test_runs_as_requested_user(self, escalated: LocalTarget) -> None:
        """
        Verify the command reached sudo with -u and ran after authorization.
        """
        res = escalated.run("echo -n $FAKE_SUDO_USER")

        assert res.stdout == OTHER_USER.encode()
        assert res.stderr == b""
        assert res.exit_status == 0

    def test_stdin_forwarded(self, escalated: LocalTarget) -> None:
        """
        Verify caller stdin reaches the command after the password.
        """
        res = escalated.run("sed s/a/X/", b"abc")
        assert res.stdout == b"Xbc"
        assert res.ok

    def test_large_stdin(self, escalated: LocalTarget) -> None:
        """
        Verify stdin larger than a pipe buffer does not deadlock.
        """
        data = b"0123456789abcdef" * 64 * 1024
        res = escalated.run("wc -c", data)
        assert res.trim_out() == str(len(data))

    def test_exit_status_and_stderr_preserved(self, escalated: LocalTarget) -> None:
        """
        Verify a failing command keeps its exit code and clean stderr.
        """
        res = escalated.run("cat missingfile")

        assert res.exit_status == 1
        assert res.trim_err() == "cat: missingfile: No such file or directory"

    def test_arbitrary_exit_code(self, escalated: LocalTarget) -> None:
        """
        Verify the fallback branch does not clobber the exit code.
        """
        res = escalated.run("echo out; echo err >&2; exit 3")

        assert res.exit_status == 3
        assert res.stdout == b"out\n"
        assert res.stderr == b"err\n"

    def test_quotes_and_dollars(self, escalated: LocalTarget) -> None:
        """
        Verify quotes and $ are interpreted once, by the escalated shell.
        """
        res = escalated.run("x=1; awk '{ print $1 }' <<< \"$x two\"")
        assert res.out == "1\n"

    def test_password_not_in_output(self, escalated: LocalTarget) -> None:
        """
        Verify neither the password nor sentinels leak into results.
        """
        res = escalated.run("true")
        assert FAKE_SUDO_PASSWORD.encode() not in res.stdout + res.stderr
        assert b"SHOWMETHEMONEY" not in res.stderr
        assert b"ITISALLGOODNOW" not in res.stderr

    def test_reset_timestamp(self, fake_sudo: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """
        Verify -k is accepted by the protocol end to end.
        """
        monkeypatch.chdir(tmp_path)
        settings = StewardSettings(sudo_reset_timestamp=True)
        target = LocalTarget(sudo_password=FAKE_SUDO_PASSWORD, settings=settings).as_user("root")
        if target.user == "root":
            pytest.skip("running as root; no escalation needed")
        assert target.run("echo -n ok").stdout == b"ok"


class TestEscalationFailures:
    """Tests for the three failure kinds."""

    def test_wrong_password(self, fake_sudo: Path, settings: StewardSettings) -> None:
        """
        Verify a wrong password is detected instead of hanging.
        """
        target = LocalTarget(sudo_password="not-it", settings=settings).as_user(OTHER_USER)

        with pytest.raises(SudoWrongPasswordError) as exc_info:
            target.run("true")

        assert exc_info.value.user == OTHER_USER
        assert "Sorry, try again." in exc_info.value.output
        assert "not-it" not in str(exc_info.value)

    def test_no_password(self, fake_sudo: Path, settings: StewardSettings) -> None:
        """
        Verify escalation without a password fails as a password problem.
        """
        target = LocalTarget(settings=settings).as_user(OTHER_USER)

        with pytest.raises(SudoWrongPasswordError):
            target.run("true")

    def test_refused(self, fake_sudo: Path, settings: StewardSettings, monkeypatch: pytest.MonkeyPatch) -> None:
        """
        Verify sudo refusing before any prompt is reported as refused.
        """
        monkeypatch.setenv("FAKE_SUDO_REFUSE", "1")
        target = LocalTarget(sudo_password=FAKE_SUDO_PASSWORD, settings=settings).as_user(OTHER_USER)

        with pytest.raises(SudoRefusedError) as exc_info:
            target.run("true")

        assert "not in the sudoers file" in exc_info.value.output


class TestEscalatedFiles:
    """Tests for put()/get() through tee and cat."""

    def test_put_get(self, escalated: LocalTarget, tmp_path: Path) -> None:
        """
        Verify tee writes the bytes and chmod sets the mode.
        """
        path = tmp_path / "with space's.conf"
        escalated.put(str(path), b"line1\nline2\n", 0o640)

        assert path.read_bytes() == b"line1\nline2\n"
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o640
        assert escalated.get(str(path)) == b"line1\nline2\n"

    def test_get_missing(self, escalated: LocalTarget, tmp_path: Path) -> None:
        """
        Verify a failing cat raises FileTransferError with cat's message.
        """
        with pytest.raises(FileTransferError, match="No such file"):
            escalated.get(str(tmp_path / "nope"))

    def test_put_into_missing_directory(self, escalated: LocalTarget, tmp_path: Path) -> None:
        """
        Verify a failing tee raises FileTransferError.
        """
        with pytest.raises(FileTransferError):
            escalated.put(str(tmp_path / "missing" / "f"), b"x")
