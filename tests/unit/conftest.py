"""
Shared fixtures for steward unit tests.

The fake sudo installed by ``fake_sudo`` understands the flags steward
uses (-k, -p, -S, -u), prints the requested prompt on stderr, reads one
password line per attempt from stdin and then execs the command as the
current user with FAKE_SUDO_USER set to the -u argument. It gives up
after three wrong attempts or on EOF, like the real one. Setting
FAKE_SUDO_REFUSE makes it fail before prompting, like a user missing
from sudoers.
"""

import os
import stat
from pathlib import Path

import pytest

from steward.config import StewardSettings, get_settings

FAKE_SUDO_PASSWORD = "letmein"

FAKE_SUDO_SCRIPT = r"""#!/bin/bash
prompt="Password: "
user=root
while [ $# -gt 0 ]; do
    case "$1" in
        -k|-S) shift ;;
        -p) prompt="$2"; shift 2 ;;
        -u) user="$2"; shift 2 ;;
        *) break ;;
    esac
done
if [ -n "$FAKE_SUDO_REFUSE" ]; then
    echo "$(id -un) is not in the sudoers file." >&2
    exit 1
fi
tries=0
while [ $tries -lt 3 ]; do
    printf '%s' "$prompt" >&2
    if ! IFS= read -r pw; then
        echo "sudo: no password was provided" >&2
        exit 1
    fi
    if [ "$pw" = "$FAKE_SUDO_PASSWORD" ]; then
        export FAKE_SUDO_USER="$user"
        exec "$@"
    fi
    echo "Sorry, try again." >&2
    tries=$((tries + 1))
done
echo "sudo: 3 incorrect password attempts" >&2
exit 1
"""


@pytest.fixture(autouse=True)
def clear_settings_cache():
    """
    Drop the cached settings so environment changes made by a test are
    not seen by the next one.
    """
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> StewardSettings:
    """
    Settings tuned for fast tests.

    Returns:
        StewardSettings with short poll interval and timeouts
    """
    return StewardSettings(
        poll_interval=0.001,
        connect_timeout=5,
        sftp_bootstrap_timeout=2,
        read_chunk_size=4096,
    )


@pytest.fixture
def fake_sudo(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """
    Put a fake sudo first on PATH.

    Returns:
        Path to the installed script
    """
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    script = bin_dir / "sudo"
    script.write_text(FAKE_SUDO_SCRIPT)
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_SUDO_PASSWORD", FAKE_SUDO_PASSWORD)
    monkeypatch.delenv("FAKE_SUDO_REFUSE", raising=False)
    return script
