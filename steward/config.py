"""
Steward Configuration

Runtime settings for targets, the escalation protocol and logging.
Settings can be overridden via environment variables with the STEWARD_
prefix (e.g., STEWARD_CONNECT_TIMEOUT, STEWARD_SUDO_RESET_TIMESTAMP), from
a .env file, or loaded from a YAML file with StewardSettings.from_yaml().
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Most likely locations of the sftp-server binary, most likely first.
# The bare name (resolved through $PATH) is always tried last.
DEFAULT_SFTP_SERVER_PATHS = [
    "/usr/libexec/openssh/sftp-server",
    "/usr/lib/openssh/sftp-server",
    "/usr/lib/sftp-server",
    "/usr/bin/sftp-server",
    "/bin/sftp-server",
]

DEFAULT_OS_FAMILY_ALIASES = {
    "debian": "debian",
    "ubuntu": "debian",
    "rhel": "rhel",
    "fedora": "rhel",
    "centos": "rhel",
    "rocky": "rhel",
    "almalinux": "rhel",
    "ol": "rhel",
}

HOST_KEY_POLICIES = ("strict", "auto_add", "warning")


class StewardSettings(BaseSettings):
    """Steward runtime settings."""

    model_config = SettingsConfigDict(env_prefix="STEWARD_", env_file=".env", extra="ignore")

    # ==========================================================================
    # Connection Settings
    # ==========================================================================

    connect_timeout: float = Field(
        default=30,
        description="SSH connection and authentication timeout in seconds",
        gt=0,
        le=600,
    )

    host_key_policy: str = Field(
        default="warning",
        description="Unknown host key handling (strict, auto_add, warning)",
    )

    known_hosts_file: Optional[str] = Field(
        default=None,
        description="Additional known_hosts file loaded before connecting",
    )

    # ==========================================================================
    # Execution Settings
    # ==========================================================================

    command_timeout: Optional[float] = Field(
        default=None,
        description="Default per-command deadline in seconds (None = no deadline)",
    )

    poll_interval: float = Field(
        default=0.01,
        description="Seconds between polls of a remote channel",
        gt=0,
        le=1,
    )

    read_chunk_size: int = Field(
        default=32768,
        description="Bytes read from a pipe or channel at a time",
        ge=512,
    )

    # ==========================================================================
    # Escalation Settings
    # ==========================================================================

    sudo_reset_timestamp: bool = Field(
        default=False,
        description="Pass -k to sudo so a cached timestamp is never used",
    )

    sftp_bootstrap_timeout: float = Field(
        default=30,
        description="Seconds to wait for sudo to authorize an SFTP server",
        gt=0,
    )

    sftp_server_paths: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SFTP_SERVER_PATHS),
        description="Candidate sftp-server paths tried in order",
    )

    # ==========================================================================
    # Facts and Logging
    # ==========================================================================

    os_family_aliases: Dict[str, str] = Field(
        default_factory=lambda: dict(DEFAULT_OS_FAMILY_ALIASES),
        description="OS id / id_like token to normalized OS family",
    )

    log_level: str = Field(default="INFO", description="Root log level for configure_logging()")

    @field_validator("host_key_policy")
    @classmethod
    def host_key_policy_must_be_known(cls, v: str) -> str:
        v = v.lower().strip()
        if v not in HOST_KEY_POLICIES:
            raise ValueError(f"host_key_policy must be one of {HOST_KEY_POLICIES}")
        return v

    @field_validator("command_timeout")
    @classmethod
    def command_timeout_must_be_positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("command_timeout must be positive or unset")
        return v

    @field_validator("sftp_server_paths")
    @classmethod
    def sftp_paths_must_be_plain(cls, v: List[str]) -> List[str]:
        # Paths are embedded unquoted inside a single-quoted sh -c argument
        for path in v:
            if not path or any(ch in path for ch in "'\"`$;&|<> \t\n"):
                raise ValueError(f"Unsupported sftp-server path: {path!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_upper(cls, v: str) -> str:
        return v.upper()

    @classmethod
    def from_yaml(cls, path: str | Path, **overrides: Any) -> StewardSettings:
        """Load settings from a YAML mapping; keyword overrides win."""
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"Settings file not found: {p}")

        data = yaml.safe_load(p.read_text()) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file must contain a mapping: {p}")

        data.update(overrides)
        return cls(**data)


@lru_cache()
def get_settings() -> StewardSettings:
    """Get cached settings."""
    return StewardSettings()
