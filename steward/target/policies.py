"""
SSH Host Key Policies

Controls how a RemoteTarget treats a host key that is not in any loaded
known_hosts file. Selected by StewardSettings.host_key_policy:

- "warning":  WarnAndRememberPolicy, log the fingerprint and connect
- "strict":   StrictHostKeyPolicy, log and reject
- "auto_add": paramiko.AutoAddPolicy, accept silently

Keys accepted by the warning policy are remembered on the client for the
rest of its life, so a key change mid-session is still detected.

Usage:
    client = paramiko.SSHClient()
    client.set_missing_host_key_policy(create_host_key_policy(settings.host_key_policy))
"""

import logging
from typing import Callable, Optional, Tuple

import paramiko
from paramiko import SSHClient

logger = logging.getLogger(__name__)

KeyCallback = Callable[[str, str, str], None]


def describe_key(key: paramiko.PKey) -> Tuple[str, str]:
    """Return (key_type, hex fingerprint) for log lines."""
    try:
        return key.get_name(), key.get_fingerprint().hex()
    except (AttributeError, ValueError, paramiko.SSHException):
        return "unknown", "unknown"


class WarnAndRememberPolicy(paramiko.MissingHostKeyPolicy):
    """
    Accept unknown host keys with a warning.

    Attributes:
        on_unknown_key: Optional function called with
            (hostname, key_type, fingerprint) for every accepted key
    """

    def __init__(self, on_unknown_key: Optional[KeyCallback] = None) -> None:
        self.on_unknown_key = on_unknown_key

    def missing_host_key(self, client: SSHClient, hostname: str, key: paramiko.PKey) -> None:
        key_type, fingerprint = describe_key(key)
        logger.warning(
            "Unknown host key for %s (type: %s, fingerprint: %s), connecting anyway",
            hostname,
            key_type,
            fingerprint,
        )
        if self.on_unknown_key:
            self.on_unknown_key(hostname, key_type, fingerprint)

        client.get_host_keys().add(hostname, key.get_name(), key)


class StrictHostKeyPolicy(paramiko.RejectPolicy):
    """Reject unknown host keys, logging the key that was refused."""

    def missing_host_key(self, client: SSHClient, hostname: str, key: paramiko.PKey) -> None:
        key_type, fingerprint = describe_key(key)
        logger.warning(
            "Rejecting unknown host key for %s (type: %s, fingerprint: %s)",
            hostname,
            key_type,
            fingerprint,
        )
        super().missing_host_key(client, hostname, key)


def create_host_key_policy(
    policy_type: str,
    on_unknown_key: Optional[KeyCallback] = None,
) -> paramiko.MissingHostKeyPolicy:
    """
    Create a host key policy by name.

    Args:
        policy_type: "strict", "auto_add" or "warning"
        on_unknown_key: Callback for the warning policy

    Raises:
        ValueError: If policy_type is not recognized
    """
    name = policy_type.lower().strip()

    if name == "strict":
        return StrictHostKeyPolicy()
    elif name == "auto_add":
        return paramiko.AutoAddPolicy()
    elif name == "warning":
        return WarnAndRememberPolicy(on_unknown_key=on_unknown_key)

    raise ValueError(f"Unknown host key policy type: {policy_type!r}. Valid options: strict, auto_add, warning")


__all__ = [
    "WarnAndRememberPolicy",
    "StrictHostKeyPolicy",
    "create_host_key_policy",
    "describe_key",
]
