"""Operating system facts gathered from a target.

Facts come from the ``/etc/*release`` files (os-release, lsb-release and
friends), lower-cased and parsed as ``key=value`` lines.

Family Normalization:
    The family is looked up in settings.os_family_aliases, first with the
    os id and then with each ``id_like`` token in order. When nothing
    matches, the first ``id_like`` token (or the id itself) is reported as
    is. Fedora maps to "rhel" in the default table; change the table to
    change that.

Example:
-------
    >>> facts = gather_facts(target)
    >>> facts.os, facts.os_family, facts.os_version
    ('rocky', 'rhel', 9)

"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping

from steward.exceptions import CommandExecutionError
from steward.trace import Trace

if TYPE_CHECKING:
    from steward.target.base import Target

RELEASE_COMMAND = "cat /etc/*release"


@dataclass(frozen=True)
class Facts:
    """OS identity of a target.

    Attributes:
        os: Distribution id (``id``), e.g. "ubuntu"
        os_family: Normalized family, e.g. "debian" or "rhel"
        os_version: Major version from ``version_id``; 0 when unknown
        release: Every parsed key/value pair
    """

    os: str
    os_family: str
    os_version: int
    release: dict[str, str] = field(default_factory=dict, compare=False)


def parse_release(text: str) -> dict[str, str]:
    """Parse release file text into a lower-cased key/value mapping."""
    fields: dict[str, str] = {}
    for line in text.lower().splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        k, _, v = line.partition("=")
        fields[k.strip()] = v.strip().strip("\"'")
    return fields


def major_version(version_id: str) -> int:
    try:
        return int(version_id.split(".")[0])
    except (ValueError, IndexError):
        return 0


def normalize_family(os_id: str, id_like: list[str], aliases: Mapping[str, str]) -> str:
    """Map an os id and its id_like tokens to a family name."""
    for token in [os_id, *id_like]:
        if token in aliases:
            return aliases[token]
    return id_like[0] if id_like else os_id


def facts_from_release(text: str, aliases: Mapping[str, str]) -> Facts:
    fields = parse_release(text)
    os_id = fields.get("id", "")
    id_like = fields.get("id_like", "").split()
    return Facts(
        os=os_id,
        os_family=normalize_family(os_id, id_like, aliases),
        os_version=major_version(fields.get("version_id", "")),
        release=fields,
    )


def gather_facts(target: Target, trace: Trace | None = None) -> Facts:
    """Read and parse the release files of target.

    Raises:
        CommandExecutionError: The release query exited non-zero.

    """
    res = target.run_query(RELEASE_COMMAND, trace=trace)
    if not res.ok:
        raise CommandExecutionError(
            f"reading release files failed with exit status {res.exit_status}: {res.trim_err()}",
            command=RELEASE_COMMAND,
            target=target,
        )
    return facts_from_release(res.out, target.settings.os_family_aliases)
