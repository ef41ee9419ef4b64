r"""Shell quoting utilities.

Two flavours are needed:

- ``escape`` prepares text that will be placed *inside* an existing pair
  of single quotes, e.g. the body of ``bash -c '...'``. The caller owns
  the surrounding quotes.
- ``quote`` produces a complete, standalone shell word (paths, user
  names) and is a thin wrapper over ``shlex.quote``.

Example:
-------
    >>> escape("awk '{ print $1 }'")
    "awk '\\''{ print $1 }'\\''"
    >>> f"bash -c '{escape(cmd)}'"
    >>> f"cat {quote('/etc/my file')}"
    "cat '/etc/my file'"

"""

from __future__ import annotations

import shlex


def escape(cmd: str) -> str:
    r"""Escape cmd for use inside a single-quoted shell argument.

    Every ``'`` becomes ``'\''``: close the quote, emit an escaped quote,
    reopen the quote. Nothing else needs escaping inside single quotes,
    so ``$``, backticks and backslashes pass through untouched and are
    interpreted by the inner shell exactly as written.

    Args:
        cmd: Command text. Must not include the surrounding quotes.

    Returns:
        Escaped text.

    """
    return cmd.replace("'", "'\\''")


def quote(value: str) -> str:
    """Quote a value as a single shell word."""
    return shlex.quote(str(value))
