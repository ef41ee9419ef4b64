"""Hierarchical trace identifiers for log correlation.

A Trace is an immutable value (span id, parent id, depth and an optional
deadline) passed down every Apply and Run call. The deadline is absolute
(time.monotonic()) and is inherited by every span, so a bound set on an
Apply also bounds every command it runs. Spanning never mutates the
original, so the call tree can be rebuilt from log output alone without
any shared registry.

Example:
-------
    >>> root = Trace.new()
    >>> child = root.span()
    >>> child.parent == root.id
    True
    >>> child.depth
    1

"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, replace
from typing import Any, MutableMapping, Optional


def _new_id() -> str:
    """Short random id for log lines."""
    return str(uuid.uuid4())[:8]


@dataclass(frozen=True)
class Trace:
    """One span in a call tree."""

    id: str
    parent: str = ""
    depth: int = 0
    deadline: Optional[float] = None

    @classmethod
    def new(cls) -> Trace:
        """Create a root span."""
        return cls(id=_new_id())

    def span(self) -> Trace:
        """Derive a child span: fresh id, this id as parent, depth + 1."""
        return Trace(id=_new_id(), parent=self.id, depth=self.depth + 1, deadline=self.deadline)

    def with_timeout(self, timeout: float) -> Trace:
        """Return a copy whose deadline is at most timeout seconds from now."""
        deadline = time.monotonic() + timeout
        if self.deadline is not None:
            deadline = min(deadline, self.deadline)
        return replace(self, deadline=deadline)

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline (may be negative), or None."""
        if self.deadline is None:
            return None
        return self.deadline - time.monotonic()

    def __str__(self) -> str:
        return self.id

    def log_extra(self) -> dict[str, Any]:
        """Fields attached to log records for structured handlers."""
        return {"trace_id": self.id, "trace_parent": self.parent, "trace_depth": self.depth}


def new_trace() -> Trace:
    """Create a root span."""
    return Trace.new()


def _indent(depth: int) -> str:
    # Alternating space/bar gives a readable tree in plain text logs
    return "".join(" " if i % 2 == 0 else "│" for i in range(depth))


class TraceAdapter(logging.LoggerAdapter):
    """Logger adapter that prefixes records with trace ids and a tree indent.

    Example:
    -------
        >>> log = TraceAdapter(logging.getLogger(__name__), trace)
        >>> log.info("apply %s start", name)

    """

    def __init__(self, logger: logging.Logger, trace: Trace) -> None:
        super().__init__(logger, trace.log_extra())
        self.trace = trace

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        t = self.trace
        return f"{_indent(t.depth)}[{t.id} <- {t.parent or '-'}] {msg}", kwargs
