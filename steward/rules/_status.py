"""Outcome of reconciling one rule against one target."""

from __future__ import annotations

from enum import IntEnum


class Status(IntEnum):
    """Reconciliation outcome, ordered by severity for folding."""

    UNDEFINED = 0
    SKIPPED = 1
    SATISFIED = 2
    NOT_SATISFIED = 3
    ENFORCED = 4
    FAILED = 5

    CHANGED = 4  # alias of ENFORCED

    def ok(self) -> bool:
        """Return True for every status that is not an error or unset."""
        return self not in (Status.UNDEFINED, Status.FAILED)

    def __str__(self) -> str:
        return self.name.lower()


def fold(*statuses: Status) -> Status:
    """Combine statuses; the most severe wins. No input folds to UNDEFINED."""
    return max(statuses, default=Status.UNDEFINED)
