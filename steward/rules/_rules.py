"""Rule contract and the built-in Cmd, Meta and Multi rules."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Optional

from steward.exceptions import CommandFailedError, RuleError
from steward.rules._apply import apply
from steward.rules._status import Status, fold
from steward.trace import Trace, TraceAdapter

if TYPE_CHECKING:
    from steward.target.base import Target

logger = logging.getLogger(__name__)

CheckFunc = Callable[[Trace, "Target"], bool]
EnsureFunc = Callable[[Trace, "Target"], Optional[Status]]


class Rule(ABC):
    """A pair of idempotent operations: check verifies, ensure enforces.

    Subclasses that can cheaply verify their state override check(); the
    default reports "not satisfied" so apply() always calls ensure().
    ensure() may return None, which apply() reports as ENFORCED.
    """

    def check(self, trace: Trace, target: Target) -> bool:
        return False

    @abstractmethod
    def ensure(self, trace: Trace, target: Target) -> Status | None: ...


class Cmd(Rule):
    """Shell command pair.

    check_cmd passes when it exits 0 (an empty check_cmd never passes).
    ensure_cmd runs through run_change(), so on a validate-mode target it
    is blocked and the rule reports NOT_SATISFIED. A non-zero exit from
    ensure_cmd raises CommandFailedError.

    Args:
        check_cmd: Read-only verification command.
        ensure_cmd: Command that brings the target into the desired state.
        user: Run both commands as this user instead of the target's
            active user.

    Example:
    -------
        >>> rule = Cmd("test -d /srv/app", "mkdir -p /srv/app", user="root")
        >>> apply(None, "app dir", rule, target)
        <Status.ENFORCED: 4>

    """

    def __init__(self, check_cmd: str, ensure_cmd: str, user: str | None = None) -> None:
        self.check_cmd = check_cmd
        self.ensure_cmd = ensure_cmd
        self.user = user

    def __repr__(self) -> str:
        return f"Cmd(check_cmd={self.check_cmd!r}, ensure_cmd={self.ensure_cmd!r}, user={self.user!r})"

    def _target(self, target: Target) -> Target:
        return target.as_user(self.user) if self.user is not None else target

    def check(self, trace: Trace, target: Target) -> bool:
        if not self.check_cmd:
            return False
        return self._target(target).run_query(self.check_cmd, trace=trace).exit_status == 0

    def ensure(self, trace: Trace, target: Target) -> Status:
        res = self._target(target).run_change(self.ensure_cmd, trace=trace)
        if res.blocked:
            return Status.NOT_SATISFIED
        if not res.ok:
            raise CommandFailedError(
                "ensure command failed",
                command=self.ensure_cmd,
                exit_status=res.exit_status,
                stderr=res.trim_err(),
            )
        return Status.ENFORCED


class Meta(Rule):
    """Ad hoc rule built from two callables taking (trace, target).

    check_func is optional; without it the rule is never satisfied up front.
    """

    def __init__(self, ensure_func: EnsureFunc, check_func: CheckFunc | None = None) -> None:
        self.ensure_func = ensure_func
        self.check_func = check_func

    def check(self, trace: Trace, target: Target) -> bool:
        if self.check_func is None:
            return False
        return bool(self.check_func(trace, target))

    def ensure(self, trace: Trace, target: Target) -> Status | None:
        return self.ensure_func(trace, target)


class Multi(Rule):
    """Ordered composition of rules.

    check() is always False. ensure() applies every child in order under
    the name ``multi<i>`` and returns the most severe status seen. The
    first child error stops the run; the raised RuleError carries the
    folded status of the children that completed as partial_status.
    Earlier children are not rolled back. An empty Multi is SKIPPED.
    """

    def __init__(self, *rules: Rule) -> None:
        self.rules = list(rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __repr__(self) -> str:
        return f"Multi({', '.join(repr(r) for r in self.rules)})"

    def ensure(self, trace: Trace, target: Target) -> Status:
        if not self.rules:
            return Status.SKIPPED

        status = Status.SKIPPED
        for i, rule in enumerate(self.rules):
            name = f"multi{i}"
            try:
                status = fold(status, apply(trace, name, rule, target))
            except RuleError as exc:
                TraceAdapter(logger, trace).warning(
                    "%s failed, skipping %d remaining rule(s)", name, len(self.rules) - i - 1
                )
                raise RuleError(
                    f"{name} failed",
                    rule_name=name,
                    target=target,
                    status=Status.FAILED,
                    partial_status=status,
                ) from exc
        return status
