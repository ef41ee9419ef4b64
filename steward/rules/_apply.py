"""Check-then-ensure application of a single rule."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from steward.exceptions import RuleCheckError, RuleEnsureError, RuleError
from steward.rules._status import Status
from steward.trace import Trace, TraceAdapter

if TYPE_CHECKING:
    from steward.rules._rules import Rule
    from steward.target.base import Target

logger = logging.getLogger(__name__)


def apply(
    trace: Trace | None,
    name: str,
    rule: Rule,
    target: Target,
    *,
    timeout: float | None = None,
) -> Status:
    """Reconcile rule against target.

    1. check(); if it raises, fail with RuleCheckError
    2. satisfied: return SATISFIED, ensure() is never called
    3. ensure(); if it raises, fail with RuleEnsureError
    4. return ensure's status (ENFORCED when it returns None/UNDEFINED)

    Nothing is retried and nothing already enforced is rolled back.

    Args:
        trace: Parent trace; a fresh root is used when None.
        name: Name for logs and errors.
        rule: The rule.
        target: Where to apply it.
        timeout: Seconds for the whole application, check and ensure
            included. It is carried on the trace, so every command the rule
            runs (children of a Multi too) stops at the same deadline. A
            deadline already on trace is never extended.

    Returns:
        Terminal Status.

    Raises:
        RuleCheckError: check() raised; the cause is chained.
        RuleEnsureError: ensure() raised; the cause is chained and
            partial_status carries any folded child progress.

    """
    trace = trace or Trace.new()
    if timeout is not None:
        trace = trace.with_timeout(timeout)
    trace = trace.span()
    log = TraceAdapter(logger, trace)
    log.info("apply %s on %s", name, target)

    try:
        satisfied = rule.check(trace, target)
    except Exception as exc:
        log.error("apply %s: check failed: %s", name, exc)
        raise RuleCheckError(
            f"check of {name} failed",
            rule_name=name,
            target=target,
            status=Status.FAILED,
        ) from exc

    if satisfied:
        log.info("apply %s -> %s", name, Status.SATISFIED)
        return Status.SATISFIED

    try:
        status = rule.ensure(trace, target)
    except Exception as exc:
        partial = exc.partial_status if isinstance(exc, RuleError) else None
        log.error("apply %s: ensure failed: %s", name, exc)
        raise RuleEnsureError(
            f"ensure of {name} failed",
            rule_name=name,
            target=target,
            status=Status.FAILED,
            partial_status=partial,
        ) from exc

    if status is None or status == Status.UNDEFINED:
        status = Status.ENFORCED
    log.info("apply %s -> %s", name, status)
    return Status(status)
