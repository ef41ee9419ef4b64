"""
Rule Reconciliation

Rules pair an idempotent check with an ensure; apply() runs the check and
only calls ensure when the check does not pass.

    rules/
    ├── __init__.py   # This file - public API
    ├── _status.py    # Status and fold()
    ├── _apply.py     # apply(): check-then-ensure state machine
    └── _rules.py     # Rule contract, Cmd, Meta, Multi

Usage:
    from steward.rules import Cmd, Multi, apply

    rule = Multi(
        Cmd("id -u app", "useradd --system app", user="root"),
        Cmd("test -d /srv/app", "install -d -o app /srv/app", user="root"),
    )
    status = apply(None, "app", rule, target)
"""

from ._apply import apply
from ._rules import Cmd, Meta, Multi, Rule
from ._status import Status, fold

__all__ = [
    "apply",
    "Rule",
    "Cmd",
    "Meta",
    "Multi",
    "Status",
    "fold",
]
