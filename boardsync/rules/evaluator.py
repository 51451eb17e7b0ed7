"""
Rule evaluation.

Matches one item snapshot against an ordered rule list and returns the
actions of every rule that fires. No side effects.
"""

import logging
import re
from typing import Any

from boardsync.lib.types import Action, WorkItem
from boardsync.rules.conditions import ConditionContext
from boardsync.rules.models import Rule

logger = logging.getLogger(__name__)

_TEMPLATE = re.compile(r"\$\{([\w.]+)\}")

# Bare references allowed as a whole value (without ${...})
_BARE_REFERENCES = {"item.author", "item.number", "item.repository", "item.type", "monitored.user"}


def _lookup(ref: str, item: WorkItem, monitored_user: str | None) -> str | None:
    if ref == "item.author":
        return item.author
    if ref == "item.number":
        return str(item.number)
    if ref == "item.repository":
        return item.repository
    if ref == "item.type":
        return item.kind.value
    if ref == "monitored.user":
        return monitored_user
    return None


def interpolate_value(value: Any, item: WorkItem, monitored_user: str | None = None) -> Any:
    """Substitute item references in a rule value.

    "item.author" and "monitored.user" as the whole value are replaced
    outright; "${item.author}" style references are substituted inside
    strings. Lists are interpolated element-wise. Unknown references are
    left as written.
    """
    if isinstance(value, list):
        return [interpolate_value(v, item, monitored_user) for v in value]
    if not isinstance(value, str):
        return value
    if value in _BARE_REFERENCES:
        return _lookup(value, item, monitored_user)

    def sub(m: re.Match) -> str:
        found = _lookup(m.group(1), item, monitored_user)
        return m.group(0) if found is None else found

    return _TEMPLATE.sub(sub, value)


def evaluate_rules(item: WorkItem, rules: list[Rule], context: ConditionContext,
                   monitored_user: str | None = None,
                   skip_context: ConditionContext | None = None) -> list[Action]:
    """Actions for every rule that applies to ``item`` and fires, in rule order.

    ``skip_context`` evaluates skip_if against a different item (a linked
    issue whose pull request is ``item``).
    """
    actions: list[Action] = []

    for rule in rules:
        if not rule.applies_to(item.kind):
            continue
        if rule.skip is not None and rule.skip.evaluate(skip_context or context):
            logger.debug(f"[RULES] {rule.name}: skip_if matched for {item.label}")
            continue
        if not rule.trigger.evaluate(context):
            logger.debug(f"[RULES] {rule.name}: not triggered for {item.label}")
            continue

        value = interpolate_value(rule.value, item, monitored_user)
        for action in rule.actions:
            actions.append(Action(action=action, params={"value": value}, rule_name=rule.name))
        logger.debug(f"[RULES] {rule.name}: fired {list(rule.actions)} for {item.label}")

    return actions
