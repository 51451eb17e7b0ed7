"""Parsed rule definitions."""

from dataclasses import dataclass, field
from typing import Any

from boardsync.lib.errors import ConfigurationError
from boardsync.lib.types import ItemKind, parse_kind
from boardsync.rules.conditions import Always, Condition, parse_condition

RULE_TYPES = ("board_items", "columns", "sprints", "assignees", "linked_issues")

# Action names understood by the processors
ACTION_ADD_TO_BOARD = "add_to_board"
ACTION_SET_COLUMN = "set_column"
ACTION_SET_SPRINT = "set_sprint"
ACTION_REMOVE_SPRINT = "remove_sprint"
ACTION_ADD_ASSIGNEE = "add_assignee"
ACTION_INHERIT_COLUMN = "inherit_column"
ACTION_INHERIT_ASSIGNEES = "inherit_assignees"

KNOWN_ACTIONS = {
    ACTION_ADD_TO_BOARD,
    ACTION_SET_COLUMN,
    ACTION_SET_SPRINT,
    ACTION_REMOVE_SPRINT,
    ACTION_ADD_ASSIGNEE,
    ACTION_INHERIT_COLUMN,
    ACTION_INHERIT_ASSIGNEES,
}

NO_COLUMN_NAMES = {"none", "null", ""}


@dataclass(frozen=True)
class TransitionSpec:
    """One declared column transition. from_column None is the no-column state."""
    from_column: str | None
    to_column: str
    conditions: tuple[Condition, ...] = ()


@dataclass(frozen=True)
class Rule:
    name: str
    rule_type: str
    entity_types: tuple[ItemKind, ...]
    trigger: Condition = field(default_factory=Always)
    skip: Condition | None = None
    actions: tuple[str, ...] = ()
    value: Any = None
    valid_transitions: tuple[TransitionSpec, ...] = ()
    description: str = ""

    def applies_to(self, kind: ItemKind) -> bool:
        return kind in self.entity_types


def normalize_column(name: Any) -> str | None:
    """Column name as declared, with "None"/null meaning no column."""
    if name is None:
        return None
    text = " ".join(str(name).split())
    if text.lower() in NO_COLUMN_NAMES:
        return None
    return text


def parse_transition(raw: Any, rule_name: str) -> TransitionSpec:
    if not isinstance(raw, dict) or "to" not in raw:
        raise ConfigurationError(f"Rule '{rule_name}': transition entries need a 'to' column, got {raw!r}")
    to_column = normalize_column(raw["to"])
    if to_column is None:
        raise ConfigurationError(f"Rule '{rule_name}': transition target cannot be empty")
    conditions = raw.get("conditions") or []
    if not isinstance(conditions, list):
        raise ConfigurationError(f"Rule '{rule_name}': transition conditions must be a list")
    return TransitionSpec(
        from_column=normalize_column(raw.get("from")),
        to_column=to_column,
        conditions=tuple(parse_condition(c) for c in conditions),
    )


def parse_rule(raw: dict, rule_type: str) -> Rule:
    """Build a Rule from one YAML rule mapping (already schema-validated)."""
    name = raw.get("name") or f"unnamed_{rule_type}_rule"
    trigger = raw.get("trigger") or {}

    types = trigger.get("type")
    type_names = types if isinstance(types, list) else [types]
    kinds = []
    for t in type_names:
        kind = parse_kind(t)
        if kind is None:
            raise ConfigurationError(f"Rule '{name}': unknown trigger type {t!r}")
        kinds.append(kind)

    actions = raw.get("action")
    action_names = tuple(actions) if isinstance(actions, list) else (actions,)

    transitions = raw.get("validTransitions")
    if transitions is not None and not isinstance(transitions, list):
        raise ConfigurationError(f"Rule '{name}': validTransitions must be a list")

    skip_text = raw.get("skip_if")
    return Rule(
        name=name,
        rule_type=rule_type,
        entity_types=tuple(kinds),
        trigger=parse_condition(trigger.get("condition")),
        skip=parse_condition(skip_text) if skip_text else None,
        actions=action_names,
        value=raw.get("value"),
        valid_transitions=tuple(parse_transition(t, name) for t in transitions or []),
        description=raw.get("description", ""),
    )
