"""Column transition policy using the transitions library.

Every column change on the board must be declared in a column rule's
``validTransitions``. The declared pairs are loaded into a transitions
Machine (one state per column, plus "None" for items without a column);
a pair the machine does not know is blocked. There is no fallback allow
path.

Usage:
    from boardsync.workflow.fsm import ColumnTransitionValidator

    validator = ColumnTransitionValidator()
    validator.load_rules(config.rules("columns"))
    result = validator.validate_transition("New", "Active", ctx)
    if not result.valid:
        logger.warning(result.reason)
"""

import logging
from dataclasses import dataclass

from transitions import Machine

from boardsync.rules.conditions import Condition, ConditionContext
from boardsync.rules.models import Rule, TransitionSpec, normalize_column

logger = logging.getLogger(__name__)

# State name for "no column assigned"
NO_COLUMN = "None"


@dataclass(frozen=True)
class TransitionResult:
    valid: bool
    reason: str
    allowed_transitions: tuple[str, ...] = ()


def _trigger_name(dest: str) -> str:
    return "move__" + "_".join(dest.lower().split())


class _BoardColumn:
    """Model object the machine binds triggers to."""


class ColumnTransitionValidator:
    """Validates column moves against the declared transition table.

    ``load_rules`` replaces the whole table; nothing from a previous load
    survives.
    """

    def __init__(self, rules: list[Rule] | None = None):
        self.conditions: dict[tuple[str, str], list[tuple[Condition, ...]]] = {}
        self.trigger_for: dict[tuple[str, str], str] = {}
        self._canonical: dict[str, str] = {}
        self._build([])
        if rules is not None:
            self.load_rules(rules)

    def _build(self, specs: list[TransitionSpec]) -> None:
        states = [NO_COLUMN]
        transitions = []
        conditions: dict[tuple[str, str], list[tuple[Condition, ...]]] = {}
        canonical = {NO_COLUMN.lower(): NO_COLUMN}

        def state(column: str | None) -> str:
            name = column if column is not None else NO_COLUMN
            key = name.lower()
            if key not in canonical:
                canonical[key] = name
                states.append(name)
            return canonical[key]

        trigger_for: dict[tuple[str, str], str] = {}
        for spec in specs:
            source = state(spec.from_column)
            dest = state(spec.to_column)
            key = (source, dest)
            if key not in trigger_for:
                trigger_for[key] = _trigger_name(dest)
                transitions.append({"trigger": trigger_for[key], "source": source, "dest": dest})
            conditions.setdefault(key, []).append(spec.conditions)

        self.model = _BoardColumn()
        self.machine = Machine(
            model=self.model,
            states=states,
            transitions=transitions,
            initial=NO_COLUMN,
            auto_transitions=False,  # Only declared transitions
        )
        self.conditions = conditions
        self.trigger_for = trigger_for
        self._canonical = canonical

    def load_transitions(self, specs: list[TransitionSpec]) -> None:
        self._build(list(specs))
        logger.info(f"[FSM] Loaded {len(self.trigger_for)} column transitions")

    def load_rules(self, rules: list[Rule]) -> None:
        """Replace the table with the validTransitions of the given column rules."""
        specs = [t for rule in rules for t in rule.valid_transitions]
        if not specs:
            logger.warning("[FSM] No validTransitions declared: every column change will be blocked")
        self.load_transitions(specs)

    def state_name(self, column: str | None) -> str:
        """Machine state for a board column (case-insensitive)."""
        normalized = normalize_column(column)
        if normalized is None:
            return NO_COLUMN
        return self._canonical.get(normalized.lower(), normalized)

    def allowed_from(self, column: str | None) -> tuple[str, ...]:
        source = self.state_name(column)
        if source not in self.machine.states:
            return ()
        return tuple(sorted({t.dest for t in self.machine.get_transitions(source=source)}))

    def table(self) -> dict[str, tuple[str, ...]]:
        """from-column -> allowed to-columns, for display."""
        return {s: self.allowed_from(s) for s in self.machine.states if self.allowed_from(s)}

    def _declared(self, source: str, dest: str) -> bool:
        if source not in self.machine.states or dest not in self.machine.states:
            return False
        return bool(self.machine.get_transitions(source=source, dest=dest))

    def validate_transition(self, from_column: str | None, to_column: str | None,
                            context: ConditionContext | None = None) -> TransitionResult:
        """Check one column move.

        Identity moves are always valid. Anything else must be declared, and
        the conditions of at least one matching declaration must hold.
        Errors while checking block the move.
        """
        source = self.state_name(from_column)
        dest = self.state_name(to_column)
        if source.lower() == dest.lower():
            return TransitionResult(True, f"Item already in '{dest}'")

        try:
            allowed = self.allowed_from(source)
            if not self._declared(source, dest):
                return TransitionResult(
                    False,
                    f"Transition from '{source}' to '{dest}' is not declared in validTransitions",
                    allowed,
                )

            failures = []
            for conditions in self.conditions.get((source, dest), [()]):
                if not conditions:
                    return TransitionResult(True, f"Declared transition '{source}' -> '{dest}'", allowed)
                if context is None:
                    failures.append("conditions require item context")
                    continue
                unmet = [c.describe() for c in conditions if not c.evaluate(context)]
                if not unmet:
                    return TransitionResult(True, f"Declared transition '{source}' -> '{dest}'", allowed)
                failures.append(", ".join(unmet))

            return TransitionResult(
                False,
                f"Conditions not met for '{source}' -> '{dest}': {'; '.join(failures)}",
                allowed,
            )
        except Exception as e:
            logger.error(f"[FSM] Error validating '{source}' -> '{dest}', blocking: {e}")
            return TransitionResult(False, f"Transition validation failed: {e}")
