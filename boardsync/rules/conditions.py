"""Rule conditions as a closed set of tagged variants.

Rule files express triggers and skip conditions as short strings such as
``monitored.users.includes(item.author)`` or ``item.column === 'New'``.
Those strings are parsed once, when rules are loaded, into the dataclasses
below and evaluated structurally. Text that does not match a known form
becomes ``Unknown``, which always evaluates to False and is logged, so a typo
never matches silently.

Usage:
    from boardsync.rules.conditions import parse_condition, ConditionContext

    cond = parse_condition("item.column === 'New' || !item.column")
    cond.evaluate(ConditionContext(item=item, placement=placement))
"""

import logging
import re
from dataclasses import dataclass

from boardsync.lib.types import BoardPlacement, WorkItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConditionContext:
    """Everything a condition may look at.

    ``parent`` is the pull request's context when a linked issue is evaluated
    (``item.pr.*`` in the rule DSL).
    """
    item: WorkItem
    placement: BoardPlacement | None = None
    monitored_users: frozenset[str] = frozenset()
    monitored_repos: frozenset[str] = frozenset()
    parent: "ConditionContext | None" = None

    @property
    def column(self) -> str | None:
        return self.placement.column if self.placement else None

    @property
    def sprint(self) -> str | None:
        return self.placement.sprint_id if self.placement else None

    @property
    def assignees(self) -> tuple[str, ...]:
        # Board placement is the observed state; fall back to the snapshot
        if self.placement is not None:
            return self.placement.assignees
        return self.item.assignees

    @property
    def in_project(self) -> bool:
        return self.placement is not None or self.item.in_project


def _norm(value: str | None) -> str | None:
    if value is None:
        return None
    return " ".join(value.split()).lower()


class Condition:
    """Base class. Subclasses are frozen dataclasses."""

    def evaluate(self, ctx: ConditionContext) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Always(Condition):
    def evaluate(self, ctx: ConditionContext) -> bool:
        return True

    def describe(self) -> str:
        return "true"


@dataclass(frozen=True)
class Membership(Condition):
    """``subject`` in ``collection``. For subject "assignees", any assignee matches."""
    subject: str
    collection: str

    def _collection(self, ctx: ConditionContext) -> set[str]:
        if self.collection == "monitored.users":
            return set(ctx.monitored_users)
        if self.collection == "monitored.repos":
            return set(ctx.monitored_repos)
        return set(ctx.assignees)

    def evaluate(self, ctx: ConditionContext) -> bool:
        pool = self._collection(ctx)
        if self.subject == "author":
            return ctx.item.author is not None and ctx.item.author in pool
        if self.subject == "repository":
            return ctx.item.repository in pool
        return any(login in pool for login in ctx.item.assignees)

    def describe(self) -> str:
        return f"item.{self.subject} in {self.collection}"


@dataclass(frozen=True)
class InProject(Condition):
    negate: bool = False

    def evaluate(self, ctx: ConditionContext) -> bool:
        return ctx.in_project != self.negate

    def describe(self) -> str:
        return ("!" if self.negate else "") + "item.inProject"


@dataclass(frozen=True)
class Equality(Condition):
    """``item.<field> === value``. A None value means "unset"."""
    field_name: str
    value: str | None
    negate: bool = False

    def _actual(self, ctx: ConditionContext) -> str | None:
        if self.field_name == "column":
            return ctx.column
        if self.field_name == "sprint":
            return ctx.sprint
        if self.field_name == "state":
            return ctx.item.state.value
        return ctx.item.kind.value

    def evaluate(self, ctx: ConditionContext) -> bool:
        matches = _norm(self._actual(ctx)) == _norm(self.value)
        return matches != self.negate

    def describe(self) -> str:
        op = "!==" if self.negate else "==="
        shown = "None" if self.value is None else repr(self.value)
        return f"item.{self.field_name} {op} {shown}"


@dataclass(frozen=True)
class MatchesParent(Condition):
    """Linked-issue field equals the parent pull request's field."""
    field_name: str  # "column" or "assignees"

    def evaluate(self, ctx: ConditionContext) -> bool:
        if ctx.parent is None:
            return False
        if self.field_name == "column":
            return _norm(ctx.column) == _norm(ctx.parent.column)
        return sorted(ctx.assignees) == sorted(ctx.parent.assignees)

    def describe(self) -> str:
        return f"item.{self.field_name} === item.pr.{self.field_name}"


@dataclass(frozen=True)
class AnyOf(Condition):
    options: tuple[Condition, ...]

    def evaluate(self, ctx: ConditionContext) -> bool:
        return any(c.evaluate(ctx) for c in self.options)

    def describe(self) -> str:
        return " || ".join(c.describe() for c in self.options)


@dataclass(frozen=True)
class AllOf(Condition):
    parts: tuple[Condition, ...]

    def evaluate(self, ctx: ConditionContext) -> bool:
        return all(c.evaluate(ctx) for c in self.parts)

    def describe(self) -> str:
        return " && ".join(c.describe() for c in self.parts)


@dataclass(frozen=True)
class Unknown(Condition):
    """Unparseable condition. Fails closed."""
    text: str

    def evaluate(self, ctx: ConditionContext) -> bool:
        logger.warning(f"[RULES] Unknown condition '{self.text}' evaluated as false for {ctx.item.label}")
        return False

    def describe(self) -> str:
        return f"<unknown: {self.text}>"


# Atom patterns, applied after whitespace/quote normalization
_ATOMS: list[tuple[re.Pattern, object]] = [
    (re.compile(r"^true$"), lambda m: Always()),
    (re.compile(r"^monitored\.users\.includes\(item\.author\)$"),
     lambda m: Membership("author", "monitored.users")),
    (re.compile(r"^item\.assignees\.some\((\w+)=>monitored\.users\.includes\(\1\)\)$"),
     lambda m: Membership("assignees", "monitored.users")),
    (re.compile(r"^monitored\.repos\.includes\(item\.repository\)$"),
     lambda m: Membership("repository", "monitored.repos")),
    (re.compile(r"^item\.assignees\.includes\(item\.author\)$"),
     lambda m: Membership("author", "item.assignees")),
    (re.compile(r"^(!?)item\.inProject$"),
     lambda m: InProject(negate=bool(m.group(1)))),
    (re.compile(r"^(!?)item\.(column|sprint)$"),
     # "!item.column" means unset; "item.column" means set
     lambda m: Equality(m.group(2), None, negate=not m.group(1))),
    (re.compile(r"^item\.(column|sprint|state|type)(===|!==)'([^']*)'$"),
     lambda m: Equality(m.group(1), m.group(3), negate=m.group(2) == "!==")),
    (re.compile(r"^item\.(column|assignees)===item\.pr\.\1$"),
     lambda m: MatchesParent(m.group(1))),
]


_QUOTED = re.compile(r"'[^']*'")


def _normalize(text: str) -> str:
    """Canonical form: single quotes, loose equality upgraded, no whitespace outside quotes."""
    text = text.strip().replace('"', "'")
    out = []
    last = 0
    for m in _QUOTED.finditer(text):
        out.append(re.sub(r"\s+", "", text[last:m.start()]))
        out.append("'" + " ".join(m.group(0)[1:-1].split()) + "'")
        last = m.end()
    out.append(re.sub(r"\s+", "", text[last:]))
    canonical = "".join(out)
    canonical = re.sub(r"(?<![=!])==(?!=)", "===", canonical)
    canonical = re.sub(r"!=(?!=)", "!==", canonical)
    return canonical


def _strip_parens(text: str) -> str:
    while text.startswith("(") and text.endswith(")"):
        depth = 0
        for i, ch in enumerate(text):
            depth += ch == "("
            depth -= ch == ")"
            if depth == 0 and i < len(text) - 1:
                return text
        text = text[1:-1]
    return text


def _split_top(text: str, sep: str) -> list[str]:
    parts, depth, start, i = [], 0, 0, 0
    while i < len(text):
        ch = text[i]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
        elif ch == "'":
            i = text.index("'", i + 1) if "'" in text[i + 1:] else len(text)
        elif depth == 0 and text.startswith(sep, i):
            parts.append(text[start:i])
            i += len(sep)
            start = i
            continue
        i += 1
    parts.append(text[start:])
    return parts


def _parse(text: str, original: str) -> Condition:
    text = _strip_parens(text)
    options = _split_top(text, "||")
    if len(options) > 1:
        return AnyOf(tuple(_parse(o, original) for o in options))
    parts = _split_top(text, "&&")
    if len(parts) > 1:
        return AllOf(tuple(_parse(p, original) for p in parts))
    for pattern, build in _ATOMS:
        m = pattern.match(text)
        if m:
            return build(m)
    return Unknown(original if text == _normalize(original) else text)


def parse_condition(text: str | None) -> Condition:
    """Parse a rule DSL string. Empty or missing means Always."""
    if text is None or not str(text).strip():
        return Always()
    condition = _parse(_normalize(str(text)), str(text).strip())
    for unknown in unknown_parts(condition):
        logger.warning(f"[RULES] Unrecognized condition '{unknown}' will never match")
    return condition


def unknown_parts(condition: Condition) -> list[str]:
    """Texts of all Unknown leaves in a condition tree."""
    if isinstance(condition, Unknown):
        return [condition.text]
    if isinstance(condition, AnyOf):
        return [u for c in condition.options for u in unknown_parts(c)]
    if isinstance(condition, AllOf):
        return [u for c in condition.parts for u in unknown_parts(c)]
    return []
