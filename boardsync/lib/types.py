"""
Shared data types for board-sync.

This module contains dataclasses used across multiple modules to avoid
circular imports.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any


class ItemKind(Enum):
    """Content type of a work item, matching GraphQL __typename."""
    PULL_REQUEST = "PullRequest"
    ISSUE = "Issue"


class ItemState(Enum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"


def parse_kind(value: str | None) -> ItemKind | None:
    """Parse a __typename / type string into ItemKind.

    Returns None if the kind is unknown.
    """
    if value is None:
        return None
    for kind in ItemKind:
        if kind.value.lower() == str(value).strip().lower():
            return kind
    return None


def parse_state(value: str | None, merged: bool = False) -> ItemState:
    """Parse a REST or GraphQL state string. REST reports merged PRs as "closed"."""
    if merged:
        return ItemState.MERGED
    normalized = (value or "OPEN").strip().upper()
    try:
        return ItemState(normalized)
    except ValueError:
        return ItemState.OPEN


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp as returned by GitHub ("2024-06-12T10:00:00Z")."""
    if not value:
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class WorkItemRef:
    """Reference to a related item (e.g. an issue closed by a PR)."""
    id: str
    number: int
    repository: str
    project_item_id: str | None = None


@dataclass(frozen=True)
class WorkItem:
    """Immutable snapshot of an issue or pull request for one reconciliation pass."""
    kind: ItemKind
    id: str
    number: int
    repository: str  # "owner/name"
    author: str | None = None
    assignees: tuple[str, ...] = ()
    state: ItemState = ItemState.OPEN
    linked_issues: tuple[WorkItemRef, ...] = ()
    project_item_id: str | None = None  # Set when the item is known to be on the board
    merged_at: datetime | None = None
    closed_at: datetime | None = None
    updated_at: datetime | None = None
    url: str | None = None

    @property
    def label(self) -> str:
        """Human-readable identifier for logs, e.g. "PullRequest #12 [org/repo]"."""
        return f"{self.kind.value} #{self.number} [{self.repository}]"

    @property
    def key(self) -> str:
        """Stable key for per-item bookkeeping within a run."""
        return self.id or f"{self.repository}#{self.number}"

    @property
    def completed_at(self) -> datetime | None:
        """Merge time for merged PRs, otherwise close time."""
        if self.state == ItemState.MERGED and self.merged_at:
            return self.merged_at
        return self.closed_at or self.merged_at

    @property
    def in_project(self) -> bool:
        return self.project_item_id is not None


@dataclass
class BoardPlacement:
    """Observed board state for one project item."""
    project_item_id: str
    column: str | None = None
    sprint_id: str | None = None
    assignees: tuple[str, ...] = ()


@dataclass(frozen=True)
class Iteration:
    """A sprint. The window [start_date, start_date + duration_days) is half-open."""
    id: str
    title: str
    start_date: date
    duration_days: int

    @property
    def end_date(self) -> date:
        """Exclusive end of the window."""
        return self.start_date + timedelta(days=self.duration_days)

    def contains(self, day: date) -> bool:
        return self.start_date <= day < self.end_date


class SprintAction(Enum):
    ASSIGN = "assign"
    REMOVE = "remove"
    SKIP = "skip"


@dataclass(frozen=True)
class SprintDecision:
    """Output of sprint resolution. Never mutates state itself."""
    action: SprintAction
    reason: str
    target_iteration_id: str | None = None
    current_iteration_id: str | None = None


@dataclass(frozen=True)
class Action:
    """A rule action emitted by the evaluator."""
    action: str
    params: dict[str, Any] = field(default_factory=dict)
    rule_name: str = ""


@dataclass
class ItemResult:
    """Per-item outcome recorded by a processor."""
    item: str  # WorkItem.label
    changed: bool
    reason: str
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessorResult:
    """Outcome of one processor over all items."""
    name: str
    processed: list[ItemResult] = field(default_factory=list)
    skipped: list[ItemResult] = field(default_factory=list)
    failed: list[ItemResult] = field(default_factory=list)
    status: str = "completed"  # "completed" or "skipped"
    reason: str = ""
    applied: int = 0  # Confirmed mutations

    @classmethod
    def skipped_run(cls, name: str, reason: str) -> "ProcessorResult":
        return cls(name=name, status="skipped", reason=reason)
