"""
Run counters for board-sync.

Counters are named increment events (``sprint.assigned``,
``transition.blocked``, ...) collected per run and printed as a summary.
"""

import json
import logging
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)

ITEMS_PROCESSED = "items.processed"
ITEMS_FAILED = "items.failed"
TRANSITION_BLOCKED = "transition.blocked"
COLUMN_SET = "column.set"
SPRINT_ASSIGNED = "sprint.assigned"
SPRINT_REMOVED = "sprint.removed"
SPRINT_SKIPPED = "sprint.skipped"
BOARD_ADDED = "board.added"
ASSIGNEES_CHANGED = "assignees.changed"
LINKED_UPDATED = "linked.updated"
RETRY_EXHAUSTED = "retry.exhausted"
RATE_LIMIT_SKIPPED = "rate_limit.skipped"


@dataclass
class RunCounters:
    """Named counters for one run."""
    counts: Counter = field(default_factory=Counter)

    def increment(self, name: str, amount: int = 1) -> None:
        self.counts[name] += amount
        logger.debug(f"[STATS] {name} += {amount}")

    def get(self, name: str) -> int:
        return self.counts.get(name, 0)

    def as_dict(self) -> dict[str, int]:
        return dict(sorted(self.counts.items()))

    def reset(self) -> None:
        self.counts.clear()


def format_duration(seconds: float) -> str:
    """Format seconds as human-readable duration."""
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m {secs:.0f}s"


def format_counter_summary(counters: RunCounters, elapsed_seconds: float | None = None) -> list[str]:
    """Format counters as lines for display."""
    lines = []
    if elapsed_seconds is not None:
        lines.append(f"  Duration: {format_duration(elapsed_seconds)}")
    data = counters.as_dict()
    if not data:
        lines.append("  No changes recorded")
        return lines
    width = max(len(name) for name in data)
    for name, value in data.items():
        lines.append(f"  {name.ljust(width)}  {value}")
    return lines


def write_summary(path: Path, counters: RunCounters, extra: dict | None = None) -> None:
    """Append a JSON line with the run's counters (e.g. for CI artifacts)."""
    record = {"counters": counters.as_dict(), **(extra or {})}
    with open(path, "a") as f:
        f.write(json.dumps(record) + "\n")
        f.flush()
