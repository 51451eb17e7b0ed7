"""Sprint (iteration) resolution for board-sync.

Pure decision logic: callers read the board, call resolve_sprint_action, and
hand the resulting SprintDecision to the mutation coordinator.
"""

from boardsync.sprint.resolver import (
    ELIGIBLE_COLUMNS,
    INACTIVE_COLUMNS,
    find_overlaps,
    is_sprint_managed,
    merge_iterations,
    resolve_sprint_action,
    utc_day,
)

__all__ = [
    "ELIGIBLE_COLUMNS",
    "INACTIVE_COLUMNS",
    "find_overlaps",
    "is_sprint_managed",
    "merge_iterations",
    "resolve_sprint_action",
    "utc_day",
]
