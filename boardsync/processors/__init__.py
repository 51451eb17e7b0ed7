"""Rule-type processors.

Each processor takes the run context and the run's items, and returns a
ProcessorResult. They run in a fixed order: board items, columns, sprints,
assignees, linked issues.
"""

from boardsync.processors.assignees import process_assignees
from boardsync.processors.board_items import process_board_items
from boardsync.processors.columns import process_columns
from boardsync.processors.linked_issues import process_linked_issues
from boardsync.processors.sprints import process_sprints, sweep_existing_items

__all__ = [
    "process_assignees",
    "process_board_items",
    "process_columns",
    "process_linked_issues",
    "process_sprints",
    "sweep_existing_items",
]
