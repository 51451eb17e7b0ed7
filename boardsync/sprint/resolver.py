"""
Sprint resolution.

Decides whether an item's Sprint iteration should be assigned, removed or
left alone, from its column, its current iteration and (for Done items) the
time it was completed. Pure: no I/O, the caller supplies ``now``.

Rules:
    - Columns outside both groups below are not sprint-managed: skip.
    - Inactive columns (New, Parked, Backlog): remove any assigned iteration.
    - Eligible columns other than Done: the iteration containing ``now``.
    - Done: the iteration containing the completion date, or, when the date
      falls in a gap between iterations, the earliest one starting after it.
      Done items never fall back to "current".
"""

import logging
from datetime import date, datetime, timezone

from boardsync.lib.types import Iteration, SprintAction, SprintDecision

logger = logging.getLogger(__name__)

ELIGIBLE_COLUMNS = ("Next", "Active", "Done", "Waiting")
INACTIVE_COLUMNS = ("New", "Parked", "Backlog")
DONE_COLUMN = "Done"

_ELIGIBLE = {c.lower() for c in ELIGIBLE_COLUMNS}
_INACTIVE = {c.lower() for c in INACTIVE_COLUMNS}


def utc_day(value: date | datetime) -> date:
    """Calendar day in UTC. Naive datetimes are taken as UTC."""
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def _column_key(column: str | None) -> str:
    return " ".join((column or "").split()).lower()


def is_sprint_managed(column: str | None) -> bool:
    key = _column_key(column)
    return key in _ELIGIBLE or key in _INACTIVE


def merge_iterations(*groups: list[Iteration]) -> list[Iteration]:
    """Merge iteration lists (e.g. active and completed) ordered by start date.

    Duplicate ids are kept once. Overlapping windows are logged, not resolved.
    """
    by_id: dict[str, Iteration] = {}
    for group in groups:
        for iteration in group or []:
            by_id.setdefault(iteration.id, iteration)
    merged = sorted(by_id.values(), key=lambda it: (it.start_date, it.id))
    for a, b in find_overlaps(merged):
        logger.warning(
            f"[SPRINT] Iterations overlap: '{a.title}' ({a.start_date}..{a.end_date}) "
            f"and '{b.title}' ({b.start_date}..{b.end_date})"
        )
    return merged


def find_overlaps(iterations: list[Iteration]) -> list[tuple[Iteration, Iteration]]:
    ordered = sorted(iterations, key=lambda it: it.start_date)
    overlaps = []
    for i, a in enumerate(ordered):
        for b in ordered[i + 1:]:
            if b.start_date >= a.end_date:
                break
            overlaps.append((a, b))
    return overlaps


def _covering(iterations: list[Iteration], day: date) -> list[Iteration]:
    return [it for it in iterations if it.contains(day)]


def _overlap_skip(matches: list[Iteration], day: date, current: str | None) -> SprintDecision:
    titles = ", ".join(it.title for it in matches)
    return SprintDecision(
        SprintAction.SKIP,
        f"overlapping iterations cover {day.isoformat()} ({titles})",
        current_iteration_id=current,
    )


def _assign_or_keep(target: Iteration, current: str | None, assign_reason: str) -> SprintDecision:
    if target.id == current:
        return SprintDecision(
            SprintAction.SKIP,
            f"already in {target.title}",
            target_iteration_id=target.id,
            current_iteration_id=current,
        )
    return SprintDecision(
        SprintAction.ASSIGN,
        assign_reason,
        target_iteration_id=target.id,
        current_iteration_id=current,
    )


def resolve_sprint_action(
    column: str | None,
    current_iteration_id: str | None,
    iterations: list[Iteration],
    now: date | datetime,
    completion_timestamp: date | datetime | None = None,
) -> SprintDecision:
    """Decide the sprint change for one item.

    Args:
        column: The item's column after the column step ran
        current_iteration_id: Iteration currently set on the item, if any
        iterations: Active and completed iterations
        now: Reference time for non-Done columns
        completion_timestamp: Merge/close time, used only for Done

    Returns:
        SprintDecision. Never raises for missing data; it skips instead.
    """
    key = _column_key(column)
    current = current_iteration_id or None

    if key not in _ELIGIBLE and key not in _INACTIVE:
        return SprintDecision(
            SprintAction.SKIP,
            f"column '{column}' is not sprint-managed",
            current_iteration_id=current,
        )

    if key in _INACTIVE:
        if current:
            return SprintDecision(
                SprintAction.REMOVE,
                f"column '{column}' is inactive, removing sprint",
                current_iteration_id=current,
            )
        return SprintDecision(
            SprintAction.SKIP,
            f"column '{column}' is inactive and no sprint is set",
        )

    if key != DONE_COLUMN.lower():
        today = utc_day(now)
        matches = _covering(iterations, today)
        if len(matches) > 1:
            return _overlap_skip(matches, today, current)
        if not matches:
            return SprintDecision(
                SprintAction.SKIP,
                f"no active iteration configured for {today.isoformat()}",
                current_iteration_id=current,
            )
        return _assign_or_keep(matches[0], current, f"current iteration {matches[0].title}")

    if completion_timestamp is None:
        return SprintDecision(
            SprintAction.SKIP,
            "Done item has no completion timestamp",
            current_iteration_id=current,
        )

    completed = utc_day(completion_timestamp)
    matches = _covering(iterations, completed)
    if len(matches) > 1:
        return _overlap_skip(matches, completed, current)
    if matches:
        return _assign_or_keep(
            matches[0], current,
            f"completed {completed.isoformat()} during {matches[0].title}",
        )

    following = sorted(
        (it for it in iterations if it.start_date > completed),
        key=lambda it: it.start_date,
    )
    if following:
        return _assign_or_keep(
            following[0], current,
            f"completed {completed.isoformat()} in a coverage gap, "
            f"next available iteration {following[0].title}",
        )

    return SprintDecision(
        SprintAction.SKIP,
        f"no sprint covers completion date and none follow it ({completed.isoformat()})",
        current_iteration_id=current,
    )
