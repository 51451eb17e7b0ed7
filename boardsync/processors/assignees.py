"""
Assignee rules: add assignees (typically the author) to issues and PRs.
"""

import logging

from boardsync.lib.stats import ASSIGNEES_CHANGED
from boardsync.lib.types import BoardPlacement, ProcessorResult, WorkItem
from boardsync.processors.common import (
    REASON_NOT_IN_PROJECT,
    REASON_RATE_LIMIT,
    rate_limit_ok,
    record,
    record_failure,
    with_project_item,
)
from boardsync.rules.models import ACTION_ADD_ASSIGNEE
from boardsync.workflow.batch import AssigneeUpdate, FieldKind

logger = logging.getLogger(__name__)

NAME = "assignees"


def desired_assignees(current: tuple[str, ...], actions) -> tuple[str, ...]:
    """Current assignees plus every login the add_assignee actions name."""
    desired = list(current)
    for action in actions:
        if action.action != ACTION_ADD_ASSIGNEE:
            continue
        value = action.params.get("value")
        logins = value if isinstance(value, list) else [value]
        for login in logins:
            if login and isinstance(login, str) and login not in desired:
                desired.append(login)
    return tuple(desired)


def process_assignees(ctx, items: list[WorkItem]) -> ProcessorResult:
    if not ctx.config.rules(NAME):
        return ProcessorResult.skipped_run(NAME, "no assignee rules configured")
    result = ProcessorResult(name=NAME)
    queued: list[tuple[WorkItem, AssigneeUpdate]] = []

    for item in items:
        item = with_project_item(ctx, item)
        if not item.in_project:
            record(result, item, False, REASON_NOT_IN_PROJECT)
            continue
        try:
            # Assignees live on the issue/PR itself; read them fresh
            current = ctx.board.content_assignees(item.id)
            placement = BoardPlacement(
                project_item_id=item.project_item_id,
                column=ctx.resolved_columns.get(item.id),
                assignees=current,
            )
            actions = ctx.evaluate(item, NAME, ctx.condition_context(item, placement))
            if not actions:
                record(result, item, False, "no assignee rules triggered", assignees=list(current))
                continue

            desired = desired_assignees(current, actions)
            if set(desired) == set(current):
                record(result, item, False, "assignees already up to date", assignees=list(current))
                continue
            queued.append((item, AssigneeUpdate(target_id=item.id, desired=desired, current=current)))
        except Exception as e:
            record_failure(ctx, result, item, e)

    if not queued:
        return result

    updates = [u for _, u in queued]
    if ctx.dry_run:
        ctx.coordinator.apply_batch(FieldKind.ASSIGNEES, updates, ctx.settings.batch_size)
        for item, update in queued:
            record(result, item, False, f"dry run: would set assignees {', '.join(update.desired)}")
        return result

    if not rate_limit_ok(ctx, result, f"{len(updates)} assignee update(s)"):
        for item, _ in queued:
            record(result, item, False, REASON_RATE_LIMIT)
        return result

    try:
        result.applied = ctx.coordinator.apply_batch(FieldKind.ASSIGNEES, updates, ctx.settings.batch_size)
    except Exception as e:
        for item, _ in queued:
            record_failure(ctx, result, item, e)
        return result

    for item, update in queued:
        try:
            ctx.verifier.verify_assignees(item, update.desired)
            added = sorted(set(update.desired) - set(update.current or ()))
            ctx.counters.increment(ASSIGNEES_CHANGED)
            logger.info(f"[ASSIGNEES] {item.label}: added {', '.join(added)}")
            record(result, item, True, f"added {', '.join(added)}", assignees=list(update.desired))
        except Exception as e:
            record_failure(ctx, result, item, e)

    return result
