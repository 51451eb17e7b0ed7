"""
Column placement.

Closed and merged items move to Done (or Closed when the board has no Done
column). Open items follow the column rules. Every move is checked by the
transition validator, written in one batch, then verified.
"""

import logging

from boardsync.lib.errors import ConfigurationError
from boardsync.lib.stats import COLUMN_SET, TRANSITION_BLOCKED
from boardsync.lib.types import ItemState, ProcessorResult, WorkItem
from boardsync.processors.common import (
    REASON_NOT_IN_PROJECT,
    rate_limit_ok,
    record,
    record_failure,
    with_project_item,
)
from boardsync.rules.models import ACTION_SET_COLUMN
from boardsync.workflow.batch import ColumnUpdate, FieldKind

logger = logging.getLogger(__name__)

NAME = "columns"
COMPLETED_COLUMNS = ("Done", "Closed")


def _completed_target(ctx) -> str | None:
    for column in COMPLETED_COLUMNS:
        try:
            ctx.board.column_option_id(column)
        except ConfigurationError:
            continue
        return column
    return None


def target_column(ctx, item: WorkItem, current: str | None, actions) -> tuple[str | None, str]:
    """(target column or None, reason)."""
    current_key = (current or "").lower()
    if item.state in (ItemState.MERGED, ItemState.CLOSED):
        if current_key in (c.lower() for c in COMPLETED_COLUMNS):
            return None, f"item is {item.state.value} and already in {current}"
        target = _completed_target(ctx)
        if target is None:
            return None, "no Done/Closed column on the board"
        return target, f"item state {item.state.value}"

    for action in actions:
        if action.action == ACTION_SET_COLUMN and action.params.get("value"):
            return str(action.params["value"]), f"rule {action.rule_name}"
    return None, "no column change needed"


def process_columns(ctx, items: list[WorkItem]) -> ProcessorResult:
    """Decide, validate, batch-write and verify column moves."""
    result = ProcessorResult(name=NAME)
    queued: list[tuple[WorkItem, str, str | None, str]] = []

    for item in items:
        item = with_project_item(ctx, item)
        if not item.in_project:
            record(result, item, False, REASON_NOT_IN_PROJECT)
            continue
        try:
            placement = ctx.board.get_placement(item.project_item_id)
            current = placement.column if placement else None
            ctx.resolved_columns[item.id] = current
            cond_ctx = ctx.condition_context(item, placement)

            target, reason = target_column(ctx, item, current, ctx.evaluate(item, NAME, cond_ctx))
            if target is None:
                record(result, item, False, reason, column=current)
                continue
            if (current or "").lower() == target.lower():
                record(result, item, False, f"column already set to {current}", column=current)
                continue

            check = ctx.validator.validate_transition(current, target, cond_ctx)
            if not check.valid:
                ctx.counters.increment(TRANSITION_BLOCKED)
                logger.warning(f"[COLUMNS] BLOCKED {item.label}: {check.reason}")
                if check.allowed_transitions:
                    logger.warning(f"[COLUMNS]   Allowed from '{current or 'None'}': {', '.join(check.allowed_transitions)}")
                record(result, item, False, f"transition blocked: {check.reason}", column=current)
                continue

            queued.append((item, target, current, reason))
        except Exception as e:
            record_failure(ctx, result, item, e)

    if not queued:
        return result

    if ctx.dry_run:
        ctx.coordinator.apply_batch(
            FieldKind.COLUMN, [ColumnUpdate(i.project_item_id, t) for i, t, _, _ in queued],
            ctx.settings.batch_size,
        )
        for item, target, current, reason in queued:
            ctx.resolved_columns[item.id] = target
            record(result, item, False, f"dry run: would move {current or 'None'} -> {target}", column=target)
        return result

    if not rate_limit_ok(ctx, result, f"{len(queued)} column update(s)"):
        for item, _, current, _ in queued:
            record(result, item, False, "rate_limit", column=current)
        return result

    try:
        result.applied = ctx.coordinator.apply_batch(
            FieldKind.COLUMN, [ColumnUpdate(i.project_item_id, t) for i, t, _, _ in queued],
            ctx.settings.batch_size,
        )
    except Exception as e:
        for item, _, _, _ in queued:
            record_failure(ctx, result, item, e)
        return result

    for item, target, current, reason in queued:
        try:
            ctx.verifier.verify_column(item, item.project_item_id, target)
            ctx.resolved_columns[item.id] = target
            ctx.counters.increment(COLUMN_SET)
            logger.info(f"[COLUMNS] {item.label}: {current or 'None'} -> {target} ({reason})")
            record(result, item, True, f"{current or 'None'} -> {target} ({reason})", column=target)
        except Exception as e:
            record_failure(ctx, result, item, e)

    return result
