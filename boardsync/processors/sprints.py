"""
Sprint assignment.

Sprint rules decide whether an item is sprint-managed at all; the resolver
decides which iteration. Items are processed after the column step, using
the column it produced.
"""

import logging

from boardsync.lib.errors import ConfigurationError
from boardsync.lib.stats import SPRINT_ASSIGNED, SPRINT_REMOVED, SPRINT_SKIPPED
from boardsync.lib.types import (
    BoardPlacement,
    ProcessorResult,
    SprintAction,
    SprintDecision,
    WorkItem,
)
from boardsync.processors.common import (
    REASON_NOT_IN_PROJECT,
    REASON_RATE_LIMIT,
    rate_limit_ok,
    record,
    record_failure,
    with_project_item,
)
from boardsync.rules.models import ACTION_REMOVE_SPRINT, ACTION_SET_SPRINT
from boardsync.sprint.resolver import resolve_sprint_action
from boardsync.workflow.batch import FieldKind, IterationUpdate

logger = logging.getLogger(__name__)

NAME = "sprints"
SWEEP_NAME = "existing_items_sweep"

REQUIRED_ACTION = {
    SprintAction.ASSIGN: ACTION_SET_SPRINT,
    SprintAction.REMOVE: ACTION_REMOVE_SPRINT,
}


def decide(ctx, item: WorkItem, placement: BoardPlacement, iterations) -> SprintDecision:
    """Sprint decision for one item, gated by the sprint rules."""
    column = ctx.resolved_columns.get(item.id, placement.column)
    cond_ctx = ctx.condition_context(item, BoardPlacement(
        project_item_id=placement.project_item_id,
        column=column,
        sprint_id=placement.sprint_id,
        assignees=placement.assignees,
    ))
    actions = {a.action for a in ctx.evaluate(item, NAME, cond_ctx)}
    if not actions & set(REQUIRED_ACTION.values()):
        return SprintDecision(SprintAction.SKIP, "no sprint rule matched", current_iteration_id=placement.sprint_id)

    decision = resolve_sprint_action(
        column, placement.sprint_id, iterations, ctx.clock(), item.completed_at,
    )
    required = REQUIRED_ACTION.get(decision.action)
    if required is not None and required not in actions:
        return SprintDecision(
            SprintAction.SKIP,
            f"{decision.action.value} not enabled by sprint rules ({decision.reason})",
            current_iteration_id=placement.sprint_id,
        )
    return decision


def _iterations(ctx):
    if not ctx.board.sprint_field_id():
        raise ConfigurationError(
            f"Sprint rules are configured but project {ctx.board.project_id} has no 'Sprint' iteration field"
        )
    return ctx.board.iterations()


def _apply(ctx, result: ProcessorResult, queued: list[tuple[WorkItem, SprintDecision]]) -> None:
    if not queued:
        return
    updates = [IterationUpdate(i.project_item_id, d.target_iteration_id) for i, d in queued]

    if ctx.dry_run:
        ctx.coordinator.apply_batch(FieldKind.ITERATION, updates, ctx.settings.batch_size)
        for item, decision in queued:
            record(result, item, False, f"dry run: would {decision.action.value} ({decision.reason})")
        return

    if not rate_limit_ok(ctx, result, f"{len(updates)} sprint update(s)"):
        for item, _ in queued:
            record(result, item, False, REASON_RATE_LIMIT)
        return

    try:
        result.applied += ctx.coordinator.apply_batch(FieldKind.ITERATION, updates, ctx.settings.batch_size)
    except Exception as e:
        for item, _ in queued:
            record_failure(ctx, result, item, e)
        return

    for item, decision in queued:
        try:
            ctx.verifier.verify_sprint(item, item.project_item_id, decision.target_iteration_id)
            counter = SPRINT_ASSIGNED if decision.action == SprintAction.ASSIGN else SPRINT_REMOVED
            ctx.counters.increment(counter)
            logger.info(f"[SPRINT] {item.label}: {decision.action.value} ({decision.reason})")
            record(result, item, True, decision.reason, iteration=decision.target_iteration_id)
        except Exception as e:
            record_failure(ctx, result, item, e)


def _process(ctx, result: ProcessorResult, entries, iterations) -> None:
    queued: list[tuple[WorkItem, SprintDecision]] = []
    for item, placement in entries:
        try:
            if placement is None:
                placement = ctx.board.get_placement(item.project_item_id)
            if placement is None:
                record(result, item, False, REASON_NOT_IN_PROJECT)
                continue
            decision = decide(ctx, item, placement, iterations)
            if decision.action == SprintAction.SKIP:
                ctx.counters.increment(SPRINT_SKIPPED)
                logger.info(f"[SPRINT] {item.label}: skip ({decision.reason})")
                record(result, item, False, decision.reason)
                continue
            queued.append((item, decision))
        except Exception as e:
            record_failure(ctx, result, item, e)
    _apply(ctx, result, queued)


def process_sprints(ctx, items: list[WorkItem]) -> ProcessorResult:
    """Assign or remove sprints for the run's items."""
    if not ctx.config.rules(NAME):
        return ProcessorResult.skipped_run(NAME, "no sprint rules configured")
    result = ProcessorResult(name=NAME)
    iterations = _iterations(ctx)

    entries = []
    for item in items:
        item = with_project_item(ctx, item)
        if not item.in_project:
            record(result, item, False, REASON_NOT_IN_PROJECT)
            continue
        entries.append((item, None))
    _process(ctx, result, entries, iterations)
    return result


def sweep_existing_items(ctx, items: list[WorkItem] | None = None) -> ProcessorResult:
    """Sprint pass over items already on the board, minus this run's items."""
    if not ctx.settings.existing_items_sweep:
        return ProcessorResult.skipped_run(SWEEP_NAME, "disabled")
    if not ctx.config.rules(NAME):
        return ProcessorResult.skipped_run(SWEEP_NAME, "no sprint rules configured")
    result = ProcessorResult(name=SWEEP_NAME)
    if not rate_limit_ok(ctx, result, "existing items sweep"):
        return ProcessorResult.skipped_run(SWEEP_NAME, REASON_RATE_LIMIT)

    iterations = _iterations(ctx)
    exclude = {i.id for i in items or []}
    entries = [(item, placement) for item, placement in ctx.board.list_project_items()
               if item.id not in exclude]
    logger.info(f"[SPRINT] Sweeping {len(entries)} existing board item(s)")
    _process(ctx, result, entries, iterations)
    return result
