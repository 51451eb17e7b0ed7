"""
Linked issues inherit column and assignees from the pull request that
closes them.

The PR's column and assignees are re-read from the board just before its
linked issues are handled, and each issue is re-read just before it is
compared. Reads for different PRs are not taken at one point in time.
"""

import logging

from boardsync.lib.stats import LINKED_UPDATED, TRANSITION_BLOCKED
from boardsync.lib.types import BoardPlacement, ItemKind, ProcessorResult, WorkItem
from boardsync.processors.common import (
    REASON_NOT_IN_PROJECT,
    REASON_RATE_LIMIT,
    rate_limit_ok,
    record,
    record_failure,
    with_project_item,
)
from boardsync.rules.models import ACTION_INHERIT_ASSIGNEES, ACTION_INHERIT_COLUMN
from boardsync.workflow.batch import AssigneeUpdate, ColumnUpdate, FieldKind

logger = logging.getLogger(__name__)

NAME = "linked_issues"


def _same_assignees(a, b) -> bool:
    return sorted(a) == sorted(b)


def _plan_issue(ctx, result, pr: WorkItem, pr_ctx, issue: WorkItem, placement: BoardPlacement):
    """(column target or None, assignee target or None) for one linked issue."""
    issue_ctx = ctx.condition_context(issue, placement, parent=pr_ctx)
    if (placement.column or "").lower() == (pr_ctx.column or "").lower() and \
            _same_assignees(placement.assignees, pr_ctx.assignees):
        record(result, issue, False, "state_matches_pr", pr=pr.label)
        return None, None

    actions = {a.action for a in ctx.evaluate(pr, NAME, pr_ctx, skip_context=issue_ctx)}
    if not actions:
        record(result, issue, False, "no linked issue rules triggered", pr=pr.label)
        return None, None

    column = None
    if ACTION_INHERIT_COLUMN in actions and pr_ctx.column and \
            (placement.column or "").lower() != pr_ctx.column.lower():
        check = ctx.validator.validate_transition(placement.column, pr_ctx.column, issue_ctx)
        if check.valid:
            column = pr_ctx.column
        else:
            ctx.counters.increment(TRANSITION_BLOCKED)
            logger.warning(f"[LINKED] BLOCKED {issue.label}: {check.reason}")

    assignees = None
    if ACTION_INHERIT_ASSIGNEES in actions and pr_ctx.assignees and \
            not _same_assignees(placement.assignees, pr_ctx.assignees):
        assignees = tuple(pr_ctx.assignees)

    if column is None and assignees is None:
        record(result, issue, False, "nothing to inherit", pr=pr.label)
    return column, assignees


def _process_pr(ctx, result: ProcessorResult, pr: WorkItem) -> None:
    pr_placement = ctx.board.get_placement(pr.project_item_id)
    if pr_placement is None:
        record(result, pr, False, REASON_NOT_IN_PROJECT)
        return
    pr_ctx = ctx.condition_context(pr, pr_placement)

    refs = pr.linked_issues or ctx.board.linked_issues(pr.id)
    if not refs:
        record(result, pr, False, "no linked issues")
        return

    columns: list[tuple[WorkItem, str, str | None]] = []
    assignees: list[tuple[WorkItem, AssigneeUpdate]] = []
    for ref in refs:
        issue = ctx.board.fetch_item(ref.id)
        if issue is None:
            logger.warning(f"[LINKED] Linked issue #{ref.number} [{ref.repository}] could not be read")
            continue
        try:
            if not issue.in_project:
                logger.info(f"[LINKED] Skipping {issue.label}: not present on project board")
                record(result, issue, False, REASON_NOT_IN_PROJECT, pr=pr.label)
                continue
            placement = ctx.board.get_placement(issue.project_item_id)
            if placement is None:
                record(result, issue, False, REASON_NOT_IN_PROJECT, pr=pr.label)
                continue
            column, desired = _plan_issue(ctx, result, pr, pr_ctx, issue, placement)
            if column is not None:
                columns.append((issue, column, placement.column))
            if desired is not None:
                assignees.append((issue, AssigneeUpdate(issue.id, desired, placement.assignees)))
        except Exception as e:
            record_failure(ctx, result, issue, e)

    if not columns and not assignees:
        return

    if ctx.dry_run:
        ctx.coordinator.apply_batch(FieldKind.COLUMN, [ColumnUpdate(i.project_item_id, c) for i, c, _ in columns],
                                    ctx.settings.batch_size)
        ctx.coordinator.apply_batch(FieldKind.ASSIGNEES, [u for _, u in assignees], ctx.settings.batch_size)
        for issue, column, _ in columns:
            record(result, issue, False, f"dry run: would inherit column {column}", pr=pr.label)
        for issue, update in assignees:
            record(result, issue, False, f"dry run: would inherit assignees {', '.join(update.desired)}", pr=pr.label)
        return

    if not rate_limit_ok(ctx, result, f"linked issue updates for {pr.label}"):
        for issue, _, _ in columns:
            record(result, issue, False, REASON_RATE_LIMIT, pr=pr.label)
        for issue, _ in assignees:
            record(result, issue, False, REASON_RATE_LIMIT, pr=pr.label)
        return

    updated: dict[str, tuple[WorkItem, list[str]]] = {}
    if columns:
        try:
            result.applied += ctx.coordinator.apply_batch(
                FieldKind.COLUMN, [ColumnUpdate(i.project_item_id, c) for i, c, _ in columns], ctx.settings.batch_size,
            )
        except Exception as e:
            for issue, _, _ in columns:
                record_failure(ctx, result, issue, e)
            columns = []
        for issue, column, previous in columns:
            try:
                ctx.verifier.verify_column(issue, issue.project_item_id, column)
                updated.setdefault(issue.id, (issue, []))[1].append(f"column {previous or 'None'} -> {column}")
            except Exception as e:
                record_failure(ctx, result, issue, e)
    if assignees:
        try:
            result.applied += ctx.coordinator.apply_batch(
                FieldKind.ASSIGNEES, [u for _, u in assignees], ctx.settings.batch_size,
            )
        except Exception as e:
            for issue, _ in assignees:
                record_failure(ctx, result, issue, e)
            assignees = []
        for issue, update in assignees:
            try:
                ctx.verifier.verify_assignees(issue, update.desired)
                updated.setdefault(issue.id, (issue, []))[1].append(f"assignees {', '.join(update.desired)}")
            except Exception as e:
                record_failure(ctx, result, issue, e)

    for issue, changes in updated.values():
        ctx.counters.increment(LINKED_UPDATED)
        logger.info(f"[LINKED] {issue.label} inherited from {pr.label}: {'; '.join(changes)}")
        record(result, issue, True, f"inherited {'; '.join(changes)}", pr=pr.label)


def process_linked_issues(ctx, items: list[WorkItem]) -> ProcessorResult:
    """Apply linked-issue rules for every pull request in the run."""
    if not ctx.config.rules(NAME):
        return ProcessorResult.skipped_run(NAME, "no linked issue rules configured")
    result = ProcessorResult(name=NAME)

    for item in items:
        if item.kind != ItemKind.PULL_REQUEST:
            continue
        pr = with_project_item(ctx, item)
        if not pr.in_project:
            record(result, pr, False, REASON_NOT_IN_PROJECT)
            continue
        try:
            _process_pr(ctx, result, pr)
        except Exception as e:
            record_failure(ctx, result, pr, e)

    return result
