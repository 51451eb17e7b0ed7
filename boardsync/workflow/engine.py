"""Reconciliation engine.

Runs the processors in order over one snapshot of work items:
board items -> columns -> sprints -> assignees -> linked issues, then the
optional sprint sweep of existing board items. Wrapped with a Prefect @flow
for observability; ``reconcile`` is the plain core.
"""

import logging
from typing import Callable

from prefect import flow

from boardsync.lib.board import BoardClient
from boardsync.lib.cache import RunCaches
from boardsync.lib.config import BoardConfig, Settings
from boardsync.lib.github import GitHubClient
from boardsync.lib.types import ProcessorResult, WorkItem
from boardsync.processors import (
    process_assignees,
    process_board_items,
    process_columns,
    process_linked_issues,
    process_sprints,
    sweep_existing_items,
)
from boardsync.workflow.context import RunContext
from boardsync.workflow.tasks import (
    task_assignees,
    task_board_items,
    task_columns,
    task_existing_items_sweep,
    task_fetch_items,
    task_linked_issues,
    task_sprints,
)

logger = logging.getLogger(__name__)

Step = tuple[str, Callable[[RunContext, list[WorkItem]], ProcessorResult]]

PIPELINE: list[Step] = [
    ("board_items", process_board_items),
    ("columns", process_columns),
    ("sprints", process_sprints),
    ("assignees", process_assignees),
    ("linked_issues", process_linked_issues),
    ("existing_items_sweep", sweep_existing_items),
]

TASK_PIPELINE: list[Step] = [
    ("board_items", task_board_items),
    ("columns", task_columns),
    ("sprints", task_sprints),
    ("assignees", task_assignees),
    ("linked_issues", task_linked_issues),
    ("existing_items_sweep", task_existing_items_sweep),
]


def build_context(settings: Settings, config: BoardConfig, client: GitHubClient | None = None) -> RunContext:
    """Wire a RunContext from loaded settings and rules."""
    client = client or GitHubClient(token=settings.token)
    board = BoardClient(client, config.project_id, RunCaches())
    return RunContext.create(config, settings, board)


def _log_result(result: ProcessorResult) -> None:
    if result.status == "skipped":
        logger.info(f"[ENGINE] {result.name}: skipped ({result.reason})")
        return
    logger.info(
        f"[ENGINE] {result.name}: {len(result.processed)} changed, "
        f"{len(result.skipped)} unchanged, {len(result.failed)} failed"
    )
    for entry in result.skipped:
        logger.debug(f"[ENGINE]   {entry.item}: {entry.reason}")


def reconcile(ctx: RunContext, items: list[WorkItem], steps: list[Step] | None = None) -> dict[str, ProcessorResult]:
    """Run each step over the items, sequentially.

    Fatal errors (configuration, authentication, rate-limit exhaustion)
    propagate; per-item failures are recorded on the step's result.
    """
    logger.info(f"[ENGINE] Reconciling {len(items)} item(s){' (dry run)' if ctx.dry_run else ''}")
    for name, step in steps or PIPELINE:
        result = step(ctx, items)
        ctx.results[name] = result
        _log_result(result)
    return ctx.results


@flow(name="board_sync_flow")
def board_sync_flow(ctx: RunContext) -> dict[str, ProcessorResult]:
    """Prefect flow: fetch a snapshot, then run the task pipeline."""
    items = task_fetch_items(ctx)
    return reconcile(ctx, items, steps=TASK_PIPELINE)
