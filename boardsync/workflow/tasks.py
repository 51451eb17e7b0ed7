"""Prefect task wrappers for the board-sync steps.

Wraps the snapshot fetch and each processor with @task to get structured
logging and observability (when connected to a Prefect server). Processors
are not retried at the task level: a rerun would repeat writes that the
state verifier already retries per item.

The underlying functions remain plain and are what tests call.
"""

import logging
from datetime import timedelta
from typing import TYPE_CHECKING

from prefect import task
from prefect.cache_policies import NO_CACHE

from boardsync.lib.errors import is_retryable
from boardsync.lib.events import load_event_items
from boardsync.lib.rate_limit import check_rate_limit
from boardsync.lib.stats import RATE_LIMIT_SKIPPED
from boardsync.lib.types import ProcessorResult, WorkItem
from boardsync.processors import (
    process_assignees,
    process_board_items,
    process_columns,
    process_linked_issues,
    process_sprints,
    sweep_existing_items,
)
from boardsync.processors.common import REASON_RATE_LIMIT

if TYPE_CHECKING:
    from boardsync.workflow.context import RunContext

logger = logging.getLogger(__name__)

FETCH_NAME = "fetch_items"


def fetch_items(ctx: "RunContext") -> list[WorkItem]:
    """Items for this run.

    An event payload yields exactly the item it names. Without one, search
    for items touched by monitored users or in monitored repositories within
    the lookback window. A low rate-limit budget skips the search: the run
    gets no items and the skip is recorded under ``fetch_items``.
    """
    items = load_event_items(ctx.settings.event_name, ctx.settings.event_path)
    if items:
        logger.info(f"[FETCH] {len(items)} item(s) from {ctx.settings.event_name} event")
        return items

    if not check_rate_limit(ctx.board.client, ctx.settings.min_rate_limit_remaining):
        logger.warning("[FETCH] Skipping recent-items search: rate limit budget low")
        ctx.counters.increment(RATE_LIMIT_SKIPPED)
        ctx.results[FETCH_NAME] = ProcessorResult.skipped_run(FETCH_NAME, REASON_RATE_LIMIT)
        return []

    since = ctx.clock() - timedelta(hours=ctx.settings.lookback_hours)
    items = ctx.board.fetch_recent_items(ctx.config.monitored_users, ctx.config.monitored_repos, since)
    logger.info(f"[FETCH] {len(items)} item(s) updated since {since.isoformat()}")
    return items


def retry_transient(task, task_run, state) -> bool:
    """Prefect retry condition: only classified-transient failures retry."""
    try:
        state.result()
    except Exception as e:
        return is_retryable(e)
    return False


@task(
    retries=2,
    retry_delay_seconds=5,
    retry_condition_fn=retry_transient,
    name="fetch_items",
    description="Collect work items from the event payload or a recent-items search",
    cache_policy=NO_CACHE,
)
def task_fetch_items(ctx: "RunContext") -> list[WorkItem]:
    """Snapshot fetch. Reads only, so transient failures are safe to retry."""
    return fetch_items(ctx)


@task(name="board_items", description="Add matching items to the project board", cache_policy=NO_CACHE)
def task_board_items(ctx: "RunContext", items: list[WorkItem]) -> ProcessorResult:
    return process_board_items(ctx, items)


@task(name="columns", description="Place items in columns per the column rules", cache_policy=NO_CACHE)
def task_columns(ctx: "RunContext", items: list[WorkItem]) -> ProcessorResult:
    return process_columns(ctx, items)


@task(name="sprints", description="Assign or remove sprint iterations", cache_policy=NO_CACHE)
def task_sprints(ctx: "RunContext", items: list[WorkItem]) -> ProcessorResult:
    return process_sprints(ctx, items)


@task(name="assignees", description="Apply assignee rules", cache_policy=NO_CACHE)
def task_assignees(ctx: "RunContext", items: list[WorkItem]) -> ProcessorResult:
    return process_assignees(ctx, items)


@task(name="linked_issues", description="Propagate PR column and assignees to linked issues", cache_policy=NO_CACHE)
def task_linked_issues(ctx: "RunContext", items: list[WorkItem]) -> ProcessorResult:
    return process_linked_issues(ctx, items)


@task(name="existing_items_sweep", description="Sprint pass over items already on the board", cache_policy=NO_CACHE)
def task_existing_items_sweep(ctx: "RunContext", items: list[WorkItem]) -> ProcessorResult:
    return sweep_existing_items(ctx, items)
