"""
Board membership: add matching issues and pull requests to the project.
"""

import logging

from boardsync.lib.stats import BOARD_ADDED, ITEMS_PROCESSED
from boardsync.lib.types import ItemKind, ProcessorResult, WorkItem
from boardsync.processors.common import rate_limit_ok, record, record_failure, with_project_item
from boardsync.rules.models import ACTION_ADD_TO_BOARD

logger = logging.getLogger(__name__)

NAME = "board_items"


def describe_match(item: WorkItem, monitored_users: list[str], monitored_repos: list[str]) -> str:
    """Why an item is of interest, for logs."""
    noun = "PR" if item.kind == ItemKind.PULL_REQUEST else "Issue"
    if item.kind == ItemKind.PULL_REQUEST and item.author in monitored_users:
        return f"{noun} is authored by monitored user"
    if any(login in monitored_users for login in item.assignees):
        return f"{noun} is assigned to monitored user"
    if item.repository in monitored_repos:
        return f"{noun} is in a monitored repository"
    return f"{noun} does not meet any criteria"


def process_board_items(ctx, items: list[WorkItem]) -> ProcessorResult:
    """Add items whose board_items rules fire and that are not yet on the board."""
    result = ProcessorResult(name=NAME)
    if not ctx.config.rules(NAME):
        return ProcessorResult.skipped_run(NAME, "no board_items rules configured")

    for item in items:
        item = with_project_item(ctx, item)
        ctx.counters.increment(ITEMS_PROCESSED)
        try:
            actions = ctx.evaluate(item, NAME, ctx.condition_context(item))
            if not any(a.action == ACTION_ADD_TO_BOARD for a in actions):
                record(result, item, False, "no board rule matched")
                continue

            reason = describe_match(item, ctx.config.monitored_users, ctx.config.monitored_repos)
            if item.in_project:
                record(result, item, False, "already in project", project_item_id=item.project_item_id)
                continue

            if ctx.dry_run:
                logger.info(f"[BOARD] DRY RUN: would add {item.label} ({reason})")
                record(result, item, False, f"dry run: would add ({reason})")
                continue

            if not rate_limit_ok(ctx, result, f"adding {item.label}"):
                record(result, item, False, "rate_limit")
                continue

            ctx.board.add_item(item.id)
            project_item_id = ctx.verifier.verify_in_project(item)
            ctx.counters.increment(BOARD_ADDED)
            result.applied += 1
            logger.info(f"[BOARD] Added {item.label} to project ({reason})")
            record(result, item, True, f"added to board: {reason}", project_item_id=project_item_id)
        except Exception as e:
            record_failure(ctx, result, item, e)

    return result
