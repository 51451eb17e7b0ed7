"""Helpers shared by the rule-type processors."""

import logging
from dataclasses import replace

from boardsync.lib.errors import is_fatal
from boardsync.lib.rate_limit import check_rate_limit
from boardsync.lib.stats import ITEMS_FAILED, RATE_LIMIT_SKIPPED
from boardsync.lib.types import ItemResult, ProcessorResult, WorkItem

logger = logging.getLogger(__name__)

REASON_RATE_LIMIT = "rate_limit"
REASON_NOT_IN_PROJECT = "not_in_project"


def with_project_item(ctx, item: WorkItem) -> WorkItem:
    """The item with its project item id filled in from this run's cache."""
    project_item_id = ctx.project_item_id(item)
    if project_item_id and project_item_id != item.project_item_id:
        return replace(item, project_item_id=project_item_id)
    return item


def record(result: ProcessorResult, item: WorkItem, changed: bool, reason: str, **detail) -> ItemResult:
    entry = ItemResult(item=item.label, changed=changed, reason=reason, detail=detail)
    (result.processed if changed else result.skipped).append(entry)
    return entry


def record_failure(ctx, result: ProcessorResult, item: WorkItem, error: Exception) -> None:
    """Record a per-item failure. Fatal errors propagate."""
    if is_fatal(error):
        raise error
    logger.error(f"[{result.name.upper()}] Failed for {item.label}: {error}")
    result.failed.append(ItemResult(item=item.label, changed=False, reason=str(error)))
    ctx.counters.increment(ITEMS_FAILED)


def rate_limit_ok(ctx, result: ProcessorResult, what: str) -> bool:
    """Preflight. On a low budget, counts the skip and returns False."""
    if check_rate_limit(ctx.board.client, ctx.settings.min_rate_limit_remaining):
        return True
    logger.warning(f"[{result.name.upper()}] Skipping {what}: rate limit budget low")
    ctx.counters.increment(RATE_LIMIT_SKIPPED)
    return False
