"""Rate-limit preflight for bulk reads and batched writes."""

import logging

from boardsync.lib.github import GitHubClient

logger = logging.getLogger(__name__)

DEFAULT_MIN_REMAINING = 200


def check_rate_limit(client: GitHubClient, min_remaining: int = DEFAULT_MIN_REMAINING) -> bool:
    """True when the remaining budget allows the next operation.

    A failed budget read does not block.
    """
    status = client.rate_limit_status()
    if status is None:
        logger.debug("[RATE] Probe unavailable, proceeding")
        return True
    if status.remaining < min_remaining:
        logger.info(
            f"[RATE] Rate limit low: remaining={status.remaining}/{status.limit}, "
            f"resetAt={status.reset_at}"
        )
        return False
    return True
