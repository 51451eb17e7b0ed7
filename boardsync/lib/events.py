"""
Work items from a GitHub Actions event payload.

Supported events: pull_request, pull_request_target, issues, issue_comment.
Anything else (or an unreadable payload) yields no items.
"""

import json
import logging
from pathlib import Path

from boardsync.lib.types import ItemKind, WorkItem, parse_state, parse_timestamp

logger = logging.getLogger(__name__)


def _repository(payload: dict) -> str:
    repo = payload.get("repository") or {}
    return repo.get("full_name") or repo.get("nameWithOwner") or "unknown/unknown"


def _logins(users) -> tuple[str, ...]:
    if not isinstance(users, list):
        return ()
    return tuple(u["login"] for u in users if u and u.get("login"))


def _from_pull_request(payload: dict) -> WorkItem | None:
    pr = payload.get("pull_request")
    if not pr:
        return None
    return WorkItem(
        kind=ItemKind.PULL_REQUEST,
        id=pr.get("node_id") or "",
        number=pr.get("number", 0),
        repository=_repository(payload),
        author=(pr.get("user") or {}).get("login"),
        assignees=_logins(pr.get("assignees")),
        state=parse_state(pr.get("state"), merged=bool(pr.get("merged") or pr.get("merged_at"))),
        merged_at=parse_timestamp(pr.get("merged_at")),
        closed_at=parse_timestamp(pr.get("closed_at")),
        updated_at=parse_timestamp(pr.get("updated_at")),
        url=pr.get("html_url"),
    )


def _from_issue(payload: dict) -> WorkItem | None:
    issue = payload.get("issue")
    if not issue:
        return None
    # issue_comment on a pull request carries the PR as "issue"
    kind = ItemKind.PULL_REQUEST if issue.get("pull_request") else ItemKind.ISSUE
    return WorkItem(
        kind=kind,
        id=issue.get("node_id") or "",
        number=issue.get("number", 0),
        repository=_repository(payload),
        author=(issue.get("user") or {}).get("login"),
        assignees=_logins(issue.get("assignees")),
        state=parse_state(issue.get("state")),
        closed_at=parse_timestamp(issue.get("closed_at")),
        updated_at=parse_timestamp(issue.get("updated_at")),
        url=issue.get("html_url"),
    )


EVENT_TRANSFORMERS = {
    "pull_request": _from_pull_request,
    "pull_request_target": _from_pull_request,
    "issues": _from_issue,
    "issue_comment": _from_issue,
}


def load_event_items(event_name: str | None, event_path: str | Path | None) -> list[WorkItem]:
    """Items referenced by the triggering event, or [] if none are usable."""
    if not event_name or not event_path:
        return []

    transformer = EVENT_TRANSFORMERS.get(event_name)
    if transformer is None:
        logger.debug(f"[EVENT] Event '{event_name}' carries no board items")
        return []

    try:
        payload = json.loads(Path(event_path).read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"[EVENT] Failed to load event payload items: {e}")
        return []

    item = transformer(payload) if isinstance(payload, dict) else None
    if item is None or not item.id:
        logger.debug(f"[EVENT] Event payload for {event_name} did not yield a usable item")
        return []
    return [item]
