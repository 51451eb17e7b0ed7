"""
GitHub Projects (v2) board queries.

Reads board fields (Status column, Sprint iteration), item placement,
linked issues and candidate items. Writes that touch many items at once
live in boardsync.workflow.batch; this module only performs single-item
writes (adding an item to the board).

Field lookups are cached on the run's RunCaches.
"""

import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any

from boardsync.lib.cache import RunCaches
from boardsync.lib.errors import ConfigurationError
from boardsync.lib.github import GitHubClient
from boardsync.lib.types import (
    BoardPlacement,
    ItemKind,
    Iteration,
    WorkItem,
    WorkItemRef,
    parse_kind,
    parse_state,
    parse_timestamp,
)
from boardsync.sprint.resolver import merge_iterations

logger = logging.getLogger(__name__)

STATUS_FIELD = "Status"
SPRINT_FIELD = "Sprint"
PAGE_SIZE = 50
MAX_PAGES = 20

# Content fields shared by issues and pull requests
_COMMON_FIELDS = """
  __typename
  id
  number
  url
  state
  closedAt
  updatedAt
  author { login }
  assignees(first: 20) { nodes { login } }
  repository { nameWithOwner }
  projectItems(first: 20) { nodes { id project { id } } }
"""

CONTENT_FRAGMENT = f"""
  ... on PullRequest {{
    {_COMMON_FIELDS}
    merged
    mergedAt
    closingIssuesReferences(first: 25) {{
      nodes {{ id number repository {{ nameWithOwner }} }}
    }}
  }}
  ... on Issue {{
    {_COMMON_FIELDS}
  }}
"""

STATUS_FIELD_QUERY = """
query($projectId: ID!) {
  node(id: $projectId) {
    ... on ProjectV2 {
      field(name: "Status") {
        ... on ProjectV2SingleSelectField { id options { id name } }
      }
    }
  }
}
"""

SPRINT_FIELD_QUERY = """
query($projectId: ID!) {
  node(id: $projectId) {
    ... on ProjectV2 {
      field(name: "Sprint") {
        ... on ProjectV2IterationField {
          id
          configuration {
            iterations { id title startDate duration }
            completedIterations { id title startDate duration }
          }
        }
      }
    }
  }
}
"""

PLACEMENT_QUERY = """
query($itemId: ID!) {
  node(id: $itemId) {
    ... on ProjectV2Item {
      id
      status: fieldValueByName(name: "Status") {
        ... on ProjectV2ItemFieldSingleSelectValue { name }
      }
      sprint: fieldValueByName(name: "Sprint") {
        ... on ProjectV2ItemFieldIterationValue { iterationId title }
      }
      content {
        ... on PullRequest { assignees(first: 20) { nodes { login } } }
        ... on Issue { assignees(first: 20) { nodes { login } } }
      }
    }
  }
}
"""

CONTENT_QUERY = f"""
query($id: ID!) {{
  node(id: $id) {{
    {CONTENT_FRAGMENT}
  }}
}}
"""

ADD_ITEM_MUTATION = """
mutation($projectId: ID!, $contentId: ID!) {
  addProjectV2ItemById(input: { projectId: $projectId, contentId: $contentId }) {
    item { id }
  }
}
"""

SEARCH_QUERY = f"""
query($q: String!, $first: Int!, $after: String) {{
  search(query: $q, type: ISSUE, first: $first, after: $after) {{
    pageInfo {{ hasNextPage endCursor }}
    nodes {{
      {CONTENT_FRAGMENT}
    }}
  }}
}}
"""

PROJECT_ITEMS_QUERY = f"""
query($projectId: ID!, $first: Int!, $after: String) {{
  node(id: $projectId) {{
    ... on ProjectV2 {{
      items(first: $first, after: $after) {{
        pageInfo {{ hasNextPage endCursor }}
        nodes {{
          id
          status: fieldValueByName(name: "Status") {{
            ... on ProjectV2ItemFieldSingleSelectValue {{ name }}
          }}
          sprint: fieldValueByName(name: "Sprint") {{
            ... on ProjectV2ItemFieldIterationValue {{ iterationId title }}
          }}
          content {{
            {CONTENT_FRAGMENT}
          }}
        }}
      }}
    }}
  }}
}}
"""


def _logins(connection: dict | None) -> tuple[str, ...]:
    nodes = (connection or {}).get("nodes") or []
    return tuple(n["login"] for n in nodes if n and n.get("login"))


def _repo_name(node: dict) -> str:
    return ((node.get("repository") or {}).get("nameWithOwner")) or "unknown/unknown"


def parse_iteration(raw: dict) -> Iteration:
    return Iteration(
        id=raw["id"],
        title=raw.get("title") or raw["id"],
        start_date=date.fromisoformat(raw["startDate"]),
        duration_days=int(raw.get("duration") or 0),
    )


def parse_content(node: dict, project_id: str | None = None) -> WorkItem | None:
    """Build a WorkItem from an Issue/PullRequest GraphQL node."""
    if not node:
        return None
    kind = parse_kind(node.get("__typename"))
    if kind is None or not node.get("id"):
        return None

    project_item_id = None
    for pi in ((node.get("projectItems") or {}).get("nodes") or []):
        if pi and (project_id is None or (pi.get("project") or {}).get("id") == project_id):
            project_item_id = pi.get("id")
            break

    linked = ()
    if kind == ItemKind.PULL_REQUEST:
        refs = (node.get("closingIssuesReferences") or {}).get("nodes") or []
        linked = tuple(
            WorkItemRef(id=r["id"], number=r.get("number", 0), repository=_repo_name(r))
            for r in refs if r and r.get("id")
        )

    return WorkItem(
        kind=kind,
        id=node["id"],
        number=node.get("number", 0),
        repository=_repo_name(node),
        author=(node.get("author") or {}).get("login"),
        assignees=_logins(node.get("assignees")),
        state=parse_state(node.get("state"), merged=bool(node.get("merged"))),
        linked_issues=linked,
        project_item_id=project_item_id,
        merged_at=parse_timestamp(node.get("mergedAt")),
        closed_at=parse_timestamp(node.get("closedAt")),
        updated_at=parse_timestamp(node.get("updatedAt")),
        url=node.get("url"),
    )


def _parse_placement(node: dict) -> BoardPlacement:
    content = node.get("content") or {}
    return BoardPlacement(
        project_item_id=node["id"],
        column=(node.get("status") or {}).get("name"),
        sprint_id=(node.get("sprint") or {}).get("iterationId"),
        assignees=_logins(content.get("assignees")),
    )


class BoardClient:
    """Queries against one ProjectV2 board."""

    def __init__(self, client: GitHubClient, project_id: str, caches: RunCaches | None = None):
        if not project_id:
            raise ConfigurationError("Project id is required (PROJECT_ID or project.id in rules)")
        self.client = client
        self.project_id = project_id
        self.caches = caches if caches is not None else RunCaches()

    # --- Field metadata -------------------------------------------------

    def status_field(self) -> tuple[str, dict[str, str]]:
        """(field id, column name -> option id). Raises if the board has no Status field."""
        if self.caches.column_options is None:
            data = self.client.query(STATUS_FIELD_QUERY, {"projectId": self.project_id})
            field = ((data.get("node") or {}).get("field")) or {}
            if not field.get("id"):
                raise ConfigurationError(f"Project {self.project_id} has no '{STATUS_FIELD}' single-select field")
            self.caches.status_field_id = field["id"]
            self.caches.column_options = {o["name"]: o["id"] for o in field.get("options") or []}
            logger.debug(f"[BOARD] Cached {len(self.caches.column_options)} column options")
        return self.caches.status_field_id, self.caches.column_options

    def column_option_id(self, column: str) -> str:
        """Option id for a column name, matched case-insensitively."""
        _, options = self.status_field()
        if column in options:
            return options[column]
        wanted = column.strip().lower()
        for name, option_id in options.items():
            if name.lower() == wanted:
                return option_id
        raise ConfigurationError(
            f"Column '{column}' not found on board. Available: {', '.join(options) or 'none'}"
        )

    def _load_sprint_field(self) -> None:
        data = self.client.query(SPRINT_FIELD_QUERY, {"projectId": self.project_id})
        field = ((data.get("node") or {}).get("field")) or {}
        config = field.get("configuration") or {}
        self.caches.sprint_field_id = field.get("id")
        self.caches.iterations = merge_iterations(
            [parse_iteration(i) for i in config.get("iterations") or []],
            [parse_iteration(i) for i in config.get("completedIterations") or []],
        )
        self.caches.sprint_field_loaded = True
        logger.debug(
            f"[BOARD] Sprint field {self.caches.sprint_field_id}: "
            f"{len(self.caches.iterations)} iterations"
        )

    def sprint_field_id(self) -> str | None:
        if not self.caches.sprint_field_loaded:
            self._load_sprint_field()
        return self.caches.sprint_field_id

    def iterations(self) -> list[Iteration]:
        """Active and completed iterations, ordered by start date."""
        if not self.caches.sprint_field_loaded:
            self._load_sprint_field()
        return list(self.caches.iterations or [])

    # --- Item reads -----------------------------------------------------

    def get_placement(self, project_item_id: str) -> BoardPlacement | None:
        """Fresh read of column, sprint and assignees for a board item."""
        data = self.client.query(PLACEMENT_QUERY, {"itemId": project_item_id})
        node = data.get("node")
        if not node or not node.get("id"):
            return None
        return _parse_placement(node)

    def get_item_column(self, project_item_id: str) -> str | None:
        placement = self.get_placement(project_item_id)
        return placement.column if placement else None

    def get_item_sprint(self, project_item_id: str) -> str | None:
        placement = self.get_placement(project_item_id)
        return placement.sprint_id if placement else None

    def get_item_assignees(self, project_item_id: str) -> tuple[str, ...]:
        placement = self.get_placement(project_item_id)
        return placement.assignees if placement else ()

    def fetch_item(self, content_id: str) -> WorkItem | None:
        """Fresh snapshot of an issue or pull request by node id."""
        data = self.client.query(CONTENT_QUERY, {"id": content_id})
        item = parse_content(data.get("node") or {}, self.project_id)
        if item is not None:
            self._remember_membership(item)
        return item

    def _remember_membership(self, item: WorkItem) -> None:
        self.caches.membership_known.add(item.id)
        if item.project_item_id:
            self.caches.project_items[item.id] = item.project_item_id

    def find_project_item(self, content_id: str) -> str | None:
        """Project item id for a content node, or None if it is not on the board."""
        if content_id in self.caches.project_items:
            return self.caches.project_items[content_id]
        if content_id in self.caches.membership_known:
            return None
        item = self.fetch_item(content_id)
        return item.project_item_id if item else None

    def content_assignees(self, content_id: str) -> tuple[str, ...]:
        item = self.fetch_item(content_id)
        return item.assignees if item else ()

    def linked_issues(self, pr_content_id: str) -> tuple[WorkItemRef, ...]:
        item = self.fetch_item(pr_content_id)
        return item.linked_issues if item else ()

    # --- Writes ---------------------------------------------------------

    def add_item(self, content_id: str) -> str:
        """Add content to the board. Returns the project item id."""
        data = self.client.mutate(ADD_ITEM_MUTATION, {"projectId": self.project_id, "contentId": content_id})
        item_id = (((data.get("addProjectV2ItemById") or {}).get("item")) or {}).get("id")
        if not item_id:
            raise ConfigurationError(f"addProjectV2ItemById returned no item for {content_id}")
        self.caches.project_items[content_id] = item_id
        self.caches.membership_known.add(content_id)
        return item_id

    # --- Bulk reads -----------------------------------------------------

    def _paginate(self, query: str, variables: dict, path: tuple[str, ...]) -> list[dict]:
        nodes: list[dict] = []
        after = None
        for _ in range(MAX_PAGES):
            data: Any = self.client.query(query, {**variables, "first": PAGE_SIZE, "after": after})
            for key in path:
                data = (data or {}).get(key) or {}
            nodes.extend(n for n in data.get("nodes") or [] if n)
            page = data.get("pageInfo") or {}
            if not page.get("hasNextPage") or not page.get("endCursor"):
                return nodes
            after = page["endCursor"]
        logger.warning(f"[BOARD] Stopped paginating after {MAX_PAGES} pages")
        return nodes

    def fetch_recent_items(self, users: list[str], repos: list[str], since: datetime) -> list[WorkItem]:
        """Issues and PRs updated since ``since`` for monitored users and repos."""
        stamp = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
        searches = []
        for user in users:
            searches.append(f"is:pr author:{user} updated:>={stamp}")
            searches.append(f"assignee:{user} updated:>={stamp}")
        for repo in repos:
            searches.append(f"repo:{repo} updated:>={stamp}")

        items: dict[str, WorkItem] = {}
        for q in searches:
            for node in self._paginate(SEARCH_QUERY, {"q": q}, ("search",)):
                item = parse_content(node, self.project_id)
                if item and item.id not in items:
                    items[item.id] = item
                    self._remember_membership(item)
        logger.info(f"[BOARD] Found {len(items)} recent items across {len(searches)} searches")
        return list(items.values())

    def list_project_items(self) -> list[tuple[WorkItem, BoardPlacement]]:
        """All issue/PR items on the board with their placement."""
        results = []
        for node in self._paginate(PROJECT_ITEMS_QUERY, {"projectId": self.project_id}, ("node", "items")):
            content = node.get("content") or {}
            item = parse_content(content, self.project_id)
            if item is None:
                continue  # draft issues and redacted items
            if item.project_item_id != node["id"]:
                item = replace(item, project_item_id=node["id"])
            placement = _parse_placement(node)
            placement.assignees = item.assignees
            results.append((item, placement))
        logger.info(f"[BOARD] Listed {len(results)} project items")
        return results
