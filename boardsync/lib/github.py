"""
GitHub GraphQL transport via the gh CLI.

Every request runs ``gh api graphql --input -`` with the JSON body on stdin,
so variables of any type (lists, input objects) pass through unchanged.
"""

import json
import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import Any

from boardsync.lib.errors import (
    AuthenticationError,
    GitHubAPIError,
    TransientAPIError,
    error_from_message,
)

logger = logging.getLogger(__name__)


# Timeout for GitHub CLI operations (seconds)
GH_TIMEOUT_SECONDS = 30

RATE_LIMIT_QUERY = """
query {
  rateLimit {
    remaining
    limit
    resetAt
    cost
  }
}
"""


@dataclass
class GraphQLResponse:
    """Raw GraphQL response. Partial data may accompany errors."""
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def error_message(self) -> str:
        return "; ".join(e.get("message", str(e)) for e in self.errors)

    def failed_aliases(self) -> set[str]:
        """Top-level aliases named in error paths."""
        return {str(e["path"][0]) for e in self.errors if e.get("path")}


@dataclass
class RateLimitStatus:
    remaining: int
    limit: int
    reset_at: str | None = None
    cost: int | None = None


def check_gh_available() -> tuple[bool, str]:
    """Check gh CLI is installed and authenticated.

    Returns: (ok, error_message)
    """
    try:
        result = subprocess.run(
            ["gh", "--version"],
            capture_output=True,
            timeout=5,
        )
        if result.returncode != 0:
            return False, "GitHub CLI (gh) not installed\n  Install: https://cli.github.com/"

        result = subprocess.run(
            ["gh", "auth", "status"],
            capture_output=True,
            text=True,
            timeout=10,
        )
        if result.returncode != 0:
            return False, "GitHub CLI not authenticated\n  Run: gh auth login (or set GITHUB_TOKEN)"

        return True, ""

    except FileNotFoundError:
        return False, "GitHub CLI (gh) not found\n  Install: https://cli.github.com/"
    except subprocess.TimeoutExpired:
        return False, "GitHub CLI timed out"


class GitHubClient:
    """Thin GraphQL client. One subprocess per request."""

    def __init__(self, token: str | None = None, timeout: int = GH_TIMEOUT_SECONDS):
        self.token = token
        self.timeout = timeout
        self.request_count = 0

    def _env(self) -> dict[str, str] | None:
        if not self.token:
            return None
        env = dict(os.environ)
        env["GH_TOKEN"] = self.token
        return env

    def execute(self, query: str, variables: dict | None = None) -> GraphQLResponse:
        """Run a GraphQL document and return data plus errors.

        GraphQL-level errors are returned, not raised, so callers can account
        per alias. Transport failures raise classified GitHubAPIError
        subclasses.
        """
        body = json.dumps({"query": query, "variables": variables or {}})
        self.request_count += 1
        try:
            result = subprocess.run(
                ["gh", "api", "graphql", "--input", "-"],
                input=body,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=self._env(),
            )
        except subprocess.TimeoutExpired:
            raise TransientAPIError(f"gh api graphql timed out after {self.timeout}s") from None
        except FileNotFoundError:
            raise AuthenticationError("GitHub CLI (gh) not found") from None

        payload = None
        if result.stdout.strip():
            try:
                payload = json.loads(result.stdout)
            except json.JSONDecodeError:
                payload = None

        # gh exits non-zero on GraphQL errors but still prints the body
        if isinstance(payload, dict) and ("data" in payload or "errors" in payload):
            response = GraphQLResponse(
                data=payload.get("data") or {},
                errors=payload.get("errors") or [],
            )
            if response.errors and not response.data:
                raise error_from_message(response.error_message())
            return response

        if result.returncode != 0:
            message = result.stderr.strip() or result.stdout.strip() or "gh api graphql failed"
            raise error_from_message(message)

        raise GitHubAPIError("Invalid JSON from gh api graphql")

    def query(self, query: str, variables: dict | None = None) -> dict[str, Any]:
        """Run a GraphQL document; any error raises."""
        response = self.execute(query, variables)
        if not response.ok:
            raise error_from_message(response.error_message())
        return response.data

    def mutate(self, mutation: str, variables: dict | None = None) -> dict[str, Any]:
        return self.query(mutation, variables)

    def rate_limit_status(self) -> RateLimitStatus | None:
        """Current GraphQL budget, or None when it cannot be read."""
        try:
            data = self.query(RATE_LIMIT_QUERY)
        except GitHubAPIError as e:
            logger.warning(f"[RATE] rateLimit query failed: {e}")
            return None
        rl = data.get("rateLimit") or {}
        if "remaining" not in rl:
            return None
        return RateLimitStatus(
            remaining=int(rl["remaining"]),
            limit=int(rl.get("limit") or 0),
            reset_at=rl.get("resetAt"),
            cost=rl.get("cost"),
        )
