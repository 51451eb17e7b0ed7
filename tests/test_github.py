"""Tests for boardsync.lib.github module."""

import json
import logging
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from boardsync.lib.errors import (
    AuthenticationError,
    GitHubAPIError,
    RateLimitExhaustedError,
    TransientAPIError,
)
from boardsync.lib.github import (
    GH_TIMEOUT_SECONDS,
    GitHubClient,
    GraphQLResponse,
    check_gh_available,
)
from boardsync.lib.rate_limit import check_rate_limit


def completed(stdout="", stderr="", returncode=0):
    return MagicMock(stdout=stdout, stderr=stderr, returncode=returncode)


class TestConstants:
    def test_gh_timeout_is_reasonable(self):
        assert 10 <= GH_TIMEOUT_SECONDS <= 120


class TestCheckGhAvailable:
    @patch("boardsync.lib.github.subprocess.run")
    def test_available(self, mock_run):
        mock_run.return_value = completed()
        assert check_gh_available() == (True, "")

    @patch("boardsync.lib.github.subprocess.run")
    def test_not_authenticated(self, mock_run):
        mock_run.side_effect = [completed(), completed(returncode=1)]
        ok, message = check_gh_available()
        assert not ok
        assert "not authenticated" in message

    @patch("boardsync.lib.github.subprocess.run", side_effect=FileNotFoundError)
    def test_not_installed(self, mock_run):
        ok, message = check_gh_available()
        assert not ok
        assert "not found" in message


class TestExecute:
    """GraphQL requests through gh api graphql."""

    @patch("boardsync.lib.github.subprocess.run")
    def test_sends_body_on_stdin_with_token(self, mock_run):
        mock_run.return_value = completed(json.dumps({"data": {"viewer": {"login": "alice"}}}))
        client = GitHubClient(token="secret")

        response = client.execute("query { viewer { login } }", {"n": [1, 2]})

        assert response.data == {"viewer": {"login": "alice"}}
        assert response.ok
        args, kwargs = mock_run.call_args
        assert args[0] == ["gh", "api", "graphql", "--input", "-"]
        assert json.loads(kwargs["input"]) == {"query": "query { viewer { login } }", "variables": {"n": [1, 2]}}
        assert kwargs["env"]["GH_TOKEN"] == "secret"
        assert kwargs["timeout"] == GH_TIMEOUT_SECONDS
        assert client.request_count == 1

    @patch("boardsync.lib.github.subprocess.run")
    def test_partial_data_returned(self, mock_run):
        body = {"data": {"m0": {"ok": 1}, "m1": None}, "errors": [{"message": "nope", "path": ["m1"]}]}
        mock_run.return_value = completed(json.dumps(body), returncode=1)

        response = GitHubClient().execute("mutation { x }")

        assert not response.ok
        assert response.failed_aliases() == {"m1"}
        assert response.error_message() == "nope"

    @patch("boardsync.lib.github.subprocess.run")
    def test_errors_without_data_raise_classified(self, mock_run):
        body = {"errors": [{"message": "API rate limit exceeded for user"}]}
        mock_run.return_value = completed(json.dumps(body), returncode=1)
        with pytest.raises(RateLimitExhaustedError):
            GitHubClient().execute("query { x }")

    @patch("boardsync.lib.github.subprocess.run")
    def test_stderr_failure(self, mock_run):
        mock_run.return_value = completed(stderr="HTTP 401: Bad credentials", returncode=1)
        with pytest.raises(AuthenticationError):
            GitHubClient().execute("query { x }")

    @patch("boardsync.lib.github.subprocess.run")
    def test_server_error_is_transient(self, mock_run):
        mock_run.return_value = completed(stderr="HTTP 502: Bad Gateway", returncode=1)
        with pytest.raises(TransientAPIError):
            GitHubClient().execute("query { x }")

    @patch("boardsync.lib.github.subprocess.run")
    def test_timeout_is_transient(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="gh", timeout=30)
        with pytest.raises(TransientAPIError):
            GitHubClient().execute("query { x }")

    @patch("boardsync.lib.github.subprocess.run")
    def test_invalid_json(self, mock_run):
        mock_run.return_value = completed("not json")
        with pytest.raises(GitHubAPIError, match="Invalid JSON"):
            GitHubClient().execute("query { x }")

    @patch("boardsync.lib.github.subprocess.run")
    def test_query_raises_on_partial_errors(self, mock_run):
        body = {"data": {"node": None}, "errors": [{"message": "Could not resolve to a node"}]}
        mock_run.return_value = completed(json.dumps(body))
        with pytest.raises(GitHubAPIError, match="Could not resolve"):
            GitHubClient().query("query { node }")


class TestRateLimit:
    """Rate limit reads and preflight."""

    @patch("boardsync.lib.github.subprocess.run")
    def test_status(self, mock_run):
        body = {"data": {"rateLimit": {"remaining": 4200, "limit": 5000, "resetAt": "2024-06-01T00:00:00Z", "cost": 1}}}
        mock_run.return_value = completed(json.dumps(body))
        status = GitHubClient().rate_limit_status()
        assert status.remaining == 4200
        assert status.limit == 5000

    @patch("boardsync.lib.github.subprocess.run")
    def test_status_unavailable(self, mock_run):
        mock_run.return_value = completed(stderr="something odd", returncode=1)
        assert GitHubClient().rate_limit_status() is None

    def test_preflight_thresholds(self, caplog):
        client = MagicMock()
        client.rate_limit_status.return_value = MagicMock(remaining=150, limit=5000, reset_at=None)
        with caplog.at_level(logging.INFO):
            assert check_rate_limit(client, 200) is False
        assert "Rate limit low" in caplog.text
        assert check_rate_limit(client, 100) is True

    def test_preflight_proceeds_when_budget_unreadable(self):
        client = MagicMock()
        client.rate_limit_status.return_value = None
        assert check_rate_limit(client) is True


class TestGraphQLResponse:
    def test_defaults(self):
        response = GraphQLResponse()
        assert response.ok
        assert response.data == {}
        assert response.failed_aliases() == set()
