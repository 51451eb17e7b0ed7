"""Tests for boardsync.cli and the board-sync commands."""

from unittest.mock import MagicMock, patch

import pytest

from boardsync.cli import EXIT_API, EXIT_CONFIG, EXIT_OK, EXIT_UNEXPECTED, build_parser, exit_code_for, main
from boardsync.lib.config import Settings
from boardsync.lib.errors import (
    AuthenticationError,
    ConfigurationError,
    GitHubAPIError,
    RateLimitExhaustedError,
    TransientAPIError,
)
from boardsync.lib.stats import RunCounters
from boardsync.lib.types import Iteration, ProcessorResult

RULES_YAML = """
automation:
  user_scope:
    monitored_users: [alice]
    rules:
      columns:
        - name: new_items
          trigger:
            type: PullRequest
            condition: "!item.column"
          action: set_column
          value: New
          validTransitions:
            - from: null
              to: New
            - from: New
              to: Active
"""


@pytest.fixture
def rules_file(tmp_path):
    path = tmp_path / "rules.yml"
    path.write_text(RULES_YAML)
    return path


class TestParser:
    def test_run_flags(self):
        args = build_parser().parse_args(["run", "--dry-run", "--no-flow", "--project-id", "PVT_9"])
        assert args.dry_run and args.no_flow
        assert args.project_id == "PVT_9"

    def test_sprint_requires_column(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sprint"])

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestExitCodes:
    def test_mapping(self):
        assert exit_code_for(ConfigurationError("x")) == EXIT_CONFIG
        assert exit_code_for(AuthenticationError("Bad credentials")) == EXIT_API
        assert exit_code_for(RateLimitExhaustedError("rate limit")) == EXIT_API
        assert exit_code_for(TransientAPIError("HTTP 502")) == EXIT_UNEXPECTED
        assert exit_code_for(GitHubAPIError("weird")) == EXIT_UNEXPECTED
        assert exit_code_for(RuntimeError("boom")) == EXIT_UNEXPECTED


@patch("boardsync.cli.load_settings", return_value=Settings())
class TestValidateCommand:
    def test_prints_transition_table(self, mock_settings, rules_file, capsys):
        assert main(["validate", "--config", str(rules_file)]) == EXIT_OK
        out = capsys.readouterr().out
        assert "columns: 1 rule(s) - new_items" in out
        assert "None -> New" in out
        assert "New" in out and "-> Active" in out

    def test_missing_rules_file(self, mock_settings, tmp_path, capsys):
        assert main(["validate", "--config", str(tmp_path / "nope.yml")]) == EXIT_CONFIG
        assert "ERROR" in capsys.readouterr().out


class TestRunCommand:
    """board-sync run wiring, with GitHub and the engine mocked."""

    def ctx(self):
        ctx = MagicMock()
        ctx.counters = RunCounters()
        ctx.board.client.request_count = 3
        return ctx

    @patch("boardsync.cli.load_settings", return_value=Settings())
    def test_missing_token(self, mock_settings, rules_file, capsys):
        assert main(["run", "--config", str(rules_file)]) == EXIT_CONFIG
        assert "No GitHub token" in capsys.readouterr().out

    @patch("boardsync.commands.run.fetch_items", return_value=[])
    @patch("boardsync.commands.run.reconcile")
    @patch("boardsync.commands.run.build_context")
    @patch("boardsync.commands.run.check_gh_available", return_value=(True, ""))
    @patch("boardsync.cli.load_settings", return_value=Settings(token="t"))
    def test_no_flow_run_writes_summary(self, mock_settings, mock_gh, mock_build, mock_reconcile,
                                        mock_fetch, rules_file, tmp_path, capsys):
        ctx = self.ctx()
        mock_build.return_value = ctx
        mock_reconcile.return_value = {"columns": ProcessorResult(name="columns")}
        summary = tmp_path / "summary.jsonl"

        code = main(["run", "--config", str(rules_file), "--project-id", "PVT_9", "--dry-run",
                     "--no-flow", "--summary-file", str(summary)])

        assert code == EXIT_OK
        settings, config = mock_build.call_args[0]
        assert settings.dry_run is True
        assert config.project_id == "PVT_9"
        mock_reconcile.assert_called_once_with(ctx, [])
        assert "No changes recorded" in capsys.readouterr().out
        assert '"project_id": "PVT_9"' in summary.read_text()

    @patch("boardsync.commands.run.board_sync_flow")
    @patch("boardsync.commands.run.build_context")
    @patch("boardsync.commands.run.check_gh_available", return_value=(True, ""))
    @patch("boardsync.cli.load_settings", return_value=Settings(token="t", project_id="PVT_1"))
    def test_auth_failure_exit_code(self, mock_settings, mock_gh, mock_build, mock_flow, rules_file):
        mock_build.return_value = self.ctx()
        mock_flow.side_effect = AuthenticationError("Bad credentials")
        assert main(["run", "--config", str(rules_file)]) == EXIT_API

    @patch("boardsync.commands.run.check_gh_available", return_value=(False, "GitHub CLI (gh) not found"))
    @patch("boardsync.cli.load_settings", return_value=Settings(token="t", project_id="PVT_1"))
    def test_gh_missing(self, mock_settings, mock_gh, rules_file):
        assert main(["run", "--config", str(rules_file)]) == EXIT_CONFIG


class TestSprintCommand:
    @patch("boardsync.commands.sprint.BoardClient")
    @patch("boardsync.cli.load_settings", return_value=Settings(token="t", project_id="PVT_1"))
    def test_prints_decision(self, mock_settings, mock_board_cls, capsys):
        from datetime import date

        board = mock_board_cls.return_value
        board.sprint_field_id.return_value = "F"
        board.iterations.return_value = [
            Iteration("s5", "Sprint 5", date(2024, 6, 1), 10),
            Iteration("s6", "Sprint 6", date(2024, 6, 15), 11),
        ]

        code = main(["sprint", "--column", "Done", "--completed", "2024-06-12T16:30:00Z"])

        assert code == EXIT_OK
        out = capsys.readouterr().out
        assert "Decision: assign" in out
        assert "Target:   Sprint 6" in out

    @patch("boardsync.cli.load_settings", return_value=Settings(token="t", project_id="PVT_1"))
    def test_bad_timestamp(self, mock_settings):
        with patch("boardsync.commands.sprint.BoardClient") as mock_board_cls:
            mock_board_cls.return_value.iterations.return_value = []
            assert main(["sprint", "--column", "Active", "--now", "yesterday"]) == EXIT_CONFIG
