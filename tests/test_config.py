"""Tests for boardsync.lib.config module."""

import logging

import pytest

from boardsync.lib.config import (
    DEFAULT_BATCH_SIZE,
    Settings,
    get_monitored_users,
    load_board_rules,
    load_settings,
    parse_board_rules,
    resolve_config_path,
)
from boardsync.lib.errors import ConfigurationError
from boardsync.lib.types import ItemKind
from boardsync.lib.validate import ValidationError

RULES_YAML = """
project:
  id: PVT_from_file
automation:
  user_scope:
    monitored_users: [alice, bob]
    rules:
      board_items:
        - name: add_authored_prs
          trigger:
            type: PullRequest
            condition: monitored.users.includes(item.author)
          action: add_to_board
      columns:
        - name: new_to_active
          trigger:
            type: [PullRequest, Issue]
            condition: item.column === 'New'
          action: set_column
          value: Active
          validTransitions:
            - from: New
              to: Active
            - from: null
              to: New
  repository_scope:
    organization: acme
    repositories: [api, other-org/tools]
    rules:
      board_items:
        - name: add_repo_issues
          trigger:
            type: Issue
            condition: monitored.repos.includes(item.repository)
          action: add_to_board
"""


def write_rules(tmp_path, text=RULES_YAML):
    path = tmp_path / "config" / "rules.yml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestLoadSettings:
    """Settings from board.env overlaid with the environment."""

    def test_defaults(self, tmp_path):
        settings = load_settings(environ={}, settings_file=tmp_path / "missing.env")
        assert settings.token is None
        assert settings.batch_size == DEFAULT_BATCH_SIZE
        assert settings.dry_run is False
        assert settings.existing_items_sweep is False

    def test_token_precedence(self, tmp_path):
        missing = tmp_path / "missing.env"
        assert load_settings({"GH_TOKEN": "gh", "PROJECT_SYNC_TOKEN": "p"}, missing).token == "gh"
        assert load_settings({"GITHUB_TOKEN": "g", "GH_TOKEN": "gh"}, missing).token == "g"
        assert load_settings({"PROJECT_SYNC_TOKEN": "p"}, missing).token == "p"

    def test_environment_overrides_file(self, tmp_path):
        env_file = tmp_path / "board.env"
        env_file.write_text('PROJECT_ID="PVT_file"\nDRY_RUN=true\nBATCH_SIZE=5\n')
        settings = load_settings({"PROJECT_ID": "PVT_env"}, env_file)
        assert settings.project_id == "PVT_env"
        assert settings.dry_run is True
        assert settings.batch_size == 5

    def test_invalid_integer(self, tmp_path):
        with pytest.raises(ConfigurationError, match="BATCH_SIZE"):
            load_settings({"BATCH_SIZE": "lots"}, tmp_path / "missing.env")
        with pytest.raises(ConfigurationError, match="positive"):
            load_settings({"MIN_RATE_LIMIT_REMAINING": "0"}, tmp_path / "missing.env")

    def test_unsafe_settings_file(self, tmp_path):
        env_file = tmp_path / "board.env"
        env_file.write_text("GITHUB_TOKEN=$(cat /etc/passwd)\n")
        with pytest.raises(ConfigurationError, match="Invalid settings file"):
            load_settings({}, env_file)


class TestResolveConfigPath:
    def test_explicit_path(self, tmp_path):
        path = write_rules(tmp_path)
        assert resolve_config_path(str(path)) == path

    def test_explicit_missing(self, tmp_path):
        with pytest.raises(ConfigurationError, match="not found"):
            resolve_config_path("nope.yml", cwd=tmp_path)

    def test_searches_parents(self, tmp_path):
        path = write_rules(tmp_path)
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert resolve_config_path(cwd=nested) == path

    def test_config_file_setting(self, tmp_path):
        path = write_rules(tmp_path)
        assert resolve_config_path(None, "config/rules.yml", cwd=tmp_path) == path


class TestMonitoredUsers:
    def test_list(self):
        assert get_monitored_users({"user_scope": {"monitored_users": ["a", "b"]}}) == ["a", "b"]

    def test_legacy_static_object(self, caplog):
        with caplog.at_level(logging.WARNING):
            users = get_monitored_users({"user_scope": {"monitored_users": {"type": "static", "name": "a"}}})
        assert users == ["a"]
        assert "Legacy monitored_users" in caplog.text

    def test_missing(self):
        assert get_monitored_users({}) == []


class TestLoadBoardRules:
    """Rules file loading, validation and scope merging."""

    def test_merges_user_and_repository_scopes(self, tmp_path):
        config = load_board_rules(write_rules(tmp_path), Settings())
        assert [r.name for r in config.rules("board_items")] == ["add_authored_prs", "add_repo_issues"]
        assert config.monitored_users == ["alice", "bob"]
        assert config.monitored_user == "alice"
        assert config.monitored_repos == ["acme/api", "other-org/tools"]
        assert config.organization == "acme"
        assert config.project_id == "PVT_from_file"
        assert config.rules("sprints") == []

    def test_parsed_rule_fields(self, tmp_path):
        config = load_board_rules(write_rules(tmp_path), Settings())
        rule = config.rules("columns")[0]
        assert rule.entity_types == (ItemKind.PULL_REQUEST, ItemKind.ISSUE)
        assert rule.value == "Active"
        assert rule.valid_transitions[1].from_column is None

    def test_settings_override_project_and_users(self, tmp_path):
        settings = Settings(project_id="PVT_env", monitored_user="carol")
        config = load_board_rules(write_rules(tmp_path), settings)
        assert config.project_id == "PVT_env"
        assert config.monitored_users == ["carol"]
        assert config.monitored_user == "carol"

    def test_user_rules_skipped_without_users(self, tmp_path, caplog):
        text = RULES_YAML.replace("    monitored_users: [alice, bob]\n", "")
        with caplog.at_level(logging.WARNING):
            config = load_board_rules(write_rules(tmp_path, text), Settings())
        assert [r.name for r in config.rules("board_items")] == ["add_repo_issues"]
        assert config.rules("columns") == []
        assert "Skipping user-scope rules" in caplog.text

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_board_rules(write_rules(tmp_path, "automation: [unclosed"), Settings())

    def test_schema_violation(self, tmp_path):
        text = "automation:\n  user_scope:\n    rules:\n      columns:\n        - name: x\n"
        with pytest.raises(ValidationError) as exc:
            load_board_rules(write_rules(tmp_path, text), Settings())
        paths = [path for path, _ in exc.value.problems]
        assert paths == ["automation.user_scope.rules.columns.0"] * len(paths)
        assert "'trigger' is a required property" in str(exc.value)
        assert "'action' is a required property" in str(exc.value)

    def test_unknown_rule_group_rejected(self):
        data = {"automation": {"repository_scope": {"rules": {"labels": []}}}}
        with pytest.raises(ValidationError):
            parse_board_rules(data)


class TestRuleProblems:
    """Unknown actions and conditions warn, or fail in strict mode."""

    DATA = {
        "automation": {
            "repository_scope": {
                "repositories": ["acme/api"],
                "rules": {
                    "columns": [{
                        "name": "odd",
                        "trigger": {"type": "Issue", "condition": "item.labels.includes('bug')"},
                        "action": "set_label",
                    }],
                },
            },
        },
    }

    def test_warns_by_default(self, caplog):
        with caplog.at_level(logging.WARNING):
            config = parse_board_rules(self.DATA, Settings())
        assert len(config.rules("columns")) == 1
        assert "unknown action 'set_label'" in caplog.text
        assert "unrecognized condition" in caplog.text

    def test_strict_mode_raises(self):
        with pytest.raises(ConfigurationError, match="Strict mode"):
            parse_board_rules(self.DATA, Settings(strict_mode=True))
