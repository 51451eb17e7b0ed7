"""
Configuration loaders for board-sync.

Settings come from environment variables, optionally overlaid on a board.env
file. Rules come from a YAML file validated against rules.schema.json.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from . import envparse
from . import validate
from .errors import ConfigurationError
from boardsync.rules.conditions import unknown_parts
from boardsync.rules.models import RULE_TYPES, KNOWN_ACTIONS, Rule, parse_rule

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20
DEFAULT_MIN_RATE_LIMIT_REMAINING = 200
DEFAULT_LOOKBACK_HOURS = 24
RULES_RELATIVE_PATH = Path("config") / "rules.yml"
SETTINGS_FILENAME = "board.env"


@dataclass
class Settings:
    """Runtime settings from the environment / board.env."""
    token: str | None = None
    project_id: str | None = None
    project_url: str | None = None
    monitored_user: str | None = None  # GITHUB_AUTHOR override
    config_file: str | None = None
    dry_run: bool = False
    verbose: bool = False
    strict_mode: bool = False
    batch_size: int = DEFAULT_BATCH_SIZE
    min_rate_limit_remaining: int = DEFAULT_MIN_RATE_LIMIT_REMAINING
    lookback_hours: int = DEFAULT_LOOKBACK_HOURS
    existing_items_sweep: bool = False
    event_name: str | None = None
    event_path: str | None = None


@dataclass
class BoardConfig:
    """Merged rules plus the monitoring scope they apply to."""
    rules_by_type: dict[str, list[Rule]]
    monitored_users: list[str] = field(default_factory=list)
    monitored_repos: list[str] = field(default_factory=list)
    organization: str | None = None
    project_id: str | None = None
    project_url: str | None = None
    source: Path | None = None

    def rules(self, rule_type: str) -> list[Rule]:
        return self.rules_by_type.get(rule_type, [])

    @property
    def monitored_user(self) -> str | None:
        """Primary monitored user (first configured)."""
        return self.monitored_users[0] if self.monitored_users else None


def _int_setting(env: dict, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or str(raw).strip() == "":
        return default
    try:
        value = int(str(raw).strip())
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from None
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {value}")
    return value


def load_settings(environ: dict | None = None, settings_file: Path | None = None) -> Settings:
    """Build Settings from board.env (if present) overlaid with the environment."""
    env: dict[str, str] = {}
    path = settings_file or Path.cwd() / SETTINGS_FILENAME
    if path.exists():
        try:
            env.update(envparse.load_env(path))
        except ValueError as e:
            raise ConfigurationError(f"Invalid settings file {path}: {e}") from None
    env.update(os.environ if environ is None else environ)

    return Settings(
        token=env.get("GITHUB_TOKEN") or env.get("GH_TOKEN") or env.get("PROJECT_SYNC_TOKEN") or None,
        project_id=env.get("PROJECT_ID") or None,
        project_url=env.get("PROJECT_URL") or None,
        monitored_user=env.get("GITHUB_AUTHOR") or None,
        config_file=env.get("CONFIG_FILE") or None,
        dry_run=envparse.parse_bool(env.get("DRY_RUN")),
        verbose=envparse.parse_bool(env.get("VERBOSE")),
        strict_mode=envparse.parse_bool(env.get("STRICT_MODE")),
        batch_size=_int_setting(env, "BATCH_SIZE", DEFAULT_BATCH_SIZE),
        min_rate_limit_remaining=_int_setting(env, "MIN_RATE_LIMIT_REMAINING", DEFAULT_MIN_RATE_LIMIT_REMAINING),
        lookback_hours=_int_setting(env, "LOOKBACK_HOURS", DEFAULT_LOOKBACK_HOURS),
        existing_items_sweep=envparse.parse_bool(env.get("EXISTING_ITEMS_SWEEP")),
        event_name=env.get("GITHUB_EVENT_NAME") or None,
        event_path=env.get("GITHUB_EVENT_PATH") or None,
    )


def resolve_config_path(explicit: str | Path | None = None, config_file: str | None = None,
                        cwd: Path | None = None) -> Path:
    """Find the rules file.

    Order: explicit path, CONFIG_FILE, ./config/rules.yml, then parent
    directories' config/rules.yml.
    """
    base = cwd or Path.cwd()
    for candidate in (explicit, config_file):
        if candidate:
            path = Path(candidate)
            if not path.is_absolute():
                path = base / path
            if not path.exists():
                raise ConfigurationError(f"Rules file not found: {path}")
            return path

    for directory in [base, *base.parents]:
        path = directory / RULES_RELATIVE_PATH
        if path.exists():
            return path

    raise ConfigurationError(f"No {RULES_RELATIVE_PATH} found in {base} or its parents")


def get_monitored_users(automation: dict) -> list[str]:
    """Monitored users from user_scope. Accepts the legacy single-user object."""
    users = (automation.get("user_scope") or {}).get("monitored_users")
    if not users:
        return []
    if isinstance(users, list):
        return [u for u in users if u]
    if isinstance(users, dict) and users.get("type") == "static":
        logger.warning("Legacy monitored_users object format detected. Use a list of logins instead.")
        return [users["name"]]
    return []


def _merge_rule_scopes(automation: dict, monitored_users: list[str]) -> dict[str, list[dict]]:
    merged: dict[str, list[dict]] = {rule_type: [] for rule_type in RULE_TYPES}

    user_rules = (automation.get("user_scope") or {}).get("rules") or {}
    if monitored_users:
        for rule_type, rules in user_rules.items():
            merged[rule_type].extend(rules or [])
    elif user_rules:
        logger.warning(
            "No monitored users configured. Skipping user-scope rules. "
            "Configure automation.user_scope.monitored_users to enable them."
        )

    repo_rules = (automation.get("repository_scope") or {}).get("rules") or {}
    for rule_type, rules in repo_rules.items():
        merged[rule_type].extend(rules or [])

    return merged


def parse_board_rules(data: dict, settings: Settings | None = None, source: Path | None = None) -> BoardConfig:
    """Validate and parse an already-loaded rules document."""
    settings = settings or Settings()
    if not isinstance(data, dict):
        raise ConfigurationError("Rules file must contain a mapping at the top level")
    validate.validate(data, "rules")

    automation = data.get("automation") or {}
    repo_scope = automation.get("repository_scope") or {}
    organization = repo_scope.get("organization")
    repos = []
    for repo in repo_scope.get("repositories") or []:
        repos.append(repo if "/" in repo or not organization else f"{organization}/{repo}")

    monitored_users = get_monitored_users(automation)
    if settings.monitored_user:
        monitored_users = [settings.monitored_user]

    rules_by_type: dict[str, list[Rule]] = {}
    for rule_type, raw_rules in _merge_rule_scopes(automation, monitored_users).items():
        rules_by_type[rule_type] = [parse_rule(raw, rule_type) for raw in raw_rules]

    problems = []
    for rule_type, rules in rules_by_type.items():
        for rule in rules:
            for action in rule.actions:
                if action not in KNOWN_ACTIONS:
                    problems.append(f"{rule_type}.{rule.name}: unknown action '{action}'")
            conditions = [rule.trigger] + ([rule.skip] if rule.skip else [])
            conditions += [c for t in rule.valid_transitions for c in t.conditions]
            for cond in conditions:
                for text in unknown_parts(cond):
                    problems.append(f"{rule_type}.{rule.name}: unrecognized condition '{text}'")
    for problem in problems:
        logger.warning(f"[CONFIG] {problem}")
    if problems and settings.strict_mode:
        raise ConfigurationError(f"Strict mode: {len(problems)} rule problem(s), first: {problems[0]}")

    project = data.get("project") or {}
    return BoardConfig(
        rules_by_type=rules_by_type,
        monitored_users=monitored_users,
        monitored_repos=repos,
        organization=organization,
        project_id=settings.project_id or project.get("id"),
        project_url=settings.project_url or project.get("url"),
        source=source,
    )


def load_board_rules(path: str | Path | None = None, settings: Settings | None = None) -> BoardConfig:
    """Load, validate and parse the rules file."""
    settings = settings or Settings()
    rules_path = resolve_config_path(path, settings.config_file)
    try:
        data = yaml.safe_load(rules_path.read_text())
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {rules_path}: {e}") from None
    logger.info(f"[CONFIG] Loaded rules from {rules_path}")
    return parse_board_rules(data or {}, settings, source=rules_path)
