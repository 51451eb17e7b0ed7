"""
board-sync validate - check the rules file without touching GitHub.
"""

from boardsync.lib.config import load_board_rules
from boardsync.rules.models import RULE_TYPES
from boardsync.workflow.fsm import ColumnTransitionValidator


def cmd_validate(args, settings) -> int:
    config = load_board_rules(args.config, settings)
    print(f"Rules: {config.source}")
    print(f"Monitored users: {', '.join(config.monitored_users) or '(none)'}")
    print(f"Monitored repos: {', '.join(config.monitored_repos) or '(none)'}")
    print(f"Project: {config.project_id or '(not set)'}")
    print("")
    for rule_type in RULE_TYPES:
        rules = config.rules(rule_type)
        names = ", ".join(r.name for r in rules)
        print(f"  {rule_type}: {len(rules)} rule(s){' - ' + names if names else ''}")

    table = ColumnTransitionValidator(config.rules("columns")).table()
    print("")
    if not table:
        print("No column transitions declared: every column move will be blocked.")
        return 0
    print("Allowed column transitions:")
    width = max(len(source) for source in table)
    for source, targets in table.items():
        print(f"  {source.ljust(width)} -> {', '.join(targets)}")
    return 0
