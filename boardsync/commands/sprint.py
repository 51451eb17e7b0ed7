"""
board-sync sprint - resolve a sprint decision offline.

Reads the board's iterations once and prints what the sprint step would do
for an item in the given column. Nothing is written.
"""

from boardsync.lib.board import BoardClient
from boardsync.lib.errors import ConfigurationError
from boardsync.lib.github import GitHubClient
from boardsync.lib.types import parse_timestamp
from boardsync.sprint.resolver import resolve_sprint_action
from boardsync.workflow.context import utc_now


def _timestamp(value, flag):
    if value is None:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise ConfigurationError(f"{flag}: not an ISO-8601 date or timestamp: {value}")
    return parsed


def cmd_sprint(args, settings) -> int:
    project_id = args.project_id or settings.project_id
    if not project_id:
        raise ConfigurationError("No project id: set PROJECT_ID or pass --project-id")
    if not settings.token:
        raise ConfigurationError("No GitHub token: set GITHUB_TOKEN, GH_TOKEN or PROJECT_SYNC_TOKEN")

    board = BoardClient(GitHubClient(token=settings.token), project_id)
    if not board.sprint_field_id():
        raise ConfigurationError(f"Project {project_id} has no 'Sprint' iteration field")
    iterations = board.iterations()

    now = _timestamp(args.now, "--now") or utc_now()
    completed = _timestamp(args.completed, "--completed")
    decision = resolve_sprint_action(args.column, args.current, iterations, now, completed)

    titles = {i.id: i.title for i in iterations}
    print(f"Iterations: {len(iterations)}")
    for iteration in iterations:
        print(f"  {iteration.title}: {iteration.start_date} .. {iteration.end_date} ({iteration.id})")
    print("")
    print(f"Decision: {decision.action.value}")
    print(f"Reason:   {decision.reason}")
    if decision.target_iteration_id:
        print(f"Target:   {titles.get(decision.target_iteration_id, decision.target_iteration_id)}")
    return 0
