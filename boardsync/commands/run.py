"""
board-sync run - reconcile the project board once.
"""

import logging
import time
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

from boardsync.lib.config import load_board_rules
from boardsync.lib.errors import ConfigurationError
from boardsync.lib.github import check_gh_available
from boardsync.lib.stats import ITEMS_FAILED, format_counter_summary, write_summary
from boardsync.workflow.engine import board_sync_flow, build_context, reconcile
from boardsync.workflow.tasks import fetch_items

logger = logging.getLogger(__name__)


def apply_overrides(args, settings):
    """Command-line flags win over board.env and the environment."""
    overrides = {}
    if args.project_id:
        overrides["project_id"] = args.project_id
    if args.dry_run:
        overrides["dry_run"] = True
    if args.verbose:
        overrides["verbose"] = True
    if args.event_name:
        overrides["event_name"] = args.event_name
    if args.event_path:
        overrides["event_path"] = args.event_path
    return replace(settings, **overrides) if overrides else settings


def cmd_run(args, settings) -> int:
    settings = apply_overrides(args, settings)
    if not settings.token:
        raise ConfigurationError("No GitHub token: set GITHUB_TOKEN, GH_TOKEN or PROJECT_SYNC_TOKEN")

    ok, message = check_gh_available()
    if not ok:
        raise ConfigurationError(message)

    config = load_board_rules(args.config, settings)
    if not config.project_id:
        raise ConfigurationError("No project id: set PROJECT_ID, pass --project-id, or add project.id to the rules")

    ctx = build_context(settings, config)
    mode = "DRY RUN" if settings.dry_run else "LIVE"
    print(f"Board sync [{mode}] project {config.project_id}")

    started = time.monotonic()
    try:
        if args.no_flow:
            results = reconcile(ctx, fetch_items(ctx))
        else:
            results = board_sync_flow(ctx)
    finally:
        elapsed = time.monotonic() - started
        print("")
        print("Summary:")
        for line in format_counter_summary(ctx.counters, elapsed):
            print(line)
        if args.summary_file:
            write_summary(Path(args.summary_file), ctx.counters, {
                "project_id": config.project_id,
                "dry_run": settings.dry_run,
                "finished_at": datetime.now(timezone.utc).isoformat(),
                "elapsed_seconds": round(elapsed, 3),
                "github_requests": ctx.board.client.request_count,
            })

    failed = sum(len(r.failed) for r in results.values())
    if failed:
        logger.warning(f"[RUN] {failed} item update(s) failed ({ctx.counters.get(ITEMS_FAILED)} counted)")
    return 0
