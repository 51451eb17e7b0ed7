#!/usr/bin/env python3
"""board-sync CLI entrypoint."""

import sys
import argparse
import logging

from boardsync.lib.config import load_settings
from boardsync.lib.errors import ConfigurationError, ErrorClass, GitHubAPIError, classify_error
from boardsync.commands import run as cmd_run_module
from boardsync.commands import sprint as cmd_sprint_module
from boardsync.commands import validate as cmd_validate_module

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_UNEXPECTED = 1
EXIT_CONFIG = 2
EXIT_API = 3


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def cmd_run(args, settings):
    return cmd_run_module.cmd_run(args, settings)


def cmd_validate(args, settings):
    return cmd_validate_module.cmd_validate(args, settings)


def cmd_sprint(args, settings):
    return cmd_sprint_module.cmd_sprint(args, settings)


def exit_code_for(error: BaseException) -> int:
    """Map a run-aborting exception to the process exit status."""
    if isinstance(error, ConfigurationError):
        return EXIT_CONFIG
    if isinstance(error, GitHubAPIError) and classify_error(error) in (ErrorClass.AUTH, ErrorClass.RATE_LIMIT):
        return EXIT_API
    return EXIT_UNEXPECTED


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='board-sync', description='GitHub Projects v2 board reconciliation')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # board-sync run
    p_run = subparsers.add_parser('run', help='Reconcile the board once')
    p_run.add_argument('--config', '-c', help='Rules file (default: config/rules.yml)')
    p_run.add_argument('--project-id', help='Project node id (overrides PROJECT_ID)')
    p_run.add_argument('--dry-run', action='store_true', help='Log intended mutations without writing')
    p_run.add_argument('--verbose', '-v', action='store_true', help='Debug logging')
    p_run.add_argument('--event-name', help='GitHub event name (overrides GITHUB_EVENT_NAME)')
    p_run.add_argument('--event-path', help='GitHub event payload file (overrides GITHUB_EVENT_PATH)')
    p_run.add_argument('--no-flow', action='store_true', help='Run without the Prefect flow wrapper')
    p_run.add_argument('--summary-file', help='Append run counters as a JSON line to this file')
    p_run.set_defaults(func=cmd_run)

    # board-sync validate
    p_validate = subparsers.add_parser('validate', help='Validate the rules file and show column transitions')
    p_validate.add_argument('--config', '-c', help='Rules file (default: config/rules.yml)')
    p_validate.set_defaults(func=cmd_validate)

    # board-sync sprint
    p_sprint = subparsers.add_parser('sprint', help='Show the sprint decision for a column and dates')
    p_sprint.add_argument('--column', required=True, help='Board column of the item')
    p_sprint.add_argument('--current', help='Current iteration id of the item')
    p_sprint.add_argument('--completed', help='Completion timestamp (ISO-8601) for Done items')
    p_sprint.add_argument('--now', help='Evaluate as of this timestamp (ISO-8601, default: now)')
    p_sprint.add_argument('--project-id', help='Project node id (overrides PROJECT_ID)')
    p_sprint.set_defaults(func=cmd_sprint)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging(getattr(args, 'verbose', False))
        print(f"ERROR: {e}")
        return EXIT_CONFIG

    configure_logging(getattr(args, 'verbose', False) or settings.verbose)
    try:
        return args.func(args, settings)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
    except Exception as e:
        code = exit_code_for(e)
        if code == EXIT_UNEXPECTED:
            logger.exception(f"[CLI] Unexpected error: {e}")
        else:
            print(f"ERROR: {e}")
        return code


if __name__ == '__main__':
    sys.exit(main())
