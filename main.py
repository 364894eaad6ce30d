# main.py

"""Entry point for kindle_bot (CLI and AWS Lambda)."""

import argparse
import logging
import os
import sys
from typing import Any

from kindle_bot.config.logging_config import setup_logging
from kindle_bot.config.settings import (
    ConfigError,
    EnvConfig,
    Settings,
    is_lambda,
    load_env_config,
)

logger = logging.getLogger("kindle_bot.main")


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI."""
    valid_ids = ", ".join(c["id"] for c in Settings.AVAILABLE_CHECKERS)

    parser = argparse.ArgumentParser(
        prog="kindle_bot",
        description="Kindle catalog monitoring bot.",
        epilog=f"Available checkers: {valid_ids}",
    )
    sub = parser.add_subparsers(dest="checker", required=True)

    sale = sub.add_parser(
        "sale-checker", help="Check the next segment for sales."
    )
    sale.add_argument(
        "-o",
        "--organize",
        action="store_true",
        default=False,
        help="De-duplicate and re-sort the unprocessed list, then exit.",
    )

    new_release = sub.add_parser(
        "new-release-checker",
        help="Search the due author for upcoming releases.",
    )
    new_release.add_argument(
        "-n",
        "--show-next",
        action="store_true",
        default=False,
        dest="show_next",
        help="Show the next target and an insertion simulation.",
    )

    sub.add_parser(
        "paper-to-kindle-checker",
        help="Search a Kindle edition for the due paper book.",
    )
    sub.add_parser(
        "release-notifier", help="Announce books released today."
    )
    return parser


def _load_env() -> EnvConfig:
    try:
        return load_env_config()
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    """Parse arguments and run the selected checker."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    env = _load_env()
    log_file = setup_logging(env.logs_dir)
    logger.info("kindle_bot starting - log file: %s", log_file)

    from kindle_bot.cli.runner import run_checker, show_next_target

    if args.checker == "new-release-checker" and args.show_next:
        sys.exit(show_next_target(env))

    options: dict[str, Any] = {}
    if args.checker == "sale-checker" and args.organize:
        options["organize"] = True
    sys.exit(run_checker(args.checker, env, **options))


def lambda_handler(event: Any, context: Any) -> dict[str, str]:
    """AWS Lambda entry point.

    The checker comes from ``event["checker"]`` or the
    ``KINDLE_BOT_CHECKER`` environment variable. Failures re-raise so
    the invocation is recorded as failed.
    """
    env = load_env_config()
    setup_logging(
        env.logs_dir,
        console_level=logging.INFO if is_lambda() else logging.WARNING,
    )

    checker_id = ""
    if isinstance(event, dict):
        checker_id = str(event.get("checker") or "")
    checker_id = checker_id or os.environ.get("KINDLE_BOT_CHECKER", "")
    if not checker_id:
        raise ConfigError(
            "No checker selected (event 'checker' or KINDLE_BOT_CHECKER)"
        )
    if checker_id not in {c["id"] for c in Settings.AVAILABLE_CHECKERS}:
        raise ConfigError(f"Unknown checker: {checker_id!r}")

    from kindle_bot.cli.runner import build_checker

    checker = build_checker(checker_id, env)
    checker.execute()
    return {
        "status": "ok",
        "message": f"Processing complete: {checker_id}",
    }


if __name__ == "__main__":
    main()
