# kindle_bot/cli/runner.py

"""Headless checker runner shared by the CLI and the Lambda handler."""

import importlib
import logging
from typing import Any

from rich.console import Console
from rich.table import Table

from kindle_bot.checkers.base_checker import BaseChecker
from kindle_bot.checkers.new_release_checker import NewReleaseChecker
from kindle_bot.checkers.rules import format_time_local
from kindle_bot.config.settings import EnvConfig, Settings

logger = logging.getLogger("kindle_bot.cli")

# Stderr console for status messages so stdout stays clean
_err = Console(stderr=True)


def resolve_checker(checker_id: str) -> dict[str, str]:
    """Map a checker ID to its registry entry.

    Raises ``SystemExit`` on unknown IDs.
    """
    available = {c["id"]: c for c in Settings.AVAILABLE_CHECKERS}
    if checker_id not in available:
        valid = ", ".join(sorted(available))
        _err.print(f"[red]Unknown checker: {checker_id}[/red]")
        _err.print(f"[dim]Available: {valid}[/dim]")
        raise SystemExit(1)
    return available[checker_id]


def build_checker(
    checker_id: str, env: EnvConfig, **kwargs: Any,
) -> BaseChecker:
    """Instantiate the checker class named in the registry."""
    entry = resolve_checker(checker_id)
    module_name, class_name = entry["runner"].rsplit(".", 1)
    checker_cls = getattr(importlib.import_module(module_name), class_name)
    checker: BaseChecker = checker_cls(env, **kwargs)
    return checker


def run_checker(
    checker_id: str, env: EnvConfig, **options: Any,
) -> int:
    """Run one checker and return an exit code (0=ok, 1=fail)."""
    entry = resolve_checker(checker_id)
    _err.print(f"[bold]Running:[/bold] {entry['label']}")

    checker = build_checker(checker_id, env)
    try:
        checker.execute(**options)
    except Exception as exc:
        # execute() already logged and alerted
        _err.print(f"[red]{entry['label']} failed: {exc}[/red]")
        return 1

    _err.print(f"[green]{entry['label']} finished[/green]")
    return 0


def _print_next_target(checker: NewReleaseChecker) -> bool:
    target = checker.next_target()
    if target is None:
        _err.print("[yellow]No authors found[/yellow]")
        return False

    table = Table(
        title="Next Processing Target",
        show_header=False,
        title_style="bold cyan",
    )
    table.add_column("Field", style="dim")
    table.add_column("Value")
    table.add_row(
        "Position",
        f"{target.index + 1}/{target.total} ({target.percentage:.1f}%)",
    )
    table.add_row("Author", target.author_name)
    table.add_row("Line number", str(target.line_number))
    table.add_row(
        "Next execution", format_time_local(target.next_execution)
    )
    table.add_row(
        "After inserting",
        f"{target.simulated_index + 1}/{target.total + 1}",
    )
    Console().print(table)

    if target.insertion_is_safe:
        Console().print(
            f"[green]Safe: insert at index {target.index} "
            f"(line {target.line_number}); the new author is "
            f"processed in the next execution[/green]"
        )
    else:
        Console().print(
            f"[yellow]WARNING: timeline shift detected![/yellow]\n"
            f"Current plan: index {target.index} "
            f"({target.author_name}) at line {target.line_number}\n"
            f"After insertion: index {target.simulated_index} "
            f"({target.simulated_name}) at line "
            f"{target.simulated_line_number}\n"
            f"Insert the new author at index {target.simulated_index} "
            f"(line {target.simulated_line_number}) to process it "
            f"next; inserting at index {target.index} skips it."
        )
    return True


def show_next_target(env: EnvConfig) -> int:
    """Print the next new-release slot and an insertion simulation."""
    checker = build_checker("new-release-checker", env)
    assert isinstance(checker, NewReleaseChecker)
    checker.load_configs()
    try:
        _print_next_target(checker)
    except Exception as exc:
        logger.error("show-next failed: %s", exc, exc_info=True)
        _err.print(f"[red]show-next failed: {exc}[/red]")
        return 1
    return 0
