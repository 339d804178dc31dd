"""Command line entry point: ``autonav memento`` and ``autonav standup``.

Usage:
  autonav memento ./my-app ./my-nav --task "Add OAuth login" --max-iterations 5
  autonav standup ./nav-a ./nav-b --report-only
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

from .config import GlobalConfig, load_global_config, load_navigator, resolve_config_dir
from .harness.factory import create_harness, resolve_harness_type
from .memento.git_operations import has_uncommitted_changes, is_git_repo
from .memento.loop import run_memento_loop
from .memento.mood import LogProgressFeedback
from .memento.rate_limit import BackoffPolicy
from .memento.types import (
    DEFAULT_IMPLEMENTER_MODEL,
    DEFAULT_MAX_TURNS,
    DEFAULT_NAVIGATOR_MODEL,
    DEFAULT_REVIEW_ROUNDS,
    MementoOptions,
    UncommittedStrategy,
)
from .standup.loop import run_standup
from .standup.types import (
    DEFAULT_REPORT_MAX_TURNS,
    DEFAULT_STANDUP_MODEL,
    DEFAULT_SYNC_MAX_TURNS,
    StandupOptions,
)

logger = logging.getLogger(__name__)

DEBUG_ENV_VAR = "AUTONAV_DEBUG"
TASK_FILE = "TASK.md"
UNCOMMITTED_CHOICES = ("commit", "review", "discard", "abort")
_UNCOMMITTED_KEYS = {"c": "commit", "r": "review", "d": "discard", "a": "abort"}


def _configure_logging(verbose: bool) -> None:
    debug = verbose or os.environ.get(DEBUG_ENV_VAR) == "1"
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s" if debug else "%(message)s",
    )


def _add_shared_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--harness",
        type=str,
        default=None,
        help="Agent runtime: claude-code or chibi (default: $AUTONAV_HARNESS, navigator config, claude-code)",
    )
    parser.add_argument("--model", type=str, default=None, help="Model for the working agents")
    parser.add_argument("--max-turns", type=int, default=None, help="Maximum turns per agent call")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--config-dir",
        type=str,
        default=None,
        help="Global config directory (default: $AUTONAV_CONFIG_DIR or ~/.config/autonav)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="autonav", description="Autonomous navigator workflows")
    subparsers = parser.add_subparsers(dest="command", required=True)

    memento = subparsers.add_parser("memento", help="Run the plan/implement/review/commit loop")
    memento.add_argument("code_dir", type=Path, help="Repository the implementer works in")
    memento.add_argument("nav_dir", type=Path, help="Navigator directory (CLAUDE.md + config.json)")
    _add_shared_arguments(memento)
    memento.add_argument("--task", type=str, default=None, help=f"Task description (default: {TASK_FILE})")
    memento.add_argument(
        "--max-iterations",
        type=int,
        default=0,
        help="Maximum iterations (default: 0, unlimited)",
    )
    memento.add_argument("--branch", type=str, default=None, help="Branch to create or switch to first")
    memento.add_argument("--pr", action="store_true", help="Push the branch and open a PR when done")
    memento.add_argument("--nav-model", type=str, default=None, help="Model for the navigator and reviewer")
    memento.add_argument(
        "--review-rounds",
        type=int,
        default=None,
        help=f"Maximum review/fix rounds per iteration (default: {DEFAULT_REVIEW_ROUNDS})",
    )
    memento.add_argument(
        "--uncommitted",
        choices=UNCOMMITTED_CHOICES,
        default=None,
        help="What to do with pre-existing uncommitted changes (default: ask on a TTY, abort otherwise)",
    )

    standup = subparsers.add_parser("standup", help="Run a multi-navigator standup")
    standup.add_argument("nav_dirs", type=Path, nargs="+", help="Participating navigator directories")
    _add_shared_arguments(standup)
    standup.add_argument("--report-only", action="store_true", help="Skip the sync phase")
    standup.add_argument("--max-budget-usd", type=float, default=None, help="Spend cap per agent call")
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _harness_config(navigator_raw: dict[str, Any], global_config: GlobalConfig) -> dict[str, Any]:
    """Navigator config for harness resolution, with the global default behind it."""
    if isinstance(navigator_raw.get("harness"), dict) and navigator_raw["harness"].get("type"):
        return navigator_raw
    if global_config.harness:
        return {"harness": {"type": global_config.harness}}
    return {}


def read_task(code_dir: Path, task: Optional[str]) -> str:
    """Return ``task`` or the contents of ``TASK.md`` in ``code_dir``.

    Raises:
        ValueError: If neither is available.
    """
    if task and task.strip():
        return task.strip()
    task_file = code_dir / TASK_FILE
    if task_file.is_file():
        content = task_file.read_text(encoding="utf-8").strip()
        if content:
            return content
    raise ValueError(f"No task given: pass --task or create {task_file}")


def prompt_uncommitted_strategy(code_dir: Path) -> UncommittedStrategy:
    """Ask what to do with uncommitted changes; non-interactive runs abort."""
    if not sys.stdin.isatty():
        return "abort"
    print("\nUncommitted changes detected.")
    print("The memento loop uses git history as context for the navigator; uncommitted changes won't be visible.")
    while True:
        answer = input("[c]ommit, [r]eview then commit, [d]iscard, or [a]bort? ").strip().lower()
        choice = _UNCOMMITTED_KEYS.get(answer[:1])
        if choice:
            return choice  # type: ignore[return-value]


def _resolve_uncommitted(code_dir: Path, requested: Optional[str]) -> UncommittedStrategy:
    if requested:
        return requested  # type: ignore[return-value]
    if code_dir.is_dir() and is_git_repo(code_dir) and has_uncommitted_changes(code_dir):
        return prompt_uncommitted_strategy(code_dir)
    return "abort"


def run_memento_command(args: argparse.Namespace) -> int:
    code_dir = args.code_dir.expanduser().resolve()
    try:
        global_config = load_global_config(resolve_config_dir(args.config_dir))
        defaults = global_config.memento
        navigator = load_navigator(args.nav_dir)
        task = read_task(code_dir, args.task)
        harness_type = resolve_harness_type(args.harness, _harness_config(navigator.raw, global_config))
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    backoff = BackoffPolicy()
    if isinstance(defaults.get("max_wait_seconds"), int):
        backoff = BackoffPolicy(max_wait_seconds=defaults["max_wait_seconds"])
    options = MementoOptions(
        code_directory=str(code_dir),
        nav_directory=str(navigator.directory),
        task=task,
        max_iterations=args.max_iterations,
        branch=args.branch,
        pr=args.pr,
        model=_first(args.model, defaults.get("model"), DEFAULT_IMPLEMENTER_MODEL),
        nav_model=_first(args.nav_model, defaults.get("nav_model"), DEFAULT_NAVIGATOR_MODEL),
        max_turns=_first(args.max_turns, defaults.get("max_turns"), DEFAULT_MAX_TURNS),
        review_rounds=_first(args.review_rounds, defaults.get("review_rounds"), DEFAULT_REVIEW_ROUNDS),
        uncommitted=_resolve_uncommitted(code_dir, args.uncommitted),
        backoff=backoff,
    )
    logger.info("Harness: %s", harness_type)
    harness = create_harness(harness_type)
    result = asyncio.run(run_memento_loop(harness, options, feedback=LogProgressFeedback()))

    logger.info(
        "Memento finished: %d iteration(s), %d commit(s) in %.1fs",
        result.iterations,
        len(result.commits),
        result.duration_ms / 1000,
    )
    if result.completion_message:
        logger.info("Navigator: %s", result.completion_message)
    if result.pr_url:
        logger.info("PR: %s", result.pr_url)
    for error in result.errors:
        logger.warning("  %s", error)
    return 0 if result.success else 1


def run_standup_command(args: argparse.Namespace) -> int:
    try:
        global_config = load_global_config(resolve_config_dir(args.config_dir))
        defaults = global_config.standup
        first_navigator = load_navigator(args.nav_dirs[0])
        harness_type = resolve_harness_type(args.harness, _harness_config(first_navigator.raw, global_config))
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    max_turns = _first(args.max_turns, defaults.get("max_turns"))
    options = StandupOptions(
        nav_directories=tuple(str(d) for d in args.nav_dirs),
        config_dir=args.config_dir,
        model=_first(args.model, defaults.get("model"), DEFAULT_STANDUP_MODEL),
        report_max_turns=_first(max_turns, DEFAULT_REPORT_MAX_TURNS),
        sync_max_turns=_first(max_turns, DEFAULT_SYNC_MAX_TURNS),
        report_only=args.report_only,
        max_budget_usd=_first(args.max_budget_usd, defaults.get("max_budget_usd")),
    )
    harness = create_harness(harness_type)
    try:
        result = asyncio.run(run_standup(harness, options))
    except (FileNotFoundError, ValueError) as exc:
        logger.error("%s", exc)
        return 1

    logger.info(
        "Standup complete: %d report(s), %d sync response(s), $%.4f, output in %s",
        len(result.reports),
        len(result.sync_responses),
        result.total_cost_usd,
        result.standup_dir,
    )
    for error in result.errors:
        logger.warning("  %s", error)
    return 0 if result.success else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    if args.command == "memento":
        return run_memento_command(args)
    return run_standup_command(args)


if __name__ == "__main__":
    raise SystemExit(main())
