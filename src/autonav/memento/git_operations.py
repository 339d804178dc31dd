"""Git helpers for the memento loop: history, diffs, commits, branches, and PRs."""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

_FILES_RE = re.compile(r"(\d+) files? changed")
_INSERTIONS_RE = re.compile(r"(\d+) insertions?\(\+\)")
_DELETIONS_RE = re.compile(r"(\d+) deletions?\(-\)")


@dataclass(frozen=True)
class DiffStats:
    files_changed: int = 0
    lines_added: int = 0
    lines_removed: int = 0


def _git(args: list[str], cwd: str | Path, *, timeout: int = 60) -> str:
    """Run ``git <args>`` and return stripped stdout.

    Raises:
        RuntimeError: If git exits non-zero; the message carries git's stderr.
    """
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=str(cwd),
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as exc:
        raise RuntimeError(f"Git command failed: git {' '.join(args)}\n{(exc.stderr or '').strip()}") from exc
    return result.stdout.strip()


def parse_shortstat(output: str) -> DiffStats:
    if not output:
        return DiffStats()
    files = _FILES_RE.search(output)
    added = _INSERTIONS_RE.search(output)
    removed = _DELETIONS_RE.search(output)
    return DiffStats(
        files_changed=int(files.group(1)) if files else 0,
        lines_added=int(added.group(1)) if added else 0,
        lines_removed=int(removed.group(1)) if removed else 0,
    )


def is_git_repo(cwd: str | Path) -> bool:
    try:
        _git(["rev-parse", "--is-inside-work-tree"], cwd)
    except (RuntimeError, OSError):
        return False
    return True


def ensure_git_repo(cwd: str | Path) -> None:
    if not is_git_repo(cwd):
        _git(["init"], cwd)
        logger.info("Initialized git repository in %s", cwd)


def get_current_branch(cwd: str | Path) -> str:
    try:
        return _git(["branch", "--show-current"], cwd) or "HEAD"
    except RuntimeError:
        return "HEAD"


def create_branch(name: str, cwd: str | Path) -> None:
    """Switch to ``name``, creating it from the current HEAD when it does not exist."""
    try:
        _git(["rev-parse", "--verify", name], cwd)
    except RuntimeError:
        _git(["checkout", "-b", name], cwd)
        logger.info("Created and switched to branch %s", name)
        return
    _git(["checkout", name], cwd)
    logger.info("Switched to existing branch %s", name)


def get_recent_git_log(cwd: str | Path, count: int = 10) -> str:
    """One-line log of the last ``count`` commits, or ``""`` for a repo without commits."""
    try:
        _git(["rev-parse", "HEAD"], cwd)
        return _git(["log", "--oneline", "--no-decorate", "-n", str(count)], cwd)
    except RuntimeError:
        return ""


def get_recent_diff(cwd: str | Path) -> str:
    """Staged plus unstaged diff of the working tree."""
    try:
        staged = _git(["diff", "--cached"], cwd)
        unstaged = _git(["diff"], cwd)
    except RuntimeError:
        return ""
    return f"{staged}\n{unstaged}".strip()


def get_diff_stats(cwd: str | Path) -> DiffStats:
    try:
        return parse_shortstat(_git(["diff", "--shortstat"], cwd))
    except RuntimeError:
        return DiffStats()


def get_last_commit_diff_stats(cwd: str | Path) -> DiffStats:
    """Line counts of the most recent commit (root commits included)."""
    try:
        return parse_shortstat(_git(["diff", "--shortstat", "HEAD~1", "HEAD"], cwd))
    except RuntimeError:
        pass
    try:
        return parse_shortstat(_git(["show", "--shortstat", "--format=", "HEAD"], cwd))
    except RuntimeError:
        return DiffStats()


def has_uncommitted_changes(cwd: str | Path) -> bool:
    try:
        return bool(_git(["status", "--porcelain"], cwd))
    except RuntimeError:
        return False


def stage_all_changes(cwd: str | Path) -> None:
    _git(["add", "-A"], cwd)


def commit_changes(message: str, cwd: str | Path) -> Optional[str]:
    """Stage and commit everything.

    Returns:
        Optional[str]: Short hash of the new commit, or ``None`` when the tree was clean.
    """
    if not has_uncommitted_changes(cwd):
        logger.info("No changes to commit")
        return None
    stage_all_changes(cwd)
    _git(["commit", "-m", message], cwd)
    sha = _git(["rev-parse", "--short", "HEAD"], cwd)
    logger.info("Committed %s - %s", sha, message)
    return sha


def discard_changes(cwd: str | Path) -> None:
    """Drop tracked modifications and untracked files."""
    _git(["checkout", "--", "."], cwd)
    _git(["clean", "-fd"], cwd)


def push_branch(branch: str, cwd: str | Path, *, set_upstream: bool = True) -> None:
    args = ["push", "-u", "origin", branch] if set_upstream else ["push", "origin", branch]
    _git(args, cwd, timeout=300)
    logger.info("Pushed branch %s", branch)


def is_gh_available() -> bool:
    """Whether the GitHub CLI is installed and authenticated."""
    try:
        subprocess.run(["gh", "auth", "status"], check=True, capture_output=True, text=True, timeout=15)
    except (OSError, subprocess.SubprocessError):
        return False
    return True


def create_pull_request(
    cwd: str | Path,
    *,
    title: str,
    body: str,
    base: str = "main",
    draft: bool = False,
) -> str:
    """Open a PR with ``gh`` and return its URL.

    Raises:
        RuntimeError: If ``gh pr create`` fails.
    """
    args = ["gh", "pr", "create", "--title", title, "--body", body, "--base", base]
    if draft:
        args.append("--draft")
    try:
        result = subprocess.run(args, cwd=str(cwd), check=True, capture_output=True, text=True, timeout=120)
    except subprocess.CalledProcessError as exc:
        raise RuntimeError(f"gh pr create failed: {(exc.stderr or '').strip()}") from exc
    lines = result.stdout.strip().splitlines()
    return lines[-1] if lines else ""


def get_remote_url(cwd: str | Path) -> Optional[str]:
    try:
        return _git(["remote", "get-url", "origin"], cwd) or None
    except RuntimeError:
        return None
