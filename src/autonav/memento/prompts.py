"""Prompt builders for the navigator, implementer, reviewer, and commit-message calls."""

from __future__ import annotations

from typing import Optional

from .types import ImplementationPlan

MAX_DIFF_CHARS = 4000

REVIEWER_SYSTEM_PROMPT = "You are a code reviewer. Be concise and actionable. Never use tools; respond directly."
COMMIT_MESSAGE_SYSTEM_PROMPT = (
    "You generate concise conventional commit messages. Reply with only the commit message."
)
LOCAL_TOOL_NOTE = (
    "Note: the {tool} tool records your submission but its reply is not shown to you. "
    "Call it exactly once with your final answer, then stop."
)

_NAV_PREAMBLE = (
    "You are the navigator in a memento loop. The implementer forgets everything\n"
    "between iterations; the git history below is the only record of its work.\n"
    "Plan the next increment and submit it with the submit_implementation_plan tool.\n"
)


def truncate_diff(diff: str, limit: int = MAX_DIFF_CHARS) -> str:
    if len(diff) <= limit:
        return diff
    return diff[:limit] + "\n... (truncated)"


def build_nav_system_prompt(nav_system_prompt: str) -> str:
    return f"{nav_system_prompt.rstrip()}\n\n{_NAV_PREAMBLE}"


def build_nav_plan_prompt(
    *,
    code_directory: str,
    task: str,
    iteration: int,
    max_iterations: int,
    git_log: str,
    branch: Optional[str] = None,
    navigator_name: Optional[str] = None,
) -> str:
    cap = str(max_iterations) if max_iterations else "unlimited"
    parts = [
        f"Iteration {iteration} of {cap}.",
        f"Code directory: {code_directory}",
    ]
    if branch:
        parts.append(f"Branch: {branch}")
    if navigator_name:
        parts.append(f"You are {navigator_name}.")
    parts += ["", "## Task", task.strip(), "", "## Recent commits"]
    parts.append(git_log.strip() or "(no commits yet)")
    parts += [
        "",
        "Review the repository state, then submit a plan for the next increment.",
        "Set is_complete only when every requirement of the task is met.",
    ]
    return "\n".join(parts)


def build_implementer_system_prompt(code_directory: str) -> str:
    return (
        "You are an implementer agent. Follow the plan exactly, working only inside "
        f"{code_directory}. Do not commit; the loop commits for you. "
        "Run the validation steps before finishing and end with a short summary of what you changed."
    )


def build_implementer_prompt(code_directory: str, plan: ImplementationPlan) -> str:
    lines = [f"Implement the following plan in {code_directory}.", "", f"## Summary\n{plan.summary}", "", "## Steps"]
    for index, step in enumerate(plan.steps, start=1):
        lines.append(f"{index}. {step.description}")
        if step.files:
            lines.append(f"   Files: {', '.join(step.files)}")
        if step.commands:
            lines.append(f"   Commands: {'; '.join(step.commands)}")
    lines += ["", "## Validation"]
    lines += [f"- {criterion}" for criterion in plan.validation_criteria]
    return "\n".join(lines)


def build_review_prompt(diff: str) -> str:
    return (
        "Review this diff for bugs, missing pieces, and obvious quality problems.\n"
        'If it is acceptable, reply with exactly "LGTM". Otherwise reply with one issue per line, '
        'each line starting with "- ".\n\n'
        f"```diff\n{truncate_diff(diff, MAX_DIFF_CHARS * 4)}\n```"
    )


def build_fix_system_prompt(code_directory: str) -> str:
    return (
        f"You fix code review findings in {code_directory}. Change only what the review asks for. "
        "Do not commit."
    )


def build_fix_prompt(code_directory: str, review: str) -> str:
    return f"A reviewer flagged these issues in {code_directory}. Fix each one.\n\n{review.strip()}"


def build_commit_message_prompt(diff: str) -> str:
    return (
        'Generate a single-line conventional commit message (e.g. "feat: ...", "fix: ...", "chore: ...") '
        "for these changes. Reply with ONLY the commit message, nothing else.\n\n"
        f"{truncate_diff(diff)}"
    )
