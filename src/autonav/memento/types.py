"""Memento loop models: plans, options, in-memory state, and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .rate_limit import BackoffPolicy

UncommittedStrategy = Literal["commit", "review", "discard", "abort"]

DEFAULT_IMPLEMENTER_MODEL = "claude-haiku-4-5"
DEFAULT_NAVIGATOR_MODEL = "claude-opus-4-5"
DEFAULT_MAX_TURNS = 50
DEFAULT_REVIEW_ROUNDS = 5
FALLBACK_COMMIT_MESSAGE = "chore: commit uncommitted changes"


class ImplementationStep(BaseModel):
    """One atomic step of a plan."""

    description: str = Field(min_length=5, description="Clear description of what this step accomplishes")
    files: Optional[list[str]] = Field(default=None, description="Files to create or modify (relative paths)")
    commands: Optional[list[str]] = Field(default=None, description="Shell commands to run")


class ImplementationPlan(BaseModel):
    """Plan submitted by the navigator once per iteration."""

    summary: str = Field(min_length=10, description="What this iteration will accomplish")
    steps: list[ImplementationStep] = Field(min_length=1, description="Ordered implementation steps")
    validation_criteria: list[str] = Field(min_length=1, description="How to verify the implementation worked")
    is_complete: bool = Field(description="True only when the overall task is fully done")
    completion_message: Optional[str] = Field(default=None, description="Summary shown when is_complete is true")


@dataclass(frozen=True)
class MementoOptions:
    """Inputs for one memento run.

    Attributes:
        code_directory: Repository the implementer works in.
        nav_directory: Navigator directory (``CLAUDE.md`` plus ``config.json``).
        task: Overall task description.
        max_iterations: Iteration cap; ``0`` runs until interrupted.
        branch: Optional branch to create or switch to first.
        pr: Push ``branch`` and open a PR after the last iteration.
        model: Implementer model.
        nav_model: Navigator (planner and reviewer) model.
        max_turns: Turn cap per agent call.
        review_rounds: Review/fix round cap per iteration.
        uncommitted: What to do with pre-existing uncommitted changes.
        backoff: Rate-limit and connection wait schedule.
    """

    code_directory: str
    nav_directory: str
    task: str
    max_iterations: int = 0
    branch: Optional[str] = None
    pr: bool = False
    model: str = DEFAULT_IMPLEMENTER_MODEL
    nav_model: str = DEFAULT_NAVIGATOR_MODEL
    max_turns: int = DEFAULT_MAX_TURNS
    review_rounds: int = DEFAULT_REVIEW_ROUNDS
    uncommitted: UncommittedStrategy = "abort"
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)


@dataclass
class LoopStats:
    lines_added: int = 0
    lines_removed: int = 0
    tokens_used: int = 0
    last_tool: Optional[str] = None


@dataclass(frozen=True)
class PlanRecord:
    iteration: int
    summary: str


@dataclass
class LoopState:
    """In-memory progress; git history is the durable record."""

    iteration: int = 0
    completion_message: Optional[str] = None
    plan_history: list[PlanRecord] = field(default_factory=list)
    stats: LoopStats = field(default_factory=LoopStats)


@dataclass
class ImplementerResult:
    success: bool
    summary: str
    files_modified: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    tokens_used: int = 0
    last_tool: Optional[str] = None
    attempts: int = 1


@dataclass
class ReviewOutcome:
    lgtm: bool
    rounds: int = 0
    fixes_applied: int = 0
    issues: list[list[str]] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class MementoResult:
    success: bool
    iterations: int
    duration_ms: int
    completion_message: Optional[str] = None
    pr_url: Optional[str] = None
    branch: Optional[str] = None
    commits: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
