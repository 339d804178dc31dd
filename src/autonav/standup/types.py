"""Standup submissions, options, and results."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, Field

DEFAULT_STANDUP_MODEL = "claude-sonnet-4-5"
DEFAULT_REPORT_MAX_TURNS = 15
DEFAULT_SYNC_MAX_TURNS = 30


class Blocker(BaseModel):
    description: str = Field(
        description="Specific description of what is blocked and why, detailed enough for another navigator to act on"
    )
    needs_from: Optional[str] = Field(
        default=None,
        description="Exact name of the navigator who can help, or 'any' if anyone with relevant expertise could help",
    )
    severity: Literal["critical", "moderate", "minor"] = Field(
        description="critical = completely blocked; moderate = slowed, can work around; minor = inconvenience"
    )


class StatusReport(BaseModel):
    """Report-phase submission from one navigator."""

    navigator_name: str = Field(description="Your exact navigator name as it appears in config.json")
    current_focus: str = Field(
        min_length=5, description="Specific feature, system, or problem you are working on right now"
    )
    recent_progress: list[str] = Field(
        description="Concrete accomplishments you have evidence for, one sentence each"
    )
    blockers: list[Blocker] = Field(description="Real blockers preventing progress; no hypothetical risks")
    can_help_with: list[str] = Field(description="Concrete capabilities you can offer other navigators")
    knowledge_gaps: Optional[list[str]] = Field(
        default=None, description="Specific areas where you lack knowledge another navigator might cover"
    )


class BlockerResolution(BaseModel):
    navigator_name: str = Field(description="Exact name of the navigator whose blocker you are resolving")
    blocker_description: str = Field(description="The blocker description as written in their report")
    resolution: str = Field(description="Actionable resolution with enough detail to act on immediately")
    artifact_path: Optional[str] = Field(
        default=None, description="Absolute path to any artifact you wrote to the standup directory"
    )
    confidence: Literal["high", "medium", "low"] = Field(
        description="high = certain this resolves it; medium = likely helpful; low = best-effort suggestion"
    )


class SyncResponse(BaseModel):
    """Sync-phase submission from one navigator."""

    navigator_name: str = Field(description="Your exact navigator name as it appears in config.json")
    summary: str = Field(min_length=5, description="One-paragraph summary of what you contributed in this sync")
    blocker_resolutions: list[BlockerResolution] = Field(
        description="One entry per blocker you addressed; do not duplicate earlier resolutions"
    )
    new_insights: Optional[list[str]] = Field(
        default=None, description="Cross-cutting insights from reviewing all reports together"
    )
    follow_up_needed: bool = Field(
        description="True only if unresolved critical blockers remain or your resolution needs confirmation"
    )


@dataclass(frozen=True)
class StandupOptions:
    """Inputs for one standup.

    Attributes:
        nav_directories: Participating navigator directories, in sync order.
        config_dir: Global config directory override.
        model: Model for every participant.
        report_max_turns: Turn cap for the report phase.
        sync_max_turns: Turn cap for the sync phase.
        report_only: Skip the sync phase.
        max_budget_usd: Optional spend cap per agent call.
    """

    nav_directories: tuple[str, ...]
    config_dir: Optional[str] = None
    model: str = DEFAULT_STANDUP_MODEL
    report_max_turns: int = DEFAULT_REPORT_MAX_TURNS
    sync_max_turns: int = DEFAULT_SYNC_MAX_TURNS
    report_only: bool = False
    max_budget_usd: Optional[float] = None


@dataclass
class StandupResult:
    success: bool
    standup_dir: Path
    reports: list[StatusReport] = field(default_factory=list)
    sync_responses: list[SyncResponse] = field(default_factory=list)
    duration_ms: int = 0
    total_cost_usd: float = 0.0
    errors: list[str] = field(default_factory=list)
