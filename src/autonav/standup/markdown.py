"""Markdown renderings of standup reports, sync responses, and the summary."""

from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from .types import BlockerResolution, StatusReport, SyncResponse


def _bullets(items: Sequence[str], empty: str) -> str:
    return "\n".join(f"- {item}" for item in items) if items else empty


def format_report_markdown(report: StatusReport) -> str:
    blockers = (
        "\n".join(
            f"- **[{b.severity}]** {b.description}" + (f" _(needs: {b.needs_from})_" if b.needs_from else "")
            for b in report.blockers
        )
        or "_No blockers_"
    )
    gaps = ""
    if report.knowledge_gaps:
        gaps = f"\n## Knowledge Gaps\n\n{_bullets(report.knowledge_gaps, '')}\n"
    return (
        f"# Status Report: {report.navigator_name}\n\n"
        f"## Current Focus\n\n{report.current_focus}\n\n"
        f"## Recent Progress\n\n{_bullets(report.recent_progress, '_None reported_')}\n\n"
        f"## Blockers\n\n{blockers}\n\n"
        f"## Can Help With\n\n{_bullets(report.can_help_with, '_Nothing specific_')}\n"
        f"{gaps}"
    )


def _format_resolution(resolution: BlockerResolution) -> str:
    text = (
        f"### For {resolution.navigator_name}\n\n"
        f"**Blocker:** {resolution.blocker_description}\n\n"
        f"**Resolution:** {resolution.resolution}\n\n"
        f"**Confidence:** {resolution.confidence}"
    )
    if resolution.artifact_path:
        text += f"\n\n**Artifact:** {resolution.artifact_path}"
    return text


def format_sync_markdown(sync: SyncResponse) -> str:
    resolutions = (
        "\n\n---\n\n".join(_format_resolution(r) for r in sync.blocker_resolutions)
        or "_No blocker resolutions provided_"
    )
    insights = ""
    if sync.new_insights:
        insights = f"\n## New Insights\n\n{_bullets(sync.new_insights, '')}\n"
    follow_up = "Yes - further coordination recommended" if sync.follow_up_needed else "No - all addressed"
    return (
        f"# Sync Response: {sync.navigator_name}\n\n"
        f"## Summary\n\n{sync.summary}\n\n"
        f"## Blocker Resolutions\n\n{resolutions}\n"
        f"{insights}\n"
        f"## Follow-up Needed\n\n{follow_up}\n"
    )


def format_duration_ms(duration_ms: int) -> str:
    if duration_ms < 60_000:
        return f"{duration_ms / 1000:.1f}s"
    minutes, rest = divmod(duration_ms, 60_000)
    return f"{minutes}m {rest // 1000}s"


def _find_resolution(
    navigator_name: str, description: str, syncs: Sequence[SyncResponse]
) -> Optional[BlockerResolution]:
    for sync in syncs:
        for resolution in sync.blocker_resolutions:
            if resolution.navigator_name == navigator_name and resolution.blocker_description == description:
                return resolution
    return None


def format_summary_markdown(
    reports: Sequence[StatusReport],
    syncs: Sequence[SyncResponse],
    total_cost_usd: float,
    duration_ms: int,
    today: Optional[date] = None,
) -> str:
    """Summary of the whole standup, marking each blocker resolved or unresolved."""
    total_blockers = sum(len(r.blockers) for r in reports)
    total_resolutions = sum(len(s.blocker_resolutions) for s in syncs)
    follow_up = any(s.follow_up_needed for s in syncs)

    blocker_section = ""
    if total_blockers:
        lines = []
        for report in reports:
            for blocker in report.blockers:
                found = _find_resolution(report.navigator_name, blocker.description, syncs)
                status = f"RESOLVED [{found.confidence}]" if found else "UNRESOLVED"
                lines.append(f"- **{report.navigator_name}**: {blocker.description} [{blocker.severity}] - **{status}**")
        blocker_section = "\n## Blockers\n\n" + "\n".join(lines) + "\n"

    report_section = "\n\n".join(
        f"### {r.navigator_name}\n\n**Focus:** {r.current_focus}\n\n**Progress:**\n"
        + _bullets(r.recent_progress, "_None reported_")
        for r in reports
    )
    sync_section = ""
    if syncs:
        sync_section = "## Sync Contributions\n\n" + "\n\n".join(
            f"### {s.navigator_name}\n\n{s.summary}" for s in syncs
        )

    return (
        "# Standup Summary\n\n"
        f"**Date:** {(today or date.today()).isoformat()}\n"
        f"**Participants:** {', '.join(r.navigator_name for r in reports)}\n"
        f"**Duration:** {format_duration_ms(duration_ms)}\n"
        f"**Total Cost:** ${total_cost_usd:.4f}\n\n"
        "## Overview\n\n"
        f"- **Reports:** {len(reports)}\n"
        f"- **Blockers reported:** {total_blockers}\n"
        f"- **Resolutions provided:** {total_resolutions}\n"
        f"- **Follow-up needed:** {'Yes' if follow_up else 'No'}\n"
        f"{blocker_section}\n"
        f"## Reports\n\n{report_section}\n\n"
        f"{sync_section}\n\n"
        "---\n_Generated by autonav standup_\n"
    )
