"""Prompts for the standup report and sync phases.

System prompts carry the role and constraints; user prompts carry the data,
wrapped in XML tags so it stays separate from the instructions.
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence

from .types import StatusReport, SyncResponse


def _identity(name: str, description: str, request: str) -> str:
    lines = ["<identity>", f"You are {name}."]
    if description:
        lines.append(description)
    lines += ["</identity>", "<request_from>Autonav Standup</request_from>", f"<request>{request}</request>"]
    return "\n".join(lines)


def build_report_system_prompt(nav_system_prompt: str) -> str:
    return f"""{nav_system_prompt.rstrip()}

<standup_role>
You are participating in Phase 1 (Report) of a multi-navigator standup. Other navigators read your report in Phase 2 (Sync) to resolve cross-navigator blockers.

Your sole deliverable is a structured status report submitted via the `submit_status_report` tool.

<constraints>
- You have READ-ONLY access. Do not attempt to write, edit, or create files.
- Base every claim on evidence from your knowledge base or working directories.
- A blocker is something that prevents YOU from making progress. Do not report hypothetical risks.
- Set `needs_from` to the exact name of a navigator who could help, or "any".
- `severity`: "critical" = completely blocked; "moderate" = slowed; "minor" = inconvenience.
- `can_help_with` lists concrete capabilities, not vague offers.
</constraints>
</standup_role>"""


def build_report_prompt(
    *,
    name: str,
    description: str,
    nav_directory: Path,
    knowledge_base_path: Path,
    other_navigators: Sequence[str],
) -> str:
    others = "\n".join(f"  - {n}" for n in other_navigators) or "  (none)"
    identity = _identity(
        name,
        description,
        "Provide your status report for this multi-navigator standup using the `submit_status_report` tool.",
    )
    return f"""{identity}
<task_context>
After all navigators submit their reports in parallel, each navigator reviews ALL reports and tries to resolve the others' blockers. Your report decides whether others can help you, so be specific.
</task_context>

<your_environment>
<directory>{nav_directory}</directory>
<knowledge_base>{knowledge_base_path}</knowledge_base>
<other_navigators>
{others}
</other_navigators>
</your_environment>

<instructions>
1. Read your CLAUDE.md to recall your role and domain.
2. Scan your knowledge base and working directories for recent progress.
3. Decide your current focus, evidenced progress, real blockers, and what you can offer others.
4. Submit the report with the `submit_status_report` tool.
</instructions>"""


def build_sync_system_prompt(nav_system_prompt: str) -> str:
    return f"""{nav_system_prompt.rstrip()}

<standup_role>
You are participating in Phase 2 (Sync) of a multi-navigator standup. You have every status report and must help resolve blockers with your domain expertise.

Your sole deliverable is a structured sync response submitted via the `submit_sync_response` tool.

<constraints>
- You MAY read and modify files in your own directory.
- You MAY write shared artifacts to the standup directory and reference them in `artifact_path`.
- You MUST NOT modify files in other navigators' directories.
- Resolve "critical" blockers first, then "moderate", then "minor".
- Set `follow_up_needed` only if critical blockers remain unresolved or your resolution needs confirmation.
</constraints>
</standup_role>"""


def format_report_xml(report: StatusReport) -> str:
    blockers = (
        "\n".join(
            f'    <blocker severity="{b.severity}"'
            + (f' needs_from="{b.needs_from}"' if b.needs_from else "")
            + f">{b.description}</blocker>"
            for b in report.blockers
        )
        or "    <none/>"
    )
    can_help = "\n".join(f"    <capability>{h}</capability>" for h in report.can_help_with) or "    <none/>"
    progress = "\n".join(f"    <item>{p}</item>" for p in report.recent_progress)
    gaps = ""
    if report.knowledge_gaps:
        items = "\n".join(f"    <gap>{g}</gap>" for g in report.knowledge_gaps)
        gaps = f"\n  <knowledge_gaps>\n{items}\n  </knowledge_gaps>"
    return (
        f'<report navigator="{report.navigator_name}">\n'
        f"  <current_focus>{report.current_focus}</current_focus>\n"
        f"  <recent_progress>\n{progress}\n  </recent_progress>\n"
        f"  <blockers>\n{blockers}\n  </blockers>\n"
        f"  <can_help_with>\n{can_help}\n  </can_help_with>{gaps}\n"
        "</report>"
    )


def format_sync_xml(sync: SyncResponse) -> str:
    resolutions = (
        "\n".join(
            f'    <resolution for="{r.navigator_name}" confidence="{r.confidence}"'
            + (f' artifact="{r.artifact_path}"' if r.artifact_path else "")
            + f">\n      <blocker>{r.blocker_description}</blocker>\n"
            f"      <answer>{r.resolution}</answer>\n    </resolution>"
            for r in sync.blocker_resolutions
        )
        or "    <none/>"
    )
    insights = ""
    if sync.new_insights:
        items = "\n".join(f"    <insight>{i}</insight>" for i in sync.new_insights)
        insights = f"\n  <insights>\n{items}\n  </insights>"
    follow_up = "true" if sync.follow_up_needed else "false"
    return (
        f'<sync_response navigator="{sync.navigator_name}" follow_up_needed="{follow_up}">\n'
        f"  <summary>{sync.summary}</summary>\n"
        f"  <blocker_resolutions>\n{resolutions}\n  </blocker_resolutions>{insights}\n"
        "</sync_response>"
    )


def build_sync_prompt(
    *,
    name: str,
    description: str,
    nav_directory: Path,
    standup_dir: Path,
    reports: Sequence[StatusReport],
    previous_syncs: Sequence[SyncResponse],
) -> str:
    """User prompt for one sync participant.

    ``previous_syncs`` holds only the responses of participants that ran
    earlier in this standup.
    """
    identity = _identity(
        name,
        description,
        "Review all status reports and help resolve blockers using the `submit_sync_response` tool.",
    )
    reports_xml = "\n\n".join(format_report_xml(r) for r in reports)
    previous = ""
    if previous_syncs:
        previous_xml = "\n\n".join(format_sync_xml(s) for s in previous_syncs)
        previous = f"<previous_sync_responses>\n{previous_xml}\n</previous_sync_responses>\n\n"
    return f"""{identity}
<task_context>
Each navigator takes a turn reviewing all status reports and resolving blockers from its domain expertise. You see every report plus the sync responses of navigators who went before you.
</task_context>

<your_environment>
<directory>{nav_directory}</directory>
<standup_output_directory>{standup_dir}</standup_output_directory>
</your_environment>

<status_reports>
{reports_xml}
</status_reports>

{previous}<instructions>
1. For each blocker, check whether `needs_from` is "{name}" or "any" and whether it falls in your domain.
2. Read your knowledge base or working directories to find answers. Write artifacts to the standup output directory when useful.
3. Do not duplicate resolutions from previous sync responses; refine them instead.
4. Submit your sync response using the `submit_sync_response` tool.
</instructions>"""
