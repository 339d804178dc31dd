from __future__ import annotations

import asyncio
from datetime import date
from pathlib import Path
from typing import Any, Callable, Optional

from autonav.harness.types import AgentConfig
from autonav.standup.loop import StandupRunner, run_standup
from autonav.standup.markdown import format_summary_markdown
from autonav.standup.prompts import build_sync_prompt
from autonav.standup.protocol import (
    REPORT_PROTOCOL_SERVER,
    SUBMIT_STATUS_REPORT_TOOL,
    SUBMIT_SYNC_RESPONSE_TOOL,
    SYNC_PROTOCOL_SERVER,
)
from autonav.standup.types import Blocker, BlockerResolution, StandupOptions, StatusReport, SyncResponse
from fakes import FakeHarness, make_navigator, result, tool_call

NAMES = ("alpha", "beta", "gamma")


def _report_args(name: str, blockers: int = 1) -> dict[str, Any]:
    return {
        "navigator_name": name,
        "current_focus": f"{name} focus area",
        "recent_progress": [f"{name} shipped something"],
        "blockers": [
            {"description": f"{name} blocker {i}", "needs_from": "any", "severity": "moderate"} for i in range(blockers)
        ],
        "can_help_with": [f"{name} expertise"],
        "knowledge_gaps": None,
    }


def _sync_args(name: str, resolves: Optional[str] = None) -> dict[str, Any]:
    resolutions = []
    if resolves:
        resolutions.append(
            {
                "navigator_name": resolves,
                "blocker_description": f"{resolves} blocker 0",
                "resolution": f"{name} suggests a fix",
                "confidence": "high",
                "artifact_path": None,
            }
        )
    return {
        "navigator_name": name,
        "summary": f"{name} reviewed every report",
        "blocker_resolutions": resolutions,
        "follow_up_needed": False,
    }


class StandupScript:
    """Answers report and sync turns per navigator, recording every prompt."""

    def __init__(self, blockers: int = 1) -> None:
        self.blockers = blockers
        self.report_prompts: dict[str, str] = {}
        self.sync_prompts: list[tuple[str, str]] = []
        self.configs: list[AgentConfig] = []
        self.report_override: dict[str, Callable[[], Any]] = {}

    def __call__(self, config: AgentConfig, prompt: str) -> Any:
        self.configs.append(config)
        name = Path(config.cwd or "").name
        if "Phase 1 (Report)" in config.system_prompt:
            self.report_prompts[name] = prompt
            if name in self.report_override:
                return self.report_override[name]()
            return [
                tool_call(REPORT_PROTOCOL_SERVER, SUBMIT_STATUS_REPORT_TOOL, _report_args(name, self.blockers)),
                result(cost=0.25),
            ]
        self.sync_prompts.append((name, prompt))
        resolves = "alpha" if name != "alpha" else None
        return [tool_call(SYNC_PROTOCOL_SERVER, SUBMIT_SYNC_RESPONSE_TOOL, _sync_args(name, resolves)), result(cost=0.5)]


def _setup(tmp_path: Path, names: tuple[str, ...] = NAMES) -> tuple[StandupOptions, list[Path]]:
    nav_dirs = [make_navigator(tmp_path / "navs" / name, name=name) for name in names]
    options = StandupOptions(nav_directories=tuple(str(d) for d in nav_dirs), config_dir=str(tmp_path / "config"))
    return options, nav_dirs


def test_full_standup_writes_reports_syncs_and_summary(tmp_path: Path) -> None:
    options, _ = _setup(tmp_path)
    script = StandupScript()

    outcome = asyncio.run(run_standup(FakeHarness(script), options))

    assert outcome.success, outcome.errors
    assert [r.navigator_name for r in outcome.reports] == list(NAMES)
    assert [s.navigator_name for s in outcome.sync_responses] == list(NAMES)
    assert outcome.total_cost_usd == 3 * 0.25 + 3 * 0.5
    assert outcome.standup_dir.parent == (tmp_path / "config").resolve() / "standups"
    for name in NAMES:
        assert (outcome.standup_dir / "reports" / f"{name}.md").read_text().startswith(f"# Status Report: {name}")
        assert (outcome.standup_dir / "sync" / f"{name}-sync.md").read_text().startswith(f"# Sync Response: {name}")
    summary = (outcome.standup_dir / "summary.md").read_text()
    assert "alpha blocker 0 [moderate] - **RESOLVED [high]**" in summary
    assert "beta blocker 0 [moderate] - **UNRESOLVED**" in summary


def test_sync_participants_only_see_earlier_responses(tmp_path: Path) -> None:
    options, _ = _setup(tmp_path)
    script = StandupScript()

    asyncio.run(run_standup(FakeHarness(script), options))

    assert [name for name, _ in script.sync_prompts] == list(NAMES)
    for index, (_, prompt) in enumerate(script.sync_prompts):
        for report_name in NAMES:
            assert f'<report navigator="{report_name}">' in prompt
        for other_index, other in enumerate(NAMES):
            seen = f'<sync_response navigator="{other}"' in prompt
            assert seen == (other_index < index)
    assert "<previous_sync_responses>" not in script.sync_prompts[0][1]


def test_report_prompts_name_the_other_navigators(tmp_path: Path) -> None:
    options, _ = _setup(tmp_path)
    script = StandupScript()

    asyncio.run(run_standup(FakeHarness(script), options))

    prompt = script.report_prompts["beta"]
    assert "  - alpha" in prompt and "  - gamma" in prompt
    assert "  - beta" not in prompt


def test_failed_report_is_isolated(tmp_path: Path) -> None:
    options, _ = _setup(tmp_path)
    script = StandupScript()
    script.report_override["beta"] = lambda: RuntimeError("boom")
    script.report_override["gamma"] = lambda: [result(success=False, text="max turns")]

    outcome = asyncio.run(run_standup(FakeHarness(script), options))

    assert not outcome.success
    assert [r.navigator_name for r in outcome.reports] == ["alpha"]
    assert outcome.errors == ["beta report failed: boom", "gamma report failed: max turns"]
    assert not (outcome.standup_dir / "reports" / "beta.md").exists()
    assert len(outcome.sync_responses) == 3


def test_report_without_submission_is_an_error(tmp_path: Path) -> None:
    options, _ = _setup(tmp_path, ("alpha",))
    script = StandupScript()
    script.report_override["alpha"] = lambda: [result()]

    outcome = asyncio.run(run_standup(FakeHarness(script), options))

    assert outcome.errors == ["alpha report failed: No status report was submitted"]


def test_sync_skipped_without_blockers(tmp_path: Path) -> None:
    options, _ = _setup(tmp_path)
    script = StandupScript(blockers=0)

    outcome = asyncio.run(run_standup(FakeHarness(script), options))

    assert outcome.success
    assert outcome.sync_responses == []
    assert script.sync_prompts == []
    assert (outcome.standup_dir / "summary.md").exists()


def test_report_only_skips_sync(tmp_path: Path) -> None:
    options, _ = _setup(tmp_path)
    script = StandupScript()
    report_only = StandupOptions(nav_directories=options.nav_directories, config_dir=options.config_dir, report_only=True)

    outcome = asyncio.run(run_standup(FakeHarness(script), report_only))

    assert len(outcome.reports) == 3
    assert script.sync_prompts == []


def test_participant_configuration(tmp_path: Path) -> None:
    working = tmp_path / "app"
    working.mkdir()
    nav_dir = make_navigator(
        tmp_path / "navs" / "alpha",
        name="alpha",
        config=f'{{"name": "alpha", "workingDirectories": ["{working}"]}}',
    )
    options = StandupOptions(nav_directories=(str(nav_dir),), max_budget_usd=1.0, report_max_turns=4)
    standup_dir = tmp_path / "standup"
    (standup_dir / "reports").mkdir(parents=True)
    (standup_dir / "sync").mkdir()
    script = StandupScript()
    harness = FakeHarness(script)

    asyncio.run(StandupRunner(harness, options, standup_dir=standup_dir).run())

    report_config = script.configs[0]
    assert report_config.max_turns == 4
    assert report_config.max_budget_usd == 1.0
    assert report_config.permission_mode == "acceptEdits"
    assert report_config.allowed_tools is not None
    assert f"mcp__{REPORT_PROTOCOL_SERVER}__{SUBMIT_STATUS_REPORT_TOOL}" in report_config.allowed_tools
    assert "Write" not in report_config.allowed_tools
    assert report_config.additional_directories == (str(working), str(standup_dir))
    assert report_config.sandbox is not None and report_config.sandbox.write_paths == ()
    assert report_config.sandbox.enabled is None

    sync_config = script.configs[1]
    assert "Write" in (sync_config.allowed_tools or ())
    assert str(standup_dir) in sync_config.sandbox.write_paths
    assert sync_config.sandbox.read_paths == (str(working),)
    assert all(session.close_calls == 1 for session in harness.sessions)


def _report(name: str, *blockers: str) -> StatusReport:
    return StatusReport(
        navigator_name=name,
        current_focus="Working on things",
        recent_progress=["did stuff"],
        blockers=[Blocker(description=b, severity="critical") for b in blockers],
        can_help_with=[],
    )


def test_summary_marks_resolved_blockers() -> None:
    reports = [_report("alpha", "needs schema"), _report("beta")]
    syncs = [
        SyncResponse(
            navigator_name="beta",
            summary="Shared the schema",
            blocker_resolutions=[
                BlockerResolution(
                    navigator_name="alpha", blocker_description="needs schema", resolution="see docs", confidence="medium"
                )
            ],
            follow_up_needed=True,
        )
    ]

    summary = format_summary_markdown(reports, syncs, 1.23456, 75_000, today=date(2026, 3, 1))

    assert "**Date:** 2026-03-01" in summary
    assert "**Participants:** alpha, beta" in summary
    assert "**Duration:** 1m 15s" in summary
    assert "**Total Cost:** $1.2346" in summary
    assert "- **Follow-up needed:** Yes" in summary
    assert "needs schema [critical] - **RESOLVED [medium]**" in summary


def test_sync_prompt_lists_reports_and_previous_responses(tmp_path: Path) -> None:
    previous = SyncResponse(
        navigator_name="alpha", summary="Helped out", blocker_resolutions=[], follow_up_needed=False
    )

    prompt = build_sync_prompt(
        name="beta",
        description="Owns billing",
        nav_directory=tmp_path,
        standup_dir=tmp_path / "standup",
        reports=[_report("alpha", "x blocked")],
        previous_syncs=[previous],
    )

    assert "You are beta.\nOwns billing" in prompt
    assert '<blocker severity="critical">x blocked</blocker>' in prompt
    assert '<sync_response navigator="alpha" follow_up_needed="false">' in prompt
    assert f"<standup_output_directory>{tmp_path / 'standup'}</standup_output_directory>" in prompt
