"""Standup orchestration.

Phase 1 (report) runs every navigator concurrently, read-only. Phase 2 (sync)
runs them one at a time, each seeing all reports plus the sync responses of
the navigators before it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Optional, Sequence, TypeVar

from ..config import NavigatorConfig, load_navigator, resolve_config_dir
from ..harness.helpers import collect_result
from ..harness.tool_server import is_local_tool_server
from ..harness.types import AgentConfig, Harness, SandboxPolicy, ToolResultEvent, ToolUseEvent
from ..memento.prompts import LOCAL_TOOL_NOTE
from .config import REPORTS_DIR, SUMMARY_FILE, SYNC_DIR, create_standup_dir
from .markdown import format_report_markdown, format_summary_markdown, format_sync_markdown
from .prompts import build_report_prompt, build_report_system_prompt, build_sync_prompt, build_sync_system_prompt
from .protocol import StandupProtocol, create_report_protocol, create_sync_protocol
from .types import StandupOptions, StandupResult, StatusReport, SyncResponse

logger = logging.getLogger(__name__)

SANDBOX_OPERATION = "standup"
REPORT_TOOLS = ("Read", "Glob", "Grep", "Bash")
SYNC_TOOLS = ("Read", "Write", "Edit", "Glob", "Grep", "Bash")

T = TypeVar("T")


def _mcp_tool_name(server_name: str, tool_name: str) -> str:
    return f"mcp__{server_name}__{tool_name}"


class StandupRunner:
    """Run one standup across several navigators on a shared harness."""

    def __init__(self, harness: Harness, options: StandupOptions, *, standup_dir: Optional[Path] = None) -> None:
        self.harness = harness
        self.options = options
        self.standup_dir = standup_dir
        self.navigators: list[NavigatorConfig] = []
        self.errors: list[str] = []
        self.total_cost_usd = 0.0

    async def run(self) -> StandupResult:
        started = time.monotonic()
        self.navigators = [load_navigator(d) for d in self.options.nav_directories]
        if self.standup_dir is None:
            self.standup_dir = create_standup_dir(resolve_config_dir(self.options.config_dir))
        logger.info("Standup directory: %s", self.standup_dir)

        reports = await self._report_phase()
        total_blockers = sum(len(r.blockers) for r in reports)

        syncs: list[SyncResponse] = []
        if self.options.report_only:
            logger.info("Sync phase skipped (report only)")
        elif total_blockers == 0:
            logger.info("No blockers reported; sync phase skipped")
        else:
            logger.info("Phase 2: sync (%d blocker(s) to resolve)", total_blockers)
            syncs = await self._sync_phase(reports)

        duration_ms = int((time.monotonic() - started) * 1000)
        summary = format_summary_markdown(reports, syncs, self.total_cost_usd, duration_ms)
        (self._dir / SUMMARY_FILE).write_text(summary, encoding="utf-8")
        return StandupResult(
            success=not self.errors,
            standup_dir=self._dir,
            reports=reports,
            sync_responses=syncs,
            duration_ms=duration_ms,
            total_cost_usd=self.total_cost_usd,
            errors=list(self.errors),
        )

    @property
    def _dir(self) -> Path:
        if self.standup_dir is None:
            raise RuntimeError("Standup directory not created")
        return self.standup_dir

    def _others(self, navigator: NavigatorConfig) -> list[str]:
        return [n.name for n in self.navigators if n.name != navigator.name]

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    async def _report_phase(self) -> list[StatusReport]:
        logger.info("Phase 1: status reports from %d navigator(s)", len(self.navigators))
        outcomes = await asyncio.gather(
            *(self._run_report(nav) for nav in self.navigators),
            return_exceptions=True,
        )
        reports: list[StatusReport] = []
        for navigator, outcome in zip(self.navigators, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                message = f"{navigator.name} report failed: {outcome}"
                logger.warning("%s", message)
                self.errors.append(message)
                continue
            report, cost = outcome
            reports.append(report)
            self.total_cost_usd += cost
            logger.info("%s reported %d blocker(s), cost $%.4f", navigator.name, len(report.blockers), cost)
        return reports

    async def _sync_phase(self, reports: Sequence[StatusReport]) -> list[SyncResponse]:
        syncs: list[SyncResponse] = []
        for navigator in self.navigators:
            try:
                sync, cost = await self._run_sync(navigator, reports, list(syncs))
            except Exception as exc:
                message = f"{navigator.name} sync failed: {exc}"
                logger.warning("%s", message)
                self.errors.append(message)
                continue
            syncs.append(sync)
            self.total_cost_usd += cost
            logger.info(
                "%s provided %d resolution(s), cost $%.4f", navigator.name, len(sync.blocker_resolutions), cost
            )
        return syncs

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    def _sandbox(
        self, navigator: NavigatorConfig, *, read: Sequence[Path] = (), write: Sequence[Path] = ()
    ) -> SandboxPolicy:
        enabled = navigator.sandbox_enabled(SANDBOX_OPERATION)
        return SandboxPolicy(
            read_paths=tuple(str(p) for p in read),
            write_paths=tuple(str(p) for p in write),
            enabled=None if enabled else False,
        )

    async def _run_report(self, navigator: NavigatorConfig) -> tuple[StatusReport, float]:
        protocol = create_report_protocol()
        prompt = build_report_prompt(
            name=navigator.name,
            description=navigator.description,
            nav_directory=navigator.directory,
            knowledge_base_path=navigator.knowledge_base_path,
            other_navigators=self._others(navigator),
        )
        sandbox = self._sandbox(
            navigator,
            read=(navigator.directory, navigator.knowledge_base_path, *navigator.working_directories),
        )
        report, cost = await self._run_participant(
            navigator,
            protocol,
            build_report_system_prompt(navigator.system_prompt),
            prompt,
            max_turns=self.options.report_max_turns,
            tools=REPORT_TOOLS,
            sandbox=sandbox,
            label="Report",
        )
        path = self._dir / REPORTS_DIR / f"{navigator.name}.md"
        path.write_text(format_report_markdown(report), encoding="utf-8")
        return report, cost

    async def _run_sync(
        self,
        navigator: NavigatorConfig,
        reports: Sequence[StatusReport],
        previous_syncs: Sequence[SyncResponse],
    ) -> tuple[SyncResponse, float]:
        protocol = create_sync_protocol()
        prompt = build_sync_prompt(
            name=navigator.name,
            description=navigator.description,
            nav_directory=navigator.directory,
            standup_dir=self._dir,
            reports=reports,
            previous_syncs=previous_syncs,
        )
        sandbox = self._sandbox(
            navigator,
            read=navigator.working_directories,
            write=(navigator.directory, navigator.knowledge_base_path, self._dir),
        )
        sync, cost = await self._run_participant(
            navigator,
            protocol,
            build_sync_system_prompt(navigator.system_prompt),
            prompt,
            max_turns=self.options.sync_max_turns,
            tools=SYNC_TOOLS,
            sandbox=sandbox,
            label="Sync",
        )
        path = self._dir / SYNC_DIR / f"{navigator.name}-sync.md"
        path.write_text(format_sync_markdown(sync), encoding="utf-8")
        return sync, cost

    async def _run_participant(
        self,
        navigator: NavigatorConfig,
        protocol: StandupProtocol[T],
        system_prompt: str,
        prompt: str,
        *,
        max_turns: int,
        tools: tuple[str, ...],
        sandbox: SandboxPolicy,
        label: str,
    ) -> tuple[T, float]:
        """Run one participant turn and return its captured submission and cost.

        Raises:
            RuntimeError: If the turn fails.
            MissingCaptureError: If the turn succeeds without a submission.
        """
        server: Any = self.harness.create_tool_server(protocol.server_name, protocol.tools)
        if is_local_tool_server(server):
            prompt = f"{prompt}\n\n{LOCAL_TOOL_NOTE.format(tool=protocol.tool_name)}"
        config = AgentConfig(
            model=self.options.model,
            system_prompt=system_prompt,
            cwd=str(navigator.directory),
            max_turns=max_turns,
            max_budget_usd=self.options.max_budget_usd,
            additional_directories=tuple(str(p) for p in (*navigator.working_directories, self._dir)),
            mcp_servers={protocol.server_name: server},
            allowed_tools=(*tools, _mcp_tool_name(protocol.server_name, protocol.tool_name)),
            permission_mode="acceptEdits",
            sandbox=sandbox,
        )
        logger.debug(
            "[%s:%s] model=%s max_turns=%d cwd=%s", label, navigator.name, config.model, max_turns, config.cwd
        )

        def _on_event(event: Any) -> None:
            if isinstance(event, ToolUseEvent):
                logger.debug("[%s:%s] Tool: %s", label, navigator.name, event.short_name)
            elif isinstance(event, ToolResultEvent) and event.is_error:
                logger.debug("[%s:%s] Tool error: %s", label, navigator.name, event.content[:500])

        session = self.harness.run(config, prompt)
        try:
            collected = await collect_result(session, on_event=_on_event)
        finally:
            await session.close()

        if not collected.success:
            raise RuntimeError(collected.error_text or "Unknown error")
        return protocol.capture.get(), collected.cost_usd or 0.0


async def run_standup(harness: Harness, options: StandupOptions) -> StandupResult:
    """Convenience wrapper around ``StandupRunner(...).run()``."""
    return await StandupRunner(harness, options).run()
