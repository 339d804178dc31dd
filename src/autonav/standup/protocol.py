"""Submission tools for the standup report and sync phases."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..harness.tool_server import CaptureSlot, ToolDefinition, ToolResult, define_tool, strip_nulls
from .types import StatusReport, SyncResponse

SUBMIT_STATUS_REPORT_TOOL = "submit_status_report"
SUBMIT_SYNC_RESPONSE_TOOL = "submit_sync_response"
REPORT_PROTOCOL_SERVER = "autonav-standup-report"
SYNC_PROTOCOL_SERVER = "autonav-standup-sync"

T = TypeVar("T")

_REPORT_DESCRIPTION = """Submit your structured status report. This is the ONLY way to deliver your report; the standup captures your output exclusively through this tool. Plain text responses are discarded.

Other navigators will read your report in the sync phase to identify blockers they can resolve for you. Be specific: vague blockers cannot be acted on."""

_SYNC_DESCRIPTION = """Submit your structured sync response after reviewing all status reports. This is the ONLY way to deliver your response; plain text responses are discarded.

Prioritize blockers whose needs_from matches your name, then those set to "any" that fall in your domain. Assess confidence honestly per resolution."""


@dataclass
class StandupProtocol(Generic[T]):
    server_name: str
    tool_name: str
    tools: list[ToolDefinition]
    capture: CaptureSlot[T]


def create_report_protocol() -> StandupProtocol[StatusReport]:
    slot: CaptureSlot[StatusReport] = CaptureSlot("status report")

    async def _submit(args: dict[str, Any]) -> ToolResult:
        report = StatusReport.model_validate(strip_nulls(args))
        slot.set(report)
        blockers = f"{len(report.blockers)} blocker(s) reported." if report.blockers else "No blockers."
        return ToolResult(text=json.dumps({"success": True, "message": f"Status report submitted. {blockers}"}))

    tool = define_tool(SUBMIT_STATUS_REPORT_TOOL, _REPORT_DESCRIPTION, StatusReport, _submit)
    return StandupProtocol(REPORT_PROTOCOL_SERVER, SUBMIT_STATUS_REPORT_TOOL, [tool], slot)


def create_sync_protocol() -> StandupProtocol[SyncResponse]:
    slot: CaptureSlot[SyncResponse] = CaptureSlot("sync response")

    async def _submit(args: dict[str, Any]) -> ToolResult:
        sync = SyncResponse.model_validate(strip_nulls(args))
        slot.set(sync)
        message = f"Sync response submitted with {len(sync.blocker_resolutions)} blocker resolution(s)."
        return ToolResult(text=json.dumps({"success": True, "message": message}))

    tool = define_tool(SUBMIT_SYNC_RESPONSE_TOOL, _SYNC_DESCRIPTION, SyncResponse, _submit)
    return StandupProtocol(SYNC_PROTOCOL_SERVER, SUBMIT_SYNC_RESPONSE_TOOL, [tool], slot)
