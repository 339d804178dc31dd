"""Plan submission tool for the navigator."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from ..harness.tool_server import CaptureSlot, ToolDefinition, ToolResult, define_tool, strip_nulls
from .types import ImplementationPlan

SUBMIT_PLAN_TOOL = "submit_implementation_plan"
NAV_PROTOCOL_SERVER = "autonav-nav-protocol"

_DESCRIPTION = """Submit your implementation plan for the current iteration. You MUST use this tool to provide your plan.

Define concrete, atomic steps for the implementer, how to validate them, and
whether the overall task is complete. When it is, set is_complete to true and
provide a completion_message.

Do NOT respond with plain text; always use this tool to submit your plan."""


@dataclass
class NavProtocol:
    """Tool definitions plus the slot the submitted plan lands in."""

    tools: list[ToolDefinition]
    plan: CaptureSlot[ImplementationPlan]


def create_nav_protocol_tools() -> NavProtocol:
    slot: CaptureSlot[ImplementationPlan] = CaptureSlot("implementation plan")

    async def _submit(args: dict[str, Any]) -> ToolResult:
        plan = ImplementationPlan.model_validate(strip_nulls(args))
        stored = slot.set(plan)
        if not stored:
            message = "A plan was already submitted for this iteration; this one was ignored."
        elif plan.is_complete:
            message = "Task marked as complete."
        else:
            message = f"Plan submitted with {len(plan.steps)} steps. The implementer will implement this."
        return ToolResult(text=json.dumps({"success": stored, "message": message}))

    tool = define_tool(SUBMIT_PLAN_TOOL, _DESCRIPTION, ImplementationPlan, _submit)
    return NavProtocol(tools=[tool], plan=slot)
