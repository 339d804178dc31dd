from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from pydantic import BaseModel

from autonav.harness.helpers import collect_result, collect_text, filter_stderr
from autonav.harness.tool_server import CaptureSlot, LocalToolServer, ToolResult, define_tool, invoke_tool, strip_nulls
from autonav.harness.types import ErrorEvent, MissingCaptureError, ResultEvent, TextEvent, ToolUseEvent, Usage
from autonav.memento.nav_protocol import NAV_PROTOCOL_SERVER, SUBMIT_PLAN_TOOL, create_nav_protocol_tools


class Echo(BaseModel):
    message: str


async def _events(*items: Any) -> Any:
    for item in items:
        yield item


def _plan_args(**overrides: Any) -> dict[str, Any]:
    args: dict[str, Any] = {
        "summary": "Add the login endpoint",
        "steps": [{"description": "Create routes/login.py", "files": ["routes/login.py"], "commands": None}],
        "validation_criteria": ["pytest passes"],
        "is_complete": False,
        "completion_message": None,
    }
    args.update(overrides)
    return args


def test_capture_slot_first_submission_wins() -> None:
    slot: CaptureSlot[str] = CaptureSlot("report")

    with pytest.raises(MissingCaptureError, match="No report was submitted"):
        slot.get()
    assert slot.set("first") is True
    assert slot.set("second") is False
    assert slot.get() == "first"


def test_strip_nulls_recurses() -> None:
    assert strip_nulls({"a": None, "b": [1, None, {"c": None, "d": 2}]}) == {"b": [1, {"d": 2}]}


def test_define_tool_uses_model_schema() -> None:
    async def _handler(args: dict[str, Any]) -> ToolResult:
        return ToolResult(text=args["message"])

    tool = define_tool("echo", "Echo a message", Echo, _handler)

    assert tool.input_schema["properties"]["message"]["type"] == "string"
    assert asyncio.run(invoke_tool(tool, {"message": "hi"})) == ToolResult(text="hi")


def test_handler_errors_become_error_results() -> None:
    async def _handler(args: dict[str, Any]) -> ToolResult:
        Echo.model_validate(args)
        return ToolResult(text="ok")

    tool = define_tool("echo", "Echo a message", Echo, _handler)

    result = asyncio.run(invoke_tool(tool, {}))

    assert result.is_error
    assert result.text.startswith("echo failed:")


def test_local_server_matches_prefixed_names() -> None:
    async def _handler(args: dict[str, Any]) -> ToolResult:
        return ToolResult(text="ok")

    server = LocalToolServer("srv", (define_tool("echo", "Echo", Echo, _handler),))

    assert server.find("mcp__srv__echo") is server.tools[0]
    assert server.find("echo") is server.tools[0]
    assert server.find("other") is None
    assert asyncio.run(server.dispatch(ToolUseEvent(name="other", id="1"))) is None


def test_nav_protocol_captures_plan() -> None:
    protocol = create_nav_protocol_tools()
    (tool,) = protocol.tools

    reply = asyncio.run(invoke_tool(tool, _plan_args()))
    repeat = asyncio.run(invoke_tool(tool, _plan_args(summary="Something else entirely")))

    assert tool.name == SUBMIT_PLAN_TOOL
    assert NAV_PROTOCOL_SERVER == "autonav-nav-protocol"
    assert json.loads(reply.text) == {
        "success": True,
        "message": "Plan submitted with 1 steps. The implementer will implement this.",
    }
    assert json.loads(repeat.text)["success"] is False
    plan = protocol.plan.get()
    assert plan.summary == "Add the login endpoint"
    assert plan.steps[0].commands is None


def test_nav_protocol_rejects_invalid_plan() -> None:
    protocol = create_nav_protocol_tools()

    result = asyncio.run(invoke_tool(protocol.tools[0], _plan_args(steps=[])))

    assert result.is_error
    assert not protocol.plan.is_set


def test_nav_protocol_reports_completion() -> None:
    protocol = create_nav_protocol_tools()

    reply = asyncio.run(invoke_tool(protocol.tools[0], _plan_args(is_complete=True, completion_message="All done")))

    assert json.loads(reply.text)["message"] == "Task marked as complete."
    assert protocol.plan.get().completion_message == "All done"


def test_collect_result_gathers_events() -> None:
    seen: list[Any] = []
    stream = _events(
        TextEvent("thinking"),
        ToolUseEvent(name="Read", id="1"),
        ErrorEvent("flaky"),
        ResultEvent(success=False, text="gave up", usage=Usage(3, 4), cost_usd=0.5),
    )

    collected = asyncio.run(collect_result(stream, on_event=seen.append))

    assert len(seen) == 4
    assert collected.success is False
    assert collected.text == "thinking"
    assert collected.tokens_used == 7
    assert collected.cost_usd == 0.5
    assert collected.error_text == "flaky\ngave up"


def test_collect_text_prefers_last_text_block() -> None:
    assert asyncio.run(collect_text(_events(TextEvent("a"), TextEvent("b"), ResultEvent(True, "r")))) == "b"
    assert asyncio.run(collect_text(_events(ResultEvent(True, "fallback")))) == "fallback"


def test_full_text_joins_blocks_and_ignores_failed_result_text() -> None:
    joined = asyncio.run(collect_result(_events(TextEvent("- a"), TextEvent("- b"), ResultEvent(True, "r"))))
    result_only = asyncio.run(collect_result(_events(ResultEvent(True, "from result"))))
    failed = asyncio.run(collect_result(_events(ResultEvent(False, "Rate limit reached"))))

    assert joined.full_text == "- a\n- b"
    assert result_only.full_text == "from result"
    assert failed.full_text == ""


def test_filter_stderr_drops_spawn_line() -> None:
    chunks = ["Spawning Claude Code process: claude --x\n", "Error: boom\n", "  \n"]

    assert filter_stderr(chunks) == "Error: boom"
