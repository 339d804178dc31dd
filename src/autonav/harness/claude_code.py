"""In-process backend built on ``claude-agent-sdk``.

Each turn is one ``query()`` call. The SDK has no multi-turn resumption here,
so follow-up turns replay the role-tagged transcript as a single prompt;
callers bound its growth through ``max_turns``.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, AsyncIterator, Optional

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    UserMessage,
    create_sdk_mcp_server,
    query,
    tool,
)

from ..memento.rate_limit import classify_error
from .helpers import filter_stderr
from .tool_server import ToolDefinition, invoke_tool
from .types import (
    AgentConfig,
    AgentEvent,
    ErrorEvent,
    ResultEvent,
    SessionBusyError,
    SessionClosedError,
    SessionState,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
    Usage,
)

logger = logging.getLogger(__name__)

_RETRYABLE_MESSAGE_ERRORS = {"rate_limit", "server_error"}


def build_options(config: AgentConfig, stderr_sink: Any = None) -> ClaudeAgentOptions:
    """Translate an ``AgentConfig`` into SDK options, field for field.

    The SDK sandbox stays off; scoping is enforced by ``cwd`` and tool allowlists.
    """
    kwargs: dict[str, Any] = {
        "model": config.model,
        "system_prompt": config.system_prompt or None,
        "cwd": config.cwd,
        "add_dirs": list(config.additional_directories),
        "mcp_servers": dict(config.mcp_servers),
        "permission_mode": config.permission_mode,
    }
    if config.max_turns is not None:
        kwargs["max_turns"] = config.max_turns
    if config.max_budget_usd is not None:
        kwargs["max_budget_usd"] = config.max_budget_usd
    if config.allowed_tools is not None:
        kwargs["allowed_tools"] = list(config.allowed_tools)
    if config.disallowed_tools is not None:
        kwargs["disallowed_tools"] = list(config.disallowed_tools)
    if stderr_sink is not None:
        kwargs["stderr"] = stderr_sink
    return ClaudeAgentOptions(**kwargs)


def _tool_result_text(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    parts = []
    for item in content:
        if isinstance(item, dict) and item.get("type") == "text":
            parts.append(str(item.get("text", "")))
        else:
            parts.append(str(item))
    return "\n".join(parts)


def _usage(raw: Any) -> Optional[Usage]:
    if not isinstance(raw, dict):
        return None
    return Usage(
        input_tokens=int(raw.get("input_tokens") or 0),
        output_tokens=int(raw.get("output_tokens") or 0),
    )


def translate_message(message: Any) -> list[AgentEvent]:
    """Flatten one SDK message into backend-neutral events."""
    events: list[AgentEvent] = []
    if isinstance(message, AssistantMessage):
        error = getattr(message, "error", None)
        if error:
            events.append(ErrorEvent(message=f"Assistant error: {error}", retryable=error in _RETRYABLE_MESSAGE_ERRORS))
        for block in message.content:
            if isinstance(block, TextBlock):
                events.append(TextEvent(content=block.text))
            elif isinstance(block, ToolUseBlock):
                events.append(ToolUseEvent(name=block.name, id=block.id, input=dict(block.input or {})))
    elif isinstance(message, UserMessage):
        if isinstance(message.content, list):
            for block in message.content:
                if isinstance(block, ToolResultBlock):
                    events.append(
                        ToolResultEvent(
                            tool_use_id=block.tool_use_id,
                            content=_tool_result_text(block.content),
                            is_error=bool(block.is_error),
                        )
                    )
    elif isinstance(message, ResultMessage):
        success = message.subtype == "success" and not message.is_error
        text = message.result or ("" if success else message.subtype)
        events.append(
            ResultEvent(
                success=success,
                text=text,
                usage=_usage(message.usage),
                cost_usd=message.total_cost_usd,
                duration_ms=message.duration_ms,
                duration_api_ms=message.duration_api_ms,
                num_turns=message.num_turns,
                session_id=message.session_id,
            )
        )
    return events


class ClaudeCodeSession:
    """Session over repeated in-process SDK queries."""

    def __init__(self, config: AgentConfig, prompt: str) -> None:
        self._config = config
        self.state: SessionState = "created"
        self._pending_prompt: Optional[str] = prompt
        self._transcript: list[tuple[str, str]] = []
        self._query: Any = None

    @property
    def config(self) -> AgentConfig:
        return self._config

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        if self.state == "closed":
            raise SessionClosedError("Session is closed")
        if self._pending_prompt is None:
            raise SessionBusyError("The initial turn was already consumed; use send()")
        prompt, self._pending_prompt = self._pending_prompt, None
        self.state = "streaming"
        return self._run_turn(prompt)

    def send(self, prompt: str) -> AsyncIterator[AgentEvent]:
        if self.state == "closed":
            raise SessionClosedError("Session is closed")
        if self.state != "idle":
            raise SessionBusyError(f"Cannot send while session is {self.state}")
        self.state = "streaming"
        return self._run_turn(prompt)

    def update_config(self, **changes: Any) -> None:
        self._config = dataclasses.replace(self._config, **changes)

    async def close(self) -> None:
        if self.state == "closed":
            return
        self.state = "closed"
        stream, self._query = self._query, None
        if stream is None:
            return
        try:
            await stream.aclose()
        except RuntimeError as exc:
            logger.debug("Could not close in-flight query cleanly: %s", exc)

    async def __aenter__(self) -> "ClaudeCodeSession":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    def _replay_prompt(self, prompt: str) -> str:
        if not self._transcript:
            return prompt
        lines = [f"{role}: {text}" for role, text in self._transcript]
        lines.append(f"User: {prompt}")
        return "\n\n".join(lines)

    async def _run_turn(self, prompt: str) -> AsyncIterator[AgentEvent]:
        stderr_chunks: list[str] = []
        user_sink = self._config.stderr

        def _stderr(data: str) -> None:
            stderr_chunks.append(data)
            if user_sink is not None:
                user_sink(data)

        options = build_options(self._config, _stderr)
        full_prompt = self._replay_prompt(prompt)
        reply_parts: list[str] = []
        result: Optional[ResultEvent] = None
        last_error = ""
        try:
            self._query = query(prompt=full_prompt, options=options)
            try:
                async for message in self._query:
                    for event in translate_message(message):
                        if isinstance(event, ResultEvent):
                            if result is None:
                                result = event
                            continue
                        if isinstance(event, TextEvent):
                            reply_parts.append(event.content)
                        elif isinstance(event, ErrorEvent):
                            last_error = event.message
                        yield event
            except Exception as exc:
                stderr = filter_stderr(stderr_chunks)
                message = f"{exc}\n{stderr}" if stderr else str(exc)
                last_error = message
                logger.debug("Query failed: %s", message)
                yield ErrorEvent(message=message, retryable=classify_error(message) != "fatal")
            finally:
                self._query = None

            if result is None:
                result = ResultEvent(success=False, text=last_error or "No result message received")
            elif not result.success:
                stderr = filter_stderr(stderr_chunks)
                if stderr:
                    result = dataclasses.replace(result, text=f"{result.text}\nStderr: {stderr}")
            self._transcript.append(("User", prompt))
            self._transcript.append(("Assistant", "\n".join(reply_parts) or result.text))
            yield result
        finally:
            if self.state != "closed":
                self.state = "idle"


def _sdk_tool(definition: ToolDefinition) -> Any:
    @tool(definition.name, definition.description, definition.input_schema)
    async def _handler(args: dict[str, Any]) -> dict[str, Any]:
        result = await invoke_tool(definition, args)
        return result.to_mcp()

    return _handler


class ClaudeCodeHarness:
    """Harness producing ``ClaudeCodeSession`` objects."""

    harness_type = "claude-code"

    def run(self, config: AgentConfig, prompt: str) -> ClaudeCodeSession:
        return ClaudeCodeSession(config, prompt)

    def create_tool_server(self, name: str, tools: list[ToolDefinition]) -> Any:
        """Wrap tool definitions in an in-process SDK MCP server."""
        return create_sdk_mcp_server(name=name, version="1.0.0", tools=[_sdk_tool(t) for t in tools])
