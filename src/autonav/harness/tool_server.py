"""Caller-defined tools, one-shot capture slots, and the local tool sentinel."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel

from .types import MissingCaptureError, ToolUseEvent

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ToolResult:
    text: str
    is_error: bool = False

    def to_mcp(self) -> dict[str, Any]:
        return {"content": [{"type": "text", "text": self.text}], "is_error": self.is_error}


ToolHandler = Callable[[dict[str, Any]], Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDefinition:
    """A tool the agent may call, with its JSON input schema and async handler."""

    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler


def define_tool(
    name: str,
    description: str,
    input_model: type[BaseModel] | dict[str, Any],
    handler: ToolHandler,
) -> ToolDefinition:
    """Build a ``ToolDefinition`` from a pydantic model or a raw JSON schema.

    Args:
        name (str): Tool name exposed to the agent.
        description (str): Usage guidance shown to the agent.
        input_model (type[BaseModel] | dict[str, Any]): Model whose JSON schema
            describes the tool arguments, or a ready JSON schema.
        handler (ToolHandler): Coroutine invoked with the raw argument dict.

    Returns:
        ToolDefinition: Backend-neutral tool definition.
    """
    if isinstance(input_model, dict):
        schema = dict(input_model)
    else:
        schema = input_model.model_json_schema()
    return ToolDefinition(name=name, description=description, input_schema=schema, handler=handler)


def strip_nulls(value: Any) -> Any:
    """Recursively drop ``None`` entries so optional model fields fall back to defaults."""
    if isinstance(value, dict):
        return {k: strip_nulls(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [strip_nulls(v) for v in value if v is not None]
    return value


async def invoke_tool(tool: ToolDefinition, args: dict[str, Any]) -> ToolResult:
    """Run a tool handler, converting handler exceptions into error results for the agent."""
    try:
        return await tool.handler(args)
    except Exception as exc:
        logger.debug("Tool %s rejected arguments %s: %s", tool.name, json.dumps(args, default=str)[:500], exc)
        return ToolResult(text=f"{tool.name} failed: {exc}", is_error=True)


class CaptureSlot(Generic[T]):
    """Single-assignment holder for structured output submitted through a tool."""

    def __init__(self, label: str) -> None:
        self.label = label
        self._value: Optional[T] = None
        self._set = False

    @property
    def is_set(self) -> bool:
        return self._set

    def set(self, value: T) -> bool:
        """Store ``value`` if the slot is empty.

        Returns:
            bool: ``True`` when the value was stored, ``False`` when a value was
            already captured (the first submission wins).
        """
        if self._set:
            logger.debug("Ignoring repeated %s submission", self.label)
            return False
        self._value = value
        self._set = True
        return True

    def get(self) -> T:
        """Return the captured value.

        Raises:
            MissingCaptureError: If nothing was captured.
        """
        if not self._set:
            raise MissingCaptureError(f"No {self.label} was submitted")
        return self._value  # type: ignore[return-value]


@dataclass(frozen=True)
class LocalToolServer:
    """Tool server stand-in for backends that cannot call back into this process.

    Sessions that receive one in ``AgentConfig.mcp_servers`` run the matching
    handler locally when the backend reports a call to one of its tools. The
    handler's reply is not delivered back to the backend.
    """

    name: str
    tools: tuple[ToolDefinition, ...] = field(default_factory=tuple)

    def find(self, tool_name: str) -> Optional[ToolDefinition]:
        short = tool_name.split("__")[-1]
        for tool in self.tools:
            if tool.name in (tool_name, short):
                return tool
        return None

    async def dispatch(self, event: ToolUseEvent) -> Optional[ToolResult]:
        tool = self.find(event.name)
        if tool is None:
            return None
        return await invoke_tool(tool, event.input)


def is_local_tool_server(server: Any) -> bool:
    return isinstance(server, LocalToolServer)


def local_tool_servers(mcp_servers: dict[str, Any]) -> list[LocalToolServer]:
    return [s for s in mcp_servers.values() if isinstance(s, LocalToolServer)]
