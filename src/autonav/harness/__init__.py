"""Backend-neutral harness/session layer."""

from .factory import create_harness, resolve_and_create_harness, resolve_harness_type
from .helpers import CollectedResult, collect_result, collect_text, filter_stderr
from .tool_server import (
    CaptureSlot,
    LocalToolServer,
    ToolDefinition,
    ToolResult,
    define_tool,
    is_local_tool_server,
    strip_nulls,
)
from .types import (
    AgentConfig,
    AgentEvent,
    ErrorEvent,
    Harness,
    HarnessType,
    MissingCaptureError,
    ResultEvent,
    SandboxPolicy,
    Session,
    SessionBusyError,
    SessionClosedError,
    TextEvent,
    ToolResultEvent,
    ToolUseEvent,
    Usage,
)

__all__ = [
    "AgentConfig",
    "AgentEvent",
    "CaptureSlot",
    "CollectedResult",
    "ErrorEvent",
    "Harness",
    "HarnessType",
    "LocalToolServer",
    "MissingCaptureError",
    "ResultEvent",
    "SandboxPolicy",
    "Session",
    "SessionBusyError",
    "SessionClosedError",
    "TextEvent",
    "ToolDefinition",
    "ToolResult",
    "ToolResultEvent",
    "ToolUseEvent",
    "Usage",
    "collect_result",
    "collect_text",
    "create_harness",
    "define_tool",
    "filter_stderr",
    "is_local_tool_server",
    "resolve_and_create_harness",
    "resolve_harness_type",
    "strip_nulls",
]
