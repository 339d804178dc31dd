"""Backend-neutral configuration, event, and session contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Literal, Optional, Protocol, Union

HarnessType = Literal["claude-code", "chibi"]
PermissionMode = Literal["default", "acceptEdits", "bypassPermissions", "plan"]
SessionState = Literal["created", "streaming", "idle", "closed"]


class SessionClosedError(RuntimeError):
    """Raised when a turn is requested on a closed session."""


class SessionBusyError(RuntimeError):
    """Raised when a new turn starts before the previous one was drained."""


class MissingCaptureError(RuntimeError):
    """Raised when an agent finished its turn without submitting required output."""


@dataclass(frozen=True)
class SandboxPolicy:
    """Filesystem and network scope enforced around a spawned backend.

    Attributes:
        read_paths: Paths the process may read but not modify.
        write_paths: Paths the process may read and modify.
        block_network: Deny all outbound network access when true.
        enabled: Force sandboxing on/off; ``None`` defers to env and auto-detection.
    """

    read_paths: tuple[str, ...] = ()
    write_paths: tuple[str, ...] = ()
    block_network: bool = False
    enabled: Optional[bool] = None


@dataclass(frozen=True)
class AgentConfig:
    """Declarative execution request shared by every backend.

    Attributes:
        model: Model identifier passed to the backend.
        system_prompt: System prompt for the conversation.
        cwd: Working directory the agent is confined to.
        max_turns: Optional cap on agentic turns per call.
        max_budget_usd: Optional spend cap per call.
        additional_directories: Extra readable directories.
        mcp_servers: Tool servers keyed by server name, as returned by
            ``Harness.create_tool_server``.
        allowed_tools: Allowlist of tool names; ``None`` leaves the backend default.
        disallowed_tools: Denylist of tool names.
        permission_mode: Backend permission mode.
        sandbox: Optional sandbox policy for subprocess backends.
        stderr: Optional sink receiving raw backend stderr chunks.
    """

    model: str
    system_prompt: str = ""
    cwd: Optional[str] = None
    max_turns: Optional[int] = None
    max_budget_usd: Optional[float] = None
    additional_directories: tuple[str, ...] = ()
    mcp_servers: dict[str, Any] = field(default_factory=dict)
    allowed_tools: Optional[tuple[str, ...]] = None
    disallowed_tools: Optional[tuple[str, ...]] = None
    permission_mode: PermissionMode = "default"
    sandbox: Optional[SandboxPolicy] = None
    stderr: Optional[Callable[[str], None]] = None


@dataclass(frozen=True)
class Usage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class TextEvent:
    content: str
    type: Literal["text"] = "text"


@dataclass(frozen=True)
class ToolUseEvent:
    name: str
    id: str
    input: dict[str, Any] = field(default_factory=dict)
    type: Literal["tool_use"] = "tool_use"

    @property
    def short_name(self) -> str:
        """Tool name without the ``mcp__<server>__`` prefix."""
        return self.name.split("__")[-1] or self.name


@dataclass(frozen=True)
class ToolResultEvent:
    tool_use_id: str
    content: str
    is_error: bool = False
    type: Literal["tool_result"] = "tool_result"


@dataclass(frozen=True)
class ErrorEvent:
    message: str
    retryable: bool = False
    type: Literal["error"] = "error"


@dataclass(frozen=True)
class ResultEvent:
    """Terminal event of every turn, emitted exactly once."""

    success: bool
    text: str = ""
    usage: Optional[Usage] = None
    cost_usd: Optional[float] = None
    duration_ms: Optional[int] = None
    duration_api_ms: Optional[int] = None
    num_turns: Optional[int] = None
    session_id: Optional[str] = None
    type: Literal["result"] = "result"


AgentEvent = Union[TextEvent, ToolUseEvent, ToolResultEvent, ErrorEvent, ResultEvent]


class Session(Protocol):
    """One backend-bound conversation; turns are strictly sequential."""

    state: SessionState

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        """Stream the events of the current turn."""
        ...

    def send(self, prompt: str) -> AsyncIterator[AgentEvent]:
        """Start a follow-up turn and return its event stream.

        Raises:
            SessionClosedError: If the session was closed.
            SessionBusyError: If the current turn has not been drained.
        """
        ...

    def update_config(self, **changes: Any) -> None:
        """Override config fields for subsequent turns only."""
        ...

    async def close(self) -> None:
        """Terminate live processes and release resources. Idempotent."""
        ...


class Harness(Protocol):
    """Factory of sessions for one execution backend."""

    harness_type: HarnessType

    def run(self, config: AgentConfig, prompt: str) -> Session:
        ...

    def create_tool_server(self, name: str, tools: list[Any]) -> Any:
        ...
