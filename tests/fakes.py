"""Scripted stand-ins for harnesses, sessions, and progress feedback used across tests."""

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional, Union

from autonav.harness.tool_server import LocalToolServer, ToolDefinition, local_tool_servers
from autonav.harness.types import AgentConfig, AgentEvent, ResultEvent, TextEvent, ToolUseEvent, Usage

Script = Union[list[AgentEvent], BaseException]
Responder = Callable[[AgentConfig, str], Script]


def result(success: bool = True, text: str = "", *, tokens: int = 0, cost: Optional[float] = None) -> ResultEvent:
    return ResultEvent(
        success=success,
        text=text,
        usage=Usage(input_tokens=tokens, output_tokens=0),
        cost_usd=cost,
    )


def tool_call(server: str, tool: str, args: dict[str, Any], call_id: str = "call-1") -> ToolUseEvent:
    return ToolUseEvent(name=f"mcp__{server}__{tool}", id=call_id, input=args)


def text(content: str) -> TextEvent:
    return TextEvent(content=content)


class FakeSession:
    """Replays a scripted turn, running local tool handlers like an in-process backend would."""

    def __init__(self, config: AgentConfig, prompt: str, script: Script) -> None:
        self.config = config
        self.prompt = prompt
        self.script = script
        self.closed = False
        self.close_calls = 0

    def __aiter__(self) -> AsyncIterator[AgentEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[AgentEvent]:
        if isinstance(self.script, BaseException):
            raise self.script
        for event in self.script:
            if isinstance(event, ToolUseEvent):
                for server in local_tool_servers(self.config.mcp_servers):
                    await server.dispatch(event)
            yield event

    def send(self, prompt: str) -> AsyncIterator[AgentEvent]:
        raise NotImplementedError

    def update_config(self, **changes: Any) -> None:
        pass

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeHarness:
    harness_type = "fake"

    def __init__(self, respond: Responder) -> None:
        self.respond = respond
        self.sessions: list[FakeSession] = []

    def run(self, config: AgentConfig, prompt: str) -> FakeSession:
        session = FakeSession(config, prompt, self.respond(config, prompt))
        self.sessions.append(session)
        return session

    def create_tool_server(self, name: str, tools: list[ToolDefinition]) -> LocalToolServer:
        return LocalToolServer(name=name, tools=tuple(tools))


class RecordingFeedback:
    def __init__(self) -> None:
        self.calls: list[tuple[str, Any]] = []
        self.running = False

    def start(self) -> None:
        self.running = True
        self.calls.append(("start", None))

    def stop(self) -> None:
        self.running = False
        self.calls.append(("stop", None))

    def set_message(self, message: str) -> None:
        self.calls.append(("message", message))

    def set_last_tool(self, tool_name: str) -> None:
        self.calls.append(("last_tool", tool_name))

    def increment_turns(self) -> None:
        self.calls.append(("turn", None))

    def reset_turns(self) -> None:
        self.calls.append(("reset_turns", None))

    def set_tokens(self, tokens: int) -> None:
        self.calls.append(("tokens", tokens))

    def set_stats(self, **stats: Any) -> None:
        self.calls.append(("stats", stats))


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def git(cwd: Path, *args: str) -> str:
    completed = subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)
    return completed.stdout.strip()


def init_repo(path: Path, *, initial_commit: bool = True) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init")
    git(path, "config", "user.email", "tests@example.com")
    git(path, "config", "user.name", "Tests")
    git(path, "config", "commit.gpgsign", "false")
    if initial_commit:
        (path / "README.md").write_text("# project\n", encoding="utf-8")
        git(path, "add", "-A")
        git(path, "commit", "-m", "initial")
    return path


def make_navigator(path: Path, name: str = "nav", config: Optional[str] = None) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    (path / "CLAUDE.md").write_text(f"# {name}\nYou know this codebase.\n", encoding="utf-8")
    if config is None:
        config = f'{{"name": "{name}", "description": "{name} navigator", "sandbox": {{"memento": {{"enabled": false}}, "standup": {{"enabled": false}}}}}}'
    (path / "config.json").write_text(config, encoding="utf-8")
    return path
