"""Subprocess backend: one ``chibi-json`` process per turn speaking NDJSON.

Each turn writes a single JSON request to the process stdin and reads
newline-delimited transcript entries from its stdout until the process exits.
Conversation state lives on the backend's disk under a named context, so the
session only keeps the context name between turns.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import math
import os
import signal
import uuid
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from ..memento.rate_limit import classify_error
from .ephemeral_home import EphemeralHome, create_ephemeral_home
from .sandbox import merge_session_paths, wrap_command
from .tool_server import LocalToolServer, ToolDefinition, local_tool_servers
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

CHIBI_BIN_ENV = "AUTONAV_CHIBI_BIN"
DEFAULT_CHIBI_BIN = "chibi-json"
CONTEXT_TTL_SECONDS = 12 * 60 * 60
TERMINATE_GRACE_SECONDS = 5.0
PRIME_TIMEOUT_SECONDS = 60.0
SANDBOX_DENIAL_MARKER = "nono: denied"
_STREAM_LIMIT = 16 * 1024 * 1024


def normalize_model_name(model: str) -> str:
    if model.startswith("anthropic/") or not model.startswith("claude-"):
        return model
    return f"anthropic/{model}"


def backend_config(config: AgentConfig) -> dict[str, Any]:
    """Per-invocation backend settings derived from an ``AgentConfig``."""
    out: dict[str, Any] = {}
    if config.model:
        out["model"] = normalize_model_name(config.model)
    if config.max_turns is not None:
        out["fuel"] = config.max_turns
    if config.allowed_tools:
        out["tools"] = {"include": list(config.allowed_tools)}
    elif config.disallowed_tools:
        out["tools"] = {"exclude": list(config.disallowed_tools)}
    return out


def _decode_tool_input(content: Any) -> dict[str, Any]:
    if isinstance(content, dict):
        return content
    if not isinstance(content, str) or not content.strip():
        return {}
    try:
        decoded = json.loads(content)
    except json.JSONDecodeError:
        return {"raw": content}
    return decoded if isinstance(decoded, dict) else {"value": decoded}


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else json.dumps(value)


def _as_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return value
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = _as_float(value)
    return int(number) if number is not None else None


def parse_chibi_line(line: str) -> list[AgentEvent]:
    """Map one stdout line to zero or more events; malformed lines yield nothing."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Dropping non-JSON chibi line: %s", line[:200])
        return []
    if not isinstance(data, dict):
        return []

    entry_type = data.get("entry_type")
    if entry_type == "message":
        if data.get("from") == "user":
            return []
        content = _as_text(data.get("content"))
        return [TextEvent(content=content)] if content else []
    if entry_type == "tool_call":
        name = data.get("to") or data.get("tool_name") or "unknown"
        return [ToolUseEvent(name=str(name), id=str(data.get("id") or ""), input=_decode_tool_input(data.get("content")))]
    if entry_type == "tool_result":
        return [
            ToolResultEvent(
                tool_use_id=str(data.get("tool_call_id") or data.get("id") or ""),
                content=_as_text(data.get("content")),
                is_error=data.get("is_error") is True,
            )
        ]

    kind = data.get("type")
    if kind == "error":
        message = _as_text(data.get("message") or data.get("error")) or "Unknown chibi error"
        return [ErrorEvent(message=message, retryable=classify_error(message) != "fatal")]
    if kind == "result":
        usage = data.get("usage")
        return [
            ResultEvent(
                success=data.get("success") is not False,
                text=_as_text(data.get("text") or data.get("content")),
                usage=Usage(
                    input_tokens=_as_int(usage.get("input_tokens")) or 0,
                    output_tokens=_as_int(usage.get("output_tokens")) or 0,
                )
                if isinstance(usage, dict)
                else None,
                cost_usd=_as_float(data.get("cost_usd")),
                duration_ms=_as_int(data.get("duration_ms")),
                num_turns=_as_int(data.get("num_turns")),
                session_id=data.get("context") if isinstance(data.get("context"), str) else None,
            )
        ]
    return []


async def terminate_process(proc: asyncio.subprocess.Process, grace: float = TERMINATE_GRACE_SECONDS) -> None:
    """SIGTERM the process group, escalating to SIGKILL after ``grace`` seconds."""
    if proc.returncode is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGTERM)
    except ProcessLookupError:
        pass
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace)
        return
    except asyncio.TimeoutError:
        logger.debug("Process %s ignored SIGTERM; sending SIGKILL", proc.pid)
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    await proc.wait()


def _write_tool_manifests(home: Path, servers: list[LocalToolServer]) -> None:
    if not servers:
        return
    plugins = home / "plugins"
    plugins.mkdir(parents=True, exist_ok=True)
    for server in servers:
        for tool in server.tools:
            manifest = {
                "name": tool.name,
                "description": tool.description,
                "parameters": tool.input_schema,
                "server": server.name,
            }
            (plugins / f"{tool.name}.json").write_text(json.dumps(manifest, indent=2), encoding="utf-8")


class ChibiSession:
    """Session over a ``chibi-json`` subprocess with a disk-persisted context."""

    def __init__(
        self,
        config: AgentConfig,
        prompt: str,
        *,
        executable: str = DEFAULT_CHIBI_BIN,
        flags: Optional[dict[str, Any]] = None,
    ) -> None:
        self._config = config
        self._executable = executable
        self._flags = dict(flags or {})
        self.context_name = f"autonav-{uuid.uuid4().hex[:12]}"
        self._local_servers = local_tool_servers(config.mcp_servers)
        self.home: EphemeralHome = create_ephemeral_home(
            "chibi", lambda path: _write_tool_manifests(path, self._local_servers)
        )
        self.sandbox = merge_session_paths(config.sandbox, home=str(self.home.path), cwd=config.cwd)
        self.state: SessionState = "created"
        self._pending_prompt: Optional[str] = prompt
        self._primed = False
        self._proc: Optional[asyncio.subprocess.Process] = None

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
        if "sandbox" in changes:
            logger.debug("Ignoring sandbox change on live session %s", self.context_name)
            changes.pop("sandbox")
        self._config = dataclasses.replace(self._config, **changes)

    async def close(self) -> None:
        if self.state == "closed":
            return
        self.state = "closed"
        proc = self._proc
        self._proc = None
        try:
            if proc is not None:
                await terminate_process(proc)
        finally:
            self.home.cleanup()

    async def __aenter__(self) -> "ChibiSession":
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    def _request(self, command: dict[str, Any]) -> dict[str, Any]:
        request: dict[str, Any] = {"command": command, "context": self.context_name}
        if self._config.cwd:
            request["project_root"] = self._config.cwd
        request["home"] = str(self.home.path)
        if self._flags:
            request["flags"] = self._flags
        settings = backend_config(self._config)
        if settings:
            request["config"] = settings
        return request

    async def _spawn(self, request: dict[str, Any]) -> asyncio.subprocess.Process:
        argv = wrap_command(self._executable, [], self.sandbox)
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self._config.cwd,
            limit=_STREAM_LIMIT,
            start_new_session=True,
        )
        assert proc.stdin is not None
        proc.stdin.write(json.dumps(request).encode("utf-8") + b"\n")
        try:
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("chibi exited before reading its request")
        proc.stdin.close()
        return proc

    async def _prime(self) -> None:
        """Set the system prompt and context TTL; failures are logged, never raised."""
        self._primed = True
        request = self._request(
            {"set_system_prompt": {"prompt": self._config.system_prompt, "ttl_seconds": CONTEXT_TTL_SECONDS}}
        )
        try:
            proc = await self._spawn(request)
        except OSError as exc:
            logger.warning("Failed to prime chibi context %s: %s", self.context_name, exc)
            return
        self._proc = proc
        assert proc.stdout is not None and proc.stderr is not None
        try:
            _, stderr, _ = await asyncio.wait_for(
                asyncio.gather(proc.stdout.read(), proc.stderr.read(), proc.wait()),
                timeout=PRIME_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.warning("Priming chibi context %s timed out", self.context_name)
            await terminate_process(proc)
            return
        finally:
            self._proc = None
        if proc.returncode != 0:
            logger.warning(
                "Priming chibi context %s exited with %s: %s",
                self.context_name,
                proc.returncode,
                stderr.decode("utf-8", errors="replace").strip()[:500],
            )

    async def _dispatch_local(self, event: ToolUseEvent) -> None:
        for server in self._local_servers:
            result = await server.dispatch(event)
            if result is not None:
                logger.debug("Handled %s locally (error=%s)", event.name, result.is_error)
                return

    async def _drain_stderr(self, stream: asyncio.StreamReader, denials: list[str]) -> None:
        async for raw in stream:
            text = raw.decode("utf-8", errors="replace")
            if SANDBOX_DENIAL_MARKER in text:
                denials.append(text.strip())
            if self._config.stderr is not None:
                self._config.stderr(text)
            logger.debug("[chibi stderr] %s", text.rstrip())

    async def _run_turn(self, prompt: str) -> AsyncIterator[AgentEvent]:
        try:
            if not self._primed:
                await self._prime()
            if self.state == "closed":
                yield ErrorEvent(message="Session closed before the turn started")
                yield ResultEvent(success=False, text="Session closed")
                return
            async for event in self._stream(self._request({"send_prompt": {"prompt": prompt}})):
                yield event
        finally:
            if self.state != "closed":
                self.state = "idle"

    async def _stream(self, request: dict[str, Any]) -> AsyncIterator[AgentEvent]:
        try:
            proc = await self._spawn(request)
        except OSError as exc:
            message = f"Failed to start {self._executable}: {exc}"
            yield ErrorEvent(message=message)
            yield ResultEvent(success=False, text=message)
            return

        self._proc = proc
        denials: list[str] = []
        assert proc.stdout is not None and proc.stderr is not None
        stderr_task = asyncio.create_task(self._drain_stderr(proc.stderr, denials))
        result: Optional[ResultEvent] = None
        saw_error = False
        last_text = ""
        try:
            async for raw in proc.stdout:
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                for event in parse_chibi_line(line):
                    if isinstance(event, ResultEvent):
                        # Held back so denial errors still precede the terminal event.
                        if result is None:
                            result = event
                        continue
                    if isinstance(event, ErrorEvent):
                        saw_error = True
                    elif isinstance(event, TextEvent):
                        last_text = event.content
                    elif isinstance(event, ToolUseEvent):
                        await self._dispatch_local(event)
                    yield event
            await stderr_task
            returncode = await proc.wait()
        finally:
            if proc.returncode is None:
                await terminate_process(proc)
            if not stderr_task.done():
                stderr_task.cancel()
            if self._proc is proc:
                self._proc = None

        for message in denials:
            saw_error = True
            yield ErrorEvent(message=message)

        if result is None:
            success = returncode == 0 and not saw_error
            text = last_text if success else (last_text or f"chibi exited with code {returncode}")
            result = ResultEvent(success=success, text=text, session_id=self.context_name)
        yield result


class ChibiHarness:
    """Harness producing ``ChibiSession`` objects."""

    harness_type = "chibi"

    def __init__(self, executable: Optional[str] = None, flags: Optional[dict[str, Any]] = None) -> None:
        self.executable = executable or os.environ.get(CHIBI_BIN_ENV) or DEFAULT_CHIBI_BIN
        self.flags = flags

    def run(self, config: AgentConfig, prompt: str) -> ChibiSession:
        return ChibiSession(config, prompt, executable=self.executable, flags=self.flags)

    def create_tool_server(self, name: str, tools: list[ToolDefinition]) -> LocalToolServer:
        """Return the local-tool sentinel; chibi cannot call back into this process."""
        return LocalToolServer(name=name, tools=tuple(tools))
