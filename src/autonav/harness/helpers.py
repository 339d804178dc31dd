"""Helpers for draining event streams and cleaning backend diagnostics."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import AsyncIterable, Callable, Iterable, Optional

from .types import AgentEvent, ErrorEvent, ResultEvent, TextEvent, ToolResultEvent, ToolUseEvent, Usage

SPAWN_NOISE_PREFIX = "Spawning Claude Code process"


def filter_stderr(chunks: Iterable[str]) -> str:
    """Join stderr chunks, dropping the spawn line that echoes the whole command."""
    return "".join(c for c in chunks if not c.startswith(SPAWN_NOISE_PREFIX)).strip()


async def collect_text(events: AsyncIterable[AgentEvent]) -> str:
    """Drain ``events`` and return the last text block, falling back to the result text."""
    text = ""
    async for event in events:
        if isinstance(event, TextEvent):
            text = event.content
        elif isinstance(event, ResultEvent) and event.text and not text:
            text = event.text
    return text


@dataclass
class CollectedResult:
    """Everything one drained turn produced."""

    success: bool = False
    text: str = ""
    usage: Optional[Usage] = None
    cost_usd: Optional[float] = None
    duration_ms: Optional[int] = None
    text_events: list[TextEvent] = field(default_factory=list)
    tool_use_events: list[ToolUseEvent] = field(default_factory=list)
    tool_result_events: list[ToolResultEvent] = field(default_factory=list)
    error_events: list[ErrorEvent] = field(default_factory=list)
    result: Optional[ResultEvent] = None

    @property
    def tokens_used(self) -> int:
        return self.usage.total_tokens if self.usage else 0

    @property
    def full_text(self) -> str:
        """All assistant text blocks joined in order, or the result text when there were none."""
        if self.text_events:
            return "\n".join(e.content for e in self.text_events)
        if self.result is not None and self.result.success:
            return self.result.text
        return ""

    @property
    def error_text(self) -> str:
        parts = [e.message for e in self.error_events]
        if self.result is not None and not self.result.success and self.result.text:
            parts.append(self.result.text)
        return "\n".join(parts)


async def collect_result(
    events: AsyncIterable[AgentEvent],
    on_event: Optional[Callable[[AgentEvent], None]] = None,
) -> CollectedResult:
    """Drain ``events`` into a ``CollectedResult``, calling ``on_event`` for each one."""
    collected = CollectedResult()
    async for event in events:
        if on_event is not None:
            on_event(event)
        if isinstance(event, TextEvent):
            collected.text_events.append(event)
            collected.text = event.content
        elif isinstance(event, ToolUseEvent):
            collected.tool_use_events.append(event)
        elif isinstance(event, ToolResultEvent):
            collected.tool_result_events.append(event)
        elif isinstance(event, ErrorEvent):
            collected.error_events.append(event)
        elif isinstance(event, ResultEvent):
            collected.result = event
            collected.success = event.success
            if event.text and not collected.text:
                collected.text = event.text
            collected.usage = event.usage
            collected.cost_usd = event.cost_usd
            collected.duration_ms = event.duration_ms
    return collected
