"""Progress feedback side channel: mood messages and running metrics.

The loop receives a ``ProgressFeedback`` and a ``MoodState`` explicitly so it
can run without a terminal.
"""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass
from typing import Any, Literal, Optional, Protocol

progress_logger = logging.getLogger("autonav.progress")

MoodPhase = Literal["nav", "impl"]

NAV_START = ["Surveying the landscape...", "Getting oriented...", "Scanning the terrain..."]
NAV_EXPLORING = ["Deep in thought...", "Connecting the dots...", "Piecing it together...", "Following the thread..."]
NAV_THOROUGH = ["Leaving no stone unturned...", "Thoroughly investigating...", "Going deeper..."]
NAV_PLANNING = ["The plan crystallizes...", "Eureka!", "I see the path forward..."]
NAV_ERROR = ["Hmm, that's odd...", "Recalibrating...", "Unexpected terrain..."]

IMPL_START = ["Rolling up sleeves...", "Let's do this...", "Warming up..."]
IMPL_READING = ["Studying the target...", "Reading the blueprints...", "Reviewing the plan..."]
IMPL_WRITING = ["Fingers flying...", "In the zone...", "Crafting code...", "Shaping the solution..."]
IMPL_BUILDING = ["Moment of truth...", "Compiling hopes and dreams...", "Building..."]
IMPL_TESTING = ["Crossing fingers...", "Testing fate...", "Validating..."]
IMPL_FLOWING = ["On a roll!", "Flow state achieved...", "Unstoppable..."]
IMPL_ERROR = ["Plot twist!", "Hmm, let me reconsider...", "Not quite...", "Adjusting approach..."]

# One pool per review round, escalating.
REVIEW_FIX_MOODS: list[list[str]] = [
    ["Addressing feedback...", "Fair point...", "Noted...", "Valid, fixing...", "The reviewer has a point...", "Taking notes..."],
    ["Alright alright...", "Back at it...", "More feedback? Cute.", "Revising... again...", "Serving second draft..."],
    ["Oh we're STILL going?", "Again?!", "This code is my villain arc...", "Is this a personal attack?", "Not another round..."],
    ["ARE YOU KIDDING ME?!", "I can't even right now...", "The audacity...", "I did NOT sign up for this..."],
    ["FINE. TAKE IT.", "Shipping it. Fight me.", "Whatever, it's art.", "It's giving... done.", "Period."],
]

WRITE_TOOLS = frozenset({"Write", "Edit", "str_replace_based_edit_tool"})
READ_TOOLS = frozenset({"Read", "Glob", "Grep"})

_BUILD_RE = re.compile(r"\b(build|compile|tsc|webpack|esbuild)\b")
_TEST_RE = re.compile(r"\b(test|pytest|jest|vitest|check|lint)\b")


@dataclass
class MoodState:
    tool_count: int = 0
    last_error: bool = False
    consecutive_success: int = 0

    def record_tool(self) -> None:
        self.tool_count += 1
        if not self.last_error:
            self.consecutive_success += 1
        self.last_error = False

    def record_error(self) -> None:
        self.last_error = True
        self.consecutive_success = 0


def is_write_tool(tool_name: str) -> bool:
    return tool_name in WRITE_TOOLS


def is_read_tool(tool_name: str) -> bool:
    return tool_name in READ_TOOLS


def _bash_command(tool_name: str, tool_input: dict[str, Any]) -> str:
    if tool_name != "Bash":
        return ""
    command = tool_input.get("command")
    return command if isinstance(command, str) else ""


def pick_mood(
    phase: MoodPhase,
    tool_name: str,
    tool_input: dict[str, Any],
    state: MoodState,
    rng: Optional[random.Random] = None,
) -> str:
    """Choose a status line reflecting what the agent is doing right now."""
    choose = (rng or random).choice
    if state.last_error:
        return choose(NAV_ERROR if phase == "nav" else IMPL_ERROR)

    if phase == "nav":
        if tool_name == "submit_implementation_plan":
            return choose(NAV_PLANNING)
        if state.tool_count <= 2:
            return choose(NAV_START)
        if state.tool_count >= 10:
            return choose(NAV_THOROUGH)
        return choose(NAV_EXPLORING)

    if state.consecutive_success >= 8:
        return choose(IMPL_FLOWING)
    if state.tool_count <= 2:
        return choose(IMPL_START)
    command = _bash_command(tool_name, tool_input)
    if command and _BUILD_RE.search(command):
        return choose(IMPL_BUILDING)
    if command and _TEST_RE.search(command):
        return choose(IMPL_TESTING)
    if is_write_tool(tool_name):
        return choose(IMPL_WRITING)
    return choose(IMPL_READING)


def review_fix_mood(round_number: int, rng: Optional[random.Random] = None) -> str:
    pool = REVIEW_FIX_MOODS[min(max(round_number, 1), len(REVIEW_FIX_MOODS)) - 1]
    return (rng or random).choice(pool)


class ProgressFeedback(Protocol):
    """Interactive feedback surface driven by the loop."""

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def set_message(self, message: str) -> None: ...

    def set_last_tool(self, tool_name: str) -> None: ...

    def increment_turns(self) -> None: ...

    def reset_turns(self) -> None: ...

    def set_tokens(self, tokens: int) -> None: ...

    def set_stats(self, **stats: Any) -> None: ...


class NullProgressFeedback:
    """Feedback sink that ignores everything."""

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def set_message(self, message: str) -> None:
        pass

    def set_last_tool(self, tool_name: str) -> None:
        pass

    def increment_turns(self) -> None:
        pass

    def reset_turns(self) -> None:
        pass

    def set_tokens(self, tokens: int) -> None:
        pass

    def set_stats(self, **stats: Any) -> None:
        pass


class LogProgressFeedback:
    """Feedback reported through the ``autonav.progress`` logger.

    Messages are only emitted while started, and repeated messages are
    collapsed so a chatty agent does not flood the log.
    """

    def __init__(self) -> None:
        self.running = False
        self.message = ""
        self.last_tool: Optional[str] = None
        self.turns = 0
        self.tokens = 0
        self.stats: dict[str, Any] = {}

    def start(self) -> None:
        self.running = True

    def stop(self) -> None:
        self.running = False

    def set_message(self, message: str) -> None:
        if message == self.message:
            return
        self.message = message
        if self.running:
            progress_logger.info("%s", message)

    def set_last_tool(self, tool_name: str) -> None:
        self.last_tool = tool_name

    def increment_turns(self) -> None:
        self.turns += 1
        progress_logger.debug("turn %d (tool: %s)", self.turns, self.last_tool or "--")

    def reset_turns(self) -> None:
        self.turns = 0

    def set_tokens(self, tokens: int) -> None:
        self.tokens = tokens

    def set_stats(self, **stats: Any) -> None:
        self.stats.update(stats)
