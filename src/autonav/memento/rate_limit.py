"""Rate-limit detection, backoff computation, and countdown waits.

This module only decides how long to wait. The retry loops live in the
memento loop itself.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Literal, Optional

from .mood import ProgressFeedback

logger = logging.getLogger(__name__)

ErrorClass = Literal["rate_limit", "transient", "fatal"]

MAX_WAIT_SECONDS = 4 * 60 * 60
RESET_BUFFER_SECONDS = 30
BACKOFF_DELAYS = (60, 300, 1800, 7200, 14400)
CONNECTION_RETRY_DELAYS = (5, 15, 30, 60, 120)

RATE_LIMIT_MARKERS = (
    "rate limit",
    "rate_limit",
    "usage limit",
    "limit reached",
    "you've hit your limit",
)

TRANSIENT_CONNECTION_MARKERS = (
    "econnreset",
    "etimedout",
    "econnrefused",
    "epipe",
    "ehostunreach",
    "enetunreach",
    "socket hang up",
    "apiconnectiontimeouterror",
    "apiconnectionerror",
    "fetch failed",
    "aborted",
)

_RESETS_DATE_RE = re.compile(
    r"resets?\s+([A-Za-z]+\s+\d{1,2},?\s+\d{1,2}(?::\d{2})?\s*(?:am|pm)?)", re.IGNORECASE
)
_RESETS_IN_RE = re.compile(
    r"resets?\s+in\s+(\d+)\s*(hours?|minutes?|mins?|hrs?|seconds?|secs?)", re.IGNORECASE
)
_RETRY_AFTER_RE = re.compile(r"retry\s+after\s+(\d+)\s*(?:seconds?|secs?)?", re.IGNORECASE)
_ISO_RE = re.compile(r"(\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d+)?(?:Z|[+-]\d{2}:\d{2})?)")


@dataclass(frozen=True)
class RateLimitInfo:
    is_rate_limited: bool
    reset_time: Optional[datetime] = None
    reset_time_raw: Optional[str] = None
    seconds_until_reset: Optional[int] = None


@dataclass(frozen=True)
class BackoffPolicy:
    """Tunable wait schedule; defaults mirror the observed service limits."""

    backoff_delays: tuple[int, ...] = BACKOFF_DELAYS
    max_wait_seconds: int = MAX_WAIT_SECONDS
    reset_buffer_seconds: int = RESET_BUFFER_SECONDS
    connection_delays: tuple[int, ...] = CONNECTION_RETRY_DELAYS


def is_rate_limit_text(text: str) -> bool:
    lower = text.lower()
    return any(marker in lower for marker in RATE_LIMIT_MARKERS)


def is_transient_connection_error(text: str) -> bool:
    lower = text.lower()
    if any(marker in lower for marker in TRANSIENT_CONNECTION_MARKERS):
        return True
    if "connection" in lower and "timeout" in lower:
        return True
    return "network" in lower and "error" in lower


def classify_error(text: str) -> ErrorClass:
    """Classify backend error text; rate limits take precedence over connection errors."""
    if is_rate_limit_text(text):
        return "rate_limit"
    if is_transient_connection_error(text):
        return "transient"
    return "fatal"


def parse_rate_limit_error(text: str, now: Optional[datetime] = None) -> RateLimitInfo:
    """Extract the reset time from a rate-limit error message.

    Recognised forms include "resets Feb 4, 9pm", "resets in 2 hours",
    "retry after 3600 seconds" and ISO timestamps such as
    "2026-02-04T21:00:00Z".

    Args:
        text (str): Error text reported by the backend.
        now (Optional[datetime]): Reference time; defaults to the current time.

    Returns:
        RateLimitInfo: ``is_rate_limited=False`` when no rate-limit marker is present.
    """
    if not is_rate_limit_text(text):
        return RateLimitInfo(is_rate_limited=False)

    local_now = now.astimezone() if now is not None else datetime.now().astimezone()

    match = _RESETS_DATE_RE.search(text)
    if match:
        raw = match.group(1)
        parsed = _parse_fuzzy_datetime(raw, local_now)
        if parsed is not None:
            seconds = max(0, int((parsed - local_now).total_seconds()))
            return RateLimitInfo(True, parsed, raw, seconds)

    match = _RESETS_IN_RE.search(text)
    if match:
        amount = int(match.group(1))
        unit = match.group(2).lower()
        if unit.startswith(("hour", "hr")):
            seconds = amount * 3600
        elif unit.startswith("min"):
            seconds = amount * 60
        else:
            seconds = amount
        return RateLimitInfo(True, local_now + timedelta(seconds=seconds), f"in {amount} {unit}", seconds)

    match = _RETRY_AFTER_RE.search(text)
    if match:
        seconds = int(match.group(1))
        return RateLimitInfo(True, local_now + timedelta(seconds=seconds), f"{seconds} seconds", seconds)

    match = _ISO_RE.search(text)
    if match:
        raw = match.group(1)
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            parsed = None
        if parsed is not None:
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            seconds = max(0, int((parsed - local_now).total_seconds()))
            return RateLimitInfo(True, parsed, raw, seconds)

    return RateLimitInfo(is_rate_limited=True)


def _parse_fuzzy_datetime(raw: str, now: datetime) -> Optional[datetime]:
    cleaned = re.sub(r"\s+", " ", raw.replace(",", " ")).strip()
    cleaned = re.sub(r"(\d)\s*(am|pm)$", r"\1\2", cleaned, flags=re.IGNORECASE).upper()
    formats = ("%b %d %I%p", "%b %d %I:%M%p", "%B %d %I%p", "%B %d %I:%M%p", "%b %d %H:%M", "%B %d %H:%M")
    for fmt in formats:
        try:
            parsed = datetime.strptime(f"{now.year} {cleaned}", f"%Y {fmt}")
        except ValueError:
            continue
        candidate = parsed.replace(tzinfo=now.tzinfo)
        if candidate < now:
            candidate += timedelta(days=1)
            if candidate < now:
                candidate = parsed.replace(year=now.year + 1, tzinfo=now.tzinfo)
        return candidate
    return None


def backoff_delay(attempt: int, policy: BackoffPolicy = BackoffPolicy()) -> int:
    delays = policy.backoff_delays
    return delays[min(max(attempt, 0), len(delays) - 1)]


def connection_retry_delay(attempt: int, policy: BackoffPolicy = BackoffPolicy()) -> int:
    delays = policy.connection_delays
    return delays[min(max(attempt, 0), len(delays) - 1)]


def compute_wait_seconds(info: RateLimitInfo, attempt: int, policy: BackoffPolicy = BackoffPolicy()) -> int:
    """Seconds to wait before retrying a rate-limited call.

    With a parsed reset ``T`` the wait is ``min(T + buffer, ceiling)``; otherwise
    the backoff schedule entry for ``attempt`` (also capped at the ceiling).
    """
    if info.seconds_until_reset and info.seconds_until_reset > 0:
        return min(info.seconds_until_reset + policy.reset_buffer_seconds, policy.max_wait_seconds)
    return min(backoff_delay(attempt, policy), policy.max_wait_seconds)


def format_duration(seconds: int) -> str:
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        mins, secs = divmod(seconds, 60)
        return f"{mins}m {secs}s" if secs else f"{mins}m"
    hours = seconds // 3600
    mins = (seconds % 3600) // 60
    return f"{hours}h {mins}m" if mins else f"{hours}h"


Sleep = Callable[[float], Awaitable[None]]


async def wait_with_countdown(
    seconds: int,
    on_tick: Optional[Callable[[int, str], None]] = None,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Sleep ``seconds`` in one-second steps, reporting the remaining time each step.

    Cancellation takes effect at the next one-second boundary.
    """
    remaining = int(seconds)
    while remaining > 0:
        if on_tick is not None:
            on_tick(remaining, format_duration(remaining))
        await sleep(1)
        remaining -= 1


def _log_countdown(remaining: int, formatted: str) -> None:
    if remaining % 60 == 0 or remaining <= 10:
        logger.info("Resuming in %s...", formatted)


async def wait_for_rate_limit(
    info: RateLimitInfo,
    attempt: int,
    *,
    feedback: Optional[ProgressFeedback] = None,
    policy: BackoffPolicy = BackoffPolicy(),
    sleep: Sleep = asyncio.sleep,
) -> int:
    """Pause feedback, wait out a rate limit with a countdown, then resume feedback.

    Returns:
        int: Seconds waited.
    """
    wait_seconds = compute_wait_seconds(info, attempt, policy)
    if feedback is not None:
        feedback.stop()
    if info.reset_time_raw:
        logger.warning(
            "Rate limited (reset: %s); waiting %s before retry (attempt %d)",
            info.reset_time_raw,
            format_duration(wait_seconds),
            attempt + 1,
        )
    else:
        logger.warning("Rate limited; waiting %s before retry (attempt %d)", format_duration(wait_seconds), attempt + 1)
    try:
        await wait_with_countdown(wait_seconds, _log_countdown, sleep=sleep)
    finally:
        if feedback is not None:
            feedback.start()
    return wait_seconds


async def wait_for_connection_retry(
    error_text: str,
    attempt: int,
    *,
    feedback: Optional[ProgressFeedback] = None,
    policy: BackoffPolicy = BackoffPolicy(),
    sleep: Sleep = asyncio.sleep,
) -> int:
    """Short countdown before retrying after a transient connection error."""
    wait_seconds = connection_retry_delay(attempt, policy)
    if feedback is not None:
        feedback.stop()
    logger.warning(
        "Connection error (attempt %d): %s; reconnecting in %s",
        attempt + 1,
        error_text.splitlines()[0] if error_text else "unknown",
        format_duration(wait_seconds),
    )
    try:
        await wait_with_countdown(wait_seconds, _log_countdown, sleep=sleep)
    finally:
        if feedback is not None:
            feedback.start()
    return wait_seconds
