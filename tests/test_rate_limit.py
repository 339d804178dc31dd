from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from autonav.memento.rate_limit import (
    BackoffPolicy,
    RateLimitInfo,
    classify_error,
    compute_wait_seconds,
    format_duration,
    parse_rate_limit_error,
    wait_for_connection_retry,
    wait_for_rate_limit,
    wait_with_countdown,
)
from fakes import RecordingFeedback, SleepRecorder

NOW = datetime(2026, 2, 4, 18, 0, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("You've hit your limit · resets 9pm", "rate_limit"),
        ("rate_limit_error: too many requests", "rate_limit"),
        ("Usage limit reached, connection reset", "rate_limit"),
        ("read ECONNRESET", "transient"),
        ("socket hang up", "transient"),
        ("Connection timeout after 30s", "transient"),
        ("Network error while streaming", "transient"),
        ("Invalid API key", "fatal"),
        ("", "fatal"),
    ],
)
def test_classify_error(text: str, expected: str) -> None:
    assert classify_error(text) == expected


def test_parse_relative_reset() -> None:
    info = parse_rate_limit_error("Rate limit hit, resets in 2 hours", now=NOW)

    assert info.is_rate_limited
    assert info.seconds_until_reset == 7200


def test_parse_retry_after() -> None:
    info = parse_rate_limit_error("rate limit exceeded; retry after 90 seconds", now=NOW)

    assert info.seconds_until_reset == 90
    assert info.reset_time_raw == "90 seconds"


def test_parse_iso_timestamp() -> None:
    reset = NOW + timedelta(minutes=45)

    info = parse_rate_limit_error(f"usage limit reached until {reset.strftime('%Y-%m-%dT%H:%M:%SZ')}", now=NOW)

    assert info.seconds_until_reset == 45 * 60


def test_parse_calendar_reset_in_future() -> None:
    info = parse_rate_limit_error("You've hit your limit. Resets Feb 4, 9pm", now=NOW)

    assert info.is_rate_limited
    assert info.reset_time is not None and info.reset_time > NOW
    assert info.seconds_until_reset is not None and info.seconds_until_reset > 0


def test_parse_without_reset_and_non_rate_limit_text() -> None:
    assert parse_rate_limit_error("rate limit exceeded", now=NOW) == RateLimitInfo(is_rate_limited=True)
    assert parse_rate_limit_error("disk full", now=NOW).is_rate_limited is False


def test_wait_with_known_reset_adds_buffer_and_caps() -> None:
    policy = BackoffPolicy()

    assert compute_wait_seconds(RateLimitInfo(True, seconds_until_reset=600), 0, policy) == 630
    assert compute_wait_seconds(RateLimitInfo(True, seconds_until_reset=10 * 3600), 0, policy) == 4 * 3600


def test_wait_without_reset_follows_schedule() -> None:
    info = RateLimitInfo(is_rate_limited=True)

    assert [compute_wait_seconds(info, attempt) for attempt in range(7)] == [60, 300, 1800, 7200, 14400, 14400, 14400]


def test_custom_policy_is_honored() -> None:
    policy = BackoffPolicy(backoff_delays=(2, 4), max_wait_seconds=3, reset_buffer_seconds=1)

    assert compute_wait_seconds(RateLimitInfo(True), 0, policy) == 2
    assert compute_wait_seconds(RateLimitInfo(True), 5, policy) == 3
    assert compute_wait_seconds(RateLimitInfo(True, seconds_until_reset=1), 0, policy) == 2


@pytest.mark.parametrize(
    ("seconds", "expected"),
    [(45, "45s"), (60, "1m"), (150, "2m 30s"), (3600, "1h"), (5400, "1h 30m")],
)
def test_format_duration(seconds: int, expected: str) -> None:
    assert format_duration(seconds) == expected


def test_countdown_ticks_once_per_second() -> None:
    ticks: list[tuple[int, str]] = []
    sleep = SleepRecorder()

    asyncio.run(wait_with_countdown(3, lambda remaining, text: ticks.append((remaining, text)), sleep=sleep))

    assert ticks == [(3, "3s"), (2, "2s"), (1, "1s")]
    assert sleep.calls == [1, 1, 1]


def test_rate_limit_wait_pauses_feedback() -> None:
    feedback = RecordingFeedback()
    sleep = SleepRecorder()
    policy = BackoffPolicy(backoff_delays=(2,))

    waited = asyncio.run(
        wait_for_rate_limit(RateLimitInfo(True), 0, feedback=feedback, policy=policy, sleep=sleep)
    )

    assert waited == 2
    assert sleep.calls == [1, 1]
    assert feedback.calls == [("stop", None), ("start", None)]


def test_feedback_restarts_when_wait_is_cancelled() -> None:
    feedback = RecordingFeedback()

    async def _cancelled(seconds: float) -> None:
        raise asyncio.CancelledError()

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(wait_for_rate_limit(RateLimitInfo(True), 0, feedback=feedback, sleep=_cancelled))

    assert feedback.calls[-1] == ("start", None)


def test_connection_retry_schedule() -> None:
    sleep = SleepRecorder()
    policy = BackoffPolicy(connection_delays=(1, 2))

    first = asyncio.run(wait_for_connection_retry("ECONNRESET", 0, policy=policy, sleep=sleep))
    later = asyncio.run(wait_for_connection_retry("ECONNRESET", 9, policy=policy, sleep=sleep))

    assert (first, later) == (1, 2)
    assert len(sleep.calls) == 3
